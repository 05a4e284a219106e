from __future__ import annotations
import asyncio
from pathlib import Path
from typing import Optional, Union

from pipexec.command import Command
from pipexec.logger import configure_logging
from pipexec.proc import EnvPolicy, ProcessBackend, get_backend
from pipexec.result import Result
from pipexec.settings import CommandSpec, ProcessSettings, Settings, StartConfig


class CommandManager:
    """
    Builds Commands from Settings against one configured process backend and
    keeps track of them so they can be shut down together.
    """

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self._settings = settings or Settings()
        configure_logging(self._settings.logging)
        process: ProcessSettings = self._settings.process
        self._default_cwd: Optional[Path] = process.default_cwd
        backend = get_backend(process.backend)
        backend.env_policy = EnvPolicy(
            inherit_parent=process.env.inherit_parent,
            allowlist=process.env.allowlist,
            denylist=process.env.denylist,
            defaults=dict(process.env.defaults),
        )
        self._backend: ProcessBackend = backend
        self._commands: list[Command] = []

    @property
    def settings(self) -> Settings:
        return self._settings

    def list(self) -> list[Command]:
        return list(self._commands)

    def command(self, spec: Union[str, CommandSpec]) -> Command:
        """Create a Command from a named spec in settings or from an explicit spec."""
        if isinstance(spec, str):
            try:
                spec = self._settings.commands[spec]
            except KeyError:
                raise KeyError(f"Unknown command: {spec!r}") from None
        if spec.cwd is None and self._default_cwd is not None:
            spec = spec.model_copy(update={"cwd": self._default_cwd})
        cmd = Command(spec, backend=self._backend)
        self._commands.append(cmd)
        return cmd

    def start_config(self, **overrides: object) -> StartConfig:
        return self._settings.start.model_copy(update=overrides)

    async def run(self, spec: Union[str, CommandSpec], **overrides: object) -> Result:
        """Run one command to completion with the default StartConfig."""
        overrides["wait"] = True
        return await self.command(spec).start(self.start_config(**overrides))

    async def shutdown(self) -> None:
        commands = list(self._commands)
        kills = [c.kill() for c in commands if c.handle is not None and c.handle.alive()]
        if kills:
            await asyncio.gather(*kills, return_exceptions=True)
        waits = [c.wait() for c in commands if c.handle is not None]
        if waits:
            await asyncio.gather(*waits, return_exceptions=True)
        self._commands.clear()
