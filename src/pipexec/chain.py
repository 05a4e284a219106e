from __future__ import annotations

import asyncio
import contextlib
from typing import Optional, Sequence, Union

from pipexec.command import Command
from pipexec.errors import ExecutorError
from pipexec.proc import ProcessBackend
from pipexec.result import Result
from pipexec.settings import CommandSpec, StartConfig


class Chain:
    """
    A shell-like pipeline: each command's stdout feeds the next one's stdin.

    The topology is fixed at construction. run() starts producers first,
    waits on the last command (which waits on the rest) and returns one
    Result per command.
    """

    def __init__(
        self,
        steps: Sequence[Union[Command, CommandSpec]],
        *,
        merge_stderr: bool = False,
        backend: Optional[ProcessBackend] = None,
    ) -> None:
        if not steps:
            raise ValueError("Chain needs at least one command")
        self._commands: list[Command] = [
            s if isinstance(s, Command) else Command(s, backend=backend) for s in steps
        ]
        for producer, consumer in zip(self._commands, self._commands[1:]):
            producer.pipe_stdout_to(consumer)
            if merge_stderr:
                producer.pipe_stderr_to(consumer)

    @property
    def commands(self) -> list[Command]:
        return list(self._commands)

    @property
    def last(self) -> Command:
        return self._commands[-1]

    async def run(
        self,
        config: Optional[StartConfig] = None,
        *,
        upstream_config: Optional[StartConfig] = None,
    ) -> list[Result]:
        """
        `config` applies to the last command, `upstream_config` to the others.
        Neither needs `wait`; it is set as the chain requires.
        """
        config = config or StartConfig()
        upstream_config = upstream_config or StartConfig(encoding=config.encoding)
        started: list[Command] = []
        try:
            for cmd in self._commands[:-1]:
                await cmd.start(upstream_config.model_copy(update={"wait": False}))
                started.append(cmd)
            last = await self.last.start(config.model_copy(update={"wait": True}))
        except ExecutorError:
            await self._abort(started)
            raise
        results = [await cmd.wait() for cmd in self._commands[:-1]]
        results.append(last)
        return results

    async def _abort(self, started: list[Command]) -> None:
        for cmd in started:
            if cmd.handle is not None:
                with contextlib.suppress(OSError):
                    await cmd.kill()
        waits = [cmd.wait() for cmd in started]
        if waits:
            await asyncio.gather(*waits, return_exceptions=True)
