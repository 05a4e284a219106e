from __future__ import annotations
import asyncio
import os
import signal
import subprocess
import uuid
from typing import Any, Optional, Dict
from .base import (
    ByteReader,
    ProcessBackend,
    ProcessHandle,
    SpawnOptions,
    EnvPolicy,
)


def _build_env(policy: EnvPolicy, overlay: Optional[Dict[str, str]]) -> Dict[str, str]:
    base: Dict[str, str] = {}
    if policy.inherit_parent:
        base = dict(os.environ)
        if policy.allowlist is not None:
            allow = set(policy.allowlist)
            base = {k: v for k, v in base.items() if k in allow}
        if policy.denylist is not None:
            for k in policy.denylist:
                base.pop(k, None)
    base.update(policy.defaults or {})
    if overlay:
        base.update(overlay)
    return base


def _windows_attrs(opts: SpawnOptions) -> Dict[str, Any]:
    if os.name != "nt":
        return {}
    attrs: Dict[str, Any] = {}
    if opts.new_console:
        attrs["creationflags"] = subprocess.CREATE_NEW_CONSOLE  # type: ignore[attr-defined]
    if opts.hide_window:
        info = subprocess.STARTUPINFO()  # type: ignore[attr-defined]
        info.dwFlags |= subprocess.STARTF_USESHOWWINDOW  # type: ignore[attr-defined]
        info.wShowWindow = subprocess.SW_HIDE  # type: ignore[attr-defined]
        attrs["startupinfo"] = info
    return attrs


def _output_target(piped: bool, devnull: bool) -> Optional[int]:
    if piped:
        return asyncio.subprocess.PIPE
    return asyncio.subprocess.DEVNULL if devnull else None


class LocalProcessHandle(ProcessHandle):
    def __init__(
        self,
        proc: asyncio.subprocess.Process,
        name: Optional[str],
        *,
        use_process_group: bool = True,
    ) -> None:
        self._proc = proc
        self.id = str(uuid.uuid4())
        self.name = name
        self._use_pg = bool(use_process_group and os.name == "posix")

    @property
    def pid(self) -> Optional[int]:
        return self._proc.pid

    @property
    def returncode(self) -> Optional[int]:
        return self._proc.returncode

    @property
    def stdout(self) -> Optional[ByteReader]:
        return self._proc.stdout

    @property
    def stderr(self) -> Optional[ByteReader]:
        return self._proc.stderr

    def alive(self) -> bool:
        return self._proc.returncode is None

    async def write(self, data: bytes) -> None:
        if self._proc.stdin is None:
            return
        self._proc.stdin.write(data)
        await self._proc.stdin.drain()

    async def close_stdin(self) -> None:
        if self._proc.stdin is not None:
            self._proc.stdin.close()
            try:
                await self._proc.stdin.wait_closed()
            except (BrokenPipeError, ConnectionResetError):
                pass

    async def kill(self) -> None:
        if self._proc.returncode is not None:
            return

        try:
            if self._use_pg and self._proc.pid is not None:
                try:
                    os.killpg(self._proc.pid, signal.SIGKILL)
                except ProcessLookupError:
                    pass
            else:
                self._proc.kill()
        except ProcessLookupError:
            # Process was already gone before we could kill it.
            pass

    async def wait(self) -> int:
        return await self._proc.wait()


class LocalSubprocessBackend(ProcessBackend):
    def __init__(self, env_policy: Optional[EnvPolicy] = None) -> None:
        self.env_policy: EnvPolicy = env_policy or EnvPolicy()

    async def spawn(self, opts: SpawnOptions) -> ProcessHandle:
        env = _build_env(self.env_policy, opts.env_overlay)
        use_pg = opts.use_process_group and os.name == "posix"
        proc = await asyncio.create_subprocess_exec(
            opts.program,
            *opts.args,
            stdin=asyncio.subprocess.PIPE if opts.pipe_stdin else None,
            stdout=_output_target(opts.pipe_stdout, opts.devnull_output),
            stderr=_output_target(opts.pipe_stderr, opts.devnull_output),
            cwd=str(opts.cwd) if opts.cwd is not None else None,
            env=env,
            start_new_session=use_pg,
            **_windows_attrs(opts),
        )
        return LocalProcessHandle(proc, opts.name, use_process_group=use_pg)
