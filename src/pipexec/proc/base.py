from __future__ import annotations
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Dict, List, Protocol, runtime_checkable, Callable


@dataclass
class EnvPolicy:
    inherit_parent: bool = True
    allowlist: Optional[list[str]] = None
    denylist: Optional[list[str]] = None
    defaults: Dict[str, str] = field(default_factory=dict)


@dataclass
class SpawnOptions:
    program: str
    args: List[str] = field(default_factory=list)
    name: Optional[str] = None
    cwd: Optional[Path] = None
    env_overlay: Optional[Dict[str, str]] = None
    # Which standard streams get a pipe; the rest are inherited from the parent.
    pipe_stdin: bool = False
    pipe_stdout: bool = False
    pipe_stderr: bool = False
    # Send stdout/stderr that are not piped to the null device instead.
    devnull_output: bool = False
    # When True, the subprocess is placed into its own process group so that
    # kill() affects the whole tree.
    use_process_group: bool = True
    # Windows only, ignored elsewhere.
    new_console: bool = False
    hide_window: bool = False


@runtime_checkable
class ByteReader(Protocol):
    async def read(self, n: int = -1) -> bytes: ...


@runtime_checkable
class ProcessHandle(Protocol):
    id: str
    name: Optional[str]

    @property
    def pid(self) -> Optional[int]: ...
    @property
    def returncode(self) -> Optional[int]: ...
    @property
    def stdout(self) -> Optional[ByteReader]: ...
    @property
    def stderr(self) -> Optional[ByteReader]: ...
    def alive(self) -> bool: ...

    async def write(self, data: bytes) -> None: ...
    async def close_stdin(self) -> None: ...
    async def kill(self) -> None: ...
    async def wait(self) -> int: ...


class ProcessBackend(Protocol):
    env_policy: EnvPolicy

    async def spawn(self, opts: SpawnOptions) -> ProcessHandle: ...


# Backend registry
_BACKENDS: dict[str, Callable[[], ProcessBackend]] = {}


def register_backend(name: str, factory: Callable[[], ProcessBackend]) -> None:
    _BACKENDS[name] = factory


def get_backend(name: str) -> ProcessBackend:
    if name not in _BACKENDS:
        raise ValueError(f"Unknown process backend: {name!r}")
    return _BACKENDS[name]()
