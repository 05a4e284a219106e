from __future__ import annotations

from typing import Optional


class ExecutorError(Exception):
    """Base class for every error raised by pipexec."""


class SpawnError(ExecutorError):
    """The process could not be started (missing program, permissions, limits)."""

    def __init__(self, program: str, cause: Optional[BaseException] = None) -> None:
        self.program = program
        detail = f": {cause}" if cause is not None else ""
        super().__init__(f"Start process {program!r}{detail}")


class WaitError(ExecutorError):
    """Waiting for the process failed; distinct from a non-zero exit."""

    def __init__(self, program: str, cause: Optional[BaseException] = None) -> None:
        self.program = program
        detail = f": {cause}" if cause is not None else ""
        super().__init__(f"Wait for process {program!r}{detail}")


class UpstreamWaitError(WaitError):
    """The upstream of a chained command could not be waited on."""

    def __init__(self, program: str, upstream: str, cause: Optional[BaseException] = None) -> None:
        self.upstream = upstream
        super().__init__(program, cause)
        detail = f": {cause}" if cause is not None else ""
        self.args = (f"Wait for upstream {upstream!r} of {program!r}{detail}",)


class PipeCreationError(ExecutorError):
    """A redirection channel for the process could not be allocated."""


class PipeClosedError(ExecutorError):
    """Write to a PipeLink whose write end is already closed."""


class CommandStateError(ExecutorError):
    """Operation not valid in the command's current lifecycle state."""


class TopologyError(ExecutorError):
    """A pipe declaration the stream model cannot support."""


__all__ = [
    "ExecutorError",
    "SpawnError",
    "WaitError",
    "UpstreamWaitError",
    "PipeCreationError",
    "PipeClosedError",
    "CommandStateError",
    "TopologyError",
]
