"""
Run external programs under asyncio, scan their output as it is produced
and chain them together like a shell pipe.

    from pipexec import Command, CommandSpec, StartConfig

    res = await Command(CommandSpec(program="echo", args=["hello"])).start(
        StartConfig(capture=True, wait=True, scan_stdout=True)
    )
    assert res.output == "hello\\n"
"""

from pipexec.cancel import Canceller, SignalListener, get_signal_listener
from pipexec.chain import Chain
from pipexec.command import Command, CommandState
from pipexec.errors import (
    CommandStateError,
    ExecutorError,
    PipeClosedError,
    PipeCreationError,
    SpawnError,
    TopologyError,
    UpstreamWaitError,
    WaitError,
)
from pipexec.logger import configure_logging, logger
from pipexec.manager import CommandManager
from pipexec.pipes import PipeLink, StreamTee
from pipexec.result import Result, aggregate_result
from pipexec.scanner import CallbackObserver, StreamName, StreamObserver, StreamScanner
from pipexec.settings import (
    CommandSpec,
    LoggingSettings,
    Settings,
    StartConfig,
    load_settings,
)

__version__ = "0.1.0"

__all__ = [
    "Canceller",
    "SignalListener",
    "get_signal_listener",
    "Chain",
    "Command",
    "CommandState",
    "CommandManager",
    "CommandStateError",
    "ExecutorError",
    "PipeClosedError",
    "PipeCreationError",
    "SpawnError",
    "TopologyError",
    "UpstreamWaitError",
    "WaitError",
    "configure_logging",
    "logger",
    "PipeLink",
    "StreamTee",
    "Result",
    "aggregate_result",
    "CallbackObserver",
    "StreamName",
    "StreamObserver",
    "StreamScanner",
    "CommandSpec",
    "LoggingSettings",
    "Settings",
    "StartConfig",
    "load_settings",
    "__version__",
]
