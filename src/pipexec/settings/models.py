from typing import Any, Callable, Dict, Final, Literal, Optional, Tuple
from enum import Enum
import codecs
import re
from pathlib import Path
from pydantic import BaseModel, ConfigDict, Field
from pydantic import field_validator

from pipexec.cancel import Canceller


# Variable replacement pattern.
# Supports:
#   - ${NAME}
#   - ${env:NAME}
# Ignores '$${NAME}' so it can be used to escape a literal '${NAME}'.
VAR_PATTERN = re.compile(
    r"(?<!\$)\$\{([A-Za-z_][A-Za-z0-9_]*(?::[A-Za-z_][A-Za-z0-9_]*)?)\}"
)

# Size of a single read from a process stream or PipeLink.
READ_CHUNK_SIZE_DEFAULT: Final[int] = 4096

# Exit code reported while no OS status is known.
EXIT_CODE_UNKNOWN: Final[int] = -1

OnText = Callable[[str, Any], Any]


class LogLevel(str, Enum):
    debug = "debug"
    info = "info"
    warning = "warning"
    error = "error"
    critical = "critical"


class LoggingSettings(BaseModel):
    # Level for the "pipexec" logger if not overridden.
    default_level: LogLevel = LogLevel.warning
    # Mapping of logger name -> level override (e.g., {"asyncio": "debug"})
    enabled_loggers: Dict[str, LogLevel] = Field(default_factory=dict)


class CommandSpec(BaseModel):
    """What to run. Immutable once built."""

    model_config = ConfigDict(frozen=True)

    program: str = Field(min_length=1)
    # Passed to the program verbatim, no shell quoting or globbing.
    args: Tuple[str, ...] = ()
    cwd: Optional[Path] = None
    # Seconds before the process is killed; 0 means no deadline.
    timeout_s: float = Field(default=0, ge=0)
    # Added on top of the parent environment.
    env: Optional[Dict[str, str]] = None
    # Label used in logs and errors; defaults to the program.
    name: Optional[str] = None

    @property
    def label(self) -> str:
        return self.name or self.program


class StartConfig(BaseModel):
    """How to run it: a per-invocation value passed once to Command.start()."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    # Echo output to this process' stdout/stderr as it arrives.
    print: bool = False
    # Collect scanned output into Result.output.
    capture: bool = False
    # Block in start() until the process and its scanners are done.
    wait: bool = False
    scan_stdout: bool = False
    scan_stderr: bool = False
    # Codec name used to decode scanned output; utf-8 when unset.
    encoding: Optional[str] = None
    # Windows only: spawn in a new console / hide the window.
    new_console: bool = False
    hide_window: bool = False
    on_char: Optional[OnText] = None
    on_line: Optional[OnText] = None
    # Extra StreamObserver receiving the same events as on_char/on_line.
    observer: Optional[Any] = None
    canceller: Optional[Canceller] = None
    # Cancel on SIGINT/SIGTERM through the process-wide signal listener.
    handle_signals: bool = True
    read_chunk_size: int = Field(default=READ_CHUNK_SIZE_DEFAULT, gt=0)

    @field_validator("encoding")
    @classmethod
    def _known_codec(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        try:
            codecs.lookup(v)
        except LookupError:
            raise ValueError(f"Unknown encoding: {v!r}") from None
        return v


class ProcessEnvSettings(BaseModel):
    inherit_parent: bool = True
    allowlist: Optional[list[str]] = None
    denylist: Optional[list[str]] = None
    defaults: Dict[str, str] = Field(default_factory=dict)


class ProcessSettings(BaseModel):
    # Backend key in the process backend registry.
    backend: Literal["local"] = "local"
    env: ProcessEnvSettings = Field(default_factory=ProcessEnvSettings)
    # Working directory for commands that do not set one.
    default_cwd: Optional[Path] = None


class Settings(BaseModel):
    # Named commands, e.g. {"list": {"program": "ls", "args": ["-la"]}}
    commands: Dict[str, CommandSpec] = Field(default_factory=dict)
    # Default StartConfig flags for commands started through a CommandManager.
    start: StartConfig = Field(default_factory=StartConfig)
    process: ProcessSettings = Field(default_factory=ProcessSettings)
    logging: Optional[LoggingSettings] = Field(default=None)
