from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from pipexec.settings import EXIT_CODE_UNKNOWN


@dataclass(frozen=True)
class Result:
    start_ok: bool = False
    # True only if the process started and exited with status 0.
    done_ok: bool = False
    # EXIT_CODE_UNKNOWN until the process has been waited on.
    exit_code: int = EXIT_CODE_UNKNOWN
    # Captured text; empty unless capture was requested.
    output: str = ""

    def __bool__(self) -> bool:
        return self.done_ok


def aggregate_result(started: bool, returncode: Optional[int], output: str = "") -> Result:
    exit_code = returncode if started and returncode is not None else EXIT_CODE_UNKNOWN
    return Result(
        start_ok=started,
        done_ok=started and returncode == 0,
        exit_code=exit_code,
        output=output,
    )
