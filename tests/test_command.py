import asyncio
import errno
import os
import time
from pathlib import Path
from typing import Any

import pytest

from pipexec import (
    Canceller,
    Command,
    CommandSpec,
    CommandState,
    CommandStateError,
    PipeCreationError,
    SpawnError,
    StartConfig,
    TopologyError,
    WaitError,
)
from tests.fakes import FakeBackend, FakeHandle

pytestmark = pytest.mark.skipif(os.name != "posix", reason="POSIX-only tests")

CAPTURE = StartConfig(capture=True, wait=True, scan_stdout=True)


def _cmd(program: str, *args: str, **kwargs: Any) -> Command:
    return Command(CommandSpec(program=program, args=list(args), **kwargs))


@pytest.mark.asyncio
async def test_echo_is_captured() -> None:
    res = await _cmd("echo", "hello").start(CAPTURE)

    assert res.start_ok
    assert res.done_ok
    assert res.exit_code == 0
    assert res.output == "hello\n"


@pytest.mark.asyncio
async def test_false_reports_exit_code_without_error() -> None:
    res = await _cmd("false").start(StartConfig(wait=True))

    assert res.start_ok
    assert not res.done_ok
    assert res.exit_code == 1
    assert res.output == ""


@pytest.mark.asyncio
@pytest.mark.parametrize("code", [0, 3, 42])
async def test_exit_code_is_reported(code: int) -> None:
    res = await _cmd("sh", "-c", f"exit {code}").start(StartConfig(wait=True))

    assert res.exit_code == code
    assert res.done_ok == (code == 0)


@pytest.mark.asyncio
async def test_missing_program_raises_spawn_error() -> None:
    cmd = _cmd("/nonexistent/pipexec-test-program")

    with pytest.raises(SpawnError) as info:
        await cmd.start(CAPTURE)

    assert isinstance(info.value.__cause__, FileNotFoundError)
    assert cmd.state is CommandState.terminated
    assert cmd.handle is None
    res = await cmd.wait()
    assert not res.start_ok
    assert res.exit_code == -1


@pytest.mark.asyncio
async def test_start_twice_is_rejected() -> None:
    cmd = _cmd("true")
    await cmd.start(StartConfig(wait=True))

    with pytest.raises(CommandStateError):
        await cmd.start(StartConfig(wait=True))


@pytest.mark.asyncio
async def test_wait_and_kill_before_start_are_rejected() -> None:
    cmd = _cmd("true")

    with pytest.raises(CommandStateError):
        await cmd.wait()
    with pytest.raises(CommandStateError):
        await cmd.kill()


@pytest.mark.asyncio
async def test_on_char_concatenation_equals_output() -> None:
    chars: list[str] = []
    lines: list[str] = []
    config = CAPTURE.model_copy(
        update={
            "on_char": lambda c, p: chars.append(c),
            "on_line": lambda l, p: lines.append(l),
        }
    )

    res = await _cmd("printf", "a\\nb\\nc").start(config)

    assert "".join(chars) == res.output == "a\nb\nc"
    assert lines == ["a", "b"]


@pytest.mark.asyncio
async def test_callbacks_receive_live_handle() -> None:
    pids: list[Any] = []
    config = CAPTURE.model_copy(update={"on_line": lambda l, p: pids.append(p.pid)})
    cmd = _cmd("echo", "x")

    await cmd.start(config)

    assert len(pids) == 1
    assert isinstance(pids[0], int)


@pytest.mark.asyncio
async def test_stdout_and_stderr_share_capture() -> None:
    config = StartConfig(capture=True, wait=True, scan_stdout=True, scan_stderr=True)

    res = await _cmd("sh", "-c", "echo out; echo err 1>&2").start(config)

    assert sorted(res.output.splitlines()) == ["err", "out"]


@pytest.mark.asyncio
async def test_print_echoes_output(capsys: pytest.CaptureFixture[str]) -> None:
    config = StartConfig(print=True, wait=True, scan_stdout=True, scan_stderr=True)

    await _cmd("sh", "-c", "echo out; echo err 1>&2").start(config)

    captured = capsys.readouterr()
    assert captured.out == "out\n"
    assert captured.err == "err\n"


@pytest.mark.asyncio
async def test_unread_output_is_discarded_without_print(
    capfd: pytest.CaptureFixture[str],
) -> None:
    res = await _cmd("sh", "-c", "echo quiet; echo quiet-err 1>&2").start(
        StartConfig(wait=True)
    )

    assert res.done_ok
    captured = capfd.readouterr()
    assert "quiet" not in captured.out
    assert "quiet-err" not in captured.err


@pytest.mark.asyncio
async def test_unread_output_reaches_console_with_print(
    capfd: pytest.CaptureFixture[str],
) -> None:
    await _cmd("echo", "shown").start(StartConfig(wait=True, print=True))

    assert capfd.readouterr().out == "shown\n"


@pytest.mark.asyncio
async def test_spawn_requests_devnull_only_without_print() -> None:
    backend = FakeBackend(FakeHandle(), FakeHandle())
    await Command(CommandSpec(program="quiet"), backend=backend).start(StartConfig(wait=True))
    await Command(CommandSpec(program="loud"), backend=backend).start(
        StartConfig(wait=True, print=True)
    )

    assert [opts.devnull_output for opts in backend.spawned] == [True, False]


@pytest.mark.asyncio
async def test_start_without_wait_then_wait() -> None:
    cmd = _cmd("echo", "later")

    started = await cmd.start(StartConfig(capture=True, scan_stdout=True))
    assert started.start_ok
    assert not started.done_ok
    assert started.exit_code == -1
    assert cmd.handle is not None

    res = await cmd.wait()
    assert res.done_ok
    assert res.output == "later\n"
    assert cmd.state is CommandState.terminated
    assert cmd.handle is None
    assert await cmd.wait() is res
    assert cmd.result is res


@pytest.mark.asyncio
async def test_timeout_kills_process() -> None:
    cmd = _cmd("sleep", "10", timeout_s=0.5)

    t0 = time.monotonic()
    res = await cmd.start(StartConfig(wait=True))
    elapsed = time.monotonic() - t0

    assert res.start_ok
    assert not res.done_ok
    assert res.exit_code != 0
    assert elapsed < 5


@pytest.mark.asyncio
async def test_canceller_kills_process() -> None:
    canceller = Canceller()
    cmd = _cmd("sleep", "10")

    await cmd.start(StartConfig(canceller=canceller))
    canceller.cancel()
    res = await asyncio.wait_for(cmd.wait(), timeout=5)

    assert not res.done_ok
    assert canceller.reason == "cancelled"


@pytest.mark.asyncio
async def test_explicit_kill() -> None:
    cmd = _cmd("sleep", "10")
    await cmd.start()

    await cmd.kill()
    res = await asyncio.wait_for(cmd.wait(), timeout=5)

    assert not res.done_ok


@pytest.mark.asyncio
async def test_stdin_text_is_fed_to_process() -> None:
    cmd = _cmd("cat")
    cmd.set_stdin("one\ntwo\n")

    res = await cmd.start(CAPTURE)

    assert res.output == "one\ntwo\n"


@pytest.mark.asyncio
async def test_stdin_consumer_exiting_early_is_not_an_error() -> None:
    cmd = _cmd("head", "-c", "1")
    cmd.set_stdin(b"x" * (1024 * 1024))

    res = await asyncio.wait_for(cmd.start(CAPTURE), timeout=10)

    assert res.output == "x"
    assert res.done_ok


@pytest.mark.asyncio
async def test_working_directory_and_env(tmp_path: Path) -> None:
    res = await _cmd(
        "sh",
        "-c",
        'pwd -P; printf %s "$PIPEXEC_TEST"',
        cwd=tmp_path,
        env={"PIPEXEC_TEST": "yes"},
    ).start(CAPTURE)

    assert res.output == f"{tmp_path.resolve()}\nyes"


@pytest.mark.asyncio
async def test_observer_exception_surfaces_from_wait() -> None:
    def boom(line: str, handle: Any) -> None:
        raise ValueError("bad line")

    cmd = _cmd("printf", "a\\nb\\n")
    with pytest.raises(ValueError, match="bad line"):
        await cmd.start(CAPTURE.model_copy(update={"on_line": boom}))

    assert cmd.state is CommandState.terminated
    assert cmd.result is not None
    assert cmd.result.exit_code == 0


@pytest.mark.asyncio
async def test_unscanned_streams_are_not_piped() -> None:
    backend = FakeBackend(FakeHandle())
    cmd = Command(CommandSpec(program="fake"), backend=backend)

    await cmd.start(StartConfig(wait=True))

    opts = backend.spawned[0]
    assert not opts.pipe_stdin
    assert not opts.pipe_stdout
    assert not opts.pipe_stderr


@pytest.mark.asyncio
async def test_fake_backend_output_is_scanned() -> None:
    backend = FakeBackend(FakeHandle(stdout=b"hi\n", stderr=b"oops\n", returncode=5))
    cmd = Command(CommandSpec(program="fake"), backend=backend)

    res = await cmd.start(
        StartConfig(capture=True, wait=True, scan_stdout=True, scan_stderr=True)
    )

    assert res.exit_code == 5
    assert sorted(res.output.splitlines()) == ["hi", "oops"]


@pytest.mark.asyncio
async def test_wait_failure_raises_wait_error() -> None:
    backend = FakeBackend(FakeHandle(wait_error=OSError("no status")))
    cmd = Command(CommandSpec(program="fake"), backend=backend)

    with pytest.raises(WaitError):
        await cmd.start(StartConfig(wait=True))
    assert cmd.state is CommandState.terminated


@pytest.mark.asyncio
async def test_fd_exhaustion_raises_pipe_creation_error() -> None:
    backend = FakeBackend(spawn_error=OSError(errno.EMFILE, "Too many open files"))
    cmd = Command(CommandSpec(program="fake"), backend=backend)

    with pytest.raises(PipeCreationError):
        await cmd.start(CAPTURE)
    assert cmd.state is CommandState.terminated


@pytest.mark.asyncio
async def test_missing_backend_pipe_kills_process() -> None:
    handle = FakeHandle(provide_stdout=False)
    cmd = Command(CommandSpec(program="fake"), backend=FakeBackend(handle))

    with pytest.raises(PipeCreationError):
        await cmd.start(CAPTURE)
    assert handle.killed
    assert cmd.handle is None


@pytest.mark.asyncio
async def test_set_stdin_after_start_is_rejected() -> None:
    cmd = Command(CommandSpec(program="fake"), backend=FakeBackend(FakeHandle()))
    await cmd.start(StartConfig(wait=True))

    with pytest.raises(CommandStateError):
        cmd.set_stdin(b"x")


def test_set_stdin_on_piped_command_is_rejected() -> None:
    a = Command(CommandSpec(program="a"), backend=FakeBackend())
    b = Command(CommandSpec(program="b"), backend=FakeBackend())
    a.pipe_stdout_to(b)

    with pytest.raises(TopologyError):
        b.set_stdin(b"x")
