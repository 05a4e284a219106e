import asyncio
import os
import signal

import pytest

from pipexec import Canceller, Command, CommandSpec, StartConfig, get_signal_listener

posix_only = pytest.mark.skipif(os.name != "posix", reason="POSIX-only tests")


@pytest.mark.asyncio
async def test_canceller_is_set_once() -> None:
    token = Canceller()
    assert not token.cancelled

    token.cancel("first")
    token.cancel("second")

    assert token.cancelled
    assert await token.wait() == "first"


@posix_only
@pytest.mark.asyncio
async def test_signal_listener_cancels_registered_tokens() -> None:
    listener = get_signal_listener()
    token = Canceller()
    assert listener.register(token)
    assert listener.installed

    os.kill(os.getpid(), signal.SIGINT)
    reason = await asyncio.wait_for(token.wait(), timeout=5)

    assert reason == "SIGINT"
    listener.unregister(token)
    assert not listener.installed


@pytest.mark.asyncio
async def test_signal_listener_is_shared_per_loop() -> None:
    assert get_signal_listener() is get_signal_listener()


@posix_only
@pytest.mark.asyncio
async def test_sigterm_kills_running_command() -> None:
    cmd = Command(CommandSpec(program="sleep", args=["10"]))
    await cmd.start(StartConfig())
    assert get_signal_listener().installed

    os.kill(os.getpid(), signal.SIGTERM)
    res = await asyncio.wait_for(cmd.wait(), timeout=5)

    assert res.start_ok
    assert not res.done_ok
    assert not get_signal_listener().installed


@posix_only
@pytest.mark.asyncio
async def test_handle_signals_can_be_disabled() -> None:
    cmd = Command(CommandSpec(program="true"))
    await cmd.start(StartConfig(handle_signals=False))

    assert not get_signal_listener().installed
    res = await cmd.wait()
    assert res.done_ok
