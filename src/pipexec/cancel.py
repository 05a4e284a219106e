from __future__ import annotations

import asyncio
import signal
import weakref
from typing import Optional

from pipexec.logger import logger

SIGNALS: tuple[signal.Signals, ...] = (signal.SIGINT, signal.SIGTERM)


class Canceller:
    """
    Cancellation token handed to Command.start().

    Anyone may call cancel(); the Command owning the process is the one that
    reacts to it by killing its child.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: Optional[str] = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "cancelled") -> None:
        if self._event.is_set():
            return
        self.reason = reason
        self._event.set()

    async def wait(self) -> Optional[str]:
        await self._event.wait()
        return self.reason


class SignalListener:
    """
    Process-wide SIGINT/SIGTERM listener for one event loop.

    Handlers are installed when the first token registers and removed when
    the last one leaves; a signal cancels every registered token.
    """

    def __init__(self, loop: asyncio.AbstractEventLoop) -> None:
        self._loop = loop
        self._tokens: set[Canceller] = set()
        self._installed = False

    @property
    def installed(self) -> bool:
        return self._installed

    def register(self, token: Canceller) -> bool:
        if not self._installed and not self._install():
            return False
        self._tokens.add(token)
        return True

    def unregister(self, token: Canceller) -> None:
        self._tokens.discard(token)
        if not self._tokens and self._installed:
            self._uninstall()

    def _install(self) -> bool:
        added: list[signal.Signals] = []
        try:
            for sig in SIGNALS:
                self._loop.add_signal_handler(sig, self._on_signal, sig)
                added.append(sig)
        except (NotImplementedError, RuntimeError, ValueError) as exc:
            # Windows loops and non-main threads cannot take signal handlers.
            for sig in added:
                self._loop.remove_signal_handler(sig)
            logger.debug("Signal handlers unavailable", err=str(exc))
            return False
        self._installed = True
        return True

    def _uninstall(self) -> None:
        for sig in SIGNALS:
            self._loop.remove_signal_handler(sig)
        self._installed = False

    def _on_signal(self, sig: signal.Signals) -> None:
        name = signal.Signals(sig).name
        logger.info("Signal received, cancelling commands", signal=name, count=len(self._tokens))
        for token in list(self._tokens):
            token.cancel(reason=name)


_listeners: "weakref.WeakKeyDictionary[asyncio.AbstractEventLoop, SignalListener]" = (
    weakref.WeakKeyDictionary()
)


def get_signal_listener() -> SignalListener:
    loop = asyncio.get_running_loop()
    listener = _listeners.get(loop)
    if listener is None:
        listener = SignalListener(loop)
        _listeners[loop] = listener
    return listener
