from __future__ import annotations

import codecs
import inspect
import sys
from enum import Enum
from typing import Any, Optional, Protocol, Sequence, TextIO, runtime_checkable

from pipexec.proc.base import ByteReader, ProcessHandle
from pipexec.settings import READ_CHUNK_SIZE_DEFAULT, OnText

DEFAULT_ENCODING = "utf-8"


class StreamName(str, Enum):
    stdout = "stdout"
    stderr = "stderr"


@runtime_checkable
class StreamObserver(Protocol):
    """Receives scanner events. Either method may return an awaitable."""

    def on_char(self, char: str, handle: Optional[ProcessHandle]) -> Any: ...

    def on_line(self, line: str, handle: Optional[ProcessHandle]) -> Any: ...


class CallbackObserver(StreamObserver):
    """Adapts the on_char/on_line callables of a StartConfig."""

    def __init__(self, on_char: Optional[OnText] = None, on_line: Optional[OnText] = None) -> None:
        self._on_char = on_char
        self._on_line = on_line

    def on_char(self, char: str, handle: Optional[ProcessHandle]) -> Any:
        if self._on_char is not None:
            return self._on_char(char, handle)
        return None

    def on_line(self, line: str, handle: Optional[ProcessHandle]) -> Any:
        if self._on_line is not None:
            return self._on_line(line, handle)
        return None


class CaptureBuffer:
    """Text collected from every scanner of one command, in read order."""

    def __init__(self) -> None:
        self._parts: list[str] = []

    def append(self, text: str) -> None:
        if text:
            self._parts.append(text)

    def getvalue(self) -> str:
        return "".join(self._parts)

    def __len__(self) -> int:
        return sum(len(p) for p in self._parts)


async def _notify(result: Any) -> None:
    if inspect.isawaitable(result):
        await result


class StreamScanner:
    """
    Decodes a byte stream and reports it character by character.

    Line endings: "\\n", a lone "\\r" and the pair "\\r\\n" each end exactly
    one line; the terminator is not part of the reported line. Text after the
    last terminator is never reported through on_line; it stays available
    in `pending_line` once scan() returns.
    """

    def __init__(
        self,
        stream: StreamName = StreamName.stdout,
        *,
        encoding: Optional[str] = None,
        echo: bool = False,
        capture: Optional[CaptureBuffer] = None,
        observers: Sequence[StreamObserver] = (),
        handle: Optional[ProcessHandle] = None,
        chunk_size: int = READ_CHUNK_SIZE_DEFAULT,
    ) -> None:
        self.stream = stream
        self.encoding = encoding or DEFAULT_ENCODING
        self._echo = echo
        self._capture = capture
        self._observers = list(observers)
        self._handle = handle
        self._chunk_size = chunk_size
        self._line: list[str] = []
        self._after_cr = False
        self._text: list[str] = []
        self.lines_seen = 0

    @property
    def pending_line(self) -> str:
        return "".join(self._line)

    def _console(self) -> TextIO:
        return sys.stderr if self.stream is StreamName.stderr else sys.stdout

    async def scan(self, reader: ByteReader) -> str:
        """Consume `reader` until end-of-stream; return the captured text."""
        decoder = codecs.getincrementaldecoder(self.encoding)(errors="replace")
        while True:
            data = await reader.read(self._chunk_size)
            if not data:
                break
            await self._feed(decoder.decode(data))
        await self._feed(decoder.decode(b"", final=True))
        return "".join(self._text)

    async def _feed(self, text: str) -> None:
        if not text:
            return
        if self._capture is not None:
            self._text.append(text)
            self._capture.append(text)
        if self._echo:
            console = self._console()
            console.write(text)
            console.flush()
        for char in text:
            for obs in self._observers:
                await _notify(obs.on_char(char, self._handle))
            await self._track_line(char)

    async def _track_line(self, char: str) -> None:
        if char == "\n" and self._after_cr:
            # Second half of "\r\n", the line was already reported.
            self._after_cr = False
            return
        self._after_cr = char == "\r"
        if char in ("\n", "\r"):
            line = "".join(self._line)
            self._line.clear()
            self.lines_seen += 1
            for obs in self._observers:
                await _notify(obs.on_line(line, self._handle))
            return
        self._line.append(char)
