"""
In-memory byte channels between process streams and their consumers.

A PipeLink is unbuffered: write() returns only once the reader has taken
every byte, so a slow consumer applies backpressure to its producer. A link
may have several writer ends (stdout and stderr of one process feeding one
stdin); the reader sees end-of-stream after the last of them is closed.
"""

from __future__ import annotations

import asyncio
from typing import Iterable, Optional

from pipexec.errors import PipeClosedError
from pipexec.logger import logger
from pipexec.proc.base import ByteReader
from pipexec.settings import READ_CHUNK_SIZE_DEFAULT


class PipeWriter:
    """One write end of a PipeLink. Must be closed exactly once."""

    def __init__(self, link: "PipeLink", index: int) -> None:
        self._link = link
        self._index = index
        self._closed = False

    @property
    def link(self) -> "PipeLink":
        return self._link

    @property
    def closed(self) -> bool:
        return self._closed

    async def write(self, data: bytes) -> None:
        if self._closed:
            raise PipeClosedError(f"{self._link.name}: write end {self._index} is closed")
        await self._link._write(data)

    def close(self) -> None:
        if self._closed:
            raise PipeClosedError(f"{self._link.name}: write end {self._index} closed twice")
        self._closed = True
        self._link._writer_closed()


class PipeReader:
    """The read end of a PipeLink."""

    def __init__(self, link: "PipeLink") -> None:
        self._link = link

    @property
    def closed(self) -> bool:
        return self._link._read_closed

    async def read(self, n: int = -1) -> bytes:
        return await self._link._read(n)

    def close(self) -> None:
        """Stop consuming; pending and future writes fail with PipeClosedError."""
        self._link._close_reader()


class PipeLink:
    def __init__(self, *, writers: int = 1, name: Optional[str] = None) -> None:
        if writers < 1:
            raise ValueError("PipeLink needs at least one writer")
        self.name = name or "pipe"
        self._writers = [PipeWriter(self, i) for i in range(writers)]
        self._handed_out = 0
        self._open_writers = writers
        self._reader = PipeReader(self)
        self._pending = bytearray()
        self._read_closed = False
        self._data_ready = asyncio.Event()
        self._drained = asyncio.Event()
        # Fan-in writers take turns; each write is delivered whole.
        self._write_lock = asyncio.Lock()

    @property
    def reader(self) -> PipeReader:
        return self._reader

    @property
    def eof(self) -> bool:
        return self._open_writers == 0 and not self._pending

    def writer(self) -> PipeWriter:
        """Hand out the next unused write end."""
        if self._handed_out >= len(self._writers):
            raise PipeClosedError(f"{self.name}: all {len(self._writers)} write ends are taken")
        end = self._writers[self._handed_out]
        self._handed_out += 1
        return end

    async def _write(self, data: bytes) -> None:
        if not data:
            return
        async with self._write_lock:
            if self._read_closed:
                raise PipeClosedError(f"{self.name}: read end is closed")
            self._pending.extend(data)
            self._drained.clear()
            self._data_ready.set()
            await self._drained.wait()
            if self._read_closed:
                raise PipeClosedError(f"{self.name}: read end closed during write")

    async def _read(self, n: int) -> bytes:
        while not self._pending:
            if self._read_closed or self._open_writers == 0:
                return b""
            self._data_ready.clear()
            await self._data_ready.wait()
        if n < 0 or n >= len(self._pending):
            chunk = bytes(self._pending)
            self._pending.clear()
        else:
            chunk = bytes(self._pending[:n])
            del self._pending[:n]
        if not self._pending:
            self._drained.set()
        return chunk

    def _writer_closed(self) -> None:
        self._open_writers -= 1
        if self._open_writers == 0:
            self._data_ready.set()

    def _close_reader(self) -> None:
        if self._read_closed:
            return
        self._read_closed = True
        self._pending.clear()
        self._drained.set()
        self._data_ready.set()


class StreamTee:
    """
    Duplicates one byte stream to several PipeLink write ends.

    A consumer that closes its read end is dropped; the others keep
    receiving every byte.
    """

    def __init__(self, writers: Iterable[PipeWriter]) -> None:
        self._writers: list[PipeWriter] = list(writers)

    @property
    def active(self) -> bool:
        return bool(self._writers)

    async def write(self, data: bytes) -> None:
        for w in list(self._writers):
            try:
                await w.write(data)
            except PipeClosedError:
                logger.debug("Consumer went away, dropping it", pipe=w.link.name)
                self._writers.remove(w)
                w.close()

    def close(self) -> None:
        writers, self._writers = self._writers, []
        for w in writers:
            w.close()


async def pump(
    source: ByteReader,
    tee: StreamTee,
    *,
    chunk_size: int = READ_CHUNK_SIZE_DEFAULT,
) -> int:
    """
    Copy `source` into `tee` until end-of-stream, then close the tee.

    Keeps reading after every consumer is gone so the producing process
    never stalls on a full OS pipe. Returns the number of bytes read.
    """
    total = 0
    try:
        while True:
            chunk = await source.read(chunk_size)
            if not chunk:
                break
            total += len(chunk)
            if tee.active:
                await tee.write(chunk)
    finally:
        tee.close()
    return total
