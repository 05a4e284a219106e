from __future__ import annotations

import asyncio
import contextlib
import errno
from enum import Enum
from typing import Optional, Union

from pipexec.cancel import Canceller, get_signal_listener
from pipexec.errors import (
    CommandStateError,
    PipeCreationError,
    SpawnError,
    TopologyError,
    UpstreamWaitError,
    WaitError,
)
from pipexec.logger import logger
from pipexec.pipes import PipeLink, PipeReader, PipeWriter, StreamTee, pump
from pipexec.proc import ByteReader, ProcessBackend, ProcessHandle, SpawnOptions, get_backend
from pipexec.result import Result, aggregate_result
from pipexec.scanner import (
    DEFAULT_ENCODING,
    CallbackObserver,
    CaptureBuffer,
    StreamName,
    StreamObserver,
    StreamScanner,
)
from pipexec.settings import CommandSpec, StartConfig

StdinSource = Union[bytes, str, ByteReader]

_PIPE_ERRNOS = frozenset({errno.EMFILE, errno.ENFILE})


class CommandState(str, Enum):
    configured = "configured"
    started = "started"
    waiting = "waiting"
    terminated = "terminated"


class Command:
    """
    One external program invocation.

    Lifecycle: configured -> started -> (waiting) -> terminated. Pipes are
    declared while configured; start() spawns the process and wires every
    scanned or forwarded stream through PipeLinks; wait() rendezvous with the
    process and every task attached to it.
    """

    def __init__(
        self,
        spec: CommandSpec,
        *,
        backend: Optional[ProcessBackend] = None,
    ) -> None:
        self.spec = spec
        self._backend: ProcessBackend = backend or get_backend("local")
        self._state = CommandState.configured
        self._handle: Optional[ProcessHandle] = None
        self._upstream: Optional[Command] = None
        self._downstream: dict[StreamName, Command] = {}
        # Created by the upstream when it starts.
        self._inbound: Optional[PipeLink] = None
        self._stdin_source: Optional[StdinSource] = None
        self._config: Optional[StartConfig] = None
        self._capture = CaptureBuffer()
        self._stdin_task: Optional[asyncio.Task[None]] = None
        self._stream_tasks: list[asyncio.Task] = []
        self._watchdog_task: Optional[asyncio.Task[None]] = None
        self._canceller: Optional[Canceller] = None
        self._wait_task: Optional[asyncio.Task[Result]] = None
        self._result: Optional[Result] = None

    def __repr__(self) -> str:
        return f"Command({self.spec.label!r}, state={self._state.value})"

    @property
    def state(self) -> CommandState:
        return self._state

    @property
    def handle(self) -> Optional[ProcessHandle]:
        return self._handle

    @property
    def upstream(self) -> Optional["Command"]:
        return self._upstream

    @property
    def result(self) -> Optional[Result]:
        return self._result

    # Topology

    def pipe_stdout_to(self, downstream: "Command") -> "Command":
        """Feed this command's stdout into `downstream`'s stdin. Returns `downstream`."""
        return self._pipe(StreamName.stdout, downstream)

    def pipe_stderr_to(self, downstream: "Command") -> "Command":
        """Feed this command's stderr into `downstream`'s stdin. Returns `downstream`."""
        return self._pipe(StreamName.stderr, downstream)

    def _pipe(self, stream: StreamName, downstream: "Command") -> "Command":
        if not isinstance(downstream, Command):
            raise TypeError(f"Expected Command, got {type(downstream).__name__}")
        for cmd in (self, downstream):
            if cmd._state is not CommandState.configured:
                raise CommandStateError(f"{cmd!r}: pipes must be declared before start()")
        if downstream is self:
            raise TopologyError(f"{self!r}: cannot pipe a command into itself")
        if stream in self._downstream:
            raise TopologyError(
                f"{self!r}: {stream.value} already feeds {self._downstream[stream]!r}"
            )
        if downstream._upstream is not None and downstream._upstream is not self:
            raise TopologyError(
                f"{downstream!r}: stdin already fed by {downstream._upstream!r}"
            )
        if downstream._stdin_source is not None:
            raise TopologyError(f"{downstream!r}: stdin already set explicitly")
        node = self._upstream
        while node is not None:
            if node is downstream:
                raise TopologyError(f"{self!r} -> {downstream!r} would create a cycle")
            node = node._upstream
        self._downstream[stream] = downstream
        downstream._upstream = self
        return downstream

    def set_stdin(self, source: StdinSource) -> None:
        """Use `source` (bytes, text or an async reader) as the process' stdin."""
        if self._state is not CommandState.configured:
            raise CommandStateError(f"{self!r}: stdin must be set before start()")
        if self._upstream is not None:
            raise TopologyError(f"{self!r}: stdin already fed by {self._upstream!r}")
        self._stdin_source = source

    # Lifecycle

    async def start(self, config: Optional[StartConfig] = None) -> Result:
        config = config or StartConfig()
        if self._state is not CommandState.configured:
            raise CommandStateError(f"{self!r}: already started")
        if config.wait and self._downstream:
            raise CommandStateError(
                f"{self!r}: feeds another command, start it without wait and wait on the consumer"
            )
        inbound: Optional[PipeLink] = None
        if self._upstream is not None:
            inbound = self._inbound
            if inbound is None:
                raise CommandStateError(
                    f"{self!r}: upstream {self._upstream!r} must be started first"
                )

        self._state = CommandState.started
        self._config = config
        scan = {
            StreamName.stdout: config.scan_stdout,
            StreamName.stderr: config.scan_stderr,
        }
        opts = SpawnOptions(
            program=self.spec.program,
            args=list(self.spec.args),
            name=self.spec.label,
            cwd=self.spec.cwd,
            env_overlay=self.spec.env,
            pipe_stdin=inbound is not None or self._stdin_source is not None,
            pipe_stdout=scan[StreamName.stdout] or StreamName.stdout in self._downstream,
            pipe_stderr=scan[StreamName.stderr] or StreamName.stderr in self._downstream,
            # Without print, output nobody reads stays off the parent's console.
            devnull_output=not config.print and not config.new_console,
            new_console=config.new_console,
            hide_window=config.hide_window,
        )

        try:
            handle = await self._backend.spawn(opts)
        except (OSError, ValueError) as exc:
            self._abort_start(inbound)
            if isinstance(exc, OSError) and exc.errno in _PIPE_ERRNOS:
                raise PipeCreationError(f"Create pipes for {self.spec.label!r}: {exc}") from exc
            raise SpawnError(self.spec.label, exc) from exc

        readers: dict[StreamName, ByteReader] = {}
        for stream, wanted, reader in (
            (StreamName.stdout, opts.pipe_stdout, handle.stdout),
            (StreamName.stderr, opts.pipe_stderr, handle.stderr),
        ):
            if not wanted:
                continue
            if reader is None:
                with contextlib.suppress(OSError):
                    await handle.kill()
                await handle.wait()
                self._abort_start(inbound)
                raise PipeCreationError(
                    f"Backend gave no {stream.value} pipe for {self.spec.label!r}"
                )
            readers[stream] = reader

        self._handle = handle
        logger.debug("Process started", command=self.spec.label, pid=handle.pid)

        self._wire_streams(handle, readers, scan, config)
        if inbound is not None:
            self._stdin_task = asyncio.create_task(
                self._forward_stdin(handle, inbound.reader, config.read_chunk_size)
            )
        elif self._stdin_source is not None:
            self._stdin_task = asyncio.create_task(
                self._forward_stdin(
                    handle, self._stdin_reader(config), config.read_chunk_size
                )
            )
        self._start_watchdog(handle, config)

        if config.wait:
            return await self.wait()
        return aggregate_result(True, None)

    def _abort_start(self, inbound: Optional[PipeLink]) -> None:
        self._state = CommandState.terminated
        self._result = aggregate_result(False, None)
        # Let the upstream stop forwarding into a consumer that will never read.
        if inbound is not None:
            inbound.reader.close()
        for downstream in set(self._downstream.values()):
            link = PipeLink(name=f"{self.spec.label}->{downstream.spec.label}")
            link.writer().close()
            downstream._inbound = link

    def _wire_streams(
        self,
        handle: ProcessHandle,
        readers: dict[StreamName, ByteReader],
        scan: dict[StreamName, bool],
        config: StartConfig,
    ) -> None:
        observers: list[StreamObserver] = []
        if config.on_char is not None or config.on_line is not None:
            observers.append(CallbackObserver(config.on_char, config.on_line))
        if config.observer is not None:
            observers.append(config.observer)

        # One link per consumer; a consumer fed by both streams gets two write ends.
        consumer_links: dict[int, PipeLink] = {}
        for downstream in self._downstream.values():
            key = id(downstream)
            if key not in consumer_links:
                count = sum(1 for c in self._downstream.values() if c is downstream)
                link = PipeLink(
                    writers=count,
                    name=f"{self.spec.label}->{downstream.spec.label}",
                )
                consumer_links[key] = link
                downstream._inbound = link

        for stream, reader in readers.items():
            writers: list[PipeWriter] = []
            if scan[stream]:
                link = PipeLink(name=f"{self.spec.label}:{stream.value}")
                writers.append(link.writer())
                scanner = StreamScanner(
                    stream,
                    encoding=config.encoding,
                    echo=config.print,
                    capture=self._capture if config.capture else None,
                    observers=observers,
                    handle=handle,
                    chunk_size=config.read_chunk_size,
                )
                self._stream_tasks.append(asyncio.create_task(self._scan(scanner, link.reader)))
            downstream = self._downstream.get(stream)
            if downstream is not None:
                writers.append(consumer_links[id(downstream)].writer())
            self._stream_tasks.append(
                asyncio.create_task(
                    pump(reader, StreamTee(writers), chunk_size=config.read_chunk_size)
                )
            )

    async def _scan(self, scanner: StreamScanner, reader: PipeReader) -> str:
        try:
            return await scanner.scan(reader)
        finally:
            # A failed observer must not leave the pump blocked on this link.
            reader.close()

    def _stdin_reader(self, config: StartConfig) -> ByteReader:
        source = self._stdin_source
        if isinstance(source, str):
            source = source.encode(config.encoding or DEFAULT_ENCODING)
        if isinstance(source, bytes):
            reader = asyncio.StreamReader()
            reader.feed_data(source)
            reader.feed_eof()
            return reader
        if source is None:
            raise CommandStateError(f"{self!r}: no stdin source set")
        return source

    async def _forward_stdin(
        self, handle: ProcessHandle, source: ByteReader, chunk_size: int
    ) -> None:
        try:
            while True:
                chunk = await source.read(chunk_size)
                if not chunk:
                    break
                try:
                    await handle.write(chunk)
                except (BrokenPipeError, ConnectionResetError):
                    logger.debug("Process closed its stdin early", command=self.spec.label)
                    if isinstance(source, PipeReader):
                        source.close()
                    break
        finally:
            with contextlib.suppress(BrokenPipeError, ConnectionResetError):
                await handle.close_stdin()

    def _start_watchdog(self, handle: ProcessHandle, config: StartConfig) -> None:
        canceller = config.canceller or Canceller()
        self._canceller = canceller
        if config.handle_signals:
            get_signal_listener().register(canceller)
        self._watchdog_task = asyncio.create_task(self._watchdog(handle, canceller))

    async def _watchdog(self, handle: ProcessHandle, canceller: Canceller) -> None:
        timeout = self.spec.timeout_s or None
        exited = asyncio.ensure_future(self._exit_status(handle))
        cancelled = asyncio.ensure_future(canceller.wait())
        try:
            done, _ = await asyncio.wait(
                {exited, cancelled},
                timeout=timeout,
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            exited.cancel()
            cancelled.cancel()
        if exited in done:
            return
        reason = canceller.reason if cancelled in done else "timeout"
        logger.info(
            "Killing process",
            command=self.spec.label,
            pid=handle.pid,
            reason=reason,
        )
        await self._kill_quietly(handle)

    async def _exit_status(self, handle: ProcessHandle) -> Optional[int]:
        # Wait failures surface from wait().
        try:
            return await handle.wait()
        except OSError:
            return None

    async def _kill_quietly(self, handle: ProcessHandle) -> None:
        try:
            await handle.kill()
        except OSError as exc:
            logger.warning("Kill failed", command=self.spec.label, err=str(exc))

    async def kill(self) -> None:
        if self._handle is None:
            raise CommandStateError(f"{self!r}: no running process")
        await self._handle.kill()

    async def wait(self) -> Result:
        """
        Wait for the upstream chain, the process and every stream task.

        A non-zero exit is reported in the Result, not raised. Repeated calls
        return the same Result.
        """
        if self._state is CommandState.configured:
            raise CommandStateError(f"{self!r}: not started")
        if self._handle is None:
            if self._result is None:
                raise CommandStateError(f"{self!r}: still starting")
            return self._result
        if self._wait_task is None:
            self._wait_task = asyncio.create_task(self._run_wait(self._handle))
        return await self._wait_task

    async def _run_wait(self, handle: ProcessHandle) -> Result:
        self._state = CommandState.waiting
        returncode: Optional[int] = None
        try:
            if self._upstream is not None:
                try:
                    await self._upstream.wait()
                except Exception as exc:
                    raise UpstreamWaitError(
                        self.spec.label, self._upstream.spec.label, exc
                    ) from exc
            try:
                returncode = await handle.wait()
            except OSError as exc:
                raise WaitError(self.spec.label, exc) from exc
            await self._drain()
        except BaseException:
            if returncode is None:
                returncode = await self._reap(handle)
            raise
        finally:
            await self._stop_watchdog()
            self._state = CommandState.terminated
            if returncode is None:
                returncode = handle.returncode
            self._result = aggregate_result(True, returncode, self._capture.getvalue())
            self._handle = None
        logger.debug(
            "Process finished",
            command=self.spec.label,
            pid=handle.pid,
            exit_code=self._result.exit_code,
        )
        return self._result

    async def _reap(self, handle: ProcessHandle) -> Optional[int]:
        """Kill a process whose wait failed and collect it with its stream tasks."""
        await self._kill_quietly(handle)
        returncode: Optional[int] = None
        try:
            returncode = await handle.wait()
        except OSError as exc:
            logger.warning("Reap failed", command=self.spec.label, err=str(exc))
        tasks = self._attached_tasks()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        return returncode

    def _attached_tasks(self) -> list[asyncio.Task]:
        tasks: list[asyncio.Task] = list(self._stream_tasks)
        if self._stdin_task is not None:
            tasks.append(self._stdin_task)
        return tasks

    async def _drain(self) -> None:
        tasks = self._attached_tasks()
        if not tasks:
            return
        results = await asyncio.gather(*tasks, return_exceptions=True)
        for res in results:
            if isinstance(res, BaseException):
                raise res

    async def _stop_watchdog(self) -> None:
        task = self._watchdog_task
        if task is not None and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        if self._canceller is not None:
            get_signal_listener().unregister(self._canceller)


__all__ = ["Command", "CommandState", "StdinSource"]
