"""Power source detection via the OS power management tool.

This module answers two questions: which power source the machine is
drawing from right now, and when that changes. Both are read from the
text output of ``pmset`` (macOS), whose status lines look like::

    Now drawing from 'AC Power'

The commands are configurable so that any tool printing lines of that
shape can stand in for ``pmset``.
"""

import asyncio
import contextlib
import logging
from collections.abc import AsyncIterator
from enum import Enum

from .config import DEFAULT_LOG_COMMAND, DEFAULT_STATUS_COMMAND
from .errors import ExecError, ParseError, PowerStreamClosed

logger = logging.getLogger(__name__)

LINE_PREFIX = "Now drawing from '"


class Source(Enum):
    """Where the machine draws its power from"""

    UNKNOWN = None
    BATTERY = "Battery Power"
    AC = "AC Power"
    UPS = "UPS Power"

    def __str__(self) -> str:
        return self.value or "Unknown"


_SOURCES_BY_LABEL = {s.value: s for s in Source if s.value is not None}


def parse_line(line: str) -> tuple[Source, bool]:
    """Parse a single line of pmset output.

    Returns:
        (source, True) for a power source line. A well-formed line naming
        a source we do not know gives (Source.UNKNOWN, True).
        (Source.UNKNOWN, False) for anything else, including a line that
        has the prefix but lacks the closing quote.
    """
    if not line.startswith(LINE_PREFIX):
        return Source.UNKNOWN, False
    rest = line[len(LINE_PREFIX):]
    if not rest.endswith("'"):
        return Source.UNKNOWN, False
    return _SOURCES_BY_LABEL.get(rest[:-1], Source.UNKNOWN), True


def _decode(raw: bytes) -> str:
    return raw.decode("utf-8", errors="replace").rstrip("\r\n")


# Marks the end of a stream inside its queue
_END = object()


class PowerEventStream:
    """Live stream of power sources read from a long-running log command.

    Iterate it with ``async for``. The stream ends when it is closed or
    when the command's output ends, and cannot be restarted. Closing it
    cancels the reader task and terminates the command.
    """

    def __init__(self, process: asyncio.subprocess.Process, terminate_timeout: float = 2.0):
        self.process = process
        self.terminate_timeout = terminate_timeout
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=1)
        self._closed = False
        self._reader = asyncio.create_task(self._scan())

    @property
    def closed(self) -> bool:
        return self._closed

    async def _scan(self) -> None:
        stdout = self.process.stdout
        try:
            async for raw in stdout:
                source, ok = parse_line(_decode(raw))
                if not ok:
                    continue
                logger.debug("power source reported: %s", source)
                await self._queue.put(source)
        except (ValueError, OSError) as e:
            # Over-long line or broken pipe; the stream simply ends
            logger.debug("power log reader stopped: %s", e)
        logger.info("power log command ended")
        await self._queue.put(_END)

    def __aiter__(self) -> "PowerEventStream":
        return self

    async def __anext__(self) -> Source:
        if self._closed:
            raise StopAsyncIteration
        item = await self._queue.get()
        if item is _END or self._closed:
            self._closed = True
            raise StopAsyncIteration
        return item

    async def aclose(self) -> None:
        """Stop reading and tear down the log command."""
        self._closed = True
        if not self._reader.done():
            self._reader.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._reader
        # Wake a consumer blocked on an empty queue
        with contextlib.suppress(asyncio.QueueFull):
            self._queue.put_nowait(_END)

        if self.process.returncode is not None:
            return
        with contextlib.suppress(ProcessLookupError):
            self.process.terminate()
        try:
            await asyncio.wait_for(self.process.wait(), timeout=self.terminate_timeout)
        except TimeoutError:
            logger.warning("power log command did not exit, killing pid %d", self.process.pid)
            with contextlib.suppress(ProcessLookupError):
                self.process.kill()
            await self.process.wait()

    async def __aenter__(self) -> "PowerEventStream":
        return self

    async def __aexit__(self, *exc) -> bool:
        await self.aclose()
        return False


class PowerMonitor:
    """Queries the current power source and notifies on changes.

    Attributes:
        status_command: Single-shot status query; the first line is parsed
        log_command: Long-running command printing a line per change
        terminate_timeout: Seconds to wait for the log command on close
    """

    def __init__(
        self,
        status_command: list[str] | None = None,
        log_command: list[str] | None = None,
        terminate_timeout: float = 2.0,
    ):
        self.status_command = list(status_command or DEFAULT_STATUS_COMMAND)
        self.log_command = list(log_command or DEFAULT_LOG_COMMAND)
        self.terminate_timeout = terminate_timeout

    @classmethod
    def from_config(cls, config) -> "PowerMonitor":
        return cls(
            status_command=config.status_command,
            log_command=config.log_command,
            terminate_timeout=config.terminate_timeout,
        )

    async def current(self) -> Source:
        """Return the current power source.

        Raises:
            ExecError: If the status command cannot be run or fails
            ParseError: If its first line is missing or malformed
        """
        try:
            process = await asyncio.create_subprocess_exec(
                *self.status_command,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise ExecError(f"could not run {self.status_command[0]}: {e}") from e

        out, _ = await process.communicate()
        if process.returncode != 0:
            raise ExecError(f"{self.status_command[0]} exited with status {process.returncode}")

        newline = out.find(b"\n")
        if newline == -1:
            raise ParseError(f"could not parse {self.status_command[0]} output: {out!r}")
        first = _decode(out[:newline])
        source, ok = parse_line(first)
        if not ok:
            raise ParseError(f"could not parse {self.status_command[0]} line: {first!r}")
        return source

    async def notify(self) -> PowerEventStream:
        """Start the log command and return a stream of power sources.

        The log command prints the current source first, so the stream
        opens with an initial update. The caller owns the stream and must
        close it (or use ``subscribe()``).

        Raises:
            ExecError: If the log command cannot be started
        """
        logger.debug("starting power log command: %s", " ".join(self.log_command))
        try:
            process = await asyncio.create_subprocess_exec(
                *self.log_command,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise ExecError(f"could not run {self.log_command[0]}: {e}") from e
        return PowerEventStream(process, terminate_timeout=self.terminate_timeout)

    @contextlib.asynccontextmanager
    async def subscribe(self) -> AsyncIterator[PowerEventStream]:
        """Context manager yielding a stream that is closed on exit."""
        stream = await self.notify()
        try:
            yield stream
        finally:
            await stream.aclose()

    async def wait(self, target: Source, timeout: float | None = None) -> None:
        """Block until the power source is ``target``.

        Uses its own subscription, which is released however this returns.
        Cancelling the calling task cancels the wait.

        Raises:
            TimeoutError: If ``timeout`` elapses first
            PowerStreamClosed: If the log command ends first
        """
        async def _until_target() -> None:
            async with self.subscribe() as stream:
                async for source in stream:
                    if source is target:
                        return
            raise PowerStreamClosed(f"power log ended before {target} was reported")

        await asyncio.wait_for(_until_target(), timeout=timeout)
