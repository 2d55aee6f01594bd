"""Manual override channel fed by OS signals"""

import asyncio
import logging
import signal
from dataclasses import dataclass
from enum import Enum

logger = logging.getLogger(__name__)


class ControlKind(Enum):
    FORCE_RESUME = "force-resume"
    FORCE_SUSPEND = "force-suspend"
    TERMINATE = "terminate"


@dataclass(frozen=True)
class ControlEvent:
    """An operator instruction for the controller

    ``signum`` is only set for TERMINATE and names the signal to forward.
    """

    kind: ControlKind
    signum: int | None = None

    @classmethod
    def force_resume(cls) -> "ControlEvent":
        return cls(ControlKind.FORCE_RESUME)

    @classmethod
    def force_suspend(cls) -> "ControlEvent":
        return cls(ControlKind.FORCE_SUSPEND)

    @classmethod
    def terminate(cls, signum: int) -> "ControlEvent":
        return cls(ControlKind.TERMINATE, signum)


class SignalChannel:
    """Translate OS signals into ControlEvents on an asyncio queue.

    Handlers are installed on the running event loop, so signals are
    delivered between loop iterations rather than interrupting the
    controller mid-step.

    Usage:
        with SignalChannel() as channel:
            event = await channel.queue.get()
    """

    def __init__(
        self,
        resume_signal: int = signal.SIGUSR1,
        suspend_signal: int = signal.SIGUSR2,
        terminate_signals: tuple[int, ...] = (signal.SIGINT, signal.SIGTERM),
    ):
        self.queue: asyncio.Queue[ControlEvent] = asyncio.Queue()
        self._events = {
            resume_signal: ControlEvent.force_resume,
            suspend_signal: ControlEvent.force_suspend,
        }
        for signum in terminate_signals:
            self._events[signum] = lambda signum=signum: ControlEvent.terminate(signum)
        self._loop: asyncio.AbstractEventLoop | None = None

    @classmethod
    def from_config(cls, config) -> "SignalChannel":
        return cls(
            resume_signal=config.resume_signal,
            suspend_signal=config.suspend_signal,
            terminate_signals=config.terminate_signals,
        )

    def start(self):
        if self._loop is not None:
            return
        self._loop = asyncio.get_running_loop()
        for signum in self._events:
            self._loop.add_signal_handler(signum, self._deliver, signum)

    def stop(self):
        if self._loop is None:
            return
        for signum in self._events:
            self._loop.remove_signal_handler(signum)
        self._loop = None

    def _deliver(self, signum: int):
        event = self._events[signum]()
        logger.debug("received %s", signal.Signals(signum).name)
        self.queue.put_nowait(event)

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, *exc):
        self.stop()
        return False
