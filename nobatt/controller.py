"""Suspend/resume controller for the managed process group.

The controller owns a single decision: should the managed process group
be running or stopped right now. It reacts to three independent inputs,
power source changes, operator control events and the child's exit, and
handles exactly one of them per loop iteration.
"""

import asyncio
import logging
import os
import random
import signal
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass
from enum import Enum

from .errors import ChildWaitError, SignalError
from .power import Source
from .signals import ControlEvent, ControlKind

logger = logging.getLogger(__name__)

_POWER = "power"
_CONTROL = "control"
_CHILD = "child"


class StopReason(Enum):
    CHILD_EXITED = "child-exited"
    FORWARDED = "forwarded"


@dataclass
class ControllerResult:
    """Why the controller loop ended"""

    reason: StopReason
    returncode: int | None = None
    signum: int | None = None


class Controller:
    """Suspends and resumes a process group as events arrive.

    Attributes:
        pgid: Process group receiving SIGSTOP/SIGCONT
        running: Whether the group is currently resumed; starts True
    """

    def __init__(
        self,
        pgid: int,
        power_events: AsyncIterator[Source] | None,
        control_events: "asyncio.Queue[ControlEvent]",
        child_exit: Awaitable[int],
        send_signal: Callable[[int, int], None] = os.killpg,
    ):
        """Initialize controller.

        Args:
            pgid: Process group id of the managed child
            power_events: Stream of power sources, or None to ignore power
            control_events: Queue of operator control events
            child_exit: Awaitable resolving to the child's return code
            send_signal: Function sending a signal to a process group
        """
        self.pgid = pgid
        self.power_events = power_events
        self.control_events = control_events
        self.child_exit = child_exit
        self.send_signal = send_signal
        self.running = True

    def set_running(self, want: bool) -> bool:
        """Move the group to the wanted state.

        Returns True if a signal was sent, False if the group was already
        in that state.

        Raises:
            SignalError: If the signal could not be delivered. The recorded
                state is left unchanged.
        """
        if want == self.running:
            return False
        self._send(signal.SIGCONT if want else signal.SIGSTOP)
        self.running = want
        return True

    def _send(self, signum: int) -> None:
        name = signal.Signals(signum).name
        try:
            self.send_signal(self.pgid, signum)
        except OSError as e:
            raise SignalError(f"could not send {name} to process group {self.pgid}: {e}") from e
        logger.debug("sent %s to process group %d", name, self.pgid)

    def forward(self, signum: int) -> None:
        """Forward a termination signal to the whole group.

        A stopped group only acts on the signal once continued, so it is
        resumed afterwards.
        """
        logger.info("forwarding %s to process group %d", signal.Signals(signum).name, self.pgid)
        self._send(signum)
        self.set_running(True)

    async def _next_source(self, events: AsyncIterator[Source]) -> Source | None:
        return await anext(events, None)

    def _on_power(self, source: Source) -> None:
        logger.info("power source is now %s", source)
        self.set_running(source is Source.AC)

    def _on_control(self, event: ControlEvent) -> None:
        if event.kind is ControlKind.FORCE_RESUME:
            logger.info("resume override")
            self.set_running(True)
        elif event.kind is ControlKind.FORCE_SUSPEND:
            logger.info("suspend override")
            self.set_running(False)

    async def run(self) -> ControllerResult:
        """Run the event loop until the child exits or a signal is forwarded.

        Raises:
            SignalError: If suspending, resuming or forwarding fails
            ChildWaitError: If waiting for the child fails
        """
        pending: dict[str, asyncio.Future] = {
            _CHILD: asyncio.ensure_future(self.child_exit),
            _CONTROL: asyncio.ensure_future(self.control_events.get()),
        }
        power_iter = aiter(self.power_events) if self.power_events is not None else None
        if power_iter is not None:
            pending[_POWER] = asyncio.ensure_future(self._next_source(power_iter))

        try:
            while True:
                done, _ = await asyncio.wait(pending.values(), return_when=asyncio.FIRST_COMPLETED)
                ready = [name for name, fut in pending.items() if fut in done]
                # Once the child is gone its group may be too; stop before signalling it
                name = _CHILD if _CHILD in ready else random.choice(ready)
                fut = pending.pop(name)

                if name == _CHILD:
                    try:
                        returncode = fut.result()
                    except OSError as e:
                        raise ChildWaitError(f"waiting for process {self.pgid} failed: {e}") from e
                    logger.info("process %d exited with status %s", self.pgid, returncode)
                    return ControllerResult(StopReason.CHILD_EXITED, returncode=returncode)

                if name == _CONTROL:
                    event = fut.result()
                    if event.kind is ControlKind.TERMINATE:
                        self.forward(event.signum)
                        return ControllerResult(StopReason.FORWARDED, signum=event.signum)
                    self._on_control(event)
                    pending[_CONTROL] = asyncio.ensure_future(self.control_events.get())
                    continue

                source = fut.result()
                if source is None:
                    logger.warning("power monitoring ended; process stays %s", "running" if self.running else "stopped")
                    continue
                self._on_power(source)
                pending[_POWER] = asyncio.ensure_future(self._next_source(power_iter))
        finally:
            for fut in pending.values():
                fut.cancel()
            await asyncio.gather(*pending.values(), return_exceptions=True)
