"""Main entry point for nobatt"""

import asyncio
import contextlib
import logging
import os
import signal
import sys

from pydantic import ValidationError

from .config import NobattConfig, get_config
from .controller import Controller, ControllerResult, StopReason
from .errors import NobattError, SpawnError
from .power import PowerMonitor
from .signals import SignalChannel

logger = logging.getLogger(__name__)

USAGE = """usage: nobatt cmd [args]

nobatt runs cmd.

It suspends cmd when it detects that the laptop is running on battery power,
and resumes it when it detects that the laptop is using wall power.
If you want to override nobatt, send SIGUSR1 to force cmd to resume,
or SIGUSR2 to force cmd to suspend. SIGINT and SIGTERM are passed on
to cmd before nobatt exits.

cmd runs in its own process group, and the whole group is suspended and
resumed together. Processes that cmd moves out of that group are not
controlled.

Environment:
  NOBATT_STATUS_COMMAND     power status query (default: pmset -g ps)
  NOBATT_LOG_COMMAND        power change log (default: pmset -g pslog)
  NOBATT_RESUME_SIGNAL      override signal forcing resume (default: SIGUSR1)
  NOBATT_SUSPEND_SIGNAL     override signal forcing suspend (default: SIGUSR2)
  NOBATT_TERMINATE_TIMEOUT  seconds to wait for the log command to exit
  NOBATT_LOG_LEVEL          DEBUG, INFO, WARNING or ERROR (default: WARNING)
"""


def setup_logging(level: str = "WARNING") -> None:
    """Log to stderr; stdout belongs to the managed command."""
    lvl = getattr(logging, level.upper(), logging.WARNING)
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("nobatt: %(message)s"))
    root = logging.getLogger("nobatt")
    root.handlers[:] = [handler]
    root.setLevel(lvl)
    root.propagate = False


def exit_status(result: ControllerResult) -> int:
    """Map a controller result to the process exit status"""
    if result.reason is StopReason.FORWARDED:
        return 128 + result.signum
    returncode = result.returncode or 0
    if returncode < 0:
        return 128 - returncode
    return returncode


async def spawn(argv: list[str]) -> asyncio.subprocess.Process:
    """Start argv in a new process group with our stdio.

    Raises:
        SpawnError: If the command cannot be started
    """
    try:
        return await asyncio.create_subprocess_exec(*argv, process_group=0)
    except OSError as e:
        raise SpawnError(f"could not start {argv[0]}: {e}") from e


def _set_foreground(fd: int, pgid: int) -> None:
    # A background group changing the foreground group gets SIGTTOU
    old_mask = signal.pthread_sigmask(signal.SIG_BLOCK, {signal.SIGTTOU})
    try:
        os.tcsetpgrp(fd, pgid)
    finally:
        signal.pthread_sigmask(signal.SIG_SETMASK, old_mask)


@contextlib.contextmanager
def terminal_foreground(pgid: int):
    """Make pgid the terminal's foreground group while the block runs.

    The managed command shares our terminal but runs in its own process
    group; without this, its first read from the terminal stops it with
    SIGTTIN. Does nothing when stdin is not a terminal.
    """
    if not sys.stdin.isatty():
        yield
        return

    fd = sys.stdin.fileno()
    try:
        original = os.tcgetpgrp(fd)
        _set_foreground(fd, pgid)
    except OSError as e:
        logger.warning("could not hand the terminal to the command: %s", e)
        yield
        return

    # The command may already have been stopped by reading too early
    with contextlib.suppress(ProcessLookupError):
        os.killpg(pgid, signal.SIGCONT)
    try:
        yield
    finally:
        with contextlib.suppress(OSError):
            _set_foreground(fd, original)


async def run(argv: list[str], config: NobattConfig) -> int:
    """Run argv under power control and return the exit status"""
    monitor = PowerMonitor.from_config(config)

    # Handlers go in first so an early override or termination signal is
    # queued instead of killing us with the log command still running
    with SignalChannel.from_config(config) as channel:
        async with monitor.subscribe() as power_events:
            process = await spawn(argv)
            logger.debug("started %s as pid %d", argv[0], process.pid)

            with terminal_foreground(process.pid):
                controller = Controller(
                    pgid=process.pid,
                    power_events=power_events,
                    control_events=channel.queue,
                    child_exit=process.wait(),
                )
                result = await controller.run()

    if result.reason is StopReason.CHILD_EXITED and result.returncode:
        logger.error("%s exited with status %d", argv[0], result.returncode)
    return exit_status(result)


async def main_async(argv: list[str]) -> int:
    """Async main function"""
    if not argv:
        print(USAGE, file=sys.stderr, end="")
        return 1

    try:
        config = get_config()
    except ValidationError as e:
        print(f"nobatt: invalid configuration: {e}", file=sys.stderr)
        return 1
    setup_logging(config.log_level)

    try:
        return await run(argv, config)
    except NobattError as e:
        logger.error("%s", e)
        return 1


def main():
    """Main entry point"""
    sys.exit(asyncio.run(main_async(sys.argv[1:])))


if __name__ == "__main__":
    main()
