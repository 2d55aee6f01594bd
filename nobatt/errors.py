"""Error types for nobatt

Every error here is surfaced immediately to the caller. None of them is
retried: a failed power query or signal send leaves the managed process
in an unknown state.
"""


class NobattError(Exception):
    """Base class for nobatt errors"""


class ExecError(NobattError):
    """An OS power command could not be run"""


class ParseError(NobattError):
    """Power command output did not contain a parseable power source line"""


class PowerStreamClosed(NobattError):
    """The power event stream ended before the awaited source was seen"""


class SignalError(NobattError):
    """Sending a control signal to the managed process group failed"""


class SpawnError(NobattError):
    """The managed command could not be started"""


class ChildWaitError(NobattError):
    """Waiting for the managed command to exit failed"""
