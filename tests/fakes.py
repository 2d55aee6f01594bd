"""Test doubles for the controller and CLI tests"""

import asyncio


class FakePowerStream:
    """Power event stream fed by the test; pushing None ends it"""

    def __init__(self):
        self.queue: asyncio.Queue = asyncio.Queue()

    def push(self, source):
        self.queue.put_nowait(source)

    def end(self):
        self.queue.put_nowait(None)

    def __aiter__(self):
        return self

    async def __anext__(self):
        item = await self.queue.get()
        if item is None:
            raise StopAsyncIteration
        return item


class FakeChild:
    """Stands in for a spawned process; exit() resolves its wait()"""

    def __init__(self, pid: int = 4242):
        self.pid = pid
        self._exited = asyncio.Event()
        self.returncode: int | None = None

    def exit(self, returncode: int = 0):
        self.returncode = returncode
        self._exited.set()

    async def wait(self) -> int:
        await self._exited.wait()
        return self.returncode


class RecordingSender:
    """Records (pgid, signum) pairs instead of signalling processes"""

    def __init__(self, error: OSError | None = None):
        self.sent: list[tuple[int, int]] = []
        self.error = error

    def __call__(self, pgid: int, signum: int) -> None:
        if self.error is not None:
            raise self.error
        self.sent.append((pgid, signum))

    @property
    def signals(self) -> list[int]:
        return [signum for _, signum in self.sent]


async def eventually(condition, timeout: float = 2.0):
    """Wait until condition() is true, yielding to the event loop"""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not condition():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


async def settle():
    """Give pending events a chance to be processed"""
    await asyncio.sleep(0.05)
