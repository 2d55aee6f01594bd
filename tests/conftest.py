"""Pytest configuration and fixtures"""

import pytest

from fakes import FakeChild, FakePowerStream, RecordingSender


@pytest.fixture
def sender():
    return RecordingSender()


@pytest.fixture
def power_stream():
    return FakePowerStream()


@pytest.fixture
def child():
    return FakeChild()
