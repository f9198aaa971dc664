import pytest

from sessync.sender import RetryPolicy, ResilientSender
from sessync.sink import MemorySink

from support import DEST, RecordingSleep


@pytest.fixture
def sleep():
    return RecordingSleep()


@pytest.fixture
def make_sender(sleep):
    def _make(sink=None, **policy):
        return ResilientSender(
            sink if sink is not None else MemorySink(),
            DEST,
            policy=RetryPolicy(**policy),
            sleep=sleep,
        )

    return _make
