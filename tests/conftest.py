import logging
import threading

import pytest


class RecordingEvent(threading.Event):
    """Event whose wait() returns immediately and records the requested timeout."""

    def __init__(self, stop_after_waits=None):
        super().__init__()
        self.waits = []
        self.stop_after_waits = stop_after_waits

    def wait(self, timeout=None):
        self.waits.append(timeout)
        if self.stop_after_waits is not None and len(self.waits) >= self.stop_after_waits:
            self.set()
        return self.is_set()


@pytest.fixture
def make_event():
    return RecordingEvent


@pytest.fixture
def logger():
    log = logging.getLogger("tests.file_store_scheduler")
    log.setLevel(logging.DEBUG)
    return log


@pytest.fixture
def entry(tmp_path):
    d = tmp_path / "entry"
    d.mkdir()
    return d


@pytest.fixture
def dest(tmp_path):
    return tmp_path / "dest"
