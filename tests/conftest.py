import threading
import time

import pytest

from logpart.config import Settings
from logpart.errors import StoreUnavailable
from logpart.pipeline import Pipeline
from logpart.storage import LocalStorage
from logpart.store import PartitionedStore


def make_line(ip="192.168.0.1", ts="2025-02-25 13:00:15", url="/index", status=200, agent="Firefox/98.0"):
    return f"{ip},{ts},{url},{status},{agent}"


class CountingStorage(LocalStorage):
    """LocalStorage that records calls and can slow down or fail on demand."""

    def __init__(self, root, create_delay=0.0, read_delay=0.0):
        super().__init__(root)
        self.create_delay = create_delay
        self.read_delay = read_delay
        self.fail_appends = False
        self.fail_reads = False
        self.creates = []
        self.reads = []
        self._lock = threading.Lock()

    def create(self, path):
        with self._lock:
            self.creates.append(path)
        time.sleep(self.create_delay)
        return super().create(path)

    def append(self, path, data):
        if self.fail_appends:
            raise StoreUnavailable("disk detached", path=path)
        super().append(path, data)

    def read_sequential(self, path):
        with self._lock:
            self.reads.append(path)
        if self.fail_reads:
            raise StoreUnavailable("disk detached", path=path)
        for chunk in super().read_sequential(path):
            time.sleep(self.read_delay)
            yield chunk


@pytest.fixture
def line():
    return make_line


@pytest.fixture
def storage(tmp_path):
    return CountingStorage(tmp_path / "store")


@pytest.fixture
def store(storage):
    return PartitionedStore(storage)


@pytest.fixture
def settings(tmp_path):
    return Settings(storage=str(tmp_path / "store"), batch_size=100, max_workers=4)


@pytest.fixture
def pipeline(settings, storage):
    return Pipeline.open(settings, storage=storage)
