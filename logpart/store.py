"""Partitioned, append-only store of access-log records.

Layout on the storage substrate (Hive style, one directory per status code):

    status_code=200/_PARTITION
    status_code=200/segment-00000.jsonl
    status_code=200/segment-00001.jsonl
    status_code=__default__/...
    _rejects/rejects-<run id>.jsonl

A segment holds one JSON object per line. Readers only ever yield
newline-terminated lines, so a record that is still being appended is
invisible rather than half-read.
"""
import json
import logging
import re
import threading
import uuid
from collections import Counter
from typing import Dict, Iterable, Iterator, List, Set, Union

from .errors import StoreUnavailable
from .parser import MAX_STATUS, MIN_STATUS, LogEntry, ParseFailure, ParseReason
from .storage import Storage

logger = logging.getLogger(__name__)

PartitionKey = Union[int, str]

DEFAULT_PARTITION = "__default__"
PARTITION_COLUMN = "status_code"
PARTITION_MARKER = "_PARTITION"
REJECTS_PREFIX = "_rejects"

_PARTITION_DIR_RE = re.compile(rf"^{PARTITION_COLUMN}=(\d+|{DEFAULT_PARTITION})$")
_SEGMENT_RE = re.compile(r"^segment-(\d+)\.jsonl$")


def partition_key_for(status_code: int) -> PartitionKey:
    if MIN_STATUS <= status_code <= MAX_STATUS:
        return status_code
    return DEFAULT_PARTITION


def partition_dir(key: PartitionKey) -> str:
    return f"{PARTITION_COLUMN}={key}"


def segment_path(key: PartitionKey, index: int) -> str:
    return f"{partition_dir(key)}/segment-{index:05d}.jsonl"


def partition_sort_key(key: PartitionKey):
    # numeric keys first, the default bucket last
    return (1, 0) if key == DEFAULT_PARTITION else (0, key)


def encode_entry(entry: LogEntry) -> bytes:
    record = {
        "client_address": entry.client_address,
        "timestamp": entry.timestamp,
        "url": entry.url,
        "status_code": entry.status_code,
        "user_agent": entry.user_agent,
    }
    return (json.dumps(record, ensure_ascii=False, separators=(",", ":")) + "\n").encode("utf-8")


def decode_entry(line: bytes) -> LogEntry:
    record = json.loads(line)
    return LogEntry(
        client_address=record["client_address"],
        timestamp=record["timestamp"],
        url=record["url"],
        status_code=int(record["status_code"]),
        user_agent=record["user_agent"],
    )


def iter_lines(chunks: Iterable[bytes]) -> Iterator[bytes]:
    """Reassemble newline-terminated lines from arbitrary chunks.

    An unterminated tail is dropped: it is a record whose append has not
    completed yet.
    """
    pending = b""
    for chunk in chunks:
        pending += chunk
        *complete, pending = pending.split(b"\n")
        for line in complete:
            if line:
                yield line


class Partition:
    """Registry entry for one partition and the bookkeeping of its open segment.

    Only the holder of `lock` may append or rotate.
    """

    def __init__(self, key: PartitionKey, segment_index: int = 0):
        self.key = key
        self.lock = threading.Lock()
        self.segment_index = segment_index
        self.segment_bytes = 0
        self.segment_records = 0

    @property
    def open_segment(self) -> str:
        return segment_path(self.key, self.segment_index)

    def rotate(self) -> None:
        logger.debug("partition %s: closing %s", self.key, self.open_segment)
        self.segment_index += 1
        self.segment_bytes = 0
        self.segment_records = 0

    def __repr__(self):
        return f"Partition(key={self.key!r}, segment={self.segment_index})"


class PartitionedStore:
    def __init__(self, storage: Storage, retain_failures: bool = True):
        self._storage = storage
        self._retain_failures = retain_failures
        self._run_id = uuid.uuid4().hex

        self._partitions: Dict[PartitionKey, Partition] = {}
        self._creation_locks: Dict[PartitionKey, threading.Lock] = {}

        self._failure_lock = threading.Lock()
        self._failure_counts: Counter = Counter()

    @property
    def storage(self) -> Storage:
        return self._storage

    # ---------- Partition registry ----------

    def create_if_absent(self, key: PartitionKey) -> Partition:
        """
        Returns the partition for key, creating it on first use.

        Creation happens exactly once per key: concurrent first writers for the
        same key serialize on that key's lock, writers for other keys never wait.
        """
        partition = self._partitions.get(key)
        if partition is not None:
            return partition

        # dict.setdefault is atomic, so every caller gets the same lock object
        lock = self._creation_locks.setdefault(key, threading.Lock())
        with lock:
            partition = self._partitions.get(key)
            if partition is not None:
                return partition
            try:
                created = self._storage.create(f"{partition_dir(key)}/{PARTITION_MARKER}")
            except StoreUnavailable as e:
                e.partition = key
                raise
            partition = Partition(key, segment_index=self._next_segment_index(key))
            self._partitions[key] = partition
            logger.info("partition %s %s", partition_dir(key), "created" if created else "reopened")
            return partition

    def list_partitions(self) -> Set[PartitionKey]:
        return set(self._partitions)

    def refresh(self) -> Set[PartitionKey]:
        """Register partitions and failure tallies persisted by earlier runs."""
        discovered = set()
        for path in self._storage.list(""):
            head, _, name = path.partition("/")
            match = _PARTITION_DIR_RE.match(head)
            if match and name == PARTITION_MARKER:
                raw = match.group(1)
                discovered.add(DEFAULT_PARTITION if raw == DEFAULT_PARTITION else int(raw))
        for key in discovered:
            self.create_if_absent(key)

        if self._retain_failures:
            counts = Counter(failure.reason for failure in self.failures())
            with self._failure_lock:
                self._failure_counts = counts
        logger.info("store refreshed: %d partition(s)", len(discovered))
        return discovered

    # ---------- Segments and scans ----------

    def segments(self, key: PartitionKey) -> List[str]:
        indexed = []
        for path in self._storage.list(partition_dir(key) + "/"):
            match = _SEGMENT_RE.match(path.rsplit("/", 1)[-1])
            if match:
                indexed.append((int(match.group(1)), path))
        return [path for _, path in sorted(indexed)]

    def _next_segment_index(self, key: PartitionKey) -> int:
        existing = self.segments(key)
        if not existing:
            return 0
        last = _SEGMENT_RE.match(existing[-1].rsplit("/", 1)[-1])
        return int(last.group(1)) + 1

    def scan(self, key: PartitionKey) -> Iterator[LogEntry]:
        """
        Lazily yields the partition's entries in append order.

        Every call starts over from the first segment. Entries appended before
        the call are always seen; later ones may or may not be.
        """
        for path in self.segments(key):
            try:
                for line in iter_lines(self._storage.read_sequential(path)):
                    try:
                        yield decode_entry(line)
                    except (ValueError, KeyError) as e:
                        raise StoreUnavailable(f"corrupt record: {e}", path=path, partition=key) from e
            except StoreUnavailable as e:
                if e.partition is None:
                    e.partition = key
                raise

    # ---------- Parse failures ----------

    def record_failures(self, failures: List[ParseFailure]) -> None:
        if not failures:
            return
        with self._failure_lock:
            if self._retain_failures:
                payload = b"".join(
                    (json.dumps({"reason": f.reason.value, "raw": f.raw}) + "\n").encode("utf-8")
                    for f in failures
                )
                self._storage.append(f"{REJECTS_PREFIX}/rejects-{self._run_id}.jsonl", payload)
            self._failure_counts.update(failure.reason for failure in failures)

    def failure_counts(self) -> Dict[ParseReason, int]:
        with self._failure_lock:
            return dict(self._failure_counts)

    def parse_failure_count(self) -> int:
        with self._failure_lock:
            return sum(self._failure_counts.values())

    def failures(self) -> Iterator[ParseFailure]:
        """Retained parse failures, for inspection."""
        for path in self._storage.list(REJECTS_PREFIX + "/"):
            for line in iter_lines(self._storage.read_sequential(path)):
                record = json.loads(line)
                yield ParseFailure(raw=record["raw"], reason=ParseReason(record["reason"]))
