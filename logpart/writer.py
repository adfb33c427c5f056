import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Dict, List

from .errors import StoreUnavailable
from .parser import LogEntry
from .store import Partition, PartitionedStore, PartitionKey, encode_entry, partition_key_for

logger = logging.getLogger(__name__)

DEFAULT_SEGMENT_MAX_BYTES = 64 * 1024 * 1024
DEFAULT_SEGMENT_MAX_RECORDS = 1_000_000


@dataclass(frozen=True)
class PartitionRef:
    key: PartitionKey
    segment: str


class PartitionWriter:
    """Routes entries to their status-code partition and appends them to the open segment."""

    def __init__(
        self,
        store: PartitionedStore,
        segment_max_bytes: int = DEFAULT_SEGMENT_MAX_BYTES,
        segment_max_records: int = DEFAULT_SEGMENT_MAX_RECORDS,
    ):
        if segment_max_bytes <= 0 or segment_max_records <= 0:
            raise ValueError("segment thresholds must be positive")
        self._store = store
        self.segment_max_bytes = segment_max_bytes
        self.segment_max_records = segment_max_records

    def write(self, entry: LogEntry) -> PartitionRef:
        return self.write_partition(partition_key_for(entry.status_code), [entry])[-1]

    def write_batch(self, entries: List[LogEntry]) -> List[PartitionRef]:
        """Writes every entry, one storage append per partition touched (per segment)."""
        grouped: Dict[PartitionKey, List[LogEntry]] = defaultdict(list)
        for entry in entries:
            grouped[partition_key_for(entry.status_code)].append(entry)

        refs = []
        for key, group in grouped.items():
            refs.extend(self.write_partition(key, group))
        return refs

    def write_partition(self, key: PartitionKey, entries: List[LogEntry]) -> List[PartitionRef]:
        """Appends entries that all belong to partition `key`, in order."""
        for entry in entries:
            if partition_key_for(entry.status_code) != key:
                raise ValueError(f"status {entry.status_code} does not belong to partition {key}")
        if not entries:
            return []

        partition = self._store.create_if_absent(key)
        encoded = [encode_entry(entry) for entry in entries]
        with partition.lock:
            return self._append_locked(partition, encoded)

    def _full(self, partition: Partition) -> bool:
        return (
            partition.segment_records >= self.segment_max_records
            or partition.segment_bytes >= self.segment_max_bytes
        )

    def _append_locked(self, partition: Partition, encoded: List[bytes]) -> List[PartitionRef]:
        refs = []
        i = 0
        while i < len(encoded):
            room = self.segment_max_records - partition.segment_records
            size = partition.segment_bytes
            j = i
            while j < len(encoded) and j - i < room:
                # an empty segment always takes at least one record
                if size + len(encoded[j]) > self.segment_max_bytes and size > 0:
                    break
                size += len(encoded[j])
                j += 1

            if j == i:
                partition.rotate()
                continue

            segment = partition.open_segment
            try:
                self._store.storage.append(segment, b"".join(encoded[i:j]))
            except StoreUnavailable as e:
                e.partition = partition.key
                logger.error("append to partition %s failed: %s", partition.key, e)
                raise

            partition.segment_records += j - i
            partition.segment_bytes = size
            refs.extend(PartitionRef(partition.key, segment) for _ in range(j - i))
            i = j

            if self._full(partition):
                partition.rotate()
        return refs
