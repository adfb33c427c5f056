"""Programmatic entry point: ingest raw lines, run aggregation jobs.

    pipeline = Pipeline.open(Settings(storage="/data/access"))
    report = pipeline.ingest(open("access.log", encoding="utf-8"))
    result = pipeline.query(analytics.top_pages(3))
"""
import concurrent.futures
import itertools
import logging
from collections import Counter, defaultdict
from dataclasses import dataclass, field
from typing import Dict, Iterable, Iterator, List, Optional, Set

from .config import Settings
from .executor import AggregationExecutor, AggregationResult
from .jobs import AggregationJob
from .parser import LogEntry, ParseFailure, ParseReason, RecordParser
from .sink import ResultSink
from .storage import Storage, open_storage
from .store import PartitionedStore, PartitionKey, partition_key_for
from .writer import PartitionWriter

logger = logging.getLogger(__name__)


@dataclass
class IngestReport:
    accepted: int = 0
    rejected: int = 0
    reject_reasons: Dict[ParseReason, int] = field(default_factory=dict)
    partitions_written: Set[PartitionKey] = field(default_factory=set)

    @property
    def total(self) -> int:
        return self.accepted + self.rejected


class Pipeline:
    def __init__(self, store: PartitionedStore, settings: Settings = None):
        self.settings = settings or Settings()
        self.store = store
        self.parser = RecordParser(
            delimiter=self.settings.delimiter,
            timestamp_width=self.settings.timestamp_width,
            strict_field_count=self.settings.strict_field_count,
        )
        self.writer = PartitionWriter(
            store,
            segment_max_bytes=self.settings.segment_max_bytes,
            segment_max_records=self.settings.segment_max_records,
        )
        self.executor = AggregationExecutor(
            store,
            max_workers=self.settings.max_workers,
            timeout=self.settings.query_timeout,
        )

    @classmethod
    def open(cls, settings: Settings = None, storage: Storage = None) -> "Pipeline":
        """Opens (or creates) the store at settings.storage and loads its partitions."""
        settings = settings or Settings()
        storage = storage if storage is not None else open_storage(settings.storage)
        store = PartitionedStore(storage, retain_failures=settings.retain_failures)
        store.refresh()
        return cls(store, settings)

    # ---------- Ingestion ----------

    def ingest(self, lines: Iterable[str]) -> IngestReport:
        """
        Parses and stores every line. Malformed lines are counted by reason and
        never stop the run; a storage fault does, after the batch's in-flight
        partition writes have finished.
        """
        report = IngestReport()
        reasons: Counter = Counter()
        with concurrent.futures.ThreadPoolExecutor(
            max_workers=self.settings.max_workers, thread_name_prefix="logpart-write",
        ) as pool:
            for batch in itertools.batched(lines, self.settings.batch_size):
                self._ingest_batch(batch, pool, report, reasons)

        report.reject_reasons = dict(reasons)
        logger.info(
            "ingested %d line(s): %d accepted, %d rejected %s",
            report.total, report.accepted, report.rejected,
            {reason.value: count for reason, count in reasons.items()},
        )
        return report

    def _ingest_batch(self, batch, pool, report: IngestReport, reasons: Counter) -> None:
        by_partition: Dict[PartitionKey, List[LogEntry]] = defaultdict(list)
        failures: List[ParseFailure] = []
        for raw in batch:
            parsed = self.parser.parse(raw)
            if isinstance(parsed, ParseFailure):
                failures.append(parsed)
            else:
                by_partition[partition_key_for(parsed.status_code)].append(parsed)

        self.store.record_failures(failures)
        reasons.update(failure.reason for failure in failures)
        report.rejected += len(failures)

        futures = {
            pool.submit(self.writer.write_partition, key, entries): key
            for key, entries in by_partition.items()
        }
        concurrent.futures.wait(futures)
        for future, key in futures.items():
            error = future.exception()
            if error is not None:
                logger.error("batch write to partition %s failed: %s", key, error)
                raise error
            report.accepted += len(by_partition[key])
            report.partitions_written.add(key)

    def ingest_source(self, source: Storage, prefix: str = "") -> IngestReport:
        """Ingests every object under prefix in the source storage."""
        paths = source.list(prefix)
        logger.info("reading %d file(s) from %r", len(paths), source)
        return self.ingest(read_text_lines(source, paths, self.settings.encoding))

    # ---------- Queries ----------

    def query(
        self,
        job: AggregationJob,
        partitions: Optional[Iterable[PartitionKey]] = None,
        timeout: Optional[float] = None,
    ) -> AggregationResult:
        return self.executor.execute(job, partitions=partitions, timeout=timeout)

    def export(self, job: AggregationJob, sink: ResultSink, destination: str) -> AggregationResult:
        result = self.query(job)
        sink.write(result, destination)
        return result


def read_text_lines(storage: Storage, paths: Iterable[str], encoding: str = "utf-8") -> Iterator[str]:
    """Lines of each object in turn, including an unterminated last line.

    Undecodable bytes survive as lone surrogates, which the parser rejects.
    """
    for path in paths:
        pending = b""
        for chunk in storage.read_sequential(path):
            pending += chunk
            *complete, pending = pending.split(b"\n")
            for line in complete:
                yield line.decode(encoding, errors="surrogateescape")
        if pending:
            yield pending.decode(encoding, errors="surrogateescape")
