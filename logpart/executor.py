import concurrent.futures
import heapq
import logging
import threading
import time
from collections import Counter, defaultdict
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

import polars as pl

from .errors import QueryTimeout
from .jobs import ALL_GROUP, AggregateKind, AggregationJob, OrderBy
from .store import PartitionedStore, PartitionKey, partition_sort_key

logger = logging.getLogger(__name__)

DEFAULT_MAX_WORKERS = 8


@dataclass
class PartialAggregate:
    """What one partition scan folds into. Built and owned by a single worker."""
    partition: PartitionKey
    counts: Counter = field(default_factory=Counter)
    distinct: Dict[Any, set] = field(default_factory=lambda: defaultdict(set))
    rows_scanned: int = 0
    rows_matched: int = 0


@dataclass
class AggregationResult:
    job: AggregationJob
    groups: Dict[Any, int]
    ordered: bool
    rows_scanned: int
    rows_matched: int
    rows_skipped: int
    partitions_scanned: int
    wall_time: float

    def items(self) -> List[Tuple[Any, int]]:
        return list(self.groups.items())

    def __getitem__(self, key) -> int:
        return self.groups[key]

    def __len__(self) -> int:
        return len(self.groups)

    def __iter__(self):
        return iter(self.groups)


def _rank(item: Tuple[Any, int]):
    # count descending, then the lexicographically smaller key first
    return (-item[1], str(item[0]))


class AggregationExecutor:
    def __init__(
        self,
        store: PartitionedStore,
        max_workers: int = DEFAULT_MAX_WORKERS,
        timeout: Optional[float] = None,
    ):
        self._store = store
        self._max_workers = max_workers
        self._timeout = timeout

    def execute(
        self,
        job: AggregationJob,
        partitions: Optional[Iterable[PartitionKey]] = None,
        timeout: Optional[float] = None,
    ) -> AggregationResult:
        """
        Runs job over the given partitions (all known partitions by default).

        Each partition is folded independently on the worker pool; the merge
        only starts once every fold has finished. Either the whole result is
        returned or an error is raised: StoreUnavailable from a scan,
        InvalidJobSpec before anything is scanned, QueryTimeout when the
        deadline passes first.
        """
        job.validate()
        timeout = self._timeout if timeout is None else timeout
        started = time.perf_counter()

        targets: Set[PartitionKey] = self._store.list_partitions() if partitions is None else set(partitions)
        if job.where is not None:
            targets = job.where.prune(targets)
        ordered_targets = sorted(targets, key=partition_sort_key)
        logger.info("executing %s over %d partition(s)", job.describe(), len(ordered_targets))

        partials = self._fold_all(job, ordered_targets, timeout)
        groups = self._merge(job, partials)

        result = AggregationResult(
            job=job,
            groups=groups,
            ordered=job.effective_order is not None,
            rows_scanned=sum(p.rows_scanned for p in partials),
            rows_matched=sum(p.rows_matched for p in partials),
            rows_skipped=self._store.parse_failure_count(),
            partitions_scanned=len(partials),
            wall_time=time.perf_counter() - started,
        )
        logger.info(
            "%s: %d group(s), %d row(s) scanned in %.3fs",
            job.describe(), len(groups), result.rows_scanned, result.wall_time,
        )
        return result

    # ---------- Partition-local folds ----------

    def _fold_all(self, job: AggregationJob, keys: List[PartitionKey], timeout: Optional[float]) -> List[PartialAggregate]:
        if not keys:
            return []

        cancel = threading.Event()
        pool = concurrent.futures.ThreadPoolExecutor(
            max_workers=min(self._max_workers, len(keys)),
            thread_name_prefix="logpart-scan",
        )
        try:
            futures = [pool.submit(self._fold, job, key, cancel) for key in keys]
            done, not_done = concurrent.futures.wait(
                futures, timeout=timeout, return_when=concurrent.futures.FIRST_EXCEPTION,
            )
            for future in futures:
                if future in done and future.exception() is not None:
                    cancel.set()
                    raise future.exception()
            if not_done:
                cancel.set()
                logger.warning("timed out after %ss, abandoning %d scan(s): %s", timeout, len(not_done), job.describe())
                raise QueryTimeout(job, timeout, len(not_done))
            return [future.result() for future in futures]
        finally:
            pool.shutdown(wait=False, cancel_futures=True)

    def _fold(self, job: AggregationJob, key: PartitionKey, cancel: threading.Event) -> PartialAggregate:
        partial = PartialAggregate(partition=key)
        for entry in self._store.scan(key):
            if cancel.is_set():
                return partial
            partial.rows_scanned += 1
            if job.where is not None and not job.where.matches(entry):
                continue
            partial.rows_matched += 1
            group = job.group_of(entry)
            if job.kind == AggregateKind.DISTINCT_COUNT:
                partial.distinct[group].add(getattr(entry, job.distinct_field))
            else:
                partial.counts[group] += 1

        # a status_code group never spans two partitions, so the local top k is exact
        if job.kind == AggregateKind.TOP_K and job.key.aligned_with_partition and len(partial.counts) > job.k:
            partial.counts = Counter(dict(heapq.nsmallest(job.k, partial.counts.items(), key=_rank)))

        logger.debug("partition %s: %d scanned, %d matched", key, partial.rows_scanned, partial.rows_matched)
        return partial

    # ---------- Merge ----------

    def _merge(self, job: AggregationJob, partials: List[PartialAggregate]) -> Dict[Any, int]:
        frames = []
        for partial in partials:
            if job.kind == AggregateKind.DISTINCT_COUNT:
                keys = [group for group, values in partial.distinct.items() for _ in values]
                values = [value for group_values in partial.distinct.values() for value in group_values]
            else:
                keys = list(partial.counts.keys())
                values = list(partial.counts.values())
            if keys:
                frames.append(pl.DataFrame({"key": keys, "value": values}))

        if frames:
            aggregate = pl.col("value").n_unique() if job.kind == AggregateKind.DISTINCT_COUNT else pl.col("value").sum()
            df = (
                pl.concat(frames)
                .group_by("key", maintain_order=True)
                .agg(aggregate.cast(pl.Int64))
            )
        else:
            df = pl.DataFrame(schema={"key": pl.Utf8, "value": pl.Int64})

        if job.key is None and df.height == 0:
            df = pl.DataFrame({"key": [ALL_GROUP], "value": [0]})

        if job.having_gt is not None:
            df = df.filter(pl.col("value") > job.having_gt)

        order = job.effective_order
        if order == OrderBy.COUNT_DESC:
            # ties compare keys as text, so 1000 ranks ahead of 999
            df = (
                df.with_columns(pl.col("key").cast(pl.Utf8).alias("tie"))
                .sort(["value", "tie"], descending=[True, False])
                .drop("tie")
            )
        elif order == OrderBy.KEY_ASC:
            df = df.sort("key")

        if job.effective_limit is not None:
            df = df.head(job.effective_limit)

        return dict(df.rows())
