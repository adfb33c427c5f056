"""Aggregation job descriptors.

A job is a closed combination of tagged parts rather than a query string:
an aggregate kind, an optional group key, an optional filter, and optional
HAVING / ORDER BY / LIMIT clauses. Jobs are immutable and describe
themselves in a SQL-like form for logs and error messages.
"""
from dataclasses import dataclass, fields
from enum import Enum
from typing import FrozenSet, Iterable, Optional, Set, Tuple, Union

from .errors import InvalidJobSpec
from .parser import MAX_STATUS, MIN_STATUS, LogEntry

ENTRY_FIELDS = tuple(f.name for f in fields(LogEntry))

ALL_GROUP = "*"


class AggregateKind(str, Enum):
    COUNT = "COUNT"
    DISTINCT_COUNT = "DISTINCT_COUNT"
    TOP_K = "TOP_K"


class OrderBy(str, Enum):
    COUNT_DESC = "COUNT_DESC"
    KEY_ASC = "KEY_ASC"


def _check_field(name) -> None:
    if name not in ENTRY_FIELDS:
        raise ValueError(f"unknown field {name!r}, expected one of {', '.join(ENTRY_FIELDS)}")


def status_class(code: int) -> str:
    """Groups status codes into 2xx, 4xx, 5xx, ..."""
    return f"{code // 100}xx"


# -----------------------------
# GROUP KEYS
# -----------------------------

@dataclass(frozen=True)
class FieldKey:
    field: str

    def validate(self) -> None:
        _check_field(self.field)

    def extract(self, entry: LogEntry):
        return getattr(entry, self.field)

    @property
    def aligned_with_partition(self) -> bool:
        return self.field == "status_code"

    def describe(self) -> str:
        return self.field


@dataclass(frozen=True)
class StatusClassKey:
    def validate(self) -> None:
        pass

    def extract(self, entry: LogEntry) -> str:
        return status_class(entry.status_code)

    @property
    def aligned_with_partition(self) -> bool:
        return False

    def describe(self) -> str:
        return "status_class(status_code)"


@dataclass(frozen=True)
class TimeBucketKey:
    """Buckets by the first prefix_length characters of the raw timestamp.

    With 'YYYY-MM-DD HH:MM:SS' timestamps, 13 is hourly and 16 per minute.
    """
    prefix_length: int

    def validate(self) -> None:
        if not isinstance(self.prefix_length, int) or isinstance(self.prefix_length, bool) or self.prefix_length <= 0:
            raise ValueError(f"prefix_length must be a positive integer, got {self.prefix_length!r}")

    def extract(self, entry: LogEntry) -> str:
        return entry.timestamp[:self.prefix_length]

    @property
    def aligned_with_partition(self) -> bool:
        return False

    def describe(self) -> str:
        return f"time_bucket(timestamp, {self.prefix_length})"


GroupKey = Union[FieldKey, StatusClassKey, TimeBucketKey]
GROUP_KEY_TYPES = (FieldKey, StatusClassKey, TimeBucketKey)


# -----------------------------
# FILTERS
# -----------------------------

@dataclass(frozen=True)
class StatusIn:
    codes: FrozenSet[int]

    def __init__(self, codes: Iterable[int]):
        object.__setattr__(self, "codes", frozenset(codes))

    def validate(self) -> None:
        if not self.codes:
            raise ValueError("StatusIn needs at least one status code")
        for code in self.codes:
            if not isinstance(code, int) or isinstance(code, bool):
                raise ValueError(f"status codes must be integers, got {code!r}")

    def matches(self, entry: LogEntry) -> bool:
        return entry.status_code in self.codes

    def prune(self, keys: Set) -> Set:
        """Partitions that can hold a matching entry."""
        kept = {key for key in keys if key in self.codes}
        if any(not MIN_STATUS <= code <= MAX_STATUS for code in self.codes):
            kept |= {key for key in keys if isinstance(key, str)}
        return kept

    def describe(self) -> str:
        return f"status_code IN ({', '.join(str(c) for c in sorted(self.codes, key=str))})"


@dataclass(frozen=True)
class FieldEquals:
    field: str
    value: Union[str, int]

    def validate(self) -> None:
        _check_field(self.field)

    def matches(self, entry: LogEntry) -> bool:
        return getattr(entry, self.field) == self.value

    def prune(self, keys: Set) -> Set:
        if self.field == "status_code" and isinstance(self.value, int):
            return StatusIn([self.value]).prune(keys)
        return keys

    def describe(self) -> str:
        return f"{self.field} = {self.value!r}"


@dataclass(frozen=True)
class UrlPrefix:
    prefix: str

    def validate(self) -> None:
        if not isinstance(self.prefix, str):
            raise ValueError(f"url prefix must be a string, got {self.prefix!r}")

    def matches(self, entry: LogEntry) -> bool:
        return entry.url.startswith(self.prefix)

    def prune(self, keys: Set) -> Set:
        return keys

    def describe(self) -> str:
        return f"url LIKE '{self.prefix}%'"


@dataclass(frozen=True)
class TimestampRange:
    """Lexical range over the raw timestamp: start <= timestamp < end."""
    start: Optional[str] = None
    end: Optional[str] = None

    def validate(self) -> None:
        if self.start is None and self.end is None:
            raise ValueError("TimestampRange needs a start, an end or both")
        for bound in (self.start, self.end):
            if bound is not None and not isinstance(bound, str):
                raise ValueError(f"timestamp bounds must be strings, got {bound!r}")
        if self.start is not None and self.end is not None and self.start > self.end:
            raise ValueError(f"empty timestamp range {self.start!r} .. {self.end!r}")

    def matches(self, entry: LogEntry) -> bool:
        if self.start is not None and entry.timestamp < self.start:
            return False
        if self.end is not None and entry.timestamp >= self.end:
            return False
        return True

    def prune(self, keys: Set) -> Set:
        return keys

    def describe(self) -> str:
        parts = []
        if self.start is not None:
            parts.append(f"timestamp >= '{self.start}'")
        if self.end is not None:
            parts.append(f"timestamp < '{self.end}'")
        return " AND ".join(parts)


@dataclass(frozen=True)
class AllOf:
    filters: Tuple

    def __init__(self, *filters):
        object.__setattr__(self, "filters", tuple(filters))

    def validate(self) -> None:
        if not self.filters:
            raise ValueError("AllOf needs at least one filter")
        for f in self.filters:
            if not isinstance(f, FILTER_TYPES):
                raise ValueError(f"not a filter: {f!r}")
            f.validate()

    def matches(self, entry: LogEntry) -> bool:
        return all(f.matches(entry) for f in self.filters)

    def prune(self, keys: Set) -> Set:
        for f in self.filters:
            keys = f.prune(keys)
        return keys

    def describe(self) -> str:
        return " AND ".join(f"({f.describe()})" if hasattr(f, "describe") else repr(f) for f in self.filters)


Filter = Union[StatusIn, FieldEquals, UrlPrefix, TimestampRange, AllOf]
FILTER_TYPES = (StatusIn, FieldEquals, UrlPrefix, TimestampRange, AllOf)


# -----------------------------
# JOB
# -----------------------------

def _positive_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value > 0


@dataclass(frozen=True)
class AggregationJob:
    kind: AggregateKind = AggregateKind.COUNT
    key: Optional[GroupKey] = None
    where: Optional[Filter] = None
    having_gt: Optional[int] = None
    order_by: Optional[OrderBy] = None
    limit: Optional[int] = None
    k: Optional[int] = None
    distinct_field: Optional[str] = None

    @property
    def effective_order(self) -> Optional[OrderBy]:
        if self.kind == AggregateKind.TOP_K:
            return OrderBy.COUNT_DESC
        return self.order_by

    @property
    def effective_limit(self) -> Optional[int]:
        if self.kind == AggregateKind.TOP_K:
            if self.k is None or self.limit is None:
                return self.k if self.limit is None else self.limit
            return min(self.k, self.limit)
        return self.limit

    def validate(self) -> None:
        if not isinstance(self.kind, AggregateKind):
            raise InvalidJobSpec(f"unknown aggregate kind {self.kind!r}", self)

        if self.key is not None:
            if not isinstance(self.key, GROUP_KEY_TYPES):
                raise InvalidJobSpec(f"unknown group-by key extractor {self.key!r}", self)
            try:
                self.key.validate()
            except ValueError as e:
                raise InvalidJobSpec(f"bad group-by key: {e}", self) from e

        if self.where is not None:
            if not isinstance(self.where, FILTER_TYPES):
                raise InvalidJobSpec(f"malformed filter predicate {self.where!r}", self)
            try:
                self.where.validate()
            except ValueError as e:
                raise InvalidJobSpec(f"malformed filter predicate: {e}", self) from e

        if self.kind == AggregateKind.TOP_K:
            if self.key is None:
                raise InvalidJobSpec("TOP_K needs a group-by key", self)
            if not _positive_int(self.k):
                raise InvalidJobSpec(f"TOP_K needs a positive k, got {self.k!r}", self)
            if self.order_by not in (None, OrderBy.COUNT_DESC):
                raise InvalidJobSpec("TOP_K is always ordered by count", self)
        elif self.k is not None:
            raise InvalidJobSpec("k is only meaningful for TOP_K", self)

        if self.kind == AggregateKind.DISTINCT_COUNT:
            if self.distinct_field not in ENTRY_FIELDS:
                raise InvalidJobSpec(f"DISTINCT_COUNT needs a known distinct_field, got {self.distinct_field!r}", self)
        elif self.distinct_field is not None:
            raise InvalidJobSpec("distinct_field is only meaningful for DISTINCT_COUNT", self)

        if self.having_gt is not None and (not isinstance(self.having_gt, int) or isinstance(self.having_gt, bool)):
            raise InvalidJobSpec(f"HAVING threshold must be an integer, got {self.having_gt!r}", self)
        if self.order_by is not None and not isinstance(self.order_by, OrderBy):
            raise InvalidJobSpec(f"unknown ordering {self.order_by!r}", self)
        if self.limit is not None and not _positive_int(self.limit):
            raise InvalidJobSpec(f"limit must be a positive integer, got {self.limit!r}", self)

    def describe(self) -> str:
        if self.kind == AggregateKind.TOP_K:
            head = f"TOP_K({self.k})"
        elif self.kind == AggregateKind.DISTINCT_COUNT:
            head = f"COUNT(DISTINCT {self.distinct_field})"
        else:
            head = "COUNT(*)"
        parts = [head]
        if self.where is not None and hasattr(self.where, "describe"):
            parts.append(f"WHERE {self.where.describe()}")
        if self.key is not None and hasattr(self.key, "describe"):
            parts.append(f"GROUP BY {self.key.describe()}")
        if self.having_gt is not None:
            parts.append(f"HAVING count > {self.having_gt}")
        order = self.effective_order
        if order == OrderBy.COUNT_DESC:
            parts.append("ORDER BY count DESC")
        elif order == OrderBy.KEY_ASC:
            parts.append("ORDER BY key ASC")
        if self.effective_limit is not None:
            parts.append(f"LIMIT {self.effective_limit}")
        return " ".join(parts)

    def group_of(self, entry: LogEntry):
        return ALL_GROUP if self.key is None else self.key.extract(entry)
