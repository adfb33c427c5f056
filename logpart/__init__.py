from .config import Settings
from .errors import InvalidJobSpec, LogPartError, QueryTimeout, StoreUnavailable
from .executor import AggregationExecutor, AggregationResult
from .jobs import (
    AggregateKind,
    AggregationJob,
    AllOf,
    FieldEquals,
    FieldKey,
    OrderBy,
    StatusClassKey,
    StatusIn,
    TimeBucketKey,
    TimestampRange,
    UrlPrefix,
)
from .parser import LogEntry, ParseFailure, ParseReason, RecordParser, parse_line
from .pipeline import IngestReport, Pipeline
from .sink import OutputFormat, ResultSink
from .storage import LocalStorage, S3Storage, Storage, open_storage
from .store import DEFAULT_PARTITION, PartitionedStore
from .writer import PartitionRef, PartitionWriter

__version__ = "0.1.0"
