import logging
from enum import Enum

import polars as pl

from .executor import AggregationResult
from .storage import Storage

logger = logging.getLogger(__name__)


class OutputFormat(str, Enum):
    DELIMITED = "delimited"
    NDJSON = "ndjson"


class ResultSink:
    """
    Persists aggregation results, one line per group:
      /index,1800
      /contact,950

    Rows keep the result's order (rank order for TOP_K / ORDER BY). Writing
    to a destination replaces what was there before.
    """

    def __init__(
        self,
        storage: Storage,
        delimiter: str = ",",
        header: bool = False,
        output_format: OutputFormat = OutputFormat.DELIMITED,
    ):
        self._storage = storage
        self.delimiter = delimiter
        self.header = header
        self.output_format = OutputFormat(output_format)

    def to_frame(self, result: AggregationResult) -> pl.DataFrame:
        if not result.groups:
            return pl.DataFrame(schema={"key": pl.Utf8, "value": pl.Int64})
        return pl.DataFrame(
            {"key": list(result.groups.keys()), "value": list(result.groups.values())}
        )

    def render(self, result: AggregationResult) -> bytes:
        df = self.to_frame(result)
        if df.height == 0 and not (self.header and self.output_format == OutputFormat.DELIMITED):
            return b""
        if self.output_format == OutputFormat.NDJSON:
            return df.write_ndjson().encode("utf-8")
        return df.write_csv(include_header=self.header, separator=self.delimiter).encode("utf-8")

    def write(self, result: AggregationResult, destination: str) -> None:
        payload = self.render(result)
        # StoreUnavailable propagates: retry policy belongs to the caller
        self._storage.put(destination, payload)
        logger.info("wrote %d group(s) to %s", len(result.groups), destination)
