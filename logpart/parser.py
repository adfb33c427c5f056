import re
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union

FIELD_COUNT = 5
MIN_STATUS = 100
MAX_STATUS = 599
DEFAULT_TIMESTAMP_WIDTH = len("2025-02-25 13:00:15")

STATUS_PATTERN = re.compile(r"^[0-9]{3}$")
# bytes the source encoding could not decode, carried through by surrogateescape
UNDECODABLE_PATTERN = re.compile("[\udc80-\udcff]")


class ParseReason(str, Enum):
    MALFORMED_DELIMITERS = "MALFORMED_DELIMITERS"
    INVALID_STATUS = "INVALID_STATUS"
    MISSING_FIELD = "MISSING_FIELD"


@dataclass(frozen=True)
class LogEntry:
    """One access-log record: client, timestamp, url, status, user agent.

    The timestamp is kept exactly as it appeared in the input so that
    lexical ordering and prefix bucketing work without a calendar library.
    """
    client_address: str
    timestamp: str
    url: str
    status_code: int
    user_agent: str


@dataclass(frozen=True)
class ParseFailure:
    raw: str
    reason: ParseReason


ParseResult = Union[LogEntry, ParseFailure]


def parse_line(
    raw: str,
    delimiter: str = ",",
    timestamp_width: Optional[int] = DEFAULT_TIMESTAMP_WIDTH,
    strict_field_count: bool = False,
) -> ParseResult:
    """
    Parse one delimited line:
      192.168.0.1,2025-02-25 13:00:15,/index,200,Firefox/98.0

    Fields beyond the fifth belong to the user agent unless
    strict_field_count is set, in which case the line is rejected.
    """
    line = raw.rstrip("\r\n")
    if not line.strip():
        return ParseFailure(raw, ParseReason.MALFORMED_DELIMITERS)
    if UNDECODABLE_PATTERN.search(line):
        return ParseFailure(raw, ParseReason.MALFORMED_DELIMITERS)

    fields = line.split(delimiter)
    if len(fields) < FIELD_COUNT:
        return ParseFailure(raw, ParseReason.MISSING_FIELD)
    if len(fields) > FIELD_COUNT:
        if strict_field_count:
            return ParseFailure(raw, ParseReason.MALFORMED_DELIMITERS)
        fields = fields[:FIELD_COUNT - 1] + [delimiter.join(fields[FIELD_COUNT - 1:])]

    client_address, timestamp, url, status, user_agent = (f.strip() for f in fields)
    if not STATUS_PATTERN.match(status):
        return ParseFailure(raw, ParseReason.INVALID_STATUS)
    status_code = int(status)
    if not MIN_STATUS <= status_code <= MAX_STATUS:
        return ParseFailure(raw, ParseReason.INVALID_STATUS)

    if not client_address or not timestamp or not url:
        return ParseFailure(raw, ParseReason.MISSING_FIELD)

    if timestamp_width is not None and len(timestamp) != timestamp_width:
        return ParseFailure(raw, ParseReason.MALFORMED_DELIMITERS)

    return LogEntry(
        client_address=client_address,
        timestamp=timestamp,
        url=url,
        status_code=status_code,
        user_agent=user_agent,
    )


class RecordParser:
    """parse_line bound to one ingestion run's settings."""

    def __init__(
        self,
        delimiter: str = ",",
        timestamp_width: Optional[int] = DEFAULT_TIMESTAMP_WIDTH,
        strict_field_count: bool = False,
    ):
        if not delimiter:
            raise ValueError("delimiter must be a non-empty string")
        self.delimiter = delimiter
        self.timestamp_width = timestamp_width
        self.strict_field_count = strict_field_count

    def parse(self, raw: str) -> ParseResult:
        return parse_line(
            raw,
            delimiter=self.delimiter,
            timestamp_width=self.timestamp_width,
            strict_field_count=self.strict_field_count,
        )
