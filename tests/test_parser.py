import pytest

from logpart.parser import LogEntry, ParseFailure, ParseReason, RecordParser, parse_line


def test_parses_well_formed_line(line):
    entry = parse_line(line())
    assert entry == LogEntry(
        client_address="192.168.0.1",
        timestamp="2025-02-25 13:00:15",
        url="/index",
        status_code=200,
        user_agent="Firefox/98.0",
    )


def test_trailing_newline_is_ignored(line):
    entry = parse_line(line() + "\r\n")
    assert isinstance(entry, LogEntry)
    assert entry.user_agent == "Firefox/98.0"


@pytest.mark.parametrize("raw", [
    "192.168.0.1",
    "192.168.0.1,2025-02-25 13:00:15",
    "192.168.0.1,2025-02-25 13:00:15,/index",
    "192.168.0.1,2025-02-25 13:00:15,/index,200",
])
def test_fewer_than_five_fields_is_missing_field(raw):
    result = parse_line(raw)
    assert isinstance(result, ParseFailure)
    assert result.reason == ParseReason.MISSING_FIELD
    assert result.raw == raw


@pytest.mark.parametrize("field", ["ip", "ts", "url"])
def test_empty_required_field_is_missing_field(line, field):
    result = parse_line(line(**{field: ""}))
    assert result.reason == ParseReason.MISSING_FIELD


@pytest.mark.parametrize("status", ["99", "600", "000", "099", "abc", "20", "2000", "-200", "+20", "", "2.0", "1e2"])
def test_status_outside_range_or_not_numeric_is_invalid(line, status):
    result = parse_line(line(status=status))
    assert isinstance(result, ParseFailure)
    assert result.reason == ParseReason.INVALID_STATUS


@pytest.mark.parametrize("field", ["ip", "ts", "url"])
@pytest.mark.parametrize("status", ["999", "42", "abc"])
def test_bad_status_wins_over_an_empty_field(line, field, status):
    result = parse_line(line(status=status, **{field: ""}))
    assert result.reason == ParseReason.INVALID_STATUS


@pytest.mark.parametrize("status", [100, 200, 404, 599])
def test_status_range_is_inclusive(line, status):
    assert parse_line(line(status=status)).status_code == status


@pytest.mark.parametrize("raw", ["", "   ", "\n"])
def test_empty_line_is_malformed(raw):
    assert parse_line(raw).reason == ParseReason.MALFORMED_DELIMITERS


def test_user_agent_keeps_embedded_delimiters(line):
    entry = parse_line(line(agent="Mozilla/5.0 (KHTML, like Gecko)"))
    assert entry.user_agent == "Mozilla/5.0 (KHTML, like Gecko)"


def test_strict_field_count_rejects_extra_fields(line):
    result = parse_line(line(agent="Mozilla/5.0 (KHTML, like Gecko)"), strict_field_count=True)
    assert result.reason == ParseReason.MALFORMED_DELIMITERS


def test_inconsistent_timestamp_width_is_malformed(line):
    assert parse_line(line(ts="2025-02-25 13:00")).reason == ParseReason.MALFORMED_DELIMITERS
    assert parse_line(line(ts="2025-02-25T13:00:15.123Z")).reason == ParseReason.MALFORMED_DELIMITERS


def test_timestamp_width_check_can_be_disabled(line):
    entry = parse_line(line(ts="2025-02-25T13:00:15.123Z"), timestamp_width=None)
    assert entry.timestamp == "2025-02-25T13:00:15.123Z"


def test_record_parser_uses_configured_delimiter():
    parser = RecordParser(delimiter="|")
    entry = parser.parse("10.0.0.1|2025-02-25 13:00:15|/a,b|503|curl/8.4.0")
    assert entry.url == "/a,b"
    assert entry.status_code == 503


def test_record_parser_rejects_empty_delimiter():
    with pytest.raises(ValueError):
        RecordParser(delimiter="")


def test_entries_are_immutable(line):
    entry = parse_line(line())
    with pytest.raises(AttributeError):
        entry.status_code = 500


def test_undecodable_bytes_are_malformed():
    raw = b"192.168.0.1,2025-02-25 13:00:15,/caf\xe9,200,Firefox/98.0".decode("utf-8", errors="surrogateescape")
    assert parse_line(raw).reason == ParseReason.MALFORMED_DELIMITERS
