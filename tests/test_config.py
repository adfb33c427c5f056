import pytest

from logpart.config import Settings


def test_defaults():
    settings = Settings.from_env({})
    assert settings == Settings()
    assert settings.delimiter == ","
    assert settings.timestamp_width == 19
    assert settings.query_timeout is None


def test_environment_overrides_are_coerced():
    settings = Settings.from_env({
        "LOGPART_STORAGE": "s3://logs/access",
        "LOGPART_DELIMITER": "|",
        "LOGPART_SEGMENT_MAX_RECORDS": "5000",
        "LOGPART_STRICT_FIELD_COUNT": "yes",
        "LOGPART_RETAIN_FAILURES": "0",
        "LOGPART_QUERY_TIMEOUT": "2.5",
        "LOGPART_TIMESTAMP_WIDTH": "none",
    })
    assert settings.storage == "s3://logs/access"
    assert settings.delimiter == "|"
    assert settings.segment_max_records == 5000
    assert settings.strict_field_count is True
    assert settings.retain_failures is False
    assert settings.query_timeout == 2.5
    assert settings.timestamp_width is None


@pytest.mark.parametrize("name, value", [
    ("LOGPART_BATCH_SIZE", "lots"),
    ("LOGPART_RETAIN_FAILURES", "maybe"),
])
def test_bad_environment_values_are_rejected(name, value):
    with pytest.raises(ValueError):
        Settings.from_env({name: value})


def test_overrides_skip_unset_values():
    settings = Settings().with_overrides(max_workers=2, storage=None)
    assert settings.max_workers == 2
    assert settings.storage == Settings().storage
