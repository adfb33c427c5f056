"""Run settings.

Defaults live on the dataclass; LOGPART_* environment variables override
them, and CLI flags override both.
"""
import os
from dataclasses import dataclass, fields, replace
from typing import Mapping, Optional

from .parser import DEFAULT_TIMESTAMP_WIDTH
from .writer import DEFAULT_SEGMENT_MAX_BYTES, DEFAULT_SEGMENT_MAX_RECORDS

ENV_PREFIX = "LOGPART_"


@dataclass(frozen=True)
class Settings:
    storage: str = "./logpart-data"
    delimiter: str = ","
    encoding: str = "utf-8"
    timestamp_width: Optional[int] = DEFAULT_TIMESTAMP_WIDTH
    strict_field_count: bool = False
    segment_max_bytes: int = DEFAULT_SEGMENT_MAX_BYTES
    segment_max_records: int = DEFAULT_SEGMENT_MAX_RECORDS
    batch_size: int = 10_000
    max_workers: int = 8
    query_timeout: Optional[float] = None
    retain_failures: bool = True

    @classmethod
    def from_env(cls, environ: Mapping[str, str] = None) -> "Settings":
        environ = os.environ if environ is None else environ
        overrides = {}
        for f in fields(cls):
            raw = environ.get(ENV_PREFIX + f.name.upper())
            if raw is not None:
                overrides[f.name] = _coerce(f.name, f.default, raw)
        return cls(**overrides)

    def with_overrides(self, **overrides) -> "Settings":
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})


def _coerce(name: str, default, raw: str):
    if isinstance(default, bool):
        lowered = raw.strip().lower()
        if lowered in ("1", "true", "yes", "on"):
            return True
        if lowered in ("0", "false", "no", "off"):
            return False
        raise ValueError(f"{ENV_PREFIX}{name.upper()} must be a boolean, got {raw!r}")
    if name in ("timestamp_width", "query_timeout") and raw.strip().lower() in ("", "none"):
        return None
    try:
        if name == "query_timeout":
            return float(raw)
        if isinstance(default, int) or name == "timestamp_width":
            return int(raw)
    except ValueError as e:
        raise ValueError(f"{ENV_PREFIX}{name.upper()}: {e}") from e
    return raw
