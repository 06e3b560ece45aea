"""Error taxonomy for the log store, metadata tables and range queries.

Only write-side problems reach callers as failures. Read-side problems
(missing day-file, corrupt JSON, bad date range) are turned into empty results
by the component that detects them.
"""
from __future__ import annotations

from pathlib import Path
from typing import Any, Union


class NeedleLogError(Exception):
    """Base class for every error raised by needle_api."""


class InvalidDateRange(NeedleLogError, ValueError):
    """Start/end date missing, not YYYY-MM-DD, or start after end."""

    def __init__(self, start: Any, end: Any, reason: str = "invalid date range"):
        self.start = start
        self.end = end
        super().__init__(f"{reason}: start={start!r} end={end!r}")


class MissingRequiredField(NeedleLogError, ValueError):
    """A write was attempted without one of its mandatory fields."""

    def __init__(self, *fields: str, message: str | None = None):
        self.fields = tuple(fields)
        super().__init__(message or f"Missing required fields: {', '.join(fields)}")


class InvalidLogField(MissingRequiredField):
    """A mandatory field is present but cannot be used (e.g. unparsable timestamp)."""

    def __init__(self, field: str, value: Any):
        self.value = value
        super().__init__(field, message=f"Invalid value for {field}: {value!r}")


class FileParseFailure(NeedleLogError):
    """A JSON file exists but does not hold a JSON array."""

    def __init__(self, path: Union[str, Path], cause: Any = None):
        self.path = Path(path)
        self.cause = cause
        super().__init__(f"cannot parse {self.path}: {cause}")


class DuplicateRecord(NeedleLogError):
    def __init__(self, kind: str, record_id: Any):
        self.kind = kind
        self.record_id = record_id
        super().__init__(f"{kind}: id {record_id!r} already exists")


class RecordNotFound(NeedleLogError, LookupError):
    def __init__(self, kind: str, record_id: Any):
        self.kind = kind
        self.record_id = record_id
        super().__init__(f"{kind}: id {record_id!r} not found")
