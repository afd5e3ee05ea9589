"""Error taxonomy for datalake-hunter.

Every failure raised by the library derives from :class:`HunterError`, which
carries a human-readable message plus an optional ``details`` mapping. The CLI
is the only place that turns these into user-facing messages and exit codes.

    ConfigError        invalid rate, empty corpus, duplicate label, missing input
    FileAccessError    a file could not be opened, read or written
    DecodeError        a persisted filter is malformed
    RemoteError        ApiError | TransportError from the Datalake API
"""
from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, Optional, Union


class HunterError(Exception):
    """Base exception with structured context."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        return {"error": type(self).__name__, "message": self.message, "details": self.details}


class ConfigError(HunterError):
    """Invalid configuration or input. Never retried."""


class InvalidRateError(ConfigError, ValueError):
    def __init__(self, rate: Any):
        self.rate = rate
        super().__init__(
            f"`{rate}` false positive rate needs to be between 0.0 and 1.0 (exclusive)",
            details={"rate": rate},
        )


class EmptyCorpusError(ConfigError):
    """A filter cannot be calibrated from zero values."""

    def __init__(self, source: Optional[str] = None):
        self.source = source
        message = "cannot build a bloom filter from an empty corpus"
        if source:
            message = f"{source}: {message}"
        super().__init__(message, details={"source": source})


class DuplicateLabelError(ConfigError):
    def __init__(self, label: str):
        self.label = label
        super().__init__(f"bloom filter label `{label}` is used more than once", details={"label": label})


class MissingInputError(ConfigError):
    """A required input (file, token, credential) was not provided."""


class FileAccessError(HunterError):
    """Opening, reading or writing ``path`` failed."""

    def __init__(self, path: Union[str, Path], reason: str):
        self.path = Path(path)
        self.reason = reason
        super().__init__(f"{self.path}: {reason}", details={"path": str(self.path)})


class DecodeError(HunterError):
    """Bytes are not a well-formed bloom filter blob."""

    def __init__(self, message: str, path: Optional[Union[str, Path]] = None):
        self.path = Path(path) if path is not None else None
        if self.path is not None:
            message = f"{self.path}: {message}"
        super().__init__(message, details={"path": str(self.path) if self.path else None})


class RemoteError(HunterError):
    """Failure reported by, or while reaching, the Datalake API.

    Only the two subclasses below are ever raised.
    """


class ApiError(RemoteError):
    """The API answered with an error status."""

    def __init__(self, summary: str, detail: Optional[str] = None, status_code: Optional[int] = None):
        self.summary = summary
        self.detail = detail
        self.status_code = status_code
        message = summary if not detail else f"{summary}: {detail}"
        super().__init__(message, details={"status_code": status_code, "detail": detail})


class TransportError(RemoteError):
    """The request never produced a response (connection, TLS, timeout)."""

    def __init__(self, cause: BaseException):
        self.cause = cause
        super().__init__(f"request failed: {cause}", details={"cause": type(cause).__name__})
