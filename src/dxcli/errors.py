"""Error taxonomy for the describe pipeline."""

from __future__ import annotations


class DxError(Exception):
    """Base error with code and message."""

    def __init__(self, code: str, message: str, status_code: int = 0):
        self.code = code
        self.message = message
        self.status_code = status_code
        super().__init__(f"{code}: {message}")


class ParseError(DxError):
    """Raw identifier string could not be parsed."""

    UNKNOWN_CLASS = "UNKNOWN_CLASS"
    MALFORMED = "MALFORMED"


class GatewayError(DxError):
    """Fetch failure, classified by ``kind``.

    ``unauthorized`` is fatal to a whole batch, ``transient`` may be retried,
    the rest are local to one identifier.
    """

    NOT_FOUND = "not_found"
    UNAUTHORIZED = "unauthorized"
    TRANSIENT = "transient"
    MALFORMED = "malformed"
    REJECTED = "rejected"

    def __init__(
        self,
        kind: str,
        code: str,
        message: str,
        status_code: int = 0,
        retry_after: float | None = None,
    ):
        self.kind = kind
        self.retry_after = retry_after
        super().__init__(code, message, status_code)

    @property
    def fatal(self) -> bool:
        return self.kind == self.UNAUTHORIZED

    @property
    def retryable(self) -> bool:
        return self.kind == self.TRANSIENT


class NormalizeError(DxError):
    """Payload violates the class contract."""

    MISSING_REQUIRED_FIELD = "MISSING_REQUIRED_FIELD"
    BAD_TIMESTAMP = "BAD_TIMESTAMP"
    BAD_REFERENCE = "BAD_REFERENCE"
    CLASS_MISMATCH = "CLASS_MISMATCH"
    ID_MISMATCH = "ID_MISMATCH"

    @classmethod
    def missing(cls, field: str) -> "NormalizeError":
        return cls(cls.MISSING_REQUIRED_FIELD, f"missing required field: {field}")
