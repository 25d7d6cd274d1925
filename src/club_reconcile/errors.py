from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

ROW_PARSE_ERROR = "ROW_PARSE_ERROR"
EXTERNAL_ID_ALREADY_LINKED = "EXTERNAL_ID_ALREADY_LINKED"
PROFILE_ALREADY_LINKED = "PROFILE_ALREADY_LINKED"
PROFILE_NOT_FOUND = "PROFILE_NOT_FOUND"
SOURCE_UNAVAILABLE = "SOURCE_UNAVAILABLE"
INVALID_JOB_TRANSITION = "INVALID_JOB_TRANSITION"
INVALID_CURSOR = "INVALID_CURSOR"


class ReconcileError(Exception):
    """Base error carrying a stable machine-readable code."""

    code = "RECONCILE_ERROR"

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        self.details: Dict[str, Any] = dict(details or {})

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message, "details": dict(self.details)}


class RowParseError(ReconcileError):
    code = ROW_PARSE_ERROR

    def __init__(self, row: int, field: str, message: str) -> None:
        super().__init__(message, details={"row": row, "field": field})
        self.row = row
        self.field = field


class ConflictingLinkError(ReconcileError):
    code = EXTERNAL_ID_ALREADY_LINKED


class ProfileNotFoundError(ReconcileError):
    code = PROFILE_NOT_FOUND


class SourceUnavailableError(ReconcileError):
    code = SOURCE_UNAVAILABLE

    def __init__(self, source: str, reason: str) -> None:
        super().__init__(f"{source} unavailable: {reason}", details={"source": source})
        self.source = source
        self.reason = reason


class InvalidJobTransition(ReconcileError):
    code = INVALID_JOB_TRANSITION


class InvalidCursorError(ReconcileError):
    code = INVALID_CURSOR


@dataclass(frozen=True)
class RowError:
    row: int
    field: str
    message: str
    code: str = ROW_PARSE_ERROR

    @staticmethod
    def from_exception(exc: RowParseError) -> "RowError":
        return RowError(row=exc.row, field=exc.field, message=exc.message, code=exc.code)

    def to_dict(self) -> Dict[str, Any]:
        return {"row": self.row, "field": self.field, "code": self.code, "message": self.message}
