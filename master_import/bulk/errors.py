"""Error taxonomy of the import pipeline.

Every fatal condition is an ``ImportSystemError`` subclass carrying a stable
``code``. Row-level validation problems are not exceptions; they are
``ValidationIssue`` records collected by the validation engine.
"""

from typing import Any, Dict, List, Optional


class ImportSystemError(Exception):
    code = "IMPORT_ERROR"

    def __init__(
        self,
        message: str,
        *,
        code: Optional[str] = None,
        row_number: Optional[int] = None,
        field: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        self.row_number = row_number
        self.field = field
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"code": self.code, "message": self.message}
        if self.row_number is not None:
            payload["row"] = self.row_number
        if self.field:
            payload["field"] = self.field
        if self.details:
            payload["details"] = self.details
        return payload


class UnknownModuleError(ImportSystemError):
    code = "UNKNOWN_MODULE"


class UnsupportedFormatError(ImportSystemError):
    code = "UNSUPPORTED_FORMAT"


class FileTooLargeError(ImportSystemError):
    code = "FILE_TOO_LARGE"


class RowLimitExceededError(ImportSystemError):
    code = "ROW_LIMIT_EXCEEDED"


class MissingColumnsError(ImportSystemError):
    code = "MISSING_REQUIRED_COLUMN"


class DuplicateModuleError(ImportSystemError):
    code = "DUPLICATE_MODULE"


class MissingDependencyError(ImportSystemError):
    code = "MISSING_DEPENDENCY"


class CyclicDependencyError(ImportSystemError):
    code = "CYCLIC_DEPENDENCY"

    def __init__(self, cycle: List[str]) -> None:
        self.cycle = list(cycle)
        super().__init__(
            "Circular dependency detected: " + " -> ".join(self.cycle),
            details={"cycle": self.cycle},
        )


class SessionNotFoundError(ImportSystemError):
    code = "SESSION_NOT_FOUND"


class SessionExpiredError(ImportSystemError):
    code = "SESSION_EXPIRED"


class InvalidStateError(ImportSystemError):
    code = "INVALID_STATE"


class ValidationBlockedError(ImportSystemError):
    code = "VALIDATION_ERRORS"


class BatchInsertError(ImportSystemError):
    code = "DATABASE_ERROR"


class BatchNotFoundError(ImportSystemError):
    code = "BATCH_NOT_FOUND"


class RollbackNotSupportedError(ImportSystemError):
    code = "ROLLBACK_NOT_SUPPORTED"


class RollbackFailedError(ImportSystemError):
    code = "ROLLBACK_FAILED"
