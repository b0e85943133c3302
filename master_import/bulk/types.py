from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional, Tuple

ERROR = "ERROR"
WARNING = "WARNING"


class SessionState:
    CREATED = "created"
    VALIDATING = "validating"
    VALIDATED = "validated"
    EXECUTING = "executing"
    COMPLETED = "completed"
    FAILED = "failed"
    ROLLED_BACK = "rolled_back"
    CANCELLED = "cancelled"

    EXPIRABLE = (CREATED, VALIDATED)


class BatchStatus:
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    ROLLED_BACK = "rolled_back"


class RegistryStatus:
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    ERROR = "error"


@dataclass(frozen=True)
class ValidationIssue:
    row: int
    field: str
    message: str
    severity: str = ERROR
    code: str = "INVALID_VALUE"

    @property
    def is_error(self) -> bool:
        return self.severity == ERROR

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "ValidationIssue":
        return cls(
            row=int(payload["row"]),
            field=payload.get("field") or "",
            message=payload.get("message") or "",
            severity=payload.get("severity") or ERROR,
            code=payload.get("code") or "INVALID_VALUE",
        )


def error(row: int, field: str, message: str, code: str) -> ValidationIssue:
    return ValidationIssue(row=row, field=field, message=message, severity=ERROR, code=code)


def warning(row: int, field: str, message: str, code: str) -> ValidationIssue:
    return ValidationIssue(row=row, field=field, message=message, severity=WARNING, code=code)


@dataclass(frozen=True)
class ImportServiceMetadata:
    module: str
    domain: str
    display_name: str
    description: str = ""
    subdomain: Optional[str] = None
    dependencies: Tuple[str, ...] = ()
    priority: int = 100
    tags: Tuple[str, ...] = ()
    supports_rollback: bool = False
    version: str = "1.0.0"

    def to_dict(self) -> Dict[str, Any]:
        payload = asdict(self)
        payload["dependencies"] = list(self.dependencies)
        payload["tags"] = list(self.tags)
        return payload


@dataclass
class ValidationResult:
    session_id: str
    module_name: str
    errors: List[ValidationIssue] = field(default_factory=list)
    warnings: List[ValidationIssue] = field(default_factory=list)
    total_rows: int = 0
    valid_rows: int = 0
    error_rows: int = 0

    @property
    def is_valid(self) -> bool:
        return not self.errors

    def error_row_numbers(self) -> List[int]:
        return sorted({issue.row for issue in self.errors})

    def to_dict(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "module_name": self.module_name,
            "is_valid": self.is_valid,
            "errors": [issue.to_dict() for issue in self.errors],
            "warnings": [issue.to_dict() for issue in self.warnings],
            "total_rows": self.total_rows,
            "valid_rows": self.valid_rows,
            "error_rows": self.error_rows,
        }

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "ValidationResult":
        return cls(
            session_id=payload["session_id"],
            module_name=payload["module_name"],
            errors=[ValidationIssue.from_dict(item) for item in payload.get("errors", [])],
            warnings=[ValidationIssue.from_dict(item) for item in payload.get("warnings", [])],
            total_rows=payload.get("total_rows", 0),
            valid_rows=payload.get("valid_rows", 0),
            error_rows=payload.get("error_rows", 0),
        )


@dataclass(frozen=True)
class ImportOptions:
    continue_on_error: bool = False
    batch_size: Optional[int] = None
    revalidate: bool = False
    imported_by: Optional[str] = None


@dataclass(frozen=True)
class RowFailure:
    row: int
    code: str
    message: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class InsertResult:
    entities: List[Any] = field(default_factory=list)
    failures: List[RowFailure] = field(default_factory=list)


@dataclass
class ImportResult:
    batch_id: str
    session_id: str
    module_name: str
    status: str
    rows_attempted: int = 0
    rows_inserted: int = 0
    rows_failed: int = 0
    rows_skipped: int = 0
    chunks_total: int = 0
    chunks_completed: int = 0
    failures: List[RowFailure] = field(default_factory=list)
    error_message: Optional[str] = None
    error_code: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        payload = asdict(self)
        payload["failures"] = [failure.to_dict() for failure in self.failures]
        return payload


@dataclass
class RollbackResult:
    batch_id: str
    module_name: str
    rows_deleted: int
    status: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class MultiImportResult:
    order: List[str] = field(default_factory=list)
    results: Dict[str, ImportResult] = field(default_factory=dict)
    skipped: List[str] = field(default_factory=list)
    halted: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "order": list(self.order),
            "results": {name: result.to_dict() for name, result in self.results.items()},
            "skipped": list(self.skipped),
            "halted": self.halted,
        }
