"""Contract implemented by every per-domain import service."""

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Tuple

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from master_import.bulk.columns import TemplateColumn
from master_import.bulk.errors import BatchInsertError, RollbackFailedError
from master_import.bulk.types import ImportOptions, ImportServiceMetadata, InsertResult, RowFailure, ValidationIssue

logger = logging.getLogger("master_import.bulk")

Row = Dict[str, Any]
NumberedRow = Tuple[int, Row]


class BaseImportService(ABC):
    """One master-data domain that can be imported from a spreadsheet.

    ``validate_row`` must only read. ``insert_batch`` runs inside the
    transaction opened by the orchestrator and must stamp ``import_batch_id``
    on every row it writes. ``perform_rollback`` deletes only rows carrying the
    given batch id and returns 0 when there is nothing left to delete.
    """

    @abstractmethod
    def get_metadata(self) -> ImportServiceMetadata:
        raise NotImplementedError

    @abstractmethod
    def get_template_columns(self) -> List[TemplateColumn]:
        raise NotImplementedError

    def unique_columns(self) -> List[str]:
        return []

    @abstractmethod
    def validate_row(self, db: Session, row: Row, row_number: int) -> List[ValidationIssue]:
        raise NotImplementedError

    @abstractmethod
    def insert_batch(self, db: Session, rows: List[NumberedRow], batch_id: str, options: ImportOptions) -> InsertResult:
        raise NotImplementedError

    @abstractmethod
    def perform_rollback(self, db: Session, batch_id: str) -> int:
        raise NotImplementedError

    @property
    def module_name(self) -> str:
        return self.get_metadata().module


def _failure_code(exc: SQLAlchemyError) -> str:
    if isinstance(exc, IntegrityError):
        return "CONSTRAINT_VIOLATION"
    return "DATABASE_ERROR"


def _driver_message(exc: SQLAlchemyError) -> str:
    orig = getattr(exc, "orig", None)
    return str(orig) if orig is not None else exc.__class__.__name__


class TableImportService(BaseImportService):
    """Import service writing one ORM model per row.

    Subclasses provide ``model`` and ``build_entity``.
    """

    model: Any = None

    @abstractmethod
    def build_entity(self, db: Session, row: Row, batch_id: str):
        raise NotImplementedError

    def insert_batch(self, db: Session, rows: List[NumberedRow], batch_id: str, options: ImportOptions) -> InsertResult:
        result = InsertResult()
        for row_number, row in rows:
            if options.continue_on_error:
                try:
                    with db.begin_nested():
                        entity = self.build_entity(db, row, batch_id)
                        db.add(entity)
                        db.flush()
                except SQLAlchemyError as exc:
                    logger.warning(
                        "row insert failed module=%s row=%s error=%s",
                        self.module_name,
                        row_number,
                        _driver_message(exc),
                    )
                    result.failures.append(
                        RowFailure(row=row_number, code=_failure_code(exc), message=_driver_message(exc))
                    )
                    continue
                except BatchInsertError as exc:
                    result.failures.append(RowFailure(row=row_number, code=exc.code, message=exc.message))
                    continue
            else:
                try:
                    entity = self.build_entity(db, row, batch_id)
                    db.add(entity)
                    db.flush()
                except SQLAlchemyError as exc:
                    raise BatchInsertError(
                        f"Row {row_number} could not be inserted: {_driver_message(exc)}",
                        code=_failure_code(exc),
                        row_number=row_number,
                    ) from exc
                except BatchInsertError as exc:
                    if exc.row_number is None:
                        exc.row_number = row_number
                    raise
            result.entities.append(entity)
        return result

    def perform_rollback(self, db: Session, batch_id: str) -> int:
        try:
            deleted = (
                db.query(self.model)
                .filter(self.model.import_batch_id == batch_id)
                .delete(synchronize_session=False)
            )
            db.flush()
        except SQLAlchemyError as exc:
            raise RollbackFailedError(
                f"Rollback of {self.module_name} failed: {_driver_message(exc)}",
                details={"batch_id": batch_id},
            ) from exc
        return deleted
