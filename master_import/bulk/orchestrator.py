"""Import job lifecycle: session, validation, chunked execution, rollback.

Session states move ``created -> validating -> validated -> executing ->
completed | failed -> rolled_back``; ``cancelled`` is reachable from
``created`` and ``validated`` only. Each execution chunk runs in its own
transaction, and the history row is updated in that same transaction so a
crashed worker leaves an accurate trail.
"""

import logging
import time
import uuid
from datetime import datetime, timedelta
from typing import Callable, Iterable, List, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from master_import.bulk.errors import (
    BatchInsertError,
    BatchNotFoundError,
    ImportSystemError,
    InvalidStateError,
    RollbackFailedError,
    RollbackNotSupportedError,
    SessionExpiredError,
    SessionNotFoundError,
    ValidationBlockedError,
)
from master_import.bulk.parser import parse_upload, to_records
from master_import.bulk.registry import ServiceRegistry
from master_import.bulk.service import BaseImportService, NumberedRow
from master_import.bulk.storage import StorageClient, StorageError
from master_import.bulk.templates import build_error_report
from master_import.bulk.types import (
    BatchStatus,
    ImportOptions,
    ImportResult,
    MultiImportResult,
    RegistryStatus,
    RollbackResult,
    RowFailure,
    SessionState,
    ValidationResult,
)
from master_import.bulk.validation import normalize_row, validate_rows
from master_import.core.config import MIME_TYPES, ImportConfig
from master_import.db import models

logger = logging.getLogger("master_import.bulk")


class ImportOrchestrator:
    def __init__(
        self,
        registry: ServiceRegistry,
        config: Optional[ImportConfig] = None,
        storage: Optional[StorageClient] = None,
        clock: Callable[[], datetime] = datetime.utcnow,
    ) -> None:
        self.registry = registry
        self.config = config or ImportConfig()
        self.storage = storage
        self.clock = clock

    # sessions

    def create_session(
        self,
        db: Session,
        module_name: str,
        content: bytes,
        file_name: str,
        created_by: Optional[str] = None,
        file_url: Optional[str] = None,
    ) -> models.ImportSession:
        service = self.registry.get_service(module_name)
        parsed = parse_upload(
            content,
            file_name,
            max_rows=self.config.max_rows,
            max_bytes=self.config.max_file_size_bytes,
            supported_formats=self.config.supported_formats,
        )
        records = to_records(parsed, service.get_template_columns())

        session_id = str(uuid.uuid4())
        if file_url is None and self.storage is not None:
            file_url = self._retain_upload(module_name, session_id, file_name, parsed.file_type, content)

        now = self.clock()
        session = models.ImportSession(
            id=session_id,
            module_name=module_name,
            state=SessionState.CREATED,
            file_name=file_name,
            file_type=parsed.file_type,
            file_size_bytes=len(content),
            file_url=file_url,
            headers_json=parsed.headers,
            rows_json=records,
            created_by=created_by,
            created_at=now,
            expires_at=now + timedelta(minutes=self.config.session_ttl_minutes),
        )
        db.add(session)
        db.commit()
        logger.info(
            "import session created module=%s session_id=%s rows=%s file=%s",
            module_name,
            session_id,
            len(records),
            file_name,
        )
        return session

    def create_session_from_file(
        self,
        db: Session,
        module_name: str,
        file_url: str,
        file_name: Optional[str] = None,
        created_by: Optional[str] = None,
    ) -> models.ImportSession:
        storage = self.storage or StorageClient()
        try:
            content = storage.download_bytes(file_url)
        except StorageError as exc:
            raise ImportSystemError(str(exc), code="STORAGE_ERROR", details={"file_url": file_url}) from exc
        name = file_name or file_url.rstrip("/").rsplit("/", 1)[-1]
        return self.create_session(db, module_name, content, name, created_by=created_by, file_url=file_url)

    def _retain_upload(self, module_name: str, session_id: str, file_name: str, file_type: str, content: bytes) -> str:
        mime = MIME_TYPES.get(file_type, ("application/octet-stream",))[0]
        dest = f"imports/{module_name}/{session_id}.{file_type}"
        try:
            return self.storage.upload_bytes(content, dest, mime)
        except StorageError as exc:
            raise ImportSystemError(str(exc), code="STORAGE_ERROR", details={"file_name": file_name}) from exc

    def _load_session(self, db: Session, session_id: str) -> models.ImportSession:
        session = db.query(models.ImportSession).filter(models.ImportSession.id == session_id).first()
        if not session:
            raise SessionNotFoundError(f"Import session '{session_id}' not found", details={"session_id": session_id})
        return session

    def get_session(self, db: Session, session_id: str) -> models.ImportSession:
        session = self._load_session(db, session_id)
        if session.state in SessionState.EXPIRABLE and session.expires_at <= self.clock():
            raise SessionExpiredError(
                f"Import session '{session_id}' has expired",
                details={"session_id": session_id, "expired_at": session.expires_at.isoformat()},
            )
        return session

    def cancel_session(self, db: Session, session_id: str) -> models.ImportSession:
        session = self.get_session(db, session_id)
        if session.state not in SessionState.EXPIRABLE:
            raise InvalidStateError(
                f"Session in state '{session.state}' cannot be cancelled",
                details={"session_id": session_id, "state": session.state},
            )
        session.state = SessionState.CANCELLED
        db.commit()
        logger.info("import session cancelled session_id=%s", session_id)
        return session

    def purge_expired_sessions(self, db: Session) -> int:
        purged = (
            db.query(models.ImportSession)
            .filter(
                models.ImportSession.expires_at <= self.clock(),
                models.ImportSession.state != SessionState.EXECUTING,
            )
            .delete(synchronize_session=False)
        )
        db.commit()
        if purged:
            logger.info("import sessions purged count=%s", purged)
        return purged

    # validation

    def validate(self, db: Session, session_id: str) -> ValidationResult:
        session = self.get_session(db, session_id)
        if session.state not in SessionState.EXPIRABLE:
            raise InvalidStateError(
                f"Session in state '{session.state}' cannot be validated",
                details={"session_id": session_id, "state": session.state},
            )
        service = self.registry.get_service(session.module_name)
        previous = session.state
        session.state = SessionState.VALIDATING
        db.commit()

        try:
            result = validate_rows(
                db,
                service,
                session.rows_json or [],
                self.config.validation_chunk_size,
                session_id=session.id,
            )
        except Exception:
            logger.exception("import validation failed session_id=%s", session_id)
            db.rollback()
            session.state = previous
            db.commit()
            raise

        session.validation_json = result.to_dict()
        session.state = SessionState.VALIDATED
        db.commit()
        logger.info(
            "import validated module=%s session_id=%s total=%s valid=%s errors=%s warnings=%s",
            session.module_name,
            session_id,
            result.total_rows,
            result.valid_rows,
            len(result.errors),
            len(result.warnings),
        )
        return result

    def get_validation(self, db: Session, session_id: str) -> ValidationResult:
        session = self._load_session(db, session_id)
        if not session.validation_json:
            raise InvalidStateError("Session has not been validated yet", details={"session_id": session_id})
        return ValidationResult.from_dict(session.validation_json)

    def build_error_report(self, db: Session, session_id: str) -> Tuple[bytes, str]:
        session = self._load_session(db, session_id)
        validation = self.get_validation(db, session_id)
        service = self.registry.get_service(session.module_name)
        return build_error_report(service, session.rows_json or [], validation)

    # execution

    def execute(self, db: Session, session_id: str, options: Optional[ImportOptions] = None) -> ImportResult:
        options = options or ImportOptions()
        session = self.get_session(db, session_id)
        if session.state != SessionState.VALIDATED:
            raise InvalidStateError(
                f"Session must be validated before execution (state '{session.state}')",
                details={"session_id": session_id, "state": session.state},
            )
        validation = ValidationResult.from_dict(session.validation_json)
        if validation.errors and not options.continue_on_error:
            raise ValidationBlockedError(
                f"{validation.error_rows} row(s) have validation errors",
                details={"error_rows": validation.error_row_numbers()},
            )
        batch_size = options.batch_size or self.config.batch_size
        if batch_size <= 0:
            raise ImportSystemError("batch_size must be positive", code="INVALID_OPTION")

        service = self.registry.get_service(session.module_name)
        meta = service.get_metadata()
        columns = service.get_template_columns()
        blocked = set(validation.error_row_numbers())
        rows: List[NumberedRow] = [
            (number, normalize_row(columns, raw))
            for number, raw in enumerate(session.rows_json or [], start=1)
            if number not in blocked
        ]
        chunks = [rows[start:start + batch_size] for start in range(0, len(rows), batch_size)]

        if self.registry.get_entry(db, meta.module) is None:
            self.registry.discover_all(db)

        batch_id = str(uuid.uuid4())
        self._claim_for_execution(db, session, batch_id)
        started = self.clock()
        clock_start = time.monotonic()
        history = models.ImportHistory(
            batch_id=batch_id,
            session_id=session.id,
            module_name=meta.module,
            status=BatchStatus.RUNNING,
            rows_attempted=len(rows),
            warning_count=len(validation.warnings),
            chunks_total=len(chunks),
            chunks_completed=0,
            started_at=started,
            imported_by=options.imported_by or session.created_by,
            file_name=session.file_name,
            file_size_bytes=session.file_size_bytes,
            can_rollback=meta.supports_rollback,
        )
        db.add(history)
        db.commit()
        self.registry.update_status(db, meta.module, RegistryStatus.IN_PROGRESS, {"job_id": batch_id})
        logger.info(
            "import started module=%s batch_id=%s rows=%s chunks=%s",
            meta.module,
            batch_id,
            len(rows),
            len(chunks),
        )

        inserted = 0
        failures: List[RowFailure] = []
        fatal: Optional[ImportSystemError] = None
        try:
            for index, chunk in enumerate(chunks, start=1):
                try:
                    pending = chunk
                    chunk_failures: List[RowFailure] = []
                    if options.revalidate:
                        pending, chunk_failures = self._revalidate_chunk(db, service, chunk, options)
                    outcome = service.insert_batch(db, pending, batch_id, options)
                    chunk_failures.extend(outcome.failures)
                    history.chunks_completed = index
                    history.rows_inserted = inserted + len(outcome.entities)
                    history.rows_failed = len(failures) + len(chunk_failures)
                    db.commit()
                except (ImportSystemError, SQLAlchemyError) as exc:
                    db.rollback()
                    error = exc if isinstance(exc, ImportSystemError) else BatchInsertError(
                        f"Chunk {index} could not be committed", code="DATABASE_ERROR"
                    )
                    logger.warning(
                        "import chunk failed module=%s batch_id=%s chunk=%s/%s code=%s",
                        meta.module,
                        batch_id,
                        index,
                        len(chunks),
                        error.code,
                    )
                    failures.extend(_chunk_failures(chunk, index, error))
                    if not options.continue_on_error:
                        fatal = error
                        break
                    history.chunks_completed = index
                    history.rows_failed = len(failures)
                    db.commit()
                    continue
                inserted += len(outcome.entities)
                failures.extend(chunk_failures)
        except Exception:
            logger.exception("import crashed module=%s batch_id=%s", meta.module, batch_id)
            db.rollback()
            self._finish(db, session, history, BatchStatus.FAILED, inserted, failures, clock_start, None)
            self.registry.update_status(
                db,
                meta.module,
                RegistryStatus.ERROR,
                {"job_id": batch_id, "import_date": self.clock(), "record_delta": inserted},
            )
            raise

        status = BatchStatus.FAILED if fatal else BatchStatus.COMPLETED
        self._finish(db, session, history, status, inserted, failures, clock_start, fatal)
        self.registry.update_status(
            db,
            meta.module,
            RegistryStatus.ERROR if fatal else RegistryStatus.COMPLETED,
            {"job_id": batch_id, "import_date": self.clock(), "record_delta": inserted},
        )
        logger.info(
            "import executed module=%s batch_id=%s inserted=%s failed=%s skipped=%s",
            meta.module,
            batch_id,
            inserted,
            len(failures),
            history.rows_skipped,
        )
        return ImportResult(
            batch_id=batch_id,
            session_id=session.id,
            module_name=meta.module,
            status=status,
            rows_attempted=len(rows),
            rows_inserted=inserted,
            rows_failed=len(failures),
            rows_skipped=history.rows_skipped,
            chunks_total=len(chunks),
            chunks_completed=history.chunks_completed,
            failures=failures,
            error_message=fatal.message if fatal else None,
            error_code=fatal.code if fatal else None,
        )

    def _claim_for_execution(self, db: Session, session: models.ImportSession, batch_id: str) -> None:
        # compare-and-set on the row so only one caller moves it out of validated
        claimed = (
            db.query(models.ImportSession)
            .filter(
                models.ImportSession.id == session.id,
                models.ImportSession.state == SessionState.VALIDATED,
            )
            .update(
                {"state": SessionState.EXECUTING, "batch_id": batch_id},
                synchronize_session=False,
            )
        )
        if not claimed:
            db.rollback()
            raise InvalidStateError(
                "Session is already being executed",
                details={"session_id": session.id},
            )

    def _revalidate_chunk(
        self,
        db: Session,
        service: BaseImportService,
        chunk: List[NumberedRow],
        options: ImportOptions,
    ) -> Tuple[List[NumberedRow], List[RowFailure]]:
        kept: List[NumberedRow] = []
        failures: List[RowFailure] = []
        for number, row in chunk:
            try:
                issues = [issue for issue in service.validate_row(db, row, number) if issue.is_error]
            except SQLAlchemyError as exc:
                raise ImportSystemError(
                    f"Validation query failed on row {number}", code="DATABASE_ERROR", row_number=number
                ) from exc
            if not issues:
                kept.append((number, row))
                continue
            first = issues[0]
            if not options.continue_on_error:
                raise BatchInsertError(
                    f"Row {number} failed revalidation: {first.message}",
                    code=first.code,
                    row_number=number,
                    field=first.field,
                )
            failures.append(RowFailure(row=number, code=first.code, message=first.message))
        return kept, failures

    def _finish(self, db, session, history, status, inserted, failures, clock_start, fatal) -> None:
        history.status = status
        history.rows_inserted = inserted
        history.rows_failed = len(failures)
        history.rows_skipped = max(history.rows_attempted - inserted - len(failures), 0)
        history.completed_at = self.clock()
        history.duration_ms = int((time.monotonic() - clock_start) * 1000)
        if fatal:
            history.error_message = fatal.message
        if failures or fatal:
            history.error_summary = {
                "error_code": fatal.code if fatal else None,
                "failed_row": fatal.row_number if fatal else None,
                "failures": [failure.to_dict() for failure in failures],
            }
        session.state = SessionState.FAILED if status == BatchStatus.FAILED else SessionState.COMPLETED
        db.commit()

    def execute_many(
        self,
        db: Session,
        session_ids: Iterable[str],
        options: Optional[ImportOptions] = None,
    ) -> MultiImportResult:
        """Run several sessions in dependency order.

        Without ``continue_on_error`` the first failure halts the run; with it,
        only modules depending on the failed one are skipped.
        """
        options = options or ImportOptions()
        by_module = {}
        for session_id in session_ids:
            session = self.get_session(db, session_id)
            if session.module_name in by_module:
                raise InvalidStateError(
                    f"More than one session given for module '{session.module_name}'",
                    details={"module": session.module_name},
                )
            by_module[session.module_name] = session.id

        order = [name for name in self.registry.get_execution_order(by_module) if name in by_module]
        outcome = MultiImportResult(order=order)
        blocked = set()
        for position, module in enumerate(order):
            if module in blocked:
                outcome.skipped.append(module)
                continue
            try:
                result = self.execute(db, by_module[module], options)
            except ImportSystemError as exc:
                result = ImportResult(
                    batch_id="",
                    session_id=by_module[module],
                    module_name=module,
                    status=BatchStatus.FAILED,
                    error_message=exc.message,
                    error_code=exc.code,
                )
            outcome.results[module] = result
            if result.status != BatchStatus.FAILED:
                continue
            if not options.continue_on_error:
                outcome.halted = True
                outcome.skipped.extend(order[position + 1:])
                logger.warning("import run halted at module=%s skipped=%s", module, order[position + 1:])
                break
            blocked.update(self.registry.dependents_of(module))
        return outcome

    # rollback and history

    def rollback(self, db: Session, batch_id: str, rolled_back_by: Optional[str] = None) -> RollbackResult:
        history = self.get_batch(db, batch_id)
        service = self.registry.get_service(history.module_name)
        if not service.get_metadata().supports_rollback:
            raise RollbackNotSupportedError(
                f"Module '{history.module_name}' does not support rollback",
                details={"module": history.module_name, "batch_id": batch_id},
            )
        if history.status == BatchStatus.RUNNING:
            raise InvalidStateError(
                "Batch is still running; wait for it to finish before rolling back",
                details={"batch_id": batch_id},
            )

        try:
            deleted = service.perform_rollback(db, batch_id)
            if history.status != BatchStatus.ROLLED_BACK:
                history.status = BatchStatus.ROLLED_BACK
                history.rolled_back_at = self.clock()
                history.rolled_back_by = rolled_back_by
                history.rows_rolled_back = deleted
                if history.session_id:
                    session = (
                        db.query(models.ImportSession)
                        .filter(models.ImportSession.id == history.session_id)
                        .first()
                    )
                    if session:
                        session.state = SessionState.ROLLED_BACK
            elif deleted:
                history.rows_rolled_back = (history.rows_rolled_back or 0) + deleted
            db.commit()
        except RollbackFailedError:
            db.rollback()
            logger.warning("import rollback failed module=%s batch_id=%s", history.module_name, batch_id)
            raise
        except SQLAlchemyError as exc:
            db.rollback()
            logger.warning("import rollback failed module=%s batch_id=%s", history.module_name, batch_id)
            raise RollbackFailedError(
                f"Rollback of {history.module_name} failed", details={"batch_id": batch_id}
            ) from exc

        if deleted:
            entry = self.registry.get_entry(db, history.module_name)
            if entry is not None:
                self.registry.update_status(
                    db, history.module_name, entry.import_status, {"record_delta": -deleted}
                )
        logger.info(
            "import rolled back module=%s batch_id=%s deleted=%s",
            history.module_name,
            batch_id,
            deleted,
        )
        return RollbackResult(
            batch_id=batch_id,
            module_name=history.module_name,
            rows_deleted=deleted,
            status=BatchStatus.ROLLED_BACK,
        )

    def get_batch(self, db: Session, batch_id: str) -> models.ImportHistory:
        history = db.query(models.ImportHistory).filter(models.ImportHistory.batch_id == batch_id).first()
        if not history:
            raise BatchNotFoundError(f"Import batch '{batch_id}' not found", details={"batch_id": batch_id})
        return history

    def get_history(self, db: Session, module_name: Optional[str] = None, limit: int = 50) -> List[models.ImportHistory]:
        query = db.query(models.ImportHistory)
        if module_name:
            query = query.filter(models.ImportHistory.module_name == module_name)
        return query.order_by(models.ImportHistory.created_at.desc()).limit(limit).all()


def _chunk_failures(chunk: List[NumberedRow], index: int, error: ImportSystemError) -> List[RowFailure]:
    """One failure per row of a rolled back chunk; the offending row keeps the cause."""
    failures = []
    for number, _ in chunk:
        if error.row_number is None or error.row_number == number:
            failures.append(RowFailure(row=number, code=error.code, message=error.message))
        else:
            failures.append(
                RowFailure(row=number, code="CHUNK_ROLLED_BACK", message=f"Rolled back with chunk {index}")
            )
    return failures
