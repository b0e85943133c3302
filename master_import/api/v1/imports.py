import logging
import os
from functools import lru_cache
from typing import List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, File, HTTPException, Query, Request, UploadFile
from fastapi.responses import Response

from master_import.bulk.errors import (
    BatchNotFoundError,
    FileTooLargeError,
    ImportSystemError,
    InvalidStateError,
    SessionExpiredError,
    SessionNotFoundError,
    UnknownModuleError,
    ValidationBlockedError,
)
from master_import.bulk.orchestrator import ImportOrchestrator
from master_import.bulk.registry import ServiceRegistry, build_default_registry
from master_import.bulk.schemas import ExecuteRequest, MultiExecuteRequest, RollbackRequest, SessionFromFileRequest
from master_import.bulk.storage import StorageClient
from master_import.bulk.tasks import enqueue_execute
from master_import.core.config import ImportConfig, get_settings
from master_import.db.session import get_db

logger = logging.getLogger("master_import.api")

router = APIRouter(prefix="/imports", tags=["Imports"])

XLSX_MEDIA = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"

NOT_FOUND = (UnknownModuleError, SessionNotFoundError, BatchNotFoundError)
CONFLICT = (InvalidStateError, ValidationBlockedError, SessionExpiredError)


@lru_cache
def get_registry() -> ServiceRegistry:
    return build_default_registry()


@lru_cache
def get_orchestrator() -> ImportOrchestrator:
    storage = None
    if os.getenv("GCS_BUCKET") or os.getenv("LOCAL_STORAGE") == "1":
        storage = StorageClient()
    return ImportOrchestrator(get_registry(), ImportConfig.from_settings(), storage=storage)


def _http_error(exc: ImportSystemError) -> HTTPException:
    if isinstance(exc, NOT_FOUND):
        status_code = 404
    elif isinstance(exc, CONFLICT):
        status_code = 409
    elif isinstance(exc, FileTooLargeError):
        status_code = 413
    else:
        status_code = 400
    return HTTPException(status_code=status_code, detail=exc.to_dict())


def _entry_to_dict(entry) -> dict:
    return {
        "module": entry.module_name,
        "domain": entry.domain,
        "subdomain": entry.subdomain,
        "display_name": entry.display_name,
        "description": entry.description,
        "dependencies": entry.dependencies or [],
        "priority": entry.priority,
        "tags": entry.tags or [],
        "supports_rollback": entry.supports_rollback,
        "version": entry.version,
        "import_status": entry.import_status,
        "last_import_date": entry.last_import_date,
        "last_import_job_id": entry.last_import_job_id,
        "record_count": entry.record_count,
        "discovered_at": entry.discovered_at,
    }


def _session_to_dict(session) -> dict:
    return {
        "session_id": session.id,
        "module": session.module_name,
        "state": session.state,
        "file_name": session.file_name,
        "file_type": session.file_type,
        "file_size_bytes": session.file_size_bytes,
        "total_rows": len(session.rows_json or []),
        "batch_id": session.batch_id,
        "validation": session.validation_json,
        "created_at": session.created_at,
        "expires_at": session.expires_at,
    }


def _history_to_dict(history) -> dict:
    return {
        "batch_id": history.batch_id,
        "session_id": history.session_id,
        "module": history.module_name,
        "status": history.status,
        "rows_attempted": history.rows_attempted,
        "rows_inserted": history.rows_inserted,
        "rows_failed": history.rows_failed,
        "rows_skipped": history.rows_skipped,
        "warning_count": history.warning_count,
        "chunks_total": history.chunks_total,
        "chunks_completed": history.chunks_completed,
        "started_at": history.started_at,
        "completed_at": history.completed_at,
        "duration_ms": history.duration_ms,
        "imported_by": history.imported_by,
        "file_name": history.file_name,
        "error_message": history.error_message,
        "error_summary": history.error_summary,
        "can_rollback": history.can_rollback,
        "rolled_back_at": history.rolled_back_at,
        "rolled_back_by": history.rolled_back_by,
        "rows_rolled_back": history.rows_rolled_back,
    }


@router.get("/registry")
def list_registry(db=Depends(get_db), orchestrator: ImportOrchestrator = Depends(get_orchestrator)):
    return [_entry_to_dict(entry) for entry in orchestrator.registry.list_entries(db)]


@router.post("/registry/discover")
def discover_registry(db=Depends(get_db), orchestrator: ImportOrchestrator = Depends(get_orchestrator)):
    try:
        entries = orchestrator.registry.discover_all(db)
    except ImportSystemError as exc:
        raise _http_error(exc)
    return [_entry_to_dict(entry) for entry in entries]


@router.get("/order")
def execution_order(
    modules: Optional[List[str]] = Query(default=None),
    orchestrator: ImportOrchestrator = Depends(get_orchestrator),
):
    try:
        return {"order": orchestrator.registry.get_execution_order(modules)}
    except ImportSystemError as exc:
        raise _http_error(exc)


@router.get("/templates/{module}")
def download_template(module: str, fmt: str = "xlsx", orchestrator: ImportOrchestrator = Depends(get_orchestrator)):
    from master_import.bulk.templates import build_template

    try:
        content, filename = build_template(orchestrator.registry.get_service(module), fmt)
    except ImportSystemError as exc:
        raise _http_error(exc)
    media_type = "text/csv" if filename.endswith(".csv") else XLSX_MEDIA
    return Response(
        content=content,
        media_type=media_type,
        headers={"Content-Disposition": f"attachment; filename={filename}"},
    )


@router.post("/{module}/upload")
def upload_import_file(
    module: str,
    file: UploadFile = File(...),
    created_by: Optional[str] = None,
    db=Depends(get_db),
    orchestrator: ImportOrchestrator = Depends(get_orchestrator),
):
    if not file.filename:
        raise HTTPException(status_code=400, detail={"code": "FILE_REQUIRED", "message": "No file uploaded"})
    if file.content_type and file.content_type not in orchestrator.config.mime_types():
        raise HTTPException(
            status_code=400,
            detail={"code": "UNSUPPORTED_FORMAT", "message": f"Unsupported content type {file.content_type}"},
        )
    # one byte over the limit is enough to reject
    content = file.file.read(orchestrator.config.max_file_size_bytes + 1)
    try:
        session = orchestrator.create_session(db, module, content, file.filename, created_by=created_by)
    except ImportSystemError as exc:
        logger.warning("upload rejected module=%s code=%s", module, exc.code)
        raise _http_error(exc)
    return _session_to_dict(session)


@router.post("/{module}/sessions/from-file")
def create_session_from_file(
    module: str,
    payload: SessionFromFileRequest,
    db=Depends(get_db),
    orchestrator: ImportOrchestrator = Depends(get_orchestrator),
):
    try:
        session = orchestrator.create_session_from_file(
            db, module, payload.file_url, file_name=payload.file_name, created_by=payload.created_by
        )
    except ImportSystemError as exc:
        raise _http_error(exc)
    return _session_to_dict(session)


@router.get("/sessions/{session_id}")
def get_session(session_id: str, db=Depends(get_db), orchestrator: ImportOrchestrator = Depends(get_orchestrator)):
    try:
        return _session_to_dict(orchestrator.get_session(db, session_id))
    except ImportSystemError as exc:
        raise _http_error(exc)


@router.post("/sessions/{session_id}/validate")
def validate_session(session_id: str, db=Depends(get_db), orchestrator: ImportOrchestrator = Depends(get_orchestrator)):
    try:
        return orchestrator.validate(db, session_id).to_dict()
    except ImportSystemError as exc:
        raise _http_error(exc)


@router.post("/sessions/{session_id}/execute")
def execute_session(
    session_id: str,
    background: BackgroundTasks,
    payload: Optional[ExecuteRequest] = None,
    db=Depends(get_db),
    orchestrator: ImportOrchestrator = Depends(get_orchestrator),
):
    payload = payload or ExecuteRequest()
    if payload.background:
        try:
            session = orchestrator.get_session(db, session_id)
        except ImportSystemError as exc:
            raise _http_error(exc)
        body = payload.model_dump(exclude={"background"})
        queued = enqueue_execute(session.id, body)
        if not queued:
            background.add_task(_run_execute_inline, session.id, body)
        return {"status": "queued", "session_id": session.id}
    try:
        return orchestrator.execute(db, session_id, payload.to_options()).to_dict()
    except ImportSystemError as exc:
        raise _http_error(exc)


def _run_execute_inline(session_id: str, body: dict):
    from master_import.db.session import SessionLocal

    db = SessionLocal()
    try:
        get_orchestrator().execute(db, session_id, ExecuteRequest(**body).to_options())
    except ImportSystemError as exc:
        logger.warning("background import failed session_id=%s code=%s", session_id, exc.code)
    finally:
        db.close()


@router.post("/worker/execute/{session_id}")
def run_execute_worker(
    session_id: str,
    request: Request,
    payload: Optional[ExecuteRequest] = None,
    db=Depends(get_db),
    orchestrator: ImportOrchestrator = Depends(get_orchestrator),
):
    _verify_worker(request)
    payload = payload or ExecuteRequest()
    try:
        return orchestrator.execute(db, session_id, payload.to_options()).to_dict()
    except (SessionNotFoundError, SessionExpiredError, InvalidStateError) as exc:
        # the task queue retries on non-2xx; these will never succeed
        logger.warning("import worker skipped session_id=%s code=%s", session_id, exc.code)
        return {"status": "skipped", "code": exc.code}
    except ImportSystemError as exc:
        raise _http_error(exc)


@router.post("/execute-many")
def execute_many(
    payload: MultiExecuteRequest,
    db=Depends(get_db),
    orchestrator: ImportOrchestrator = Depends(get_orchestrator),
):
    try:
        return orchestrator.execute_many(db, payload.session_ids, payload.to_options()).to_dict()
    except ImportSystemError as exc:
        raise _http_error(exc)


@router.post("/sessions/{session_id}/cancel")
def cancel_session(session_id: str, db=Depends(get_db), orchestrator: ImportOrchestrator = Depends(get_orchestrator)):
    try:
        return _session_to_dict(orchestrator.cancel_session(db, session_id))
    except ImportSystemError as exc:
        raise _http_error(exc)


@router.get("/sessions/{session_id}/error-report")
def download_error_report(
    session_id: str,
    db=Depends(get_db),
    orchestrator: ImportOrchestrator = Depends(get_orchestrator),
):
    try:
        content, filename = orchestrator.build_error_report(db, session_id)
    except ImportSystemError as exc:
        raise _http_error(exc)
    return Response(
        content=content,
        media_type=XLSX_MEDIA,
        headers={"Content-Disposition": f"attachment; filename={filename}"},
    )


@router.get("/history")
def list_history(
    module: Optional[str] = None,
    limit: int = Query(default=50, ge=1, le=500),
    db=Depends(get_db),
    orchestrator: ImportOrchestrator = Depends(get_orchestrator),
):
    return [_history_to_dict(item) for item in orchestrator.get_history(db, module_name=module, limit=limit)]


@router.get("/batches/{batch_id}")
def get_batch(batch_id: str, db=Depends(get_db), orchestrator: ImportOrchestrator = Depends(get_orchestrator)):
    try:
        return _history_to_dict(orchestrator.get_batch(db, batch_id))
    except ImportSystemError as exc:
        raise _http_error(exc)


@router.post("/batches/{batch_id}/rollback")
def rollback_batch(
    batch_id: str,
    payload: Optional[RollbackRequest] = None,
    db=Depends(get_db),
    orchestrator: ImportOrchestrator = Depends(get_orchestrator),
):
    payload = payload or RollbackRequest()
    try:
        return orchestrator.rollback(db, batch_id, rolled_back_by=payload.rolled_back_by).to_dict()
    except ImportSystemError as exc:
        raise _http_error(exc)


def _verify_worker(request: Request) -> None:
    secret = get_settings().IMPORT_TASKS_SECRET
    if secret:
        header = request.headers.get("X-Tasks-Secret")
        if header != secret:
            raise HTTPException(status_code=403, detail={"code": "FORBIDDEN", "message": "Access denied"})
