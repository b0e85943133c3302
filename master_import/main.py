import logging
import time

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from master_import.api.v1.imports import get_registry
from master_import.api.v1.imports import router as imports_router
from master_import.core.config import settings
from master_import.db import models
from master_import.db.session import SessionLocal, engine

if not logging.getLogger().handlers:
    logging.basicConfig(level=logging.INFO)

logger = logging.getLogger("master_import")

app = FastAPI(
    title=settings.APP_NAME,
    version="1.0.0",
    description="Master data import: templates, validation, chunked execution and rollback",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.BACKEND_CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
def on_startup() -> None:
    models.Base.metadata.create_all(bind=engine)
    with SessionLocal() as db:
        get_registry().discover_all(db)
    if settings.ENV.lower() == "production" and settings.SQLALCHEMY_DATABASE_URI.startswith("sqlite"):
        logger.warning("SQLALCHEMY_DATABASE_URI points to SQLite in production.")


app.include_router(imports_router, prefix="/api")


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    duration_ms = (time.perf_counter() - start) * 1000
    logger.info(
        "request method=%s path=%s status=%s duration_ms=%.2f",
        request.method,
        request.url.path,
        response.status_code,
        duration_ms,
    )
    return response


@app.get("/api/health")
def health():
    return {"status": "ok"}
