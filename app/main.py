from fastapi import FastAPI
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from starlette.responses import Response

from app.api.acumatica import router as acumatica_router
from app.db import SessionLocal
from app.errors import register_error_handlers
from app.logging import configure_logging
from app.services.acumatica.status import SyncStatusStore
from app.telemetry import setup_otel

configure_logging()

app = FastAPI(title="Acumatica Sync API")
setup_otel(app)
register_error_handlers(app)

app.include_router(acumatica_router, prefix="/api/v1")


@app.get("/health")
def health_check():
    return {"status": "ok"}


@app.head("/health")
def head_health():
    return Response(status_code=200)


@app.get("/metrics")
def metrics():
    data = generate_latest()
    return Response(content=data, media_type=CONTENT_TYPE_LATEST)


@app.on_event("startup")
def _seed_sync_status():
    db = SessionLocal()
    try:
        SyncStatusStore(db).list_all()
        db.commit()
    finally:
        db.close()
