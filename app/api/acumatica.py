from fastapi import APIRouter, Body, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from app.api.deps import get_backfill, get_db, get_sync_service
from app.models.sync import SyncEntityType, SyncSource
from app.schemas.acumatica import (
    ApplicationRead,
    BackfillProgressRead,
    BackfillRequest,
    BackfillSummary,
    ForceLogoutRequest,
    ForceLogoutSummary,
    MasterSyncSummary,
    PaymentResyncSummary,
    SyncRequest,
    SyncStatusRead,
    SyncStatusUpdate,
    SyncSummary,
)
from app.services.acumatica.applications import find_orphaned_applications
from app.services.acumatica.backfill import PAYMENT_DATA_JOB, PaymentBackfill
from app.services.acumatica.status import SyncStatusStore
from app.services.acumatica.sync import AcumaticaSyncService, SyncOptions, run_master_sync

router = APIRouter(prefix="/acumatica", tags=["acumatica"])

BACKFILL_JOBS = {PAYMENT_DATA_JOB}


def _backfill_job(job_type: str) -> str:
    if job_type not in BACKFILL_JOBS:
        raise HTTPException(status_code=404, detail=f"Unknown backfill job: {job_type}")
    return job_type


def _options(payload: SyncRequest | None, source: SyncSource = SyncSource.manual_sync) -> SyncOptions:
    payload = payload or SyncRequest()
    credentials = payload.credentials.model_dump(exclude_none=True) if payload.credentials else None
    return SyncOptions(
        lookback_minutes=payload.lookback_minutes,
        batch_size=payload.batch_size,
        skip=payload.skip,
        bulk=payload.bulk or payload.skip is not None,
        test_mode=payload.test_mode,
        link_applications=payload.link_applications,
        credentials=credentials,
        source=SyncSource.bulk_fetch if payload.bulk or payload.skip is not None else source,
    )


@router.post("/sync/master", response_model=MasterSyncSummary)
def sync_master(payload: SyncRequest | None = Body(default=None)):
    return run_master_sync(_options(payload)).to_dict()


@router.post("/sync/{entity_type}", response_model=SyncSummary)
def sync_entity(
    entity_type: SyncEntityType,
    payload: SyncRequest | None = Body(default=None),
    service: AcumaticaSyncService = Depends(get_sync_service),
):
    return service.sync_entity(entity_type, _options(payload)).to_dict()


@router.get("/sync/status", response_model=list[SyncStatusRead])
def list_sync_status(db: Session = Depends(get_db)):
    rows = SyncStatusStore(db).list_all()
    db.commit()
    return rows


@router.patch("/sync/status/{entity_type}", response_model=SyncStatusRead)
def update_sync_status(entity_type: SyncEntityType, payload: SyncStatusUpdate, db: Session = Depends(get_db)):
    row = SyncStatusStore(db).ensure(entity_type)
    for key, value in payload.model_dump(exclude_unset=True).items():
        setattr(row, key, value)
    db.commit()
    db.refresh(row)
    return row


@router.post("/payments/{reference_number}/resync", response_model=PaymentResyncSummary)
def resync_payment(
    reference_number: str,
    payload: SyncRequest | None = Body(default=None),
    service: AcumaticaSyncService = Depends(get_sync_service),
):
    return service.resync_payment(reference_number, _options(payload))


@router.post("/session/force-logout", response_model=ForceLogoutSummary)
def force_logout(
    payload: ForceLogoutRequest | None = Body(default=None),
    service: AcumaticaSyncService = Depends(get_sync_service),
):
    overrides = payload.credentials.model_dump(exclude_none=True) if payload and payload.credentials else None
    return service.force_logout(overrides)


@router.post("/backfill/{job_type}", response_model=BackfillSummary)
def run_backfill(
    job_type: str = Depends(_backfill_job),
    payload: BackfillRequest | None = Body(default=None),
    backfill: PaymentBackfill = Depends(get_backfill),
):
    overrides = payload.credentials.model_dump(exclude_none=True) if payload and payload.credentials else None
    batch_size = payload.batch_size if payload else None
    return backfill.run_batch(job_type, batch_size=batch_size, credential_overrides=overrides).to_dict()


@router.get("/backfill/{job_type}", response_model=BackfillProgressRead)
def get_backfill_progress(
    job_type: str = Depends(_backfill_job),
    backfill: PaymentBackfill = Depends(get_backfill),
):
    progress = backfill.get_progress(job_type)
    backfill.db.commit()
    return progress


@router.post("/backfill/{job_type}/reset", response_model=BackfillProgressRead)
def reset_backfill(job_type: str = Depends(_backfill_job), backfill: PaymentBackfill = Depends(get_backfill)):
    return backfill.reset(job_type)


@router.get("/applications/orphaned", response_model=list[ApplicationRead])
def list_orphaned_applications(
    limit: int = Query(default=100, ge=1, le=1000),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
):
    return find_orphaned_applications(db, limit=limit, offset=offset)
