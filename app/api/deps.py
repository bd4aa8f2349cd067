from fastapi import Depends
from sqlalchemy.orm import Session

from app.db import get_db
from app.services.acumatica.backfill import PaymentBackfill
from app.services.acumatica.sync import AcumaticaSyncService

__all__ = ["get_backfill", "get_db", "get_sync_service"]


# These build request-scoped services; tests override them through
# app.dependency_overrides to inject fake ERP clients.


def get_sync_service(db: Session = Depends(get_db)) -> AcumaticaSyncService:
    return AcumaticaSyncService(db)


def get_backfill(db: Session = Depends(get_db)) -> PaymentBackfill:
    return PaymentBackfill(db)
