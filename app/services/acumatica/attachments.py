from __future__ import annotations

import logging
import re

from sqlalchemy.orm import Session

from app.models.acumatica import AcumaticaPayment, PaymentAttachment
from app.models.sync import SyncSource
from app.services.acumatica.change_log import record_change
from app.services.acumatica.client import AcumaticaClient

logger = logging.getLogger(__name__)

_UNSAFE_NAME_CHARS = re.compile(r"[#?&]")
_CHECK_IMAGE_HINTS = ("check", ".jpg", ".jpeg", ".png")


def clean_file_name(name: str) -> str:
    # Acumatica returns "Screen\\Document\\file.ext"; keep the file part only.
    base = name.replace("\\", "/").rsplit("/", 1)[-1]
    return _UNSAFE_NAME_CHARS.sub("_", base)


def is_check_image(name: str) -> bool:
    lowered = name.lower()
    return any(hint in lowered for hint in _CHECK_IMAGE_HINTS)


def extract_files(record: dict | None) -> list[dict] | None:
    if not isinstance(record, dict):
        return None
    files = record.get("files")
    if isinstance(files, list):
        return [f for f in files if isinstance(f, dict) and f.get("id")]
    return None


def record_attachments(
    db: Session,
    client: AcumaticaClient,
    payment: AcumaticaPayment,
    files: list[dict],
    source: SyncSource = SyncSource.auto_backfill,
) -> int:
    """Store metadata for files not seen before; returns how many were new."""
    existing = {
        file_id
        for (file_id,) in db.query(PaymentAttachment.file_id).filter(
            PaymentAttachment.payment_id == payment.id
        )
    }
    added = 0
    for item in files:
        file_id = str(item["id"])
        if file_id in existing:
            continue
        file_name = clean_file_name(str(item.get("filename") or file_id))
        db.add(
            PaymentAttachment(
                payment_id=payment.id,
                payment_reference_number=payment.reference_number,
                file_id=file_id,
                file_name=file_name,
                file_url=client.file_url(file_id),
                is_check_image=is_check_image(file_name),
            )
        )
        existing.add(file_id)
        record_change(
            db,
            sync_type="payment_attachment",
            action_type="attachment_fetched",
            entity_id=payment.id,
            entity_reference=payment.reference_number,
            entity_name=payment.customer_name,
            summary=f"Attachment {file_name} found for payment {payment.reference_number}",
            details={"file_id": file_id, "file_name": file_name},
            source=source,
        )
        added += 1
    if added:
        db.flush()
        logger.info("acumatica_attachments_recorded payment=%s added=%d", payment.reference_number, added)
    return added
