import argparse

from app.config import settings
from app.db import SessionLocal
from app.logging import configure_logging
from app.services.acumatica.backfill import PAYMENT_DATA_JOB, BackfillState, PaymentBackfill

_STOP_STATES = {BackfillState.completed, BackfillState.already_completed, BackfillState.failed}


def main() -> int:
    parser = argparse.ArgumentParser(
        description="Run the Acumatica payment backfill batch by batch until it completes."
    )
    parser.add_argument("--job", default=PAYMENT_DATA_JOB, help="Backfill job name.")
    parser.add_argument("--batch-size", type=int, default=settings.backfill_batch_size)
    parser.add_argument("--max-batches", type=int, default=0, help="Stop after N batches (0 = no limit).")
    parser.add_argument("--reset", action="store_true", help="Start the job over from the first payment.")
    args = parser.parse_args()

    configure_logging()
    batches = 0
    db = SessionLocal()
    try:
        backfill = PaymentBackfill(db)
        if args.reset:
            backfill.reset(args.job)
        while True:
            result = backfill.run_batch(args.job, batch_size=args.batch_size)
            batches += 1
            summary = result.to_dict()
            print(
                f"batch={batches} status={result.status} processed={result.processed} "
                f"total_processed={summary.get('itemsProcessed')}/{summary.get('totalItems')} "
                f"apps={result.applications_found} files={result.attachments_found} errors={len(result.errors)}"
            )
            if result.status == BackfillState.skipped_running:
                print("another backfill run holds the job; stopping")
                return 1
            if result.status in _STOP_STATES:
                return 1 if result.status == BackfillState.failed else 0
            if args.max_batches and batches >= args.max_batches:
                return 0
    finally:
        db.close()


if __name__ == "__main__":
    raise SystemExit(main())
