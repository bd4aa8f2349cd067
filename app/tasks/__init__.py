from app.tasks.acumatica import (
    run_acumatica_backfill,
    sync_acumatica_entity,
    sync_acumatica_master,
)

__all__ = [
    "run_acumatica_backfill",
    "sync_acumatica_entity",
    "sync_acumatica_master",
]
