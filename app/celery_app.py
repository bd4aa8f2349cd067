from celery import Celery
from celery.signals import beat_init

from app.logging import configure_logging
from app.services.scheduler_config import build_beat_schedule, get_celery_config
from app.telemetry import setup_otel

configure_logging()
setup_otel()

celery_app = Celery("acumatica_sync")
celery_app.conf.update(get_celery_config())
celery_app.autodiscover_tasks(["app.tasks"])


@beat_init.connect
def _load_beat_schedule(sender=None, **kwargs):
    # Intervals live partly in the database, so read them when beat starts.
    celery_app.conf.beat_schedule = build_beat_schedule()
