"""
Celery configuration for background invoice sync
"""
from celery import Celery
from celery.signals import worker_process_init
import logging

from invoice_sync.core.config import settings

logger = logging.getLogger(__name__)

# Create Celery instance
celery_app = Celery(
    "invoice_sync",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=[
        "invoice_sync.modules.sales.tasks",
    ]
)

# Celery configuration
celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="Asia/Ho_Chi_Minh",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=30 * 60,  # 30 minutes
    task_soft_time_limit=25 * 60,  # 25 minutes
    worker_prefetch_multiplier=1,
    worker_max_tasks_per_child=1000,

    # Result backend settings
    result_expires=24 * 3600,  # 1 day

    # Task routes for different queues
    task_routes={
        "invoice_sync.modules.sales.tasks.*": {"queue": "invoices"},
    },
)


@worker_process_init.connect
def load_worker_integrations(**kwargs):
    """Cada proceso del worker instancia sus propios clientes externos"""
    from invoice_sync.modules.integrations.registry import load_integrations_from_settings
    try:
        load_integrations_from_settings()
    except Exception as e:
        logger.error(f"Could not load external clients in worker: {e}")
        raise


if __name__ == "__main__":
    celery_app.start()
