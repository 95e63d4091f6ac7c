import logging
import os

from celery import Celery
from celery.signals import worker_process_shutdown

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "ffmpeg_rest.settings")

celery_app = Celery("ffmpeg_rest")
celery_app.config_from_object("django.conf:settings", namespace="CELERY")
celery_app.autodiscover_tasks()

logger = logging.getLogger(__name__)


@worker_process_shutdown.connect
def _close_store(**kwargs):
    # Warm shutdown lets in-flight jobs finish before this fires.
    from django.db import connections

    logger.info("Worker process shutting down, closing database connections")
    connections.close_all()
