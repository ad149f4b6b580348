# =============================================================================
# workers/config.py - Celery Worker Configuration
# =============================================================================
# Notification delivery runs on its own "notifications" queue so a backlog of
# retries never delays the worker healthcheck on "default".
# =============================================================================

from app.config import settings


class CeleryConfig:
    """Loaded by workers.celery_app via config_from_object()."""

    broker_url = settings.REDIS_URL

    # Only the healthcheck result is ever read back
    result_backend = settings.REDIS_URL
    result_expires = 300

    # A notification row is written at most once per task run; acking late
    # means a crashed worker's delivery is redelivered, not lost
    task_acks_late = True
    worker_prefetch_multiplier = 1

    # Notification writes are single inserts; anything slower is stuck
    task_time_limit = 60
    task_soft_time_limit = 45

    # Task payloads are plain ids and notification fields
    task_serializer = "json"
    result_serializer = "json"
    accept_content = ["json"]

    task_queues = {
        "default": {"exchange": "default", "routing_key": "default"},
        "notifications": {"exchange": "notifications", "routing_key": "notifications"},
    }
    task_routes = {
        "workers.tasks.deliver_notification": {"queue": "notifications"},
        "workers.tasks.process_routing_event": {"queue": "notifications"},
    }
    task_default_queue = "default"

    # deliver_notification sets its own countdown (exponential backoff)
    task_annotations = {
        "*": {
            "max_retries": settings.FANOUT_MAX_RETRIES,
            "default_retry_delay": settings.FANOUT_RETRY_BACKOFF_SECONDS,
        }
    }

    # created_at and read_at stamps are UTC throughout
    timezone = "UTC"
    enable_utc = True
