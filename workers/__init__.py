# =============================================================================
# workers/ - Celery Background Task Workers
# =============================================================================
# This package contains the Celery configuration and task definitions for
# background notification delivery.
#
# Components:
# - celery_app.py: Celery application configuration
# - tasks.py: Task definitions (notification delivery, routing events)
# - config.py: Worker-specific settings
#
# Usage:
#   # Start worker
#   celery -A workers.celery_app worker --loglevel=info -Q default,notifications
#
#   # Submit task (from the API or the routing workflow)
#   from workers.tasks import process_routing_event
#   result = process_routing_event.delay(event)
# =============================================================================

from .celery_app import celery_app
from . import tasks

__all__ = [
    "celery_app",
    "tasks",
]
