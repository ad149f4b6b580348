# =============================================================================
# tests/ - Test Suite
# =============================================================================
# This package contains all tests for the SharkBid messaging service:
# - test_models.py: Unit tests for Pydantic model validation
# - test_access_resolver.py: Thread scoping and authorization rules
# - test_thread_store.py: Ordering, cursors and concurrency of threads
# - test_notification_fanout.py: Recipients, real-time publish, retries
# - test_notification_service.py: Notification inbox operations
# - test_workers.py: Celery notification tasks
# - test_delivery.py: Client-side push/poll delivery manager
# - test_api.py / test_auth.py: HTTP and WebSocket endpoints
#
# Run tests with: pytest
# =============================================================================
