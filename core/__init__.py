# =============================================================================
# core/ - Business Logic Package
# =============================================================================
# This package contains the messaging and notification logic:
# - models/: Pydantic schemas for data validation
# - services/: Access rules, thread store, notification fanout
#
# Code in this package should NOT import from FastAPI routes.
# This keeps the logic testable and reusable from Celery workers.
# =============================================================================
