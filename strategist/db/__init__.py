# =============================================================================
# Database Package
# =============================================================================
# Async SQLAlchemy engine, session management and ORM models.
#
# Key exports:
#   - get_async_session: FastAPI dependency for database sessions
#   - get_sync_session: context manager for Celery workers
#   - Base: SQLAlchemy declarative base for ORM models
# =============================================================================
