"""Infrastructure services for the credit award engine."""

from services.database import (
    build_engine,
    build_session_factory,
    check_connection,
    run_migrations,
    session_scope,
)

__all__ = [
    "build_engine",
    "build_session_factory",
    "check_connection",
    "run_migrations",
    "session_scope",
]
