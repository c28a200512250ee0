import logging

from sqlalchemy import create_engine
from sqlalchemy.engine import make_url
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from positivenrg.core.config import settings
from positivenrg.core.errors import UpstreamError
from positivenrg.core.structured_logging import build_log_context

logger = logging.getLogger(__name__)

connect_args = {}
backend = make_url(settings.DATABASE_URL).get_backend_name()
if backend.startswith("postgresql"):
    connect_args["options"] = "-c timezone=utc"
elif backend == "sqlite":
    connect_args["check_same_thread"] = False

engine = create_engine(
    settings.DATABASE_URL, pool_pre_ping=True, connect_args=connect_args
)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def translate_storage_error(db: Session, exc: SQLAlchemyError, **context) -> UpstreamError:
    """Roll back and wrap a non-integrity storage failure for the API layer."""
    db.rollback()
    logger.error(
        "Storage operation failed: %s",
        exc.__class__.__name__,
        extra=build_log_context(outcome="storage_error", **context),
    )
    return UpstreamError("Storage operation failed", service="database")


def commit_or_raise(db: Session, **context) -> None:
    """
    Commit the session.

    IntegrityError is rolled back and re-raised for the caller to map to a
    conflict. Any other SQLAlchemyError becomes UpstreamError.
    """
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise
    except SQLAlchemyError as exc:
        raise translate_storage_error(db, exc, **context) from exc
