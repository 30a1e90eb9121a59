"""
storefront/core/idempotency.py
Replay ledger for checkout returns and other once-only operations.
"""

import logging
from datetime import datetime, timezone
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from storefront.core.database import (
    database_configured,
    get_db_session,
    get_session_factory,
    processed_returns,
)

logger = logging.getLogger(__name__)

# In-memory fallback
_in_memory_keys: set = set()


def check_and_set(key: str, operation: str = "generic") -> bool:
    """
    Check if idempotency key exists, and set it if not (atomic).

    Args:
        key: Idempotency key string
        operation: Operation type (stored as scope)

    Returns:
        True if key was already seen (duplicate)
        False if key is new (first time seeing it)
    """
    if database_configured():
        SessionLocal = get_session_factory()
        session = SessionLocal()
        try:
            session.execute(
                processed_returns.insert().values(
                    key=key,
                    scope=operation,
                    created_at=datetime.now(timezone.utc),
                )
            )
            session.commit()
            return False
        except IntegrityError:
            session.rollback()
            return True
        except SQLAlchemyError:
            session.rollback()
            logger.warning("idempotency.store_failed", extra={"event_type": operation}, exc_info=True)
            # Fall back to process memory so the key still counts once here
            if key in _in_memory_keys:
                return True
            _in_memory_keys.add(key)
            return False
        finally:
            session.close()
    else:
        if key in _in_memory_keys:
            return True
        _in_memory_keys.add(key)
        return False


def check_key(key: str) -> bool:
    """
    Check if idempotency key exists (read-only).

    Args:
        key: Idempotency key string

    Returns:
        True if key exists, False otherwise
    """
    if database_configured():
        try:
            with get_db_session() as session:
                result = session.execute(
                    select(processed_returns.c.key).where(
                        processed_returns.c.key == key
                    )
                ).first()
                return result is not None or key in _in_memory_keys
        except SQLAlchemyError:
            logger.warning("idempotency.lookup_failed", exc_info=True)
            return key in _in_memory_keys
    else:
        return key in _in_memory_keys


def clear_all_keys() -> None:
    """Clear all idempotency keys (testing only)."""
    if database_configured():
        try:
            with get_db_session() as session:
                session.execute(processed_returns.delete())
        except SQLAlchemyError:
            logger.warning("idempotency.clear_failed", exc_info=True)
    _in_memory_keys.clear()
