# backend/services/store.py
"""Thin helpers around the Supabase query builder.

Every service talks to PostgREST through `execute` so that an unexpected
APIError, or a transport failure from the underlying httpx client, always
surfaces as StorageError, while the unique-violation code the core relies on
for idempotence stays visible to callers of `execute_insert`.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Optional

import httpx
from postgrest.exceptions import APIError

from errors import StorageError

logger = logging.getLogger(__name__)

UNIQUE_VIOLATION = "23505"

TRANSACTIONS = "transactions"
TRANSACTION_ITEMS = "transaction_items"
USER_CARDS = "user_cards"
CATALOG_CARDS = "default_cards"
PROFILES = "profiles"
CONVERSATIONS = "conversations"
MESSAGES = "messages"


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def is_unique_violation(exc: APIError) -> bool:
    return exc.code == UNIQUE_VIOLATION


def _transport_failure(operation: str, exc: httpx.HTTPError) -> StorageError:
    logger.error(
        f"Supabase {operation} failed: {type(exc).__name__}: {exc}",
        extra={"error_code": "transport"},
    )
    return StorageError(operation, str(exc))


def execute(query: Any, operation: str) -> Any:
    """Run a built query, translating PostgREST and transport failures into StorageError."""
    try:
        return query.execute()
    except APIError as exc:
        logger.error(
            f"Supabase {operation} failed: {exc.message}",
            extra={"error_code": exc.code},
        )
        raise StorageError(operation, exc.message) from exc
    except httpx.HTTPError as exc:
        raise _transport_failure(operation, exc) from exc


def execute_insert(query: Any, operation: str) -> Optional[Any]:
    """Run an insert; return None instead of raising on a unique violation."""
    try:
        return query.execute()
    except APIError as exc:
        if is_unique_violation(exc):
            logger.info(f"Unique violation during {operation}: {exc.message}")
            return None
        logger.error(
            f"Supabase {operation} failed: {exc.message}",
            extra={"error_code": exc.code},
        )
        raise StorageError(operation, exc.message) from exc
    except httpx.HTTPError as exc:
        raise _transport_failure(operation, exc) from exc


def rows(result: Any) -> list[dict]:
    return list(result.data or []) if result is not None else []
