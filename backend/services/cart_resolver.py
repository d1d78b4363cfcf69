# backend/services/cart_resolver.py
"""Find-or-create the single open transaction between a buyer and a seller."""
import logging
from typing import Optional

from errors import SelfTradeError, StorageError, TransactionLockedError
from models.transaction import ACTIVE_STATUSES, TransactionPhase, TransactionStatus
from services.locks import pair_locks
from services.store import TRANSACTIONS, execute, execute_insert, now_iso, rows
from services.transactions import status_of

logger = logging.getLogger(__name__)


def find_active_transaction(client, buyer_id: str, seller_id: str) -> Optional[dict]:
    """The pair's open, pending or accepted transaction, if any."""
    result = execute(
        client.table(TRANSACTIONS)
        .select("*")
        .eq("buyer_id", buyer_id)
        .eq("seller_id", seller_id)
        .in_("status", [status.value for status in ACTIVE_STATUSES])
        .order("created_at"),
        "active transaction lookup",
    )
    found = rows(result)
    if len(found) > 1:
        logger.error(
            f"{len(found)} active transactions for one buyer/seller pair",
            extra={"buyer_id": buyer_id, "seller_id": seller_id},
        )
    return found[0] if found else None


def _ensure_cart(transaction: dict) -> dict:
    if status_of(transaction).phase is TransactionPhase.ORDER:
        raise TransactionLockedError(
            "Cannot add items to cart. A transaction with this seller is already "
            "pending or has been accepted."
        )
    return transaction


def _create_open_transaction(client, buyer_id: str, seller_id: str) -> dict:
    now = now_iso()
    result = execute_insert(
        client.table(TRANSACTIONS).insert({
            "buyer_id": buyer_id,
            "seller_id": seller_id,
            "status": TransactionStatus.OPEN.value,
            "total_amount": None,
            "created_at": now,
            "updated_at": now,
        }),
        "cart creation",
    )

    if result is None:
        # Another request created the pair's transaction first.
        existing = find_active_transaction(client, buyer_id, seller_id)
        if existing is None:
            raise StorageError("cart creation", "unique violation with no visible active transaction")
        logger.info(
            "Reusing transaction created by a concurrent request",
            extra={"transaction_id": existing["id"], "buyer_id": buyer_id, "seller_id": seller_id},
        )
        return existing

    created = rows(result)
    if not created:
        raise StorageError("cart creation")

    logger.info(
        "Opened cart",
        extra={"transaction_id": created[0]["id"], "buyer_id": buyer_id, "seller_id": seller_id},
    )
    return created[0]


def resolve_open_transaction(client, buyer_id: str, seller_id: str) -> dict:
    """Return the pair's open transaction, creating it when none is active.

    Raises SelfTradeError when buyer and seller are the same user and
    TransactionLockedError when the pair's active transaction is already
    pending or accepted.
    """
    if str(buyer_id) == str(seller_id):
        raise SelfTradeError("You cannot add your own card to the cart.")

    with pair_locks.hold(buyer_id, seller_id):
        existing = find_active_transaction(client, buyer_id, seller_id)
        if existing is None:
            existing = _create_open_transaction(client, buyer_id, seller_id)
        return _ensure_cart(existing)
