# backend/services/cart_items.py
"""Adding, removing and clearing items in a buyer's cart."""
import logging
from typing import Iterable, Optional

from errors import InvalidStateError, NotFoundError, StorageError, TransactionLockedError
from models.transaction import (
    CART_STATUSES,
    CartAddResponse,
    CartRemoveResponse,
    Role,
    TransactionStatus,
)
from services.cart_resolver import resolve_open_transaction
from services.catalog import display_names
from services.inventory_lookup import lookup_listing, seller_of
from services.locks import pair_locks
from services.store import TRANSACTIONS, TRANSACTION_ITEMS, execute, execute_insert, now_iso, rows
from services.transaction_state import CLEAR, apply_transition, items_total
from services.transactions import load_items, load_transaction, status_of

logger = logging.getLogger(__name__)

CART_CLEARED_REASON = "Cart cleared by buyer"


def _find_item(client, transaction_id: str, user_card_id: str) -> Optional[dict]:
    result = execute(
        client.table(TRANSACTION_ITEMS)
        .select("id")
        .eq("transaction_id", transaction_id)
        .eq("user_card_id", user_card_id)
        .limit(1),
        "cart item lookup",
    )
    found = rows(result)
    return found[0] if found else None


def add_to_cart(client, buyer_id: str, user_card_id: str) -> CartAddResponse:
    """Put a listed card into the buyer's cart with that seller.

    Price and condition are copied from the listing now and never re-read.
    Adding a card that is already in the cart succeeds without a change.
    """
    listing = lookup_listing(client, user_card_id)

    with pair_locks.hold(buyer_id, listing.seller_id):
        transaction = resolve_open_transaction(client, buyer_id, listing.seller_id)
        transaction_id = transaction["id"]

        if _find_item(client, transaction_id, user_card_id) is not None:
            return CartAddResponse(
                transaction_id=transaction_id, added=False, message="Item is already in the cart.",
            )

        result = execute_insert(
            client.table(TRANSACTION_ITEMS).insert({
                "transaction_id": transaction_id,
                "user_card_id": user_card_id,
                "quantity": 1,
                "agreed_price": str(listing.price),
                "condition": listing.condition,
            }),
            "cart item insert",
        )
        if result is None:
            return CartAddResponse(
                transaction_id=transaction_id, added=False, message="Item is already in the cart.",
            )

    logger.info(
        "Added item to cart",
        extra={"transaction_id": transaction_id, "buyer_id": buyer_id, "user_card_id": user_card_id},
    )
    return CartAddResponse(
        transaction_id=transaction_id, added=True, message="Card added to cart successfully.",
    )


def _find_cart(client, buyer_id: str, seller_id: str) -> Optional[dict]:
    result = execute(
        client.table(TRANSACTIONS)
        .select("*")
        .eq("buyer_id", buyer_id)
        .eq("seller_id", seller_id)
        .in_("status", [status.value for status in CART_STATUSES])
        .limit(1),
        "cart lookup",
    )
    found = rows(result)
    return found[0] if found else None


def _reload(client, transaction_id: str) -> Optional[dict]:
    found = rows(execute(
        client.table(TRANSACTIONS).select("*").eq("id", transaction_id).limit(1),
        "cart reload",
    ))
    return found[0] if found else None


def _refresh_pending_total(client, transaction: dict, remaining: list[dict]) -> bool:
    total = items_total(remaining)
    updated = execute(
        client.table(TRANSACTIONS)
        .update({"total_amount": str(total), "updated_at": now_iso()})
        .eq("id", transaction["id"])
        .eq("status", TransactionStatus.PENDING.value),
        "cart total refresh",
    )
    return bool(rows(updated))


def _restore_items(client, deleted: list[dict], transaction_id: str) -> InvalidStateError:
    """Put removed items back after the parent left the cart phase."""
    execute(client.table(TRANSACTION_ITEMS).insert(deleted), "cart item restore")
    logger.warning(
        "Restored cart items; transaction changed during removal",
        extra={"transaction_id": transaction_id},
    )
    return InvalidStateError(
        "Transaction is no longer open or pending; it was changed by another request."
    )


def remove_from_cart(
    client, buyer_id: str, user_card_id: str, transaction_id: Optional[str] = None
) -> CartRemoveResponse:
    """Take one card out of an open or pending cart.

    The cart is found by `transaction_id` when given, otherwise through the
    card's seller. A cart left with no items is deleted outright.

    The status is read again under the pair lock. Should the transaction
    still move past pending while the item goes (a writer in another
    process), the item is put back and InvalidStateError raised.
    """
    if transaction_id is not None:
        seller_id = load_transaction(client, transaction_id, buyer_id, Role.BUYER)["seller_id"]
    else:
        seller_id = seller_of(client, user_card_id)

    with pair_locks.hold(buyer_id, seller_id):
        if transaction_id is not None:
            transaction = _reload(client, transaction_id)
        else:
            transaction = _find_cart(client, buyer_id, seller_id)
        if transaction is None or status_of(transaction) not in CART_STATUSES:
            raise NotFoundError("No open or pending cart found for this seller.")

        transaction_id = transaction["id"]
        deleted = rows(execute(
            client.table(TRANSACTION_ITEMS)
            .delete()
            .eq("transaction_id", transaction_id)
            .eq("user_card_id", user_card_id),
            "cart item delete",
        ))
        if not deleted:
            raise NotFoundError("Item is not in the cart.")

        remaining = load_items(client, transaction_id)
        current = _reload(client, transaction_id)
        if current is None or status_of(current) not in CART_STATUSES:
            raise _restore_items(client, deleted, transaction_id)

        transaction_deleted = False
        if not remaining:
            gone = execute(
                client.table(TRANSACTIONS)
                .delete()
                .eq("id", transaction_id)
                .in_("status", [status.value for status in CART_STATUSES]),
                "empty cart delete",
            )
            transaction_deleted = bool(rows(gone))
            if not transaction_deleted:
                raise _restore_items(client, deleted, transaction_id)
        elif status_of(current) is TransactionStatus.PENDING:
            if not _refresh_pending_total(client, current, remaining):
                raise _restore_items(client, deleted, transaction_id)

    logger.info(
        "Removed item from cart",
        extra={"transaction_id": transaction_id, "buyer_id": buyer_id, "user_card_id": user_card_id},
    )
    return CartRemoveResponse(
        transaction_id=transaction_id,
        transaction_deleted=transaction_deleted,
        message="Item removed from cart successfully.",
    )


def clear_cart(client, buyer_id: str, transaction_id: str) -> dict:
    """Discard an open or pending cart: cancel it and delete all of its items."""
    transaction = load_transaction(client, transaction_id, buyer_id, Role.BUYER)
    status = status_of(transaction)

    if status is TransactionStatus.ACCEPTED:
        raise TransactionLockedError(
            "Cannot clear cart. Transaction has already been accepted by the seller. "
            "Please coordinate with the seller to complete the transaction."
        )
    if status not in CLEAR.sources:
        raise NotFoundError("Transaction not found or you do not have permission to clear this cart.")

    with pair_locks.hold(transaction["buyer_id"], transaction["seller_id"]):
        try:
            cleared = apply_transition(client, transaction, CLEAR, {
                "cancelled_by": buyer_id,
                "cancellation_reason": CART_CLEARED_REASON,
            })
        except InvalidStateError as exc:
            raise TransactionLockedError(
                "Cannot clear cart. The transaction changed while it was being cleared."
            ) from exc

        _delete_cleared_items(client, transaction_id)
    return cleared


def _delete_cleared_items(client, transaction_id: str, attempts: int = 2) -> None:
    # The status flip is already committed; a failed item delete is retried once.
    for attempt in range(1, attempts + 1):
        try:
            execute(
                client.table(TRANSACTION_ITEMS).delete().eq("transaction_id", transaction_id),
                "cart clear",
            )
            return
        except StorageError:
            if attempt == attempts:
                logger.error(
                    "Cleared cart still holds items",
                    extra={"transaction_id": transaction_id},
                )
                raise
            logger.warning(
                "Retrying item delete for cleared cart",
                extra={"transaction_id": transaction_id},
            )


def cart_status(client, buyer_id: str, user_card_ids: Iterable[str]) -> dict[str, bool]:
    """Which of the given owned cards sit in one of the buyer's carts."""
    wanted = [str(user_card_id) for user_card_id in user_card_ids]
    if not wanted:
        return {}

    carts = rows(execute(
        client.table(TRANSACTIONS)
        .select("id")
        .eq("buyer_id", buyer_id)
        .in_("status", [status.value for status in CART_STATUSES]),
        "cart status lookup",
    ))

    in_cart = set()
    if carts:
        items = rows(execute(
            client.table(TRANSACTION_ITEMS)
            .select("user_card_id")
            .in_("transaction_id", [cart["id"] for cart in carts])
            .in_("user_card_id", wanted),
            "cart status items lookup",
        ))
        in_cart = {str(item["user_card_id"]) for item in items}

    return {user_card_id: user_card_id in in_cart for user_card_id in wanted}


def cart_count(client, buyer_id: str) -> int:
    """Number of sellers the buyer currently has a cart with."""
    carts = rows(execute(
        client.table(TRANSACTIONS)
        .select("id")
        .eq("buyer_id", buyer_id)
        .in_("status", [status.value for status in CART_STATUSES]),
        "cart count",
    ))
    return len(carts)


def list_cart(client, buyer_id: str) -> list[dict]:
    """The buyer's carts, one per seller, labelled with seller display names."""
    carts = rows(execute(
        client.table(TRANSACTIONS)
        .select("*")
        .eq("buyer_id", buyer_id)
        .in_("status", [status.value for status in CART_STATUSES])
        .order("created_at"),
        "cart listing",
    ))
    if not carts:
        return []

    items = rows(execute(
        client.table(TRANSACTION_ITEMS)
        .select("*")
        .in_("transaction_id", [cart["id"] for cart in carts]),
        "cart listing items",
    ))
    names = display_names(client, [cart["seller_id"] for cart in carts])

    grouped = []
    for cart in carts:
        cart_items = [item for item in items if item["transaction_id"] == cart["id"]]
        subtotal = items_total(cart_items)
        grouped.append({
            "transaction_id": cart["id"],
            "seller_id": cart["seller_id"],
            "seller_name": names.get(str(cart["seller_id"])),
            "status": cart["status"],
            "items": cart_items,
            "subtotal": subtotal,
        })
    return grouped
