# backend/services/transaction_state.py
"""Status transitions for transactions.

Every transition names the role allowed to perform it, the statuses it may
start from and the status it ends in. Writes are conditional on the status
read beforehand, so a transaction changed by a concurrent request fails with
InvalidStateError instead of being overwritten.
"""
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from errors import EmptyCartError, InvalidStateError, MarketplaceError, ValidationError
from models.transaction import Role, TransactionStatus
from services.conversations import ensure_conversation, post_system_message
from services.locks import pair_locks
from services.store import TRANSACTIONS, execute, now_iso, rows
from services.transactions import load_items, load_transaction, status_of

logger = logging.getLogger(__name__)

MAX_CANCELLATION_REASON = 1000
CENTS = Decimal("0.01")

OPEN = TransactionStatus.OPEN
PENDING = TransactionStatus.PENDING
ACCEPTED = TransactionStatus.ACCEPTED
COMPLETED = TransactionStatus.COMPLETED
CANCELLED = TransactionStatus.CANCELLED


@dataclass(frozen=True)
class Transition:
    name: str
    verb: str
    actor: Role
    sources: frozenset
    target: TransactionStatus


SUBMIT = Transition("submit", "submitted", Role.BUYER, frozenset({OPEN}), PENDING)
ACCEPT = Transition("accept", "accepted", Role.SELLER, frozenset({PENDING}), ACCEPTED)
COMPLETE = Transition("complete", "completed", Role.BUYER, frozenset({ACCEPTED}), COMPLETED)
CANCEL = Transition("cancel", "cancelled", Role.BUYER, frozenset({ACCEPTED}), CANCELLED)
CLEAR = Transition("clear", "cleared", Role.BUYER, frozenset({OPEN, PENDING}), CANCELLED)

TRANSITIONS = {t.name: t for t in (SUBMIT, ACCEPT, COMPLETE, CANCEL, CLEAR)}

_REJECTIONS = {
    (SUBMIT, PENDING): "Transaction has already been submitted.",
    (SUBMIT, ACCEPTED): "Transaction has already been accepted.",
    (ACCEPT, OPEN): "Transaction has not been submitted yet.",
    (ACCEPT, ACCEPTED): "Transaction has already been accepted.",
    (ACCEPT, COMPLETED): "Transaction has already been completed.",
    (COMPLETE, OPEN): "Transaction must be accepted before it can be marked as complete.",
    (COMPLETE, PENDING): "Transaction must be accepted before it can be marked as complete.",
    (COMPLETE, COMPLETED): "Transaction has already been completed.",
    (CANCEL, OPEN): "Transaction must be accepted before it can be cancelled. Clear the cart instead.",
    (CANCEL, PENDING): "Transaction must be accepted before it can be cancelled. Clear the cart instead.",
    (CANCEL, COMPLETED): "Transaction has already been completed and cannot be cancelled.",
    (CANCEL, CANCELLED): "Transaction has already been cancelled.",
}


def check_source(transition: Transition, transaction: dict) -> TransactionStatus:
    status = status_of(transaction)
    if status not in transition.sources:
        raise InvalidStateError(
            _REJECTIONS.get(
                (transition, status),
                f"Transaction cannot be {transition.verb} in its current status ({status.value}).",
            )
        )
    return status


def apply_transition(client, transaction: dict, transition: Transition, changes: Optional[dict] = None) -> dict:
    """Move a transaction along `transition`, guarded by its current status."""
    expected = check_source(transition, transaction)
    update = {**(changes or {}), "status": transition.target.value, "updated_at": now_iso()}

    result = execute(
        client.table(TRANSACTIONS)
        .update(update)
        .eq("id", transaction["id"])
        .eq("status", expected.value),
        f"transaction {transition.name}",
    )
    updated = rows(result)
    if not updated:
        raise InvalidStateError(
            f"Transaction is no longer {expected.value}; it was changed by another request."
        )

    logger.info(
        f"Transaction {transition.verb}",
        extra={
            "transaction_id": transaction["id"],
            "status": transition.target.value,
            "user_id": transaction["seller_id"] if transition.actor is Role.SELLER else transaction["buyer_id"],
        },
    )
    return updated[0]


def items_total(items: list[dict]) -> Decimal:
    return sum((Decimal(str(item["agreed_price"])) for item in items), Decimal("0")).quantize(CENTS)


def submit_cart(client, buyer_id: str, transaction_id: str) -> dict:
    """open -> pending, freezing total_amount as the sum of agreed prices."""
    transaction = load_transaction(client, transaction_id, buyer_id, Role.BUYER)

    with pair_locks.hold(transaction["buyer_id"], transaction["seller_id"]):
        check_source(SUBMIT, transaction)
        items = load_items(client, transaction_id)
        if not items:
            raise EmptyCartError("Cannot submit an empty cart.")
        return apply_transition(
            client, transaction, SUBMIT, {"total_amount": str(items_total(items))},
        )


def accept_transaction(client, seller_id: str, transaction_id: str) -> dict:
    transaction = load_transaction(client, transaction_id, seller_id, Role.SELLER)

    with pair_locks.hold(transaction["buyer_id"], transaction["seller_id"]):
        return apply_transition(client, transaction, ACCEPT)


def complete_transaction(client, buyer_id: str, transaction_id: str) -> dict:
    transaction = load_transaction(client, transaction_id, buyer_id, Role.BUYER)

    with pair_locks.hold(transaction["buyer_id"], transaction["seller_id"]):
        return apply_transition(client, transaction, COMPLETE)


def validate_cancellation_reason(reason: Optional[str]) -> str:
    cleaned = (reason or "").strip()
    if not cleaned:
        raise ValidationError("Cancellation reason is required", field="reason")
    if len(cleaned) > MAX_CANCELLATION_REASON:
        raise ValidationError(
            f"Cancellation reason must be at most {MAX_CANCELLATION_REASON} characters",
            field="reason",
        )
    return cleaned


def cancellation_notice(reason: str) -> str:
    return (
        "Transaction Cancelled\n\n"
        f"Reason: {reason}\n\n"
        "The transaction has been cancelled by the buyer. If you believe this was "
        "done in error, please contact the buyer directly."
    )


def _notify_cancellation(client, transaction: dict, buyer_id: str, reason: str) -> None:
    # The cancellation stands even if the notice cannot be delivered.
    try:
        conversation, _ = ensure_conversation(client, transaction)
        post_system_message(client, conversation, buyer_id, cancellation_notice(reason))
    except MarketplaceError:
        logger.warning(
            "Could not post cancellation notice",
            extra={"transaction_id": transaction["id"]},
            exc_info=True,
        )


def cancel_transaction(client, buyer_id: str, transaction_id: str, reason: Optional[str]) -> dict:
    """accepted -> cancelled, recording who cancelled and why."""
    cleaned = validate_cancellation_reason(reason)
    transaction = load_transaction(client, transaction_id, buyer_id, Role.BUYER)

    with pair_locks.hold(transaction["buyer_id"], transaction["seller_id"]):
        previous_notes = transaction.get("notes")
        note = f"CANCELLED: {cleaned}"
        updated = apply_transition(client, transaction, CANCEL, {
            "cancelled_by": buyer_id,
            "cancellation_reason": cleaned,
            "notes": f"{previous_notes}\n\n{note}" if previous_notes else note,
        })

    _notify_cancellation(client, updated, buyer_id, cleaned)
    return updated
