# backend/services/conversations.py
"""The one conversation attached to each transaction."""
import logging
from typing import Optional

from errors import StorageError
from services.store import CONVERSATIONS, MESSAGES, execute, execute_insert, now_iso, rows
from services.transactions import load_transaction

logger = logging.getLogger(__name__)


def find_conversation(client, transaction_id: str) -> Optional[dict]:
    result = execute(
        client.table(CONVERSATIONS).select("*").eq("transaction_id", transaction_id).limit(1),
        "conversation lookup",
    )
    found = rows(result)
    return found[0] if found else None


def ensure_conversation(client, transaction: dict) -> tuple[dict, bool]:
    """Find or create the transaction's conversation; returns (row, created)."""
    existing = find_conversation(client, transaction["id"])
    if existing is not None:
        return existing, False

    result = execute_insert(
        client.table(CONVERSATIONS).insert({
            "transaction_id": transaction["id"],
            "participant1_id": transaction["buyer_id"],
            "participant2_id": transaction["seller_id"],
        }),
        "conversation creation",
    )
    if result is None:
        existing = find_conversation(client, transaction["id"])
        if existing is None:
            raise StorageError("conversation creation", "unique violation with no visible conversation")
        return existing, False

    created = rows(result)
    if not created:
        raise StorageError("conversation creation")
    return created[0], True


def open_conversation(client, user_id: str, transaction_id: str) -> tuple[dict, bool]:
    """Either party may open the conversation; anyone else gets NotFoundError."""
    transaction = load_transaction(client, transaction_id, user_id)
    conversation, created = ensure_conversation(client, transaction)
    if created:
        logger.info(
            "Opened conversation",
            extra={"transaction_id": transaction_id, "user_id": user_id},
        )
    return conversation, created


def post_system_message(client, conversation: dict, sender_id: str, content: str) -> dict:
    result = execute(
        client.table(MESSAGES).insert({
            "conversation_id": conversation["id"],
            "sender_id": sender_id,
            "content": content,
            "is_read": False,
            "created_at": now_iso(),
        }),
        "message insert",
    )
    execute(
        client.table(CONVERSATIONS)
        .update({"last_message_at": now_iso()})
        .eq("id", conversation["id"]),
        "conversation touch",
    )
    created = rows(result)
    return created[0] if created else {}
