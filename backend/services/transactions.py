# backend/services/transactions.py
"""Reads of transactions and their items, scoped to the caller."""
from typing import Optional

from errors import NotFoundError
from models.transaction import Role, TransactionStatus
from services.store import TRANSACTIONS, TRANSACTION_ITEMS, execute, rows


def status_of(transaction: dict) -> TransactionStatus:
    return TransactionStatus(transaction["status"])


def load_transaction(client, transaction_id: str, user_id: str, role: Optional[Role] = None) -> dict:
    """Fetch a transaction the caller is a party to.

    With a role, the caller must hold exactly that role. Strangers and
    wrong-role callers get the same NotFoundError as a missing id.
    """
    query = client.table(TRANSACTIONS).select("*").eq("id", transaction_id)
    if role is Role.BUYER:
        query = query.eq("buyer_id", user_id)
    elif role is Role.SELLER:
        query = query.eq("seller_id", user_id)

    found = [
        row for row in rows(execute(query, "transaction lookup"))
        if str(user_id) in (str(row["buyer_id"]), str(row["seller_id"]))
    ]
    if not found:
        raise NotFoundError("Transaction not found.")
    return found[0]


def load_items(client, transaction_id: str) -> list[dict]:
    result = execute(
        client.table(TRANSACTION_ITEMS).select("*").eq("transaction_id", transaction_id),
        "transaction items lookup",
    )
    return rows(result)


def get_transaction(client, user_id: str, transaction_id: str) -> dict:
    """Transaction with its items, visible to its buyer and seller only."""
    transaction = load_transaction(client, transaction_id, user_id)
    return {**transaction, "items": load_items(client, transaction_id)}
