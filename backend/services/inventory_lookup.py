# backend/services/inventory_lookup.py
"""Read-only access to seller inventory (user_cards)."""
from decimal import Decimal

from errors import NotFoundError
from models.inventory import Listing
from services.store import USER_CARDS, execute, rows


def _owned_card_row(client, user_card_id: str) -> dict:
    result = execute(
        client.table(USER_CARDS)
        .select("id, user_id, sale_price, condition, is_for_sale")
        .eq("id", user_card_id)
        .limit(1),
        "inventory lookup",
    )
    found = rows(result)
    if not found:
        raise NotFoundError("Card not found.")
    return found[0]


def lookup_listing(client, user_card_id: str) -> Listing:
    """Resolve a sellable owned card to its seller, price and condition."""
    row = _owned_card_row(client, user_card_id)

    if not row.get("is_for_sale") or row.get("sale_price") is None:
        raise NotFoundError("Card not found or not listed for sale.")

    return Listing(
        user_card_id=str(row["id"]),
        seller_id=str(row["user_id"]),
        price=Decimal(str(row["sale_price"])),
        condition=row.get("condition"),
    )


def seller_of(client, user_card_id: str) -> str:
    """Owner of an owned card, whether or not it is still listed."""
    return str(_owned_card_row(client, user_card_id)["user_id"])
