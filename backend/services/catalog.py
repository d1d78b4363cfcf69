# backend/services/catalog.py
"""Collaborator lookups: catalog cards by name/set, profile display names."""
from typing import Iterable

from errors import CardNotFoundError
from models.card import CatalogCard
from services.store import CATALOG_CARDS, PROFILES, execute, rows


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def find_catalog_card(client, name: str, set_code: str) -> CatalogCard:
    """Exact, case-insensitive match on card name within a set."""
    result = execute(
        client.table(CATALOG_CARDS)
        .select("id, name, set, set_name")
        .ilike("name", _escape_like(name.strip()))
        .eq("set", set_code.strip().lower())
        .limit(1),
        "catalog lookup",
    )
    found = rows(result)
    if not found:
        raise CardNotFoundError("Card not found in database")
    return CatalogCard.model_validate(found[0])


def display_names(client, user_ids: Iterable[str]) -> dict[str, str]:
    ids = sorted({str(user_id) for user_id in user_ids})
    if not ids:
        return {}

    result = execute(
        client.table(PROFILES).select("id, display_name").in_("id", ids),
        "profile lookup",
    )
    return {
        str(profile["id"]): profile.get("display_name")
        for profile in rows(result)
        if profile.get("display_name")
    }
