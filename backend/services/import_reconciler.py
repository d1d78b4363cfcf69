# backend/services/import_reconciler.py
"""Bulk import of owned cards with per-line success or failure.

Each line inserts a new user_cards row or, when that variant already exists,
adds to its quantity through the `increment_card_quantity` database function,
which performs the addition in a single UPDATE.
"""
import logging
from typing import Iterable

from errors import MarketplaceError, StorageError
from models.card import ImportLine, ImportLogEntry, ImportSummary
from services.catalog import find_catalog_card
from services.store import USER_CARDS, execute, execute_insert

logger = logging.getLogger(__name__)

INCREMENT_RPC = "increment_card_quantity"


def _increment_quantity(client, card_id: str, user_id: str, line: ImportLine) -> None:
    execute(
        client.rpc(INCREMENT_RPC, {
            "p_card_id": card_id,
            "p_user_id": user_id,
            "p_condition": line.condition.value,
            "p_foil": line.foil,
            "p_language": line.language.value,
            "p_quantity_to_add": line.quantity,
        }),
        "quantity increment",
    )


def reconcile_line(client, user_id: str, line: ImportLine) -> str:
    """Apply one import line; returns "inserted" or "incremented"."""
    card = find_catalog_card(client, line.name, line.set)

    result = execute_insert(
        client.table(USER_CARDS).insert({
            "card_id": card.id,
            "user_id": user_id,
            "quantity": line.quantity,
            "condition": line.condition.value,
            "foil": line.foil,
            "language": line.language.value,
        }),
        "owned card insert",
    )
    if result is not None:
        if not result.data:
            raise StorageError("owned card insert")
        return "inserted"

    _increment_quantity(client, card.id, user_id, line)
    return "incremented"


def import_lines(
    client, user_id: str, lines: Iterable[ImportLine], rejected: Iterable[str] = ()
) -> ImportSummary:
    """Import every line independently; a failed line never stops the rest.

    `rejected` carries raw lines a parser could not understand; they are
    reported as failures alongside the lines that fail here.
    """
    summary = ImportSummary()

    for line in lines:
        try:
            reconcile_line(client, user_id, line)
        except MarketplaceError as exc:
            summary.failed += 1
            summary.log.append(ImportLogEntry(line=line.display(), status="error", message=exc.message))
        else:
            summary.successful += 1
            summary.log.append(ImportLogEntry(line=line.display(), status="success"))

    for raw in rejected:
        summary.failed += 1
        summary.log.append(ImportLogEntry(line=raw, status="error", message="Could not parse line"))

    logger.info(
        f"Import finished: {summary.successful} successful, {summary.failed} failed",
        extra={"user_id": user_id},
    )
    return summary
