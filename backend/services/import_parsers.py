# backend/services/import_parsers.py
"""Turn collection exports into ImportLine objects.

Both parsers return (lines, rejected) where `rejected` holds the raw text of
every line that could not be understood, so the caller can report it.
"""
import csv
import io
import re

from pydantic import ValidationError as PydanticValidationError

from models.card import ImportLine
from models.inventory import CardCondition, CardLanguage

# "4 Lightning Bolt (M10) 146"
MOXFIELD_LINE = re.compile(r"^(\d+)\s+(.+?)\s+\(([^)]+)\)\s+([\w\d-]+)$")

_CONDITION_ALIASES = {
    "nm": CardCondition.NEAR_MINT,
    "lp": CardCondition.LIGHTLY_PLAYED,
    "mp": CardCondition.MODERATELY_PLAYED,
    "hp": CardCondition.HEAVILY_PLAYED,
    "dmg": CardCondition.DAMAGED,
}

_LANGUAGE_CODES = {
    "en": CardLanguage.ENGLISH,
    "es": CardLanguage.SPANISH,
    "fr": CardLanguage.FRENCH,
    "de": CardLanguage.GERMAN,
    "it": CardLanguage.ITALIAN,
    "pt": CardLanguage.PORTUGUESE,
    "ja": CardLanguage.JAPANESE,
    "ko": CardLanguage.KOREAN,
    "ru": CardLanguage.RUSSIAN,
    "zh": CardLanguage.CHINESE_SIMPLIFIED,
}


def normalize_condition(value: str) -> CardCondition:
    value = (value or "").strip().lower()
    if value in _CONDITION_ALIASES:
        return _CONDITION_ALIASES[value]
    # Order matters: "lightly played" also contains "played".
    if "mint" in value:
        return CardCondition.NEAR_MINT
    if "light" in value:
        return CardCondition.LIGHTLY_PLAYED
    if "heav" in value:
        return CardCondition.HEAVILY_PLAYED
    if "damag" in value:
        return CardCondition.DAMAGED
    if "played" in value or "moderate" in value:
        return CardCondition.MODERATELY_PLAYED
    return CardCondition.NEAR_MINT


def normalize_language(value: str) -> CardLanguage:
    value = (value or "").strip().lower()
    if value in _LANGUAGE_CODES:
        return _LANGUAGE_CODES[value]
    if "chinese" in value:
        return CardLanguage.CHINESE_SIMPLIFIED
    for language in CardLanguage:
        if language.value in value:
            return language
    return CardLanguage.ENGLISH


def parse_moxfield(text: str) -> tuple[list[ImportLine], list[str]]:
    """Parse `<qty> <name> (<SET>) <number>` lines."""
    lines, rejected = [], []
    for raw in (text or "").splitlines():
        if not raw.strip():
            continue
        match = MOXFIELD_LINE.match(raw.strip())
        if not match:
            rejected.append(raw)
            continue
        try:
            lines.append(ImportLine(
                quantity=int(match.group(1)),
                name=match.group(2).strip(),
                set=match.group(3).strip().lower(),
                original_line=raw,
            ))
        except PydanticValidationError:
            rejected.append(raw)
    return lines, rejected


def _column(headers: list[str], needle: str) -> int:
    for index, header in enumerate(headers):
        if needle in header.strip().lower():
            return index
    return -1


def parse_manabox_csv(text: str) -> tuple[list[ImportLine], list[str]]:
    """Parse a ManaBox CSV export (header row required)."""
    raw_lines = [line for line in (text or "").splitlines() if line.strip()]
    if len(raw_lines) < 2:
        return [], []

    reader = csv.reader(io.StringIO("\n".join(raw_lines)))
    headers = next(reader)
    # "name" would also match "Set name", so prefer an exact header first.
    name_idx = next(
        (i for i, h in enumerate(headers) if h.strip().lower() == "name"),
        _column(headers, "name"),
    )
    set_idx = _column(headers, "set code")
    foil_idx = _column(headers, "foil")
    quantity_idx = _column(headers, "quantity")
    condition_idx = _column(headers, "condition")
    language_idx = _column(headers, "language")

    def cell(columns: list[str], index: int) -> str:
        return columns[index].strip() if 0 <= index < len(columns) else ""

    lines, rejected = [], []
    for raw, columns in zip(raw_lines[1:], reader):
        name = cell(columns, name_idx)
        set_code = cell(columns, set_idx).lower()
        quantity_text = cell(columns, quantity_idx) or "1"
        if not name or not set_code or not quantity_text.isdigit() or int(quantity_text) <= 0:
            rejected.append(raw)
            continue

        lines.append(ImportLine(
            name=name,
            set=set_code,
            quantity=int(quantity_text),
            foil=cell(columns, foil_idx).lower() in ("foil", "true", "etched"),
            condition=normalize_condition(cell(columns, condition_idx)),
            language=normalize_language(cell(columns, language_idx)),
            original_line=raw,
        ))
    return lines, rejected


PARSERS = {
    "moxfield": parse_moxfield,
    "manabox_csv": parse_manabox_csv,
}
