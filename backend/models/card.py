# backend/models/card.py
from pydantic import BaseModel, Field
from typing import Optional

from models.inventory import CardCondition, CardLanguage


# ============== Catalog Schemas ==============

class CatalogCard(BaseModel):
    """Canonical catalog entry (default_cards row) that owned cards point at."""
    id: str
    name: str
    set: str
    set_name: Optional[str] = None


# ============== Import Schemas ==============

class ImportLine(BaseModel):
    """One parsed line of a collection import."""
    name: str = Field(min_length=1)
    set: str = Field(min_length=1, description="Set code, matched case-insensitively")
    quantity: int = Field(default=1, ge=1)
    condition: CardCondition = CardCondition.NEAR_MINT
    foil: bool = False
    language: CardLanguage = CardLanguage.ENGLISH
    original_line: Optional[str] = Field(default=None, description="Raw text the line was parsed from")

    def display(self) -> str:
        return self.original_line or f"{self.quantity}x {self.name} ({self.set.upper()})"


class ImportRequest(BaseModel):
    lines: list[ImportLine]


class ImportTextRequest(BaseModel):
    format: str = Field(pattern="^(moxfield|manabox_csv)$")
    text: str


class ImportLogEntry(BaseModel):
    line: str
    status: str = Field(pattern="^(success|error)$")
    message: Optional[str] = None


class ImportSummary(BaseModel):
    successful: int = 0
    failed: int = 0
    log: list[ImportLogEntry] = []
