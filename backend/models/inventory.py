# backend/models/inventory.py
from decimal import Decimal
from enum import Enum
from pydantic import BaseModel
from typing import Optional


# ============== Enums ==============

class CardCondition(str, Enum):
    NEAR_MINT = "near_mint"
    LIGHTLY_PLAYED = "lightly_played"
    MODERATELY_PLAYED = "moderately_played"
    HEAVILY_PLAYED = "heavily_played"
    DAMAGED = "damaged"


class CardLanguage(str, Enum):
    ENGLISH = "english"
    SPANISH = "spanish"
    FRENCH = "french"
    GERMAN = "german"
    ITALIAN = "italian"
    PORTUGUESE = "portuguese"
    JAPANESE = "japanese"
    KOREAN = "korean"
    RUSSIAN = "russian"
    CHINESE_SIMPLIFIED = "chinese_simplified"


class Listing(BaseModel):
    """What the cart needs to know about a sellable owned card."""
    user_card_id: str
    seller_id: str
    price: Decimal
    condition: Optional[str] = None
