# backend/models/transaction.py
from datetime import datetime
from decimal import Decimal
from enum import Enum
from pydantic import BaseModel, Field, ConfigDict
from typing import Optional
from uuid import UUID


# ============== Enums ==============

class TransactionPhase(str, Enum):
    """What a transaction means to its parties.

    CART   == {open}               editable basket, no total yet
    ORDER  == {pending, accepted}  submitted with a frozen total, locked against edits
    CLOSED == {completed, cancelled}  terminal, kept for history
    """
    CART = "cart"
    ORDER = "order"
    CLOSED = "closed"


class TransactionStatus(str, Enum):
    """Transaction lifecycle states.

    open -> pending -> accepted -> completed, with accepted -> cancelled and
    open/pending -> cancelled when the buyer clears the cart.
    """
    OPEN = "open"
    PENDING = "pending"
    ACCEPTED = "accepted"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    @property
    def phase(self) -> TransactionPhase:
        if self is TransactionStatus.OPEN:
            return TransactionPhase.CART
        if self in (TransactionStatus.PENDING, TransactionStatus.ACCEPTED):
            return TransactionPhase.ORDER
        return TransactionPhase.CLOSED

    @property
    def is_active(self) -> bool:
        return self.phase is not TransactionPhase.CLOSED


# At most one transaction per (buyer, seller) may sit in one of these.
ACTIVE_STATUSES = (
    TransactionStatus.OPEN,
    TransactionStatus.PENDING,
    TransactionStatus.ACCEPTED,
)

# Statuses a buyer still treats as "in the cart".
CART_STATUSES = (TransactionStatus.OPEN, TransactionStatus.PENDING)


class Role(str, Enum):
    BUYER = "buyer"
    SELLER = "seller"


# ============== Row Schemas ==============

class TransactionItemResponse(BaseModel):
    """One line of a transaction, with price and condition frozen at add time."""
    id: str
    transaction_id: str
    user_card_id: str
    quantity: int = Field(default=1, ge=1)
    agreed_price: Decimal
    condition: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class TransactionResponse(BaseModel):
    """Full transaction row."""
    id: str
    buyer_id: str
    seller_id: str
    status: TransactionStatus
    total_amount: Optional[Decimal] = None
    cancelled_by: Optional[str] = None
    cancellation_reason: Optional[str] = None
    notes: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class TransactionWithItemsResponse(TransactionResponse):
    """Transaction with its items included."""
    items: list[TransactionItemResponse] = []


class CartGroupResponse(BaseModel):
    """A buyer's cart for one seller, as shown on the cart page."""
    transaction_id: str
    seller_id: str
    seller_name: Optional[str] = None
    status: TransactionStatus
    items: list[TransactionItemResponse] = []
    subtotal: Decimal = Decimal("0")


# ============== Request Schemas ==============

class CartAddRequest(BaseModel):
    user_card_id: UUID


class TransactionCancelRequest(BaseModel):
    """Cancellation reason is checked by the service so the error shape stays uniform."""
    reason: Optional[str] = None


# ============== Result Schemas ==============

class CartAddResponse(BaseModel):
    transaction_id: str
    added: bool = Field(description="False when the item was already in the cart")
    message: str


class CartRemoveResponse(BaseModel):
    transaction_id: str
    transaction_deleted: bool = Field(description="True when the cart became empty and was removed")
    message: str


class TransactionActionResponse(BaseModel):
    transaction_id: str
    status: TransactionStatus
    message: str


class CartCountResponse(BaseModel):
    count: int
