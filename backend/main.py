import logging
from contextlib import asynccontextmanager
from typing import Optional
from uuid import UUID

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from supabase import create_client, Client

from config import get_settings
from errors import MarketplaceError, ValidationError
from logging_config import setup_logging
from models.card import ImportRequest, ImportSummary, ImportTextRequest
from models.conversation import ConversationOpenResponse
from models.transaction import (
    CartAddRequest,
    CartAddResponse,
    CartCountResponse,
    CartGroupResponse,
    CartRemoveResponse,
    TransactionActionResponse,
    TransactionCancelRequest,
    TransactionWithItemsResponse,
)
from services import cart_items, conversations, import_parsers, import_reconciler, transaction_state
from services.transactions import get_transaction

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    setup_logging(settings.log_level, settings.log_format)
    logger.info("Marketplace API started")
    yield
    logger.info("Marketplace API shutting down")


app = FastAPI(title="Card Marketplace API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Supabase client, created on first use
supabase: Optional[Client] = None


def get_supabase() -> Client:
    global supabase
    if supabase is None:
        settings = get_settings()
        supabase = create_client(settings.supabase_url, settings.supabase_key)
    return supabase


def current_user(x_user_id: Optional[str] = Header(default=None)) -> str:
    """Caller identity, set by the authenticating proxy in front of the API."""
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Unauthorized")
    try:
        return str(UUID(x_user_id))
    except ValueError:
        raise HTTPException(status_code=401, detail="Unauthorized")


# ============== Error Handlers ==============

@app.exception_handler(MarketplaceError)
async def marketplace_error_handler(request: Request, exc: MarketplaceError):
    log = logger.error if exc.http_status >= 500 else logger.info
    log(
        f"{exc.code}: {exc.message}",
        extra={"error_code": exc.code, "path": request.url.path},
    )
    return JSONResponse(status_code=exc.http_status, content=exc.to_response())


@app.exception_handler(RequestValidationError)
async def request_validation_error_handler(request: Request, exc: RequestValidationError):
    logger.info(f"Validation error on {request.url.path}: {exc.errors()}")
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={
            "error": {
                "code": "VALIDATION_ERROR",
                "message": "Invalid request data",
                "details": [
                    {"field": ".".join(str(loc) for loc in e["loc"]), "message": e["msg"]}
                    for e in exc.errors()
                ],
            }
        },
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception on {request.url.path}: {exc}", exc_info=True)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": {"code": "INTERNAL_ERROR", "message": "An unexpected error occurred"}},
    )


@app.get("/")
def read_root():
    return {"message": "Card Marketplace API"}


@app.get("/health")
def health_check():
    return {"status": "healthy"}


# ============== Cart Endpoints ==============

@app.post("/cart/items", response_model=CartAddResponse)
async def add_to_cart(
    body: CartAddRequest,
    user_id: str = Depends(current_user),
    client: Client = Depends(get_supabase),
):
    """Add a listed card to the caller's cart with its seller."""
    return cart_items.add_to_cart(client, user_id, str(body.user_card_id))


@app.delete("/cart/items/{user_card_id}", response_model=CartRemoveResponse)
async def remove_from_cart(
    user_card_id: UUID,
    transaction_id: Optional[UUID] = Query(None),
    user_id: str = Depends(current_user),
    client: Client = Depends(get_supabase),
):
    """Remove a card from an open or pending cart."""
    return cart_items.remove_from_cart(
        client, user_id, str(user_card_id), str(transaction_id) if transaction_id else None
    )


@app.get("/cart", response_model=list[CartGroupResponse])
async def list_cart(
    user_id: str = Depends(current_user),
    client: Client = Depends(get_supabase),
):
    """The caller's carts, one per seller."""
    return cart_items.list_cart(client, user_id)


@app.get("/cart/count", response_model=CartCountResponse)
async def cart_count(
    user_id: str = Depends(current_user),
    client: Client = Depends(get_supabase),
):
    return {"count": cart_items.cart_count(client, user_id)}


@app.get("/cart/status", response_model=dict[str, bool])
async def cart_status(
    user_card_ids: Optional[str] = Query(None, description="Comma-separated owned card ids"),
    user_id: str = Depends(current_user),
    client: Client = Depends(get_supabase),
):
    """Map each owned card id to whether it is in one of the caller's carts."""
    ids = [value.strip() for value in (user_card_ids or "").split(",") if value.strip()]
    if not ids:
        raise ValidationError("user_card_ids parameter is required", field="user_card_ids")
    try:
        ids = [str(UUID(value)) for value in ids]
    except ValueError:
        raise ValidationError("user_card_ids must be comma-separated UUIDs", field="user_card_ids")
    return cart_items.cart_status(client, user_id, ids)


# ============== Transaction Endpoints ==============

@app.get("/transactions/{transaction_id}", response_model=TransactionWithItemsResponse)
async def read_transaction(
    transaction_id: UUID,
    user_id: str = Depends(current_user),
    client: Client = Depends(get_supabase),
):
    """A transaction and its items, for its buyer or seller."""
    return get_transaction(client, user_id, str(transaction_id))


@app.post("/transactions/{transaction_id}/clear", response_model=TransactionActionResponse)
async def clear_cart(
    transaction_id: UUID,
    user_id: str = Depends(current_user),
    client: Client = Depends(get_supabase),
):
    """Discard an open or pending cart."""
    cleared = cart_items.clear_cart(client, user_id, str(transaction_id))
    return {"transaction_id": cleared["id"], "status": cleared["status"], "message": "Cart cleared successfully."}


@app.post("/transactions/{transaction_id}/submit", response_model=TransactionActionResponse)
async def submit_cart(
    transaction_id: UUID,
    user_id: str = Depends(current_user),
    client: Client = Depends(get_supabase),
):
    """Buyer submits an open cart to the seller."""
    submitted = transaction_state.submit_cart(client, user_id, str(transaction_id))
    return {
        "transaction_id": submitted["id"],
        "status": submitted["status"],
        "message": "Transaction submitted successfully.",
    }


@app.post("/transactions/{transaction_id}/accept", response_model=TransactionActionResponse)
async def accept_transaction(
    transaction_id: UUID,
    user_id: str = Depends(current_user),
    client: Client = Depends(get_supabase),
):
    """Seller accepts a pending transaction."""
    accepted = transaction_state.accept_transaction(client, user_id, str(transaction_id))
    return {
        "transaction_id": accepted["id"],
        "status": accepted["status"],
        "message": "Transaction accepted successfully. You can now coordinate with the buyer to complete the exchange.",
    }


@app.post("/transactions/{transaction_id}/complete", response_model=TransactionActionResponse)
async def complete_transaction(
    transaction_id: UUID,
    user_id: str = Depends(current_user),
    client: Client = Depends(get_supabase),
):
    """Buyer marks an accepted transaction as complete."""
    completed = transaction_state.complete_transaction(client, user_id, str(transaction_id))
    return {
        "transaction_id": completed["id"],
        "status": completed["status"],
        "message": "Transaction marked as complete successfully.",
    }


@app.post("/transactions/{transaction_id}/cancel", response_model=TransactionActionResponse)
async def cancel_transaction(
    transaction_id: UUID,
    body: TransactionCancelRequest,
    user_id: str = Depends(current_user),
    client: Client = Depends(get_supabase),
):
    """Buyer cancels an accepted transaction, giving a reason."""
    cancelled = transaction_state.cancel_transaction(client, user_id, str(transaction_id), body.reason)
    return {
        "transaction_id": cancelled["id"],
        "status": cancelled["status"],
        "message": "Transaction cancelled successfully. The seller has been notified.",
    }


@app.post("/transactions/{transaction_id}/conversation", response_model=ConversationOpenResponse)
async def open_conversation(
    transaction_id: UUID,
    user_id: str = Depends(current_user),
    client: Client = Depends(get_supabase),
):
    """Find or start the conversation between the transaction's parties."""
    conversation, created = conversations.open_conversation(client, user_id, str(transaction_id))
    return {"conversation_id": conversation["id"], "created": created}


# ============== Collection Import Endpoints ==============

def _check_import_size(count: int) -> None:
    limit = get_settings().import_max_lines
    if count > limit:
        raise ValidationError(f"Import is limited to {limit} lines per request", field="lines")


@app.post("/collection/import", response_model=ImportSummary)
async def import_collection(
    body: ImportRequest,
    user_id: str = Depends(current_user),
    client: Client = Depends(get_supabase),
):
    """Import already-parsed lines into the caller's collection."""
    _check_import_size(len(body.lines))
    return import_reconciler.import_lines(client, user_id, body.lines)


@app.post("/collection/import/text", response_model=ImportSummary)
async def import_collection_text(
    body: ImportTextRequest,
    user_id: str = Depends(current_user),
    client: Client = Depends(get_supabase),
):
    """Parse a Moxfield list or ManaBox CSV export and import it."""
    lines, rejected = import_parsers.PARSERS[body.format](body.text)
    _check_import_size(len(lines) + len(rejected))
    if not lines and not rejected:
        raise ValidationError("Could not parse any cards. Please check the format.", field="text")
    return import_reconciler.import_lines(client, user_id, lines, rejected)
