from pydantic import BaseModel


class ConversationOpenResponse(BaseModel):
    """Result of opening the conversation attached to a transaction."""
    conversation_id: str
    created: bool
