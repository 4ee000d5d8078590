"""
Define Message structure to ensure consistency in the system
"""

from datetime import datetime, timezone
from typing import Optional, Union

from pydantic import BaseModel, field_validator

MessageId = Union[int, str]

# Longer bodies are stored in full, only the card preview is cut.
TRUNCATE_AT = 300


class Message(BaseModel):
    """A guestbook entry as persisted by whichever store accepted it."""

    id: Optional[MessageId] = None
    name: str
    message: str
    photo: Optional[str] = None
    created_at: Optional[datetime] = None

    @field_validator("created_at")
    @classmethod
    def _assume_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value


class MessagePayload(BaseModel):
    """
    Body of POST /messages.
    Create form: {name, message, photo?}. Update form: {id, photo}.
    """

    id: Optional[MessageId] = None
    name: Optional[str] = None
    message: Optional[str] = None
    photo: Optional[str] = None


class ErrorResponse(BaseModel):
    """Error body returned on every 4xx/5xx."""

    error: str


def same_message(a: Message, b: Message) -> bool:
    """
    De-duplication rule shared by every merge path.

    Two rows are the same message when both ids are known and equal, or when
    one id is unknown and name and message both match. Identical content from
    two different people before the id round-trips is merged too; that is an
    accepted limitation.
    """
    if a.id is not None and b.id is not None:
        return str(a.id) == str(b.id)
    return a.name == b.name and a.message == b.message
