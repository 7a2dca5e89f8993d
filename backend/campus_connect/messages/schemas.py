"""Pydantic schemas for chat messages."""
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class Message(BaseModel):
    """A stored message, optionally joined with its sender's profile.

    Attributes:
        id: Unique message id.
        room_id: Owning room.
        sender_id: True sender identity, kept even for anonymous messages.
        content: Message text.
        is_anonymous: Stamped from the room kind at send time; never
            recomputed afterwards.
        created_at: Creation time (UTC).
        sender_name: Sender's stored full name, None if the profile is gone.
        sender_credential: Sender's credential, None if the profile is gone.
    """
    id: str
    room_id: str
    sender_id: str
    content: str
    is_anonymous: bool = False
    created_at: datetime
    sender_name: Optional[str] = None
    sender_credential: Optional[str] = None


class SendMessageRequest(BaseModel):
    sender_id: str = Field(..., min_length=1)
    content: str = Field(default="")


class PurgeRequest(BaseModel):
    older_than_days: float = Field(..., gt=0, description="Delete messages older than this")
