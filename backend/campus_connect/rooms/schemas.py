"""Pydantic schemas for chat rooms."""
from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class RoomKind(str, Enum):
    """Kind of chat room.

    Attributes:
        GROUP: Open channel, senders always shown.
        DM: Direct conversation between exactly two identities.
        ANONYMOUS: Every message is stamped anonymous at send time.
    """
    GROUP = "group"
    DM = "dm"
    ANONYMOUS = "anonymous"


class Room(BaseModel):
    id: str
    name: str
    type: RoomKind
    subject_id: Optional[str] = None
    dm_key: Optional[str] = Field(None, description="Sorted participant pair, dm rooms only")
    created_at: datetime


class DirectMessageRequest(BaseModel):
    self_id: str = Field(..., min_length=1)
    other_id: str = Field(..., min_length=1)
