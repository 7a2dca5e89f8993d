"""Pydantic schemas for dashboard notices."""
from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class NoticeColor(str, Enum):
    """Accent colour of a notice; ``red`` marks urgent announcements."""
    BLUE = "blue"
    RED = "red"
    PURPLE = "purple"


class Notice(BaseModel):
    id: str
    title: str
    content: Optional[str] = None
    color: NoticeColor = NoticeColor.BLUE
    created_at: datetime


class CreateNoticeRequest(BaseModel):
    title: str = Field(..., min_length=1)
    content: Optional[str] = None
    color: NoticeColor = NoticeColor.BLUE


class UpdateNoticeRequest(BaseModel):
    """Partial update; unset fields are left unchanged."""
    title: Optional[str] = Field(None, min_length=1)
    content: Optional[str] = None
    color: Optional[NoticeColor] = None
