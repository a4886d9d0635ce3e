"""
In-progress memory narratives, one per user.

Lets a user leave the assistant mid-story and pick it up later on any device.
"""

from typing import Optional

from sqlalchemy import String, Text
from sqlalchemy.orm import Mapped, mapped_column

from .base import RecordBase


class MemoryDraft(RecordBase):
    __tablename__ = "memory_drafts"

    user_id: Mapped[str] = mapped_column(String, unique=True, nullable=False)
    transcript: Mapped[str] = mapped_column(Text, nullable=False, default="")
    location: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    time_period: Mapped[Optional[str]] = mapped_column(String, nullable=True)
