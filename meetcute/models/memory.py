"""
Submitted missed-connection memories.

A memory waits in the pool until the matcher pairs it with another user's
memory of the same encounter.
"""

from typing import Optional

from sqlalchemy import String, Text, Boolean, JSON
from sqlalchemy.orm import Mapped, mapped_column

from .base import RecordBase

MEMORY_WAITING = "waiting"
MEMORY_MATCHED = "matched"


class Memory(RecordBase):
    __tablename__ = "memories"

    user_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    description: Mapped[str] = mapped_column(Text, nullable=False)

    # What the user typed into the form
    location: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    time_period: Mapped[Optional[str]] = mapped_column(String, nullable=True)

    # What the LLM pulled out of the narrative
    extracted_location: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    extracted_time_period: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    extracted_details: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)

    embedding: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)

    status: Mapped[str] = mapped_column(
        String, nullable=False, default=MEMORY_WAITING, index=True
    )  # waiting, matched
    match_id: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    processed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    @property
    def display_location(self) -> Optional[str]:
        return self.extracted_location or self.location

    @property
    def display_time_period(self) -> Optional[str]:
        return self.extracted_time_period or self.time_period
