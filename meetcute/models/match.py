"""
Proposed links between two memories owned by two different users.

active_pair_key is unique and only set while the match is not declined, so
the database itself refuses a second live match for the same memory pair.
"""

from typing import Optional

from sqlalchemy import String, Text, Float, Boolean
from sqlalchemy.orm import Mapped, mapped_column

from .base import RecordBase

MATCH_PENDING = "pending"
MATCH_ACCEPTED = "accepted"
MATCH_DECLINED = "declined"


class Match(RecordBase):
    __tablename__ = "matches"

    memory1_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    memory2_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    # Owners of memory1 / memory2, copied at creation and never changed
    user1_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    user2_id: Mapped[str] = mapped_column(String, nullable=False, index=True)

    confidence_score: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    match_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(
        String, nullable=False, default=MATCH_PENDING, index=True
    )  # pending, accepted, declined

    # None = no answer yet, True = accepted, False = declined
    user1_confirmed: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)
    user2_confirmed: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)

    active_pair_key: Mapped[Optional[str]] = mapped_column(
        String, nullable=True, unique=True
    )

    def is_participant(self, user_id: str) -> bool:
        return user_id in (self.user1_id, self.user2_id)

    def confirmation_of(self, user_id: str) -> Optional[bool]:
        return self.user1_confirmed if user_id == self.user1_id else self.user2_confirmed

    def other_user(self, user_id: str) -> str:
        return self.user2_id if user_id == self.user1_id else self.user1_id

    def other_memory(self, user_id: str) -> str:
        return self.memory2_id if user_id == self.user1_id else self.memory1_id
