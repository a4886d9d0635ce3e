"""
Private two-party conversations, their participants and messages.
A conversation is unlocked once both owners of a match confirm it.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import String, Text, DateTime, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import RecordBase


class Conversation(RecordBase):
    __tablename__ = "conversations"

    # Sorted participant ids joined with ":". Unique, so two racing creators
    # for the same pair cannot both succeed.
    participant_key: Mapped[Optional[str]] = mapped_column(
        String, nullable=True, unique=True
    )
    # The accepted match that unlocked this conversation, if any
    match_id: Mapped[Optional[str]] = mapped_column(String, nullable=True, index=True)
    last_message_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    participants: Mapped[list["ConversationParticipant"]] = relationship(
        back_populates="conversation",
        cascade="all, delete-orphan",
        lazy="selectin",
    )


class ConversationParticipant(RecordBase):
    __tablename__ = "conversation_participants"

    conversation_id: Mapped[str] = mapped_column(
        String, ForeignKey("conversations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_id: Mapped[str] = mapped_column(String, nullable=False, index=True)

    conversation: Mapped["Conversation"] = relationship(back_populates="participants")


class Message(RecordBase):
    __tablename__ = "messages"

    conversation_id: Mapped[str] = mapped_column(
        String, ForeignKey("conversations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    sender_id: Mapped[str] = mapped_column(String, nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    read_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
