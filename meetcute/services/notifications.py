"""
Notification counts — what is waiting on a user right now.

Always recomputed from the tables; there is nothing to invalidate.
"""

import logging
from dataclasses import dataclass, asdict

from sqlalchemy import case, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models.conversation import Conversation, ConversationParticipant, Message
from . import matching

logger = logging.getLogger(__name__)


@dataclass
class NotificationCounts:
    pending_matches: int = 0
    unread_messages: int = 0
    spark_messages: int = 0      # unread, in conversations unlocked by a match
    private_messages: int = 0    # unread, everywhere else

    def to_dict(self) -> dict:
        return asdict(self)


async def counts(db: AsyncSession, user_id: str) -> NotificationCounts:
    pending = await matching.pending_for(db, user_id)

    mine = select(ConversationParticipant.conversation_id).where(
        ConversationParticipant.user_id == user_id
    )
    from_match = case((Conversation.match_id.is_(None), 0), else_=1)
    result = await db.execute(
        select(from_match, func.count(Message.id))
        .select_from(Message)
        .join(Conversation, Conversation.id == Message.conversation_id)
        .where(
            Message.conversation_id.in_(mine),
            Message.sender_id != user_id,
            Message.read_at.is_(None),
        )
        .group_by(from_match)
    )

    spark = 0
    private = 0
    for is_spark, n in result.all():
        if is_spark:
            spark += n
        else:
            private += n

    return NotificationCounts(
        pending_matches=len(pending),
        unread_messages=spark + private,
        spark_messages=spark,
        private_messages=private,
    )
