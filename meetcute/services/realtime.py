"""
Realtime notifications. Thin wrapper around core.redis.
Provides typed event helpers for the matching flow.
"""

from ..core import redis as _redis


# ── Match events ─────────────────────────────────────────────────────

async def match_created(match) -> None:
    owners = (match.user1_id, match.user2_id)
    await _redis.notify_users(
        owners, "match.created", {"match_id": match.id, "confidence": match.confidence_score}
    )
    await notifications_changed(*owners)


async def match_updated(match) -> None:
    owners = (match.user1_id, match.user2_id)
    await _redis.notify_users(owners, "match.updated", {"match_id": match.id, "status": match.status})
    await notifications_changed(*owners)


# ── Conversation events ──────────────────────────────────────────────

async def conversation_created(conversation_id: str, user_ids: list[str]) -> None:
    await _redis.notify_users(user_ids, "conversation.created", {"conversation_id": conversation_id})


async def message_sent(conversation_id: str, recipient_ids: list[str]) -> None:
    await _redis.notify_users(recipient_ids, "message.created", {"conversation_id": conversation_id})
    await notifications_changed(*recipient_ids)


# ── Generic ──────────────────────────────────────────────────────────

async def notifications_changed(*user_ids: str) -> None:
    """Tell clients to refetch their counts."""
    await _redis.notify_users(user_ids, "notifications.changed")
