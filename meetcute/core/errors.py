"""
Exception hierarchy for the matching engine.

Infrastructure errors are transient and may be retried by the caller.
Match errors describe the state machine refusing a transition.
"""


class MeetCuteError(Exception):
    """Base class for every error raised by meetcute services."""
    pass


# ── Infrastructure ───────────────────────────────────────────────────

class InfrastructureError(MeetCuteError):
    pass


class StoreUnavailable(InfrastructureError):
    """The database could not be reached after retries."""
    pass


class EmbeddingUnavailable(InfrastructureError):
    """The embedding provider failed, timed out, or returned a bad vector."""
    pass


# ── Memories ─────────────────────────────────────────────────────────

class MemoryNotFound(MeetCuteError):
    pass


class MemoryLocked(MeetCuteError):
    """The memory is matched and can no longer be changed by its owner."""
    pass


class InvalidMemory(MeetCuteError):
    """Submitted text failed validation."""
    pass


# ── Matches ──────────────────────────────────────────────────────────

class MatchError(MeetCuteError):
    pass


class DuplicateMatch(MatchError):
    """An active match already exists for this memory pair."""
    pass


class MemoryAlreadyMatched(MatchError):
    """One of the memories left the waiting state before the match was written."""
    pass


class InvalidMatch(MatchError):
    pass


class MatchNotFound(MatchError):
    pass


class MatchNotPending(MatchError):
    pass


class AlreadyResponded(MatchError):
    pass


class NotAParticipant(MatchError):
    pass


# ── Conversations ────────────────────────────────────────────────────

class ConversationNotFound(MeetCuteError):
    """No such conversation, or the caller is not one of its participants."""
    pass
