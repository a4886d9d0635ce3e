"""
Service error → HTTP status mapping, shared by the v1 routers.
"""

from fastapi import HTTPException, status

from ..core.errors import (
    AlreadyResponded,
    ConversationNotFound,
    InfrastructureError,
    InvalidMatch,
    InvalidMemory,
    MatchNotFound,
    MatchNotPending,
    MeetCuteError,
    MemoryLocked,
    MemoryNotFound,
    NotAParticipant,
)

_STATUS = [
    (MatchNotFound, status.HTTP_404_NOT_FOUND),
    (MemoryNotFound, status.HTTP_404_NOT_FOUND),
    (ConversationNotFound, status.HTTP_404_NOT_FOUND),
    (NotAParticipant, status.HTTP_403_FORBIDDEN),
    (AlreadyResponded, status.HTTP_409_CONFLICT),
    (MatchNotPending, status.HTTP_409_CONFLICT),
    (MemoryLocked, status.HTTP_409_CONFLICT),
    (InvalidMemory, status.HTTP_400_BAD_REQUEST),
    (InvalidMatch, status.HTTP_400_BAD_REQUEST),
    (InfrastructureError, status.HTTP_503_SERVICE_UNAVAILABLE),
]


def http_error(exc: MeetCuteError) -> HTTPException:
    for error_type, code in _STATUS:
        if isinstance(exc, error_type):
            return HTTPException(status_code=code, detail=str(exc) or error_type.__name__)
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Internal error")
