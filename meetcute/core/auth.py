"""
Who is calling. Memory owners sign in through Auth0; operators carry the
"admin" role, which unlocks the reconciliation sweep.

With FF_USE_AUTH0=false every request runs as a local admin.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Optional

import httpx
from jose import jwt, JWTError

from .config import get_settings
from .flags import get_flags

logger = logging.getLogger(__name__)

ADMIN_ROLE = "admin"
KEY_CACHE_SECONDS = 600


@dataclass
class AuthenticatedUser:
    user_id: str
    roles: list[str] = field(default_factory=list)

    @property
    def is_admin(self) -> bool:
        return ADMIN_ROLE in self.roles


LOCAL_USER = AuthenticatedUser(user_id="local-user", roles=[ADMIN_ROLE])


class TokenVerifier:
    """Checks RS256 access tokens against the tenant's published signing keys."""

    def __init__(self):
        self._keys: list[dict] = []
        self._loaded_at = 0.0

    async def _signing_keys(self, domain: str) -> list[dict]:
        if self._keys and time.time() - self._loaded_at < KEY_CACHE_SECONDS:
            return self._keys

        async with httpx.AsyncClient(timeout=10) as client:
            resp = await client.get(f"https://{domain}/.well-known/jwks.json")
            resp.raise_for_status()
        self._keys = resp.json().get("keys", [])
        self._loaded_at = time.time()
        logger.info("Loaded %d signing keys from %s", len(self._keys), domain)
        return self._keys

    async def _key_for(self, domain: str, kid: Optional[str]) -> dict:
        for key in await self._signing_keys(domain):
            if key.get("kid") == kid:
                return {k: key[k] for k in ("kty", "kid", "use", "n", "e")}
        raise JWTError(f"No signing key with kid={kid}")

    async def verify(self, token: str) -> AuthenticatedUser:
        settings = get_settings()
        key = await self._key_for(settings.auth0_domain, jwt.get_unverified_header(token).get("kid"))
        claims = jwt.decode(
            token,
            key,
            algorithms=[settings.auth0_algorithm],
            audience=settings.auth0_audience,
            issuer=f"https://{settings.auth0_domain}/",
        )
        roles = claims.get(settings.auth0_roles_claim) or []
        return AuthenticatedUser(user_id=claims.get("sub", ""), roles=list(roles))


_verifier = TokenVerifier()


async def get_current_user(authorization: str = "") -> AuthenticatedUser:
    """Resolve the caller from an Authorization header. Raises PermissionError."""
    if not get_flags().use_auth0:
        return LOCAL_USER

    scheme, _, token = (authorization or "").partition(" ")
    if scheme.lower() != "bearer" or not token:
        raise PermissionError("Expected 'Authorization: Bearer <token>'")

    try:
        user = await _verifier.verify(token)
    except JWTError as e:
        raise PermissionError(f"Invalid token: {e}")

    if not user.user_id:
        raise PermissionError("Token has no subject")
    return user
