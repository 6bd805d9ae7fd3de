from __future__ import annotations

import logging
import time
from typing import Any, Optional

import httpx
from fastapi import HTTPException, status
from jose import jwk, jwt
from jose.exceptions import JWSError, JWTError

from adpilot.config import settings

logger = logging.getLogger("auth.clerk")

JWKS_TTL_SECONDS = 300


class JwksCache:
    """Signing keys by kid, refreshed after a TTL or when an unknown kid shows up."""

    def __init__(self, url: str, ttl_seconds: int = JWKS_TTL_SECONDS) -> None:
        self.url = url
        self.ttl_seconds = ttl_seconds
        self._keys: dict[str, dict[str, Any]] = {}
        self._fetched_at = 0.0

    def _stale(self) -> bool:
        return not self._keys or (time.time() - self._fetched_at) >= self.ttl_seconds

    def refresh(self) -> None:
        try:
            resp = httpx.get(self.url, timeout=10)
            resp.raise_for_status()
            keys = resp.json().get("keys", [])
        except (httpx.HTTPError, ValueError) as exc:
            logger.exception("JWKS fetch failed", extra={"jwks_url": self.url})
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail="Unable to fetch signing keys",
            ) from exc
        self._keys = {key["kid"]: key for key in keys if key.get("kid")}
        self._fetched_at = time.time()

    def key_for(self, kid: str) -> Optional[dict[str, Any]]:
        if self._stale():
            self.refresh()
        key = self._keys.get(kid)
        if key is None:
            self.refresh()
            key = self._keys.get(kid)
        return key


_jwks = JwksCache(settings.CLERK_JWKS_URL)


def _audience_ok(claims: dict[str, Any]) -> bool:
    allowed = settings.CLERK_AUDIENCE
    if not allowed:
        return True
    aud = claims.get("aud")
    if aud is None:
        # Clerk session tokens omit aud unless a custom template adds it.
        return True
    values = aud if isinstance(aud, list) else [aud]
    return any(value in allowed for value in values)


def verify_user_token(token: str) -> dict[str, Any]:
    try:
        header = jwt.get_unverified_header(token)
    except JWTError as exc:
        logger.warning("Invalid token header", exc_info=exc)
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token") from exc

    kid = header.get("kid")
    if not kid:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing kid in token")
    public_key = _jwks.key_for(kid)
    if public_key is None:
        logger.warning("Signing key not found", extra={"kid": kid})
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Signing key not found")

    try:
        key = jwk.construct(public_key)
        claims = jwt.decode(
            token,
            key=key.to_pem().decode(),
            algorithms=[public_key.get("alg", "RS256")],
            issuer=settings.CLERK_JWT_ISSUER,
            options={"verify_aud": False},
        )
    except (JWTError, JWSError, ValueError) as exc:
        logger.warning("Token verification failed", exc_info=exc)
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token") from exc

    if not _audience_ok(claims):
        logger.warning("Token audience rejected", extra={"aud": claims.get("aud"), "sub": claims.get("sub")})
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token audience")
    return claims
