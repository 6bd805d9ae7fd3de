import hmac
import logging
from dataclasses import dataclass

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from adpilot.auth.clerk import verify_user_token
from adpilot.config import settings

bearer_scheme = HTTPBearer(auto_error=False)
logger = logging.getLogger("auth.deps")


@dataclass
class AuthContext:
    user_id: str


def get_current_user(credentials: HTTPAuthorizationCredentials = Depends(bearer_scheme)) -> AuthContext:
    if credentials is None or not credentials.credentials:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing bearer token")

    claims = verify_user_token(credentials.credentials)
    user_id = claims.get("sub")
    if not user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token claims")
    return AuthContext(user_id=user_id)


def require_cron_secret(credentials: HTTPAuthorizationCredentials = Depends(bearer_scheme)) -> None:
    """Shared-secret check for the external timer and agent callbacks."""
    expected = settings.CRON_SECRET
    provided = credentials.credentials.strip() if credentials and credentials.credentials else ""
    if not expected or not provided or not hmac.compare_digest(provided, expected):
        logger.warning("Rejected cron request", extra={"has_secret": bool(expected), "has_token": bool(provided)})
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized. Invalid CRON_SECRET.")
