"""
Billow Backend — Bearer Token Gate
===================================

What:  FastAPI dependency guarding the mutating /homes routes.
Why:   Only signed-in agents may create, update or delete listings.
How:   Reads `Authorization: Bearer <jwt>`, verifies signature and expiry
       with PyJWT against JWT_SECRET. On success the request continues
       unchanged; on any failure it is rejected with 401.

Token issuance lives in the user service, not here. The only claims relied
on are the signature and `exp`; the decoded payload is returned so handlers
can log who acted.
"""

import logging
from typing import Any, Dict, Optional

import jwt
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from app.config import settings
from app.exceptions import UnauthorizedError

logger = logging.getLogger(__name__)

# auto_error=False: a missing header becomes our 401 JSON, not FastAPI's 403
bearer_scheme = HTTPBearer(auto_error=False)


def verify_token(token: str) -> Dict[str, Any]:
    """
    Decode and verify a JWT.

    Raises:
        UnauthorizedError: secret unset, bad signature, malformed or expired token
    """
    if not settings.jwt_secret:
        logger.error("JWT_SECRET is not configured; rejecting authenticated request")
        raise UnauthorizedError()
    try:
        return jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except jwt.ExpiredSignatureError:
        raise UnauthorizedError(context={"reason": "expired"})
    except jwt.InvalidTokenError as e:
        raise UnauthorizedError(context={"reason": type(e).__name__})


async def require_auth(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> Dict[str, Any]:
    """Dependency: verified token claims, or UnauthorizedError (401)."""
    if credentials is None or not credentials.credentials:
        raise UnauthorizedError(context={"reason": "missing"})
    claims = verify_token(credentials.credentials)
    logger.debug("Authenticated request for subject %s", claims.get("sub", "<unknown>"))
    return claims
