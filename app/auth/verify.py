"""
verify.py
---------
Purpose:
    Identify the calendar user behind each add-on request.

Notes:
    - The add-on host sends a Google-signed ID token (RS256) as a bearer token.
    - Signing keys come from ADDON_JWKS_URL; PyJWKClient caches them.
    - Google issues tokens under two issuer spellings; both are accepted.
    - `current_user_email` is the dependency routes use.
"""

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jwt import PyJWKClient

from app.config import settings
from app.infrastructure.observability.logging import get_logger
from app.models.domain.access_domain import normalize_email

logger = get_logger(__name__)

GOOGLE_ISSUERS = ("accounts.google.com", "https://accounts.google.com")

_jwk_client = PyJWKClient(settings.ADDON_JWKS_URL)
_bearer = HTTPBearer()


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def accepted_issuers() -> set[str]:
    issuers = {settings.ADDON_ISSUER}
    if settings.ADDON_ISSUER in GOOGLE_ISSUERS:
        issuers.update(GOOGLE_ISSUERS)
    return issuers


def decode_identity_token(token: str) -> dict:
    """Verify signature, expiry, issuer and (when configured) audience."""
    try:
        signing_key = _jwk_client.get_signing_key_from_jwt(token)
        claims = jwt.decode(
            token,
            signing_key.key,
            algorithms=["RS256"],
            audience=settings.ADDON_AUDIENCE,
            options={"require": ["exp", "iss"], "verify_aud": bool(settings.ADDON_AUDIENCE)},
        )
    except jwt.PyJWTError as e:
        logger.warning("Identity token rejected", error_type=type(e).__name__, error=str(e))
        raise _unauthorized(f"Invalid authentication token: {e}") from e

    if claims.get("iss") not in accepted_issuers():
        logger.warning("Identity token from unexpected issuer", issuer=claims.get("iss"))
        raise _unauthorized("Invalid authentication token: unexpected issuer")
    return claims


def email_from_claims(claims: dict) -> str:
    email = normalize_email(claims.get("email") or "")
    if not email:
        raise _unauthorized("Identity token has no email claim")
    # Google sends the flag as a bool; some hosts send the string form
    if str(claims.get("email_verified", True)).lower() == "false":
        raise _unauthorized("Identity token email is not verified")
    return email


def auth_dependency(credentials: HTTPAuthorizationCredentials = Depends(_bearer)) -> dict:
    return decode_identity_token(credentials.credentials)


def current_user_email(claims: dict = Depends(auth_dependency)) -> str:
    return email_from_claims(claims)
