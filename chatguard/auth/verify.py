"""
verify.py
---------
Purpose:
    Firebase ID token verification using Google's published JWKS (RS256).

Notes:
    - Rejects expired, malformed, wrong-audience and wrong-issuer tokens.
    - Revocation is enforced later against the user record
      (`tokens_valid_after`), because it needs a fresh datastore read.
    - `optional_caller` lets a missing token reach the write pipeline, which
      rejects it as its first stage. Roles are never taken from claims.
"""

from dataclasses import dataclass, field
from typing import Any

import jwt
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jwt import PyJWKClient

from chatguard.config import settings
from chatguard.services.errors import AuthRequired

_jwk_client = PyJWKClient(settings.jwks_url())
_security = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class AuthenticatedCaller:
    """Verified identity supplied by the auth layer, never by the request body."""

    uid: str
    auth_time: float | None = None
    is_anonymous: bool = False
    email: str | None = None
    name: str | None = None
    claims: dict[str, Any] = field(default_factory=dict, compare=False)

    @classmethod
    def from_claims(cls, claims: dict[str, Any]) -> "AuthenticatedCaller":
        uid = claims.get("sub") or claims.get("user_id")
        if not uid or not isinstance(uid, str):
            raise AuthRequired("Invalid authentication token")
        firebase = claims.get("firebase") or {}
        auth_time = claims.get("auth_time")
        return cls(
            uid=uid,
            auth_time=float(auth_time) if auth_time is not None else None,
            is_anonymous=firebase.get("sign_in_provider") == "anonymous",
            email=claims.get("email"),
            name=claims.get("name"),
            claims=claims,
        )


def verify_token(token: str) -> AuthenticatedCaller:
    if not token or not isinstance(token, str):
        raise AuthRequired("Missing or invalid auth token")
    try:
        signing_key = _jwk_client.get_signing_key_from_jwt(token)
        decoded = jwt.decode(
            token,
            signing_key.key,
            algorithms=["RS256"],
            audience=settings.FIREBASE_PROJECT_ID,
            issuer=settings.token_issuer(),
            options={"verify_exp": True, "require": ["exp", "iat", "sub"]},
        )
    except jwt.PyJWTError as e:
        raise AuthRequired(f"Invalid authentication token: {e}") from e
    return AuthenticatedCaller.from_claims(decoded)


def optional_caller(
    credentials: HTTPAuthorizationCredentials | None = Depends(_security),
) -> AuthenticatedCaller | None:
    if credentials is None:
        return None
    return verify_token(credentials.credentials)
