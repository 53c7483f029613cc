"""Employer authentication.

Accounts are managed by the main product; this service only verifies the
bearer JWT it issues. Tokens use the fastapi-users layout (``sub`` holds the
account id, audience ``fastapi-users:auth``) so a login token from the
product is accepted here unchanged.
"""
from dataclasses import dataclass
from typing import Optional

import jwt
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from fastapi_users.jwt import decode_jwt, generate_jwt

from takehome.core.config import settings
from takehome.core.error_handling import AuthenticationError

TOKEN_AUDIENCE = ["fastapi-users:auth"]


@dataclass(frozen=True)
class Account:
    id: int
    subscription_status: Optional[str] = None

    @property
    def has_active_subscription(self) -> bool:
        return self.subscription_status == "active"


bearer_scheme = HTTPBearer(auto_error=False)


async def current_account(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> Account:
    if credentials is None or not credentials.credentials:
        raise AuthenticationError("Missing bearer token")
    try:
        payload = decode_jwt(credentials.credentials, settings.jwt_secret, TOKEN_AUDIENCE)
    except jwt.PyJWTError as exc:
        raise AuthenticationError("Invalid or expired token", details={"reason": type(exc).__name__})
    try:
        account_id = int(payload.get("sub"))
    except (TypeError, ValueError):
        raise AuthenticationError("Token subject is not an account id")
    return Account(id=account_id, subscription_status=payload.get("subscription"))


def issue_account_token(
    account_id: int,
    subscription_status: Optional[str] = None,
    lifetime_seconds: Optional[int] = None,
) -> str:
    """Mint a bearer token for an employer account (scripts and tests)."""
    data = {"sub": str(account_id), "aud": TOKEN_AUDIENCE}
    if subscription_status:
        data["subscription"] = subscription_status
    return generate_jwt(data, settings.jwt_secret, lifetime_seconds or settings.jwt_lifetime_seconds)
