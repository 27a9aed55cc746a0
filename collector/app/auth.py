"""Shared-secret authentication for tracker requests."""
from __future__ import annotations

import hmac
from typing import Optional

from fastapi import Depends, Header, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from .config import Settings
from .errors import AuthError

BEARER_SCHEME = "Bearer"
API_KEY_HEADER = "apikey"
auth_scheme = HTTPBearer(auto_error=False)


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def _matches(candidate: Optional[str], secret: str) -> bool:
    if candidate is None:
        return False
    return hmac.compare_digest(candidate.encode("utf-8"), secret.encode("utf-8"))


def check_credentials(
    settings: Settings,
    credentials: Optional[HTTPAuthorizationCredentials],
    api_key: Optional[str],
) -> None:
    """Accept a matching bearer token or a matching ``apikey`` header.

    Raises ``ConfigurationError`` before looking at the credentials when the
    deployment is missing its secret or owner.
    """

    settings.require_ingestion()
    secret = settings.secret_key
    bearer_ok = (
        credentials is not None
        and credentials.scheme == BEARER_SCHEME
        and _matches(credentials.credentials, secret)
    )
    if bearer_ok or _matches(api_key, secret):
        return
    raise AuthError("Unauthorized")


def verify_ingest_credentials(
    settings: Settings = Depends(get_settings),
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(auth_scheme),
    api_key: Optional[str] = Header(None, alias=API_KEY_HEADER),
) -> Settings:
    check_credentials(settings, credentials, api_key)
    return settings
