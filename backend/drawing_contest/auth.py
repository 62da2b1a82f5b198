"""
Authentication against the hosted auth provider.

Clients send the provider's access token as a bearer token. The provider is
asked who the token belongs to; the answer is mapped onto (or provisions) a row
in the users table, which carries the admin flag.
"""

import logging
from dataclasses import dataclass
from typing import Optional, Protocol

import requests
from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from .errors import Forbidden, ServiceUnavailable, Unauthenticated
from .schemas import UserOut
from .store import DataStore, get_store

logger = logging.getLogger(__name__)

security = HTTPBearer(auto_error=False)


@dataclass
class Identity:
    id: str
    email: str
    name: Optional[str] = None


class AuthProvider(Protocol):
    def identify(self, token: str) -> Optional[Identity]: ...


class HostedAuthProvider:
    def __init__(self, base_url: str, api_key: str, timeout: float = 10.0):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout

    def identify(self, token: str) -> Optional[Identity]:
        if not self.base_url:
            logger.error("AUTH_URL is not configured")
            raise ServiceUnavailable("Sign-in is not available right now")
        try:
            response = requests.get(
                f"{self.base_url}/auth/v1/user",
                headers={"apikey": self.api_key, "Authorization": f"Bearer {token}"},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            logger.warning("Auth provider unreachable: %s", e)
            raise ServiceUnavailable() from e

        if response.status_code in (401, 403):
            return None
        if not response.ok:
            logger.warning("Auth provider answered HTTP %s", response.status_code)
            raise ServiceUnavailable()

        data = response.json()
        metadata = data.get("user_metadata") or {}
        return Identity(id=data["id"], email=data.get("email", ""), name=metadata.get("name"))


def get_optional_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    store: DataStore = Depends(get_store),
) -> Optional[UserOut]:
    if credentials is None:
        return None
    identity = request.app.state.auth.identify(credentials.credentials)
    if identity is None:
        raise Unauthenticated("Session expired or invalid")
    return store.ensure_user(identity.id, identity.email, identity.name)


def get_current_user(user: Optional[UserOut] = Depends(get_optional_user)) -> UserOut:
    if user is None:
        raise Unauthenticated()
    return user


def require_admin(user: UserOut = Depends(get_current_user)) -> UserOut:
    if not user.is_admin:
        raise Forbidden("You must be an administrator to access this page")
    return user
