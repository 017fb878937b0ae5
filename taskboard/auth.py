"""Session handling on top of an external identity provider.

The app never sees credentials. An identity provider turns a request into a
set of claims once, at ``/api/login``; after that the user id lives in the
signed session cookie and every API call is resolved from there.
"""

import logging
from dataclasses import dataclass
from typing import Optional, Protocol

from fastapi import HTTPException, Request, status

logger = logging.getLogger(__name__)

SESSION_USER_KEY = "user_id"


@dataclass(frozen=True)
class UserClaims:
    sub: str
    email: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    profile_image_url: Optional[str] = None


class IdentityProvider(Protocol):
    def resolve(self, request: Request) -> Optional[UserClaims]:
        ...


class HeaderIdentityProvider:
    """Trusts identity headers set by an authenticating reverse proxy.

    Only deploy this behind a proxy that strips these headers from client
    requests before setting its own.
    """

    def __init__(self, prefix: str = "X-Forwarded-"):
        self.prefix = prefix

    def _header(self, request: Request, name: str) -> Optional[str]:
        value = request.headers.get(f"{self.prefix}{name}")
        if not value:
            return None
        return value.strip() or None

    def resolve(self, request: Request) -> Optional[UserClaims]:
        sub = self._header(request, "User")
        if not sub:
            return None
        return UserClaims(
            sub=sub,
            email=self._header(request, "Email"),
            first_name=self._header(request, "First-Name"),
            last_name=self._header(request, "Last-Name"),
            profile_image_url=self._header(request, "Profile-Image-Url"),
        )


def unauthorized() -> HTTPException:
    return HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")


def session_user_id(request: Request) -> Optional[str]:
    user_id = request.session.get(SESSION_USER_KEY)
    return user_id if isinstance(user_id, str) and user_id else None


def current_user_id(request: Request) -> str:
    """Dependency for API routes: the logged-in user's id, or a 401."""
    user_id = session_user_id(request)
    if user_id is None:
        raise unauthorized()
    return user_id


def start_session(request: Request, user_id: str) -> None:
    request.session.clear()
    request.session[SESSION_USER_KEY] = user_id
    logger.info("Session started for user %s", user_id)


def end_session(request: Request) -> None:
    request.session.clear()
