"""Session provider: resolve, establish and end the signed-in identity.

One contract, two bindings. ``RequestSessionProvider`` works on the
request-scoped Litestar cookie session inside the server;
``smartbookmark.client.ClientSessionProvider`` drives the same operations
over HTTP from outside it.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable
from uuid import UUID

from smartbookmark.auth.oauth_account_service import find_or_create_oauth_user
from smartbookmark.auth.providers import NormalizedUserData, exchange_and_fetch
from smartbookmark.auth.session_keys import (
    SESSION_FLASH,
    SESSION_OAUTH_CODE_VERIFIER,
    SESSION_OAUTH_PROVIDER,
    SESSION_USER_EMAIL,
    SESSION_USER_ID,
    SESSION_USER_NAME,
    SESSION_USER_PICTURE_URL,
)
from smartbookmark.lib.exceptions import AuthError

if TYPE_CHECKING:
    from litestar import Request
    from sqlalchemy.ext.asyncio import AsyncSession

    from smartbookmark.config import Settings
    from smartbookmark.db.models.user import User


@dataclass(frozen=True)
class CurrentUser:
    """The identity behind a session."""

    id: str
    email: str | None = None
    name: str | None = None
    picture_url: str | None = None

    @property
    def uuid(self) -> UUID:
        return UUID(self.id)

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "email": self.email, "name": self.name}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CurrentUser:
        return cls(
            id=str(data["id"]),
            email=data.get("email"),
            name=data.get("name"),
            picture_url=data.get("picture_url"),
        )


@runtime_checkable
class SessionProvider(Protocol):
    async def get_session(self) -> CurrentUser | None: ...
    async def exchange_code(self, code: str, *, provider: str | None = None) -> CurrentUser: ...
    async def sign_out(self) -> None: ...


def current_user_from_session(session: dict[str, Any]) -> CurrentUser | None:
    """Build the CurrentUser stored in a cookie session, if any."""
    user_id = session.get(SESSION_USER_ID)
    if not user_id:
        return None
    try:
        UUID(str(user_id))
    except ValueError:
        return None
    return CurrentUser(
        id=str(user_id),
        email=session.get(SESSION_USER_EMAIL),
        name=session.get(SESSION_USER_NAME),
        picture_url=session.get(SESSION_USER_PICTURE_URL),
    )


def set_login_session(request: Request, user: User) -> None:
    """Rotate the session and populate it with user data.

    Clears the existing session first to prevent session fixation. The
    pending flash message survives the rotation.
    """
    flash = request.session.get(SESSION_FLASH)

    request.session.clear()

    request.session[SESSION_USER_ID] = str(user.id)
    request.session[SESSION_USER_NAME] = user.name
    request.session[SESSION_USER_EMAIL] = user.email
    request.session[SESSION_USER_PICTURE_URL] = user.picture_url

    if flash is not None:
        request.session[SESSION_FLASH] = flash


class RequestSessionProvider:
    """Session provider bound to one server request."""

    def __init__(self, request: Request, db_session: AsyncSession, settings: Settings) -> None:
        self.request = request
        self.db_session = db_session
        self.settings = settings

    async def get_session(self) -> CurrentUser | None:
        return current_user_from_session(self.request.session)

    async def exchange_code(self, code: str, *, provider: str | None = None) -> CurrentUser:
        """Trade an authorization code for a signed-in session.

        Raises AuthError or NetworkError; the session is left untouched on
        failure.
        """
        provider = provider or self.request.session.get(SESSION_OAUTH_PROVIDER)
        if not provider:
            raise AuthError("No sign-in in progress")

        code_verifier = self.request.session.pop(SESSION_OAUTH_CODE_VERIFIER, None)
        user_data, user_info = await exchange_and_fetch(
            provider, self.settings, code, code_verifier
        )
        return await self.sign_in(provider, user_data, user_info)

    async def sign_in(
        self, provider: str, user_data: NormalizedUserData, raw_user_info: dict
    ) -> CurrentUser:
        """Link the identity to a local user, commit and rotate the session."""
        login_result = await find_or_create_oauth_user(
            self.db_session, provider, user_data, raw_user_info
        )
        await self.db_session.commit()

        set_login_session(self.request, login_result.user)
        return current_user_from_session(self.request.session)

    async def sign_out(self) -> None:
        self.request.session.clear()
