"""Shared helpers for controllers."""

from uuid import UUID

from litestar import Request
from litestar.connection import ASGIConnection
from sqlalchemy.ext.asyncio import AsyncSession

from smartbookmark.auth.session_keys import SESSION_FLASH, SESSION_USER_ID
from smartbookmark.config import Settings, get_settings
from smartbookmark.db.models.user import User
from smartbookmark.db.services.bookmark_service import get_user
from smartbookmark.lib.change_feed import ChangeFeed, change_feed


def app_settings(connection: ASGIConnection) -> Settings:
    """Settings the running app was created with."""
    settings = getattr(connection.app.state, "settings", None)
    return settings if settings is not None else get_settings()


def app_feed(connection: ASGIConnection) -> ChangeFeed:
    """Change feed the running app publishes to."""
    return getattr(connection.app.state, "feed", change_feed)


def session_user_id(request: Request) -> UUID | None:
    user_id = request.session.get(SESSION_USER_ID)
    if not user_id:
        return None
    try:
        return UUID(user_id)
    except ValueError:
        return None


async def current_db_user(request: Request, db_session: AsyncSession) -> User | None:
    """The signed-in user's row. A session whose user is gone is cleared."""
    user_id = session_user_id(request)
    user = await get_user(db_session, user_id) if user_id else None
    if user is None:
        request.session.clear()
    return user


async def get_user_context(request: Request, db_session: AsyncSession) -> dict:
    """Get user data for template context if logged in."""
    user_id = session_user_id(request)
    if user_id is None:
        return {"user": None}
    return {"user": await get_user(db_session, user_id)}


def pop_flash(request: Request) -> str | None:
    return request.session.pop(SESSION_FLASH, None)
