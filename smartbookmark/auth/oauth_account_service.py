"""Find-or-create service for OAuth account linking."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from smartbookmark.auth.providers import NormalizedUserData
from smartbookmark.db.models.oauth_account import OAuthAccount
from smartbookmark.db.models.user import User


@dataclass
class LoginResult:
    """Result of an OAuth login attempt."""

    user: User
    oauth_account: OAuthAccount
    is_new_user: bool


def _touch_user(user: User, user_data: NormalizedUserData) -> None:
    if user_data.name:
        user.name = user_data.name
    if user_data.picture_url:
        user.picture_url = user_data.picture_url
    user.last_login_at = datetime.now(UTC)


async def find_or_create_oauth_user(
    db_session: AsyncSession,
    provider: str,
    user_data: NormalizedUserData,
    raw_user_info: dict,
) -> LoginResult:
    """Find an existing user by OAuth account or email, or create a new one.

    Three-step lookup:
    1. Existing OAuth account (provider + provider_account_id)
    2. Existing user with the same email
    3. New user + OAuth account
    """
    result = await db_session.execute(
        select(OAuthAccount)
        .options(selectinload(OAuthAccount.user))
        .where(
            OAuthAccount.provider == provider,
            OAuthAccount.provider_account_id == user_data.oauth_id,
        )
    )
    oauth_account = result.scalar_one_or_none()

    if oauth_account:
        user = oauth_account.user
        _touch_user(user, user_data)
        if user_data.email:
            oauth_account.provider_email = user_data.email
        oauth_account.provider_metadata = raw_user_info
        return LoginResult(user=user, oauth_account=oauth_account, is_new_user=False)

    user = None
    if user_data.email:
        result = await db_session.execute(select(User).where(User.email == user_data.email))
        user = result.scalar_one_or_none()

    is_new_user = user is None
    if user is None:
        user = User(email=user_data.email)
        db_session.add(user)
    _touch_user(user, user_data)
    await db_session.flush()

    oauth_account = OAuthAccount(
        provider=provider,
        provider_account_id=user_data.oauth_id,
        provider_email=user_data.email,
        provider_metadata=raw_user_info,
        user_id=user.id,
    )
    db_session.add(oauth_account)
    return LoginResult(user=user, oauth_account=oauth_account, is_new_user=is_new_user)
