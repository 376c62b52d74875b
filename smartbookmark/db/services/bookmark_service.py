"""Bookmark persistence. Each committed change is published on the change feed."""

from uuid import UUID

from sqlalchemy import and_, select
from sqlalchemy.ext.asyncio import AsyncSession

from smartbookmark.db.models.bookmark import Bookmark
from smartbookmark.db.models.user import User
from smartbookmark.lib.change_feed import BOOKMARKS_TABLE, ChangeEvent, ChangeFeed, change_feed
from smartbookmark.lib.exceptions import ValidationError


def clean_bookmark_fields(title: str | None, url: str | None) -> tuple[str, str]:
    """Trim title and url; both must be non-empty afterwards."""
    title = (title or "").strip()
    url = (url or "").strip()
    if not title or not url:
        raise ValidationError("Both URL and title are required.")
    return title, url


async def get_user(db_session: AsyncSession, user_id: UUID) -> User | None:
    result = await db_session.execute(select(User).where(User.id == user_id))
    return result.scalar_one_or_none()


async def list_bookmarks(db_session: AsyncSession, owner_id: UUID) -> list[Bookmark]:
    """All bookmarks of one owner, newest first."""
    result = await db_session.execute(
        select(Bookmark)
        .where(Bookmark.user_id == owner_id)
        .order_by(Bookmark.created_at.desc(), Bookmark.id.desc())
    )
    return list(result.scalars().all())


async def create_bookmark(
    db_session: AsyncSession,
    owner_id: UUID,
    title: str,
    url: str,
    *,
    feed: ChangeFeed = change_feed,
) -> Bookmark:
    title, url = clean_bookmark_fields(title, url)

    bookmark = Bookmark(user_id=owner_id, title=title, url=url)
    db_session.add(bookmark)
    await db_session.commit()
    await db_session.refresh(bookmark)

    await feed.publish(ChangeEvent.created(BOOKMARKS_TABLE, bookmark.to_dict()))
    return bookmark


async def delete_bookmark(
    db_session: AsyncSession,
    owner_id: UUID,
    bookmark_id: UUID,
    *,
    feed: ChangeFeed = change_feed,
) -> bool:
    """Delete one of the owner's bookmarks. Returns False if it was not found."""
    result = await db_session.execute(
        select(Bookmark).where(and_(Bookmark.id == bookmark_id, Bookmark.user_id == owner_id))
    )
    bookmark = result.scalar_one_or_none()
    if not bookmark:
        return False

    await db_session.delete(bookmark)
    await db_session.commit()

    await feed.publish(ChangeEvent.deleted(BOOKMARKS_TABLE, bookmark_id, owner_id))
    return True
