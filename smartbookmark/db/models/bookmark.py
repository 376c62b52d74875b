from typing import TYPE_CHECKING, Any
from uuid import UUID

from sqlalchemy import ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from smartbookmark.db.base import Base

if TYPE_CHECKING:
    from smartbookmark.db.models.user import User


class Bookmark(Base):
    """A saved link. Never updated after creation; only inserted and deleted."""

    __tablename__ = "bookmarks"
    __table_args__ = (
        Index("ix_bookmarks_user_created", "user_id", "created_at"),
    )

    user_id: Mapped[UUID] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    url: Mapped[str] = mapped_column(Text, nullable=False)

    user: Mapped["User"] = relationship("User", back_populates="bookmarks")

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": str(self.id),
            "user_id": str(self.user_id),
            "title": self.title,
            "url": self.url,
            "created_at": self.created_at.isoformat(),
        }
