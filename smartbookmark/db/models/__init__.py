from smartbookmark.db.models.bookmark import Bookmark
from smartbookmark.db.models.oauth_account import OAuthAccount
from smartbookmark.db.models.user import User

__all__ = ["Bookmark", "OAuthAccount", "User"]
