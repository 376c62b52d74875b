"""Smart Bookmark: bookmarks with realtime sync across tabs and devices."""

__version__ = "0.1.0"
