"""ASGI entry point: ``hypercorn smartbookmark.asgi:app``."""

from smartbookmark.app_factory import create_app
from smartbookmark.lib import observability

app = observability.instrument_app(create_app())
