"""Error taxonomy and Litestar exception handlers.

Domain errors are recoverable: they end up as an inline message, a flash, or
a JSON error body. None of them is fatal to the process.
"""

import logging
from pathlib import Path

from litestar import Request, Response
from litestar.exceptions import HTTPException
from litestar.status_codes import (
    HTTP_400_BAD_REQUEST,
    HTTP_401_UNAUTHORIZED,
    HTTP_500_INTERNAL_SERVER_ERROR,
    HTTP_502_BAD_GATEWAY,
)

from smartbookmark.lib import observability

logger = logging.getLogger(__name__)

TEMPLATE_DIR = Path(__file__).parent.parent / "templates"


class SmartBookmarkError(Exception):
    """Base class for application errors carrying a user-facing message."""

    status_code = HTTP_500_INTERNAL_SERVER_ERROR
    default_message = "Something went wrong."

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(SmartBookmarkError):
    """A required field was empty."""

    status_code = HTTP_400_BAD_REQUEST
    default_message = "Both URL and title are required."


class AuthError(SmartBookmarkError):
    """No authenticated identity where one is required."""

    status_code = HTTP_401_UNAUTHORIZED
    default_message = "You must be logged in to add bookmarks."


class StoreError(SmartBookmarkError):
    """The bookmark store rejected or failed a fetch, insert or delete."""

    status_code = HTTP_502_BAD_GATEWAY
    default_message = "The bookmark store is unavailable."


class NetworkError(SmartBookmarkError):
    """Transport failure while talking to an identity provider."""

    status_code = HTTP_502_BAD_GATEWAY
    default_message = "Could not reach the identity provider."


def _accepts_html(request: Request) -> bool:
    """Check if the request accepts HTML responses (browser request)."""
    accept = request.headers.get("accept", "")
    return "text/html" in accept


def _resolve_error_template(status_code: int) -> str:
    specific_template = f"error-{status_code}.html"
    if (TEMPLATE_DIR / specific_template).exists():
        return specific_template
    return "error.html"


def _site_name(request: Request) -> str:
    settings = getattr(request.app.state, "settings", None)
    return settings.site_name if settings else "Smart Bookmark"


def _render_error(request: Request, status_code: int, message: str) -> Response:
    if _accepts_html(request):
        template = request.app.template_engine.get_template(_resolve_error_template(status_code))
        content = template.render(
            status_code=status_code,
            message=message,
            user=None,
            site_name=_site_name(request),
        )
        return Response(content=content, status_code=status_code, media_type="text/html")

    # JSON response for API clients
    return Response(
        content={"status_code": status_code, "detail": message},
        status_code=status_code,
        media_type="application/json",
    )


def http_exception_handler(request: Request, exc: HTTPException) -> Response:
    """Handle HTTP exceptions with HTML for browsers, JSON for APIs."""
    detail = exc.detail if isinstance(exc.detail, str) else str(exc.detail)
    return _render_error(request, exc.status_code, detail)


def smartbookmark_error_handler(request: Request, exc: SmartBookmarkError) -> Response:
    """Map domain errors to their status code, keeping the message verbatim."""
    if isinstance(exc, (StoreError, NetworkError)):
        logger.warning("%s on %s: %s", type(exc).__name__, request.url.path, exc.message)
    return _render_error(request, exc.status_code, exc.message)


def internal_server_error_handler(request: Request, exc: Exception) -> Response:
    """Handle unexpected exceptions with HTML for browsers, JSON for APIs."""
    if not observability.exception(
        "Unhandled exception on {method} {path}", method=request.method, path=request.url.path
    ):
        logger.exception("Unhandled exception on %s %s", request.method, request.url.path, exc_info=exc)
    if _accepts_html(request):
        return _render_error(request, HTTP_500_INTERNAL_SERVER_ERROR, "An unexpected error occurred.")
    return _render_error(request, HTTP_500_INTERNAL_SERVER_ERROR, "Internal Server Error")


EXCEPTION_HANDLERS = {
    HTTPException: http_exception_handler,
    SmartBookmarkError: smartbookmark_error_handler,
    Exception: internal_server_error_handler,
}
