"""View guard for signed-in pages and endpoints.

``require_login`` is a ``before_request`` hook for HTML pages: anonymous
visitors are redirected to the sign-in page and nothing else runs.
``login_required`` is a Litestar guard for JSON endpoints and raises a 401.
"""

from urllib.parse import urlencode

from litestar import Request
from litestar.connection import ASGIConnection
from litestar.exceptions import NotAuthorizedException
from litestar.handlers.base import BaseRouteHandler
from litestar.response import Redirect

from smartbookmark.auth.session import current_user_from_session

LOGIN_PATH = "/auth/login"


def login_redirect(next_path: str | None = None) -> Redirect:
    """Redirect to the sign-in page, remembering where to come back to."""
    if next_path:
        return Redirect(path=f"{LOGIN_PATH}?{urlencode({'next': next_path})}")
    return Redirect(path=LOGIN_PATH)


async def require_login(request: Request) -> Redirect | None:
    if current_user_from_session(request.session) is None:
        # Form posts cannot be replayed after sign-in
        if request.method != "GET":
            return login_redirect()
        next_path = request.url.path
        if request.url.query:
            next_path = f"{next_path}?{request.url.query}"
        return login_redirect(next_path)
    return None


async def login_required(connection: ASGIConnection, _: BaseRouteHandler) -> None:
    if current_user_from_session(connection.session) is None:
        raise NotAuthorizedException("Authentication required")
