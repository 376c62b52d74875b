"""Authentication controller for OAuth sign-in flows.

Supports Google, GitHub and Discord, plus a development-only "dummy"
provider that signs in with any email address.
"""

import base64
import fnmatch
import hashlib
import logging
import secrets
from typing import Annotated
from urllib.parse import urlencode, urlparse

from litestar import Controller, Request, get, post
from litestar.exceptions import NotFoundException
from litestar.params import Parameter
from litestar.response import Redirect, Template as TemplateResponse
from sqlalchemy.ext.asyncio import AsyncSession

from smartbookmark.auth.provider_info import DUMMY_PROVIDER_KEY, OAUTH_PROVIDERS, get_provider_info
from smartbookmark.auth.providers import NormalizedUserData, get_oauth_provider
from smartbookmark.auth.session import RequestSessionProvider, current_user_from_session
from smartbookmark.auth.session_keys import (
    SESSION_AUTH_NEXT,
    SESSION_FLASH,
    SESSION_OAUTH_CODE_VERIFIER,
    SESSION_OAUTH_PROVIDER,
    SESSION_OAUTH_STATE,
)
from smartbookmark.controllers.helpers import app_settings, pop_flash
from smartbookmark.lib.exceptions import SmartBookmarkError

logger = logging.getLogger(__name__)

LOGIN_PATH = "/auth/login"
LOGIN_ERROR_PATH = f"{LOGIN_PATH}?{urlencode({'error': 'auth'})}"

ERROR_MESSAGES = {
    "auth": "Sign-in failed. Please try again.",
}


def _is_safe_redirect_url(url: str, allowed_domains: list[str]) -> bool:
    """Check if URL is safe to redirect to.

    Supports wildcard patterns using fnmatch-style matching:
    - "*.example.com" matches any subdomain of example.com
    - "example.com" (no wildcards) matches example.com and all subdomains
    """
    # Relative paths are always safe (but not protocol-relative //domain.com)
    if url.startswith("/") and not url.startswith("//"):
        return True

    try:
        parsed = urlparse(url)
    except ValueError:
        return False

    if not parsed.scheme or not parsed.netloc:
        return False

    if parsed.scheme not in ("http", "https"):
        return False

    host = parsed.netloc.lower().split(":")[0]
    for pattern in allowed_domains:
        pattern = pattern.lower()
        if "*" in pattern or "?" in pattern:
            if fnmatch.fnmatch(host, pattern):
                return True
        elif host == pattern or host.endswith(f".{pattern}"):
            return True

    return False


def _remember_next(request: Request, next_url: str | None, allowed_domains: list[str]) -> None:
    if next_url and _is_safe_redirect_url(next_url, allowed_domains):
        request.session[SESSION_AUTH_NEXT] = next_url


def _get_safe_redirect_url(request: Request, allowed_domains: list[str], default: str) -> str:
    """Get the next redirect URL from session, validating it's safe."""
    next_url = request.session.pop(SESSION_AUTH_NEXT, None)
    if next_url and _is_safe_redirect_url(next_url, allowed_domains):
        return next_url
    return default


def _login_failed(request: Request, reason: str) -> Redirect:
    logger.info("Sign-in failed: %s", reason)
    for key in (SESSION_OAUTH_STATE, SESSION_OAUTH_PROVIDER, SESSION_OAUTH_CODE_VERIFIER):
        request.session.pop(key, None)
    return Redirect(path=LOGIN_ERROR_PATH)


class AuthController(Controller):
    path = "/auth"

    @get("/login")
    async def login_page(
        self,
        request: Request,
        next_url: Annotated[str | None, Parameter(query="next")] = None,
        error: str | None = None,
    ) -> Redirect | TemplateResponse:
        """Show the sign-in page with the configured providers."""
        settings = app_settings(request)

        if current_user_from_session(request.session) is not None:
            return Redirect(path=settings.auth.default_next)

        _remember_next(request, next_url, settings.auth.allowed_redirect_domains)

        providers = {
            key: OAUTH_PROVIDERS[key]
            for key in settings.auth.providers
            if key in OAUTH_PROVIDERS and key != DUMMY_PROVIDER_KEY
        }

        return TemplateResponse(
            "auth/login.html",
            context={
                "flash": pop_flash(request),
                "error": ERROR_MESSAGES.get(error, ERROR_MESSAGES["auth"]) if error else None,
                "providers": providers,
                "has_dummy": DUMMY_PROVIDER_KEY in settings.auth.providers,
                "site_name": settings.site_name,
            },
        )

    @get("/{provider:str}/login")
    async def oauth_login(
        self,
        request: Request,
        provider: str,
        next_url: Annotated[str | None, Parameter(query="next")] = None,
    ) -> Redirect | TemplateResponse:
        """Redirect to the provider consent screen, or show the dummy form."""
        settings = app_settings(request)
        provider_info = get_provider_info(provider)

        if not provider_info:
            raise NotFoundException(f"Unknown provider: {provider}")

        if provider not in settings.auth.providers:
            raise NotFoundException(f"Provider {provider} not configured")

        _remember_next(request, next_url, settings.auth.allowed_redirect_domains)

        if provider == DUMMY_PROVIDER_KEY:
            return TemplateResponse(
                "auth/dummy_login.html",
                context={"flash": pop_flash(request), "site_name": settings.site_name},
            )

        state = secrets.token_urlsafe(32)
        request.session[SESSION_OAUTH_STATE] = state
        request.session[SESSION_OAUTH_PROVIDER] = provider

        oauth_provider = get_oauth_provider(provider)

        code_challenge = None
        if oauth_provider.requires_pkce:
            code_verifier = secrets.token_urlsafe(64)[:128]
            request.session[SESSION_OAUTH_CODE_VERIFIER] = code_verifier
            code_challenge = base64.urlsafe_b64encode(
                hashlib.sha256(code_verifier.encode()).digest()
            ).decode().rstrip("=")

        provider_config = settings.auth.providers[provider]
        params = oauth_provider.build_auth_params(
            client_id=provider_config.client_id,
            redirect_uri=settings.auth.get_redirect_uri(provider),
            scopes=provider_config.scopes or provider_info.scopes,
            state=state,
            code_challenge=code_challenge,
        )

        return Redirect(path=f"{provider_info.auth_url}?{urlencode(params)}")

    @get("/{provider:str}/callback")
    async def oauth_callback(
        self,
        request: Request,
        db_session: AsyncSession,
        provider: str,
        code: str | None = None,
        oauth_state: Annotated[str | None, Parameter(query="state")] = None,
        error: str | None = None,
    ) -> Redirect:
        """Exchange the authorization code for a session."""
        settings = app_settings(request)

        if not get_provider_info(provider) or provider not in settings.auth.providers:
            raise NotFoundException(f"Unknown provider: {provider}")

        if error:
            return _login_failed(request, f"provider returned {error}")

        stored_state = request.session.pop(SESSION_OAUTH_STATE, None)
        if not oauth_state or oauth_state != stored_state:
            return _login_failed(request, "state mismatch")

        if not code:
            return _login_failed(request, "missing authorization code")

        # Read before the session is rotated on sign-in
        next_path = _get_safe_redirect_url(
            request, settings.auth.allowed_redirect_domains, settings.auth.default_next
        )
        sessions = RequestSessionProvider(request, db_session, settings)
        try:
            await sessions.exchange_code(code, provider=provider)
        except SmartBookmarkError as exc:
            return _login_failed(request, exc.message)

        return Redirect(path=next_path)

    @post("/dummy-login")
    async def dummy_login_submit(self, request: Request, db_session: AsyncSession) -> Redirect:
        """Process the development sign-in form."""
        settings = app_settings(request)

        if DUMMY_PROVIDER_KEY not in settings.auth.providers:
            raise NotFoundException("Dummy provider not configured")

        form_data = await request.form()
        email = (form_data.get("email") or "").strip()
        name = (form_data.get("name") or "").strip()

        if not email:
            request.session[SESSION_FLASH] = "Email is required"
            return Redirect(path=f"/auth/{DUMMY_PROVIDER_KEY}/login")

        if not name:
            name = email.split("@")[0]

        oauth_id = f"dummy_{hashlib.sha256(email.encode()).hexdigest()[:16]}"
        user_data = NormalizedUserData(oauth_id=oauth_id, email=email, name=name, picture_url=None)

        next_path = _get_safe_redirect_url(
            request, settings.auth.allowed_redirect_domains, settings.auth.default_next
        )
        sessions = RequestSessionProvider(request, db_session, settings)
        await sessions.sign_in(
            DUMMY_PROVIDER_KEY, user_data, {"id": oauth_id, "email": email, "name": name}
        )

        return Redirect(path=next_path)

    @get("/logout")
    async def logout(self, request: Request, db_session: AsyncSession) -> Redirect:
        """Clear the session and return to the sign-in page."""
        await RequestSessionProvider(request, db_session, app_settings(request)).sign_out()
        return Redirect(path=LOGIN_PATH)

    @post("/logout", status_code=303)
    async def logout_submit(self, request: Request, db_session: AsyncSession) -> Redirect:
        await RequestSessionProvider(request, db_session, app_settings(request)).sign_out()
        return Redirect(path=LOGIN_PATH, status_code=303)
