from uuid import UUID

from litestar import Controller, Request, get, post
from litestar.response import Redirect, Template as TemplateResponse
from sqlalchemy.ext.asyncio import AsyncSession

from smartbookmark.auth.guards import LOGIN_PATH, require_login
from smartbookmark.auth.session_keys import SESSION_BOOKMARK_FORM, SESSION_FLASH, SESSION_FLASH_ERROR
from smartbookmark.controllers.helpers import (
    app_feed,
    app_settings,
    current_db_user,
    get_user_context,
    pop_flash,
)
from smartbookmark.db.services import bookmark_service
from smartbookmark.lib.exceptions import SmartBookmarkError
from smartbookmark.store import BookmarkRecord

DASHBOARD_PATH = "/dashboard"


class WebController(Controller):
    path = "/"

    @get("/")
    async def index(self, request: Request, db_session: AsyncSession) -> TemplateResponse:
        """Landing page."""
        user_ctx = await get_user_context(request, db_session)
        return TemplateResponse(
            "index.html",
            context={
                "flash": pop_flash(request),
                "site_name": app_settings(request).site_name,
                **user_ctx,
            },
        )


class DashboardController(Controller):
    path = DASHBOARD_PATH
    before_request = require_login

    @get("/")
    async def dashboard(self, request: Request, db_session: AsyncSession) -> Redirect | TemplateResponse:
        """The signed-in user's bookmarks, newest first."""
        user = await current_db_user(request, db_session)
        if user is None:
            return Redirect(path=LOGIN_PATH)

        bookmarks = await bookmark_service.list_bookmarks(db_session, user.id)
        form = request.session.pop(SESSION_BOOKMARK_FORM, None) or {"title": "", "url": ""}

        return TemplateResponse(
            "dashboard.html",
            context={
                "flash": pop_flash(request),
                "error": request.session.pop(SESSION_FLASH_ERROR, None),
                "bookmarks": [BookmarkRecord.from_model(b) for b in bookmarks],
                "form": form,
                "site_name": app_settings(request).site_name,
                "user": user,
            },
        )

    @post("/bookmarks", status_code=303)
    async def add_bookmark(self, request: Request, db_session: AsyncSession) -> Redirect:
        """Form fallback for adding a bookmark."""
        form_data = await request.form()
        title = form_data.get("title") or ""
        url = form_data.get("url") or ""

        user = await current_db_user(request, db_session)
        if user is None:
            return Redirect(path=LOGIN_PATH, status_code=303)

        try:
            await bookmark_service.create_bookmark(db_session, user.id, title, url, feed=app_feed(request))
        except SmartBookmarkError as exc:
            request.session[SESSION_FLASH_ERROR] = exc.message
            request.session[SESSION_BOOKMARK_FORM] = {"title": title, "url": url}
        else:
            request.session[SESSION_FLASH] = "Bookmark added."

        return Redirect(path=DASHBOARD_PATH, status_code=303)

    @post("/bookmarks/{bookmark_id:uuid}/delete", status_code=303)
    async def delete_bookmark(
        self, request: Request, db_session: AsyncSession, bookmark_id: UUID
    ) -> Redirect:
        """Form fallback for deleting a bookmark."""
        user = await current_db_user(request, db_session)
        if user is None:
            return Redirect(path=LOGIN_PATH, status_code=303)

        deleted = await bookmark_service.delete_bookmark(
            db_session, user.id, bookmark_id, feed=app_feed(request)
        )
        if not deleted:
            request.session[SESSION_FLASH_ERROR] = "Bookmark not found."
        return Redirect(path=DASHBOARD_PATH, status_code=303)
