"""CLI commands for Smart Bookmark."""

import asyncio
import base64
import re
import secrets
from contextlib import asynccontextmanager
from pathlib import Path

import click
import httpx

from smartbookmark.client import ClientSessionProvider, HttpBookmarkStore
from smartbookmark.lib.exceptions import SmartBookmarkError
from smartbookmark.store import BookmarkRecord
from smartbookmark.sync import BookmarkSynchronizer

# Litestar splits the session cookie into numbered chunks
DEFAULT_COOKIE_NAME = "session-0"


@click.group()
@click.version_option(package_name="smart-bookmark")
def cli():
    """Smart Bookmark - bookmarks that stay in sync everywhere."""
    pass


@cli.command()
@click.option("--host", default="127.0.0.1", help="Host to bind to")
@click.option("--port", default=8080, type=int, help="Port to bind to")
@click.option("--reload", is_flag=True, help="Enable auto-reload for development")
@click.option("--workers", default=1, type=int, help="Number of worker processes")
@click.option(
    "--log-level",
    default="info",
    type=click.Choice(["debug", "info", "warning", "error"]),
    help="Logging level",
)
def serve(host, port, reload, workers, log_level):
    """Run the Smart Bookmark server."""
    import signal

    from hypercorn.asyncio import serve as hypercorn_serve
    from hypercorn.config import Config

    config = Config()
    config.application_path = "smartbookmark.asgi:app"
    config.bind = [f"{host}:{port}"]
    config.workers = 1 if reload else workers
    config.loglevel = log_level.upper()
    config.include_server_header = False

    if reload:
        config.use_reloader = True
        from hypercorn.run import run
        run(config)
        return

    from smartbookmark.asgi import app

    shutdown_event = asyncio.Event()

    loop = asyncio.new_event_loop()
    loop.add_signal_handler(signal.SIGINT, shutdown_event.set)
    loop.add_signal_handler(signal.SIGTERM, shutdown_event.set)
    try:
        loop.run_until_complete(
            hypercorn_serve(app, config, shutdown_trigger=shutdown_event.wait)
        )
    finally:
        loop.close()


def generate_secret(fmt: str, length: int) -> str:
    if fmt == "urlsafe":
        return secrets.token_urlsafe(length)
    if fmt == "hex":
        return secrets.token_hex(length)
    return base64.b64encode(secrets.token_bytes(length)).decode("ascii")


def write_env_secret(env_path: Path, key: str) -> None:
    """Set SECRET_KEY in a .env file, keeping its other lines."""
    env_content = env_path.read_text() if env_path.exists() else ""

    secret_key_pattern = re.compile(r"^SECRET_KEY=.*$", re.MULTILINE)
    new_line = f"SECRET_KEY={key}"

    if secret_key_pattern.search(env_content):
        env_content = secret_key_pattern.sub(new_line, env_content)
    else:
        if env_content and not env_content.endswith("\n"):
            env_content += "\n"
        env_content += new_line + "\n"

    env_path.write_text(env_content)


@cli.command()
@click.option("--write", type=click.Path(), default=None, help="Write SECRET_KEY to a .env file")
@click.option(
    "--format",
    "fmt",
    default="urlsafe",
    type=click.Choice(["urlsafe", "hex", "base64"]),
    help="Output format for the secret key",
)
@click.option("--length", default=32, type=int, help="Number of random bytes")
def secret(write, fmt, length):
    """Generate a secure secret key."""
    key = generate_secret(fmt, length)
    if write:
        write_env_secret(Path(write), key)
        click.echo(f"SECRET_KEY written to {write}")
    else:
        click.echo(key)


# -- terminal client ------------------------------------------------------


def format_bookmark(bookmark: BookmarkRecord) -> str:
    return f"{bookmark.id}  {bookmark.title}  ({bookmark.hostname or bookmark.url})"


@asynccontextmanager
async def open_store(server: str, session: str, cookie_name: str):
    async with httpx.AsyncClient(base_url=server, timeout=10.0) as client:
        client.cookies.set(cookie_name, session)
        yield HttpBookmarkStore(client, ClientSessionProvider(client))


def run_client(coro) -> None:
    try:
        asyncio.run(coro)
    except SmartBookmarkError as exc:
        raise click.ClickException(exc.message) from exc


@cli.group()
@click.option(
    "--server",
    default="http://localhost:8080",
    envvar="SMARTBOOKMARK_SERVER",
    show_default=True,
    help="Base URL of a running Smart Bookmark server",
)
@click.option(
    "--session",
    required=True,
    envvar="SMARTBOOKMARK_SESSION",
    help="Value of the session cookie from a signed-in browser",
)
@click.option(
    "--cookie-name",
    default=DEFAULT_COOKIE_NAME,
    show_default=True,
    help="Name of the session cookie",
)
@click.pass_context
def bookmarks(ctx, server, session, cookie_name):
    """Manage your bookmarks from the terminal."""
    ctx.obj = {"server": server, "session": session, "cookie_name": cookie_name}


def _store_args(ctx) -> tuple[str, str, str]:
    return ctx.obj["server"], ctx.obj["session"], ctx.obj["cookie_name"]


async def _require_user(store: HttpBookmarkStore):
    user = await store.current_user()
    if user is None:
        raise click.ClickException("Not signed in. Copy a fresh session cookie from your browser.")
    return user


@bookmarks.command("whoami")
@click.pass_context
def whoami(ctx):
    """Show the account behind the session cookie."""

    async def _whoami():
        async with open_store(*_store_args(ctx)) as store:
            user = await _require_user(store)
            click.echo(f"{user.email or user.name} ({user.id})")

    run_client(_whoami())


@bookmarks.command("list")
@click.pass_context
def list_bookmarks(ctx):
    """List your bookmarks, newest first."""

    async def _list():
        async with open_store(*_store_args(ctx)) as store:
            await _require_user(store)
            sync = BookmarkSynchronizer(store)
            await sync.refresh()
            await sync.close()
            if sync.error:
                raise click.ClickException(sync.error)
            if not sync.bookmarks:
                click.echo("No bookmarks yet.")
            for bookmark in sync.bookmarks:
                click.echo(format_bookmark(bookmark))

    run_client(_list())


@bookmarks.command("add")
@click.argument("title")
@click.argument("url")
@click.pass_context
def add_bookmark(ctx, title, url):
    """Add a bookmark."""

    async def _add():
        async with open_store(*_store_args(ctx)) as store:
            sync = BookmarkSynchronizer(store)
            try:
                bookmark = await sync.add(title, url)
            finally:
                await sync.close()
            click.echo(f"Added {format_bookmark(bookmark)}")

    run_client(_add())


@bookmarks.command("delete")
@click.argument("bookmark_id")
@click.pass_context
def delete_bookmark(ctx, bookmark_id):
    """Delete a bookmark by id."""

    async def _delete():
        async with open_store(*_store_args(ctx)) as store:
            sync = BookmarkSynchronizer(store)
            deleted = await sync.delete(bookmark_id)
            await sync.close()
            if not deleted:
                raise click.ClickException(f"Could not delete {bookmark_id}")
            click.echo(f"Deleted {bookmark_id}")

    run_client(_delete())


@bookmarks.command("watch")
@click.pass_context
def watch(ctx):
    """Show your bookmarks and keep the list updated until interrupted."""

    def render(sync: BookmarkSynchronizer) -> None:
        if sync.loading:
            return
        click.clear()
        if sync.error:
            click.secho(sync.error, fg="red")
        if not sync.bookmarks:
            click.echo("No bookmarks yet.")
        for bookmark in sync.bookmarks:
            click.echo(format_bookmark(bookmark))

    async def _watch():
        async with open_store(*_store_args(ctx)) as store:
            await _require_user(store)
            sync = BookmarkSynchronizer(store)
            sync.on_change(render)
            async with sync:
                await asyncio.Event().wait()

    try:
        run_client(_watch())
    except KeyboardInterrupt:
        pass
