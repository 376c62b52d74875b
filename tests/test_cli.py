"""Tests for the command line interface."""

from contextlib import asynccontextmanager
from datetime import UTC, datetime
from unittest.mock import patch

import pytest
from click.testing import CliRunner

from smartbookmark.auth.session import CurrentUser
from smartbookmark.cli import cli, format_bookmark, write_env_secret
from smartbookmark.lib.exceptions import StoreError
from smartbookmark.store import BookmarkRecord

ALICE = CurrentUser(id="00000000-0000-0000-0000-00000000a11c", email="alice@example.com", name="Alice")


def record(title="Python", url="https://python.org/about", id="b1"):
    return BookmarkRecord(id, ALICE.id, title, url, datetime(2024, 1, 1, tzinfo=UTC))


class StubStore:
    def __init__(self, user=ALICE, rows=None, delete_error=None):
        self.user = user
        self.rows = list(rows or [])
        self.delete_error = delete_error
        self.inserted = []
        self.deleted = []

    async def current_user(self):
        return self.user

    async def fetch_by_owner(self, owner_id):
        return list(self.rows)

    async def insert(self, title, url, owner_id):
        row = record(title, url, id=f"b{len(self.inserted) + 10}")
        self.inserted.append(row)
        return row

    async def delete_by_id(self, bookmark_id):
        if self.delete_error:
            raise self.delete_error
        self.deleted.append(bookmark_id)

    def subscribe_to_changes(self, table="bookmarks"):
        raise AssertionError("one-shot commands do not subscribe")


@pytest.fixture
def runner():
    return CliRunner()


def patched_store(store):
    @asynccontextmanager
    async def _open_store(server, session, cookie_name):
        store.opened_with = (server, session, cookie_name)
        yield store

    return patch("smartbookmark.cli.open_store", _open_store)


def invoke(runner, *args):
    return runner.invoke(cli, ["bookmarks", "--session", "cookie-value", *args])


class TestSecretCommand:
    def test_prints_secret(self, runner):
        result = runner.invoke(cli, ["secret", "--format", "hex", "--length", "16"])
        assert result.exit_code == 0
        assert len(result.output.strip()) == 32

    def test_writes_env_file(self, runner, tmp_path):
        env_path = tmp_path / ".env"
        env_path.write_text("DEBUG=true\nSECRET_KEY=old")

        result = runner.invoke(cli, ["secret", "--write", str(env_path)])

        assert result.exit_code == 0
        content = env_path.read_text()
        assert content.startswith("DEBUG=true\nSECRET_KEY=")
        assert "SECRET_KEY=old" not in content

    def test_write_env_secret_appends(self, tmp_path):
        env_path = tmp_path / ".env"
        env_path.write_text("DEBUG=true")
        write_env_secret(env_path, "abc")
        assert env_path.read_text() == "DEBUG=true\nSECRET_KEY=abc\n"


class TestBookmarksCommands:
    def test_session_is_required(self, runner):
        result = runner.invoke(cli, ["bookmarks", "list"], env={"SMARTBOOKMARK_SESSION": ""})
        assert result.exit_code != 0
        assert "--session" in result.output

    def test_whoami(self, runner):
        store = StubStore()
        with patched_store(store):
            result = invoke(runner, "--server", "http://bookmarks.test", "whoami")

        assert result.exit_code == 0
        assert "alice@example.com" in result.output
        assert store.opened_with == ("http://bookmarks.test", "cookie-value", "session-0")

    def test_signed_out(self, runner):
        with patched_store(StubStore(user=None)):
            result = invoke(runner, "list")
        assert result.exit_code == 1
        assert "Not signed in" in result.output

    def test_list(self, runner):
        rows = [record("Two", id="b2"), record("One", "https://one.example", id="b1")]
        with patched_store(StubStore(rows=rows)):
            result = invoke(runner, "list")

        assert result.exit_code == 0
        assert result.output.splitlines() == [format_bookmark(r) for r in rows]
        assert "python.org" in result.output

    def test_list_empty(self, runner):
        with patched_store(StubStore()):
            result = invoke(runner, "list")
        assert "No bookmarks yet." in result.output

    def test_add(self, runner):
        store = StubStore()
        with patched_store(store):
            result = invoke(runner, "add", " Python ", "https://python.org")

        assert result.exit_code == 0
        assert store.inserted[0].title == "Python"
        assert result.output.startswith("Added ")

    def test_add_requires_both_fields(self, runner):
        store = StubStore()
        with patched_store(store):
            result = invoke(runner, "add", "Python", " ")

        assert result.exit_code == 1
        assert "Both URL and title are required." in result.output
        assert store.inserted == []

    def test_delete(self, runner):
        store = StubStore()
        with patched_store(store):
            result = invoke(runner, "delete", "b1")
        assert result.exit_code == 0
        assert store.deleted == ["b1"]

    def test_delete_failure(self, runner):
        with patched_store(StubStore(delete_error=StoreError("Bookmark not found"))):
            result = invoke(runner, "delete", "b1")
        assert result.exit_code == 1
        assert "Could not delete b1" in result.output
