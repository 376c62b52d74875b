"""Tests for URL display helpers."""

import pytest

from smartbookmark.lib.urls import display_hostname, favicon_url, safe_link_url


@pytest.mark.parametrize(
    "url,hostname",
    [
        ("https://python.org/about", "python.org"),
        ("http://Docs.Example.com:8080/x?y=1", "docs.example.com"),
        ("  https://padded.example  ", "padded.example"),
        ("python.org", ""),
        ("not a url", ""),
        ("", ""),
        ("http://[::1", ""),
    ],
)
def test_display_hostname(url, hostname):
    assert display_hostname(url) == hostname


def test_favicon_url():
    assert favicon_url("https://python.org") == "https://www.google.com/s2/favicons?domain=python.org&sz=32"
    assert favicon_url("https://python.org", size=64).endswith("sz=64")


def test_favicon_url_without_hostname():
    assert favicon_url("mailto:someone@example.com") is None


@pytest.mark.parametrize(
    "url,href",
    [
        ("https://python.org/about", "https://python.org/about"),
        (" HTTP://python.org ", "HTTP://python.org"),
        ("javascript:alert(1)", "#"),
        ("JavaScript:alert(1)", "#"),
        ("data:text/html,hi", "#"),
        ("python.org", "#"),
        ("", "#"),
        ("http://[::1", "#"),
    ],
)
def test_safe_link_url(url, href):
    assert safe_link_url(url) == href
