from urllib.parse import quote, urlsplit

FAVICON_SERVICE = "https://www.google.com/s2/favicons"


def display_hostname(url: str) -> str:
    """Hostname of an absolute URL, or "" when the URL cannot be parsed."""
    try:
        parsed = urlsplit((url or "").strip())
        hostname = parsed.hostname
    except ValueError:
        return ""
    if not parsed.scheme or not hostname:
        return ""
    return hostname


def favicon_url(url: str, size: int = 32) -> str | None:
    hostname = display_hostname(url)
    if not hostname:
        return None
    return f"{FAVICON_SERVICE}?domain={quote(hostname, safe='')}&sz={size}"


def safe_link_url(url: str) -> str:
    """``url`` when it is an http(s) link, otherwise "#"."""
    url = (url or "").strip()
    try:
        scheme = urlsplit(url).scheme.lower()
    except ValueError:
        return "#"
    return url if scheme in ("http", "https") else "#"
