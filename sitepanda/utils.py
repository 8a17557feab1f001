"""
URL Canonicalization
====================
Every URL that enters the crawl queue or the visited set goes through
``canonicalize()`` so that equal pages compare equal as strings:

- Fragment removal
- Empty path on a URL with a host becomes ``/``
- Trailing slash removed from paths longer than ``/``
- Unsafe path characters percent-encoded (existing escapes kept)
- Query string preserved verbatim

Relative references and non-HTTP schemes are canonicalized but not
rejected; callers decide which schemes they accept.
"""

from __future__ import annotations

import logging
import re
from typing import Optional
from urllib.parse import quote, unquote, urljoin, urlsplit, urlunsplit

from .errors import InvalidURL

logger = logging.getLogger(__name__)

# Characters left untouched when re-encoding a path.  ``%`` is kept so
# already-escaped sequences are not double-encoded.
_PATH_SAFE = "/%:@!$&'()*+,;=-._~[]"

_CONTROL_CHARS_RE = re.compile(r"[\x00-\x1f\x7f]")
_SCHEME_RE = re.compile(r"^[A-Za-z][A-Za-z0-9+.\-]*$")

HTTP_SCHEMES = frozenset({"http", "https"})


def _check_syntax(raw: str) -> None:
    """Reject the inputs a strict URL parser would refuse."""
    if _CONTROL_CHARS_RE.search(raw):
        raise InvalidURL(raw, "control character in URL")
    if raw.startswith(":"):
        raise InvalidURL(raw, "missing protocol scheme")

    # A colon in the first segment must introduce a valid scheme.
    head = re.split(r"[/?#]", raw, maxsplit=1)[0]
    if ":" in head:
        scheme = head.split(":", 1)[0]
        if not _SCHEME_RE.match(scheme):
            raise InvalidURL(raw, "first path segment in URL cannot contain colon")


def canonicalize(raw: str) -> str:
    """
    Return the canonical string form of *raw*.

    Raises:
        InvalidURL: empty input, a bare fragment, or unparseable syntax.
    """
    if raw is None:
        raise InvalidURL("", "empty URL")
    url = raw.strip()
    if not url:
        raise InvalidURL(raw, "empty URL")
    if url.startswith("#"):
        raise InvalidURL(raw, "URL is only a fragment")

    _check_syntax(url)

    try:
        parts = urlsplit(url)
        # Accessing ``port`` validates it.
        parts.port
    except ValueError as exc:
        raise InvalidURL(raw, str(exc)) from exc

    path = quote(parts.path, safe=_PATH_SAFE)
    if parts.netloc and not path:
        path = "/"
    if len(path) > 1 and path.endswith("/"):
        path = path[:-1]

    return urlunsplit((parts.scheme, parts.netloc, path, parts.query, ""))


def try_canonicalize(raw: str) -> Optional[str]:
    """``canonicalize()`` that returns None instead of raising."""
    try:
        return canonicalize(raw)
    except InvalidURL as exc:
        logger.debug(f"[URL] {exc}")
        return None


def resolve_link(base_url: str, href: str) -> Optional[str]:
    """Resolve *href* against *base_url* and canonicalize the result.

    An empty href or a bare ``#fragment`` resolves to the page itself.
    Returns None when the resolved URL is not valid.
    """
    href = (href or "").strip()
    try:
        joined = urljoin(base_url, href)
    except ValueError:
        return None
    return try_canonicalize(joined)


def hostname(url: str) -> str:
    """Lower-cased host of *url* without port (empty if none)."""
    try:
        return urlsplit(url).hostname or ""
    except ValueError:
        return ""


def same_host(url_a: str, url_b: str) -> bool:
    host = hostname(url_a)
    return bool(host) and host == hostname(url_b)


def is_http_url(url: str) -> bool:
    try:
        parts = urlsplit(url)
    except ValueError:
        return False
    return parts.scheme in HTTP_SCHEMES and bool(parts.netloc)


def match_path(url: str) -> str:
    """Percent-decoded path of *url* used for glob matching.

    Query and fragment are ignored; an empty path is treated as ``/``.
    """
    try:
        path = urlsplit(url).path
    except ValueError:
        path = ""
    return unquote(path) or "/"
