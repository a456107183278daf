"""
URL template resolution: substitute {name} placeholders in the path, fragment and query
of an endpoint URL; values whose placeholder is absent are appended as query parameters.
"""

from __future__ import annotations

import logging
from typing import Mapping
from urllib.parse import quote, unquote_plus, urlencode, urlsplit, urlunsplit

logger = logging.getLogger(__name__)

# Characters left unescaped in a value substituted into the path or fragment.
# Braces stay readable so unresolved placeholders are kept verbatim.
_PATH_SAFE = "/$&+,:;=@{}"
_FRAGMENT_SAFE = "/?$&'()*+,:;=@!{}"


def _query_key(piece: str) -> str:
    return unquote_plus(piece.split("=", 1)[0])


def _merge_query(raw_query: str, additions: list[tuple[str, str]]) -> str:
    """
    Append percent-encoded parameters to a raw query string.
    Existing pieces are kept as written; the result is ordered by key, stable within a key.
    """
    pieces = [p for p in raw_query.split("&") if p]
    pieces.extend(urlencode([pair]) for pair in additions)
    pieces.sort(key=_query_key)
    return "&".join(pieces)


def _substitute(component: str, tag: str, value: str, safe: str) -> tuple[str, bool]:
    """Replace tag, written plainly or percent-encoded, in a raw URL component."""
    found = False
    for spelling in (tag, quote(tag, safe="")):
        if spelling in component:
            component = component.replace(spelling, quote(value, safe=safe))
            found = True
    return component, found


def resolve(url: str | None, values: Mapping[str, str] | None) -> str | None:
    """
    Resolve named placeholders of a URL template. The input is never modified.

    Each {name} is replaced wherever it appears in the path, the fragment and the raw
    query string (literal substring replacement). Values going into the path or fragment
    are percent-escaped; the rest of the template keeps its escapes. A name found in none
    of them is added as a query parameter instead. Placeholders without a value are left
    as-is.

    Args:
        url: URL template, e.g. "http://host/api/{user}/info?verbose={verbose}".
        values: Placeholder name -> substitution value. None or empty returns url unchanged.

    Returns:
        The resolved URL, or None if url is None.
    """
    if url is None:
        return None
    if not values:
        return url

    parts = urlsplit(url)
    path = parts.path
    fragment = parts.fragment
    query = parts.query
    additions: list[tuple[str, str]] = []

    for name, value in values.items():
        tag = "{" + name + "}"
        path, in_path = _substitute(path, tag, value, _PATH_SAFE)
        fragment, in_fragment = _substitute(fragment, tag, value, _FRAGMENT_SAFE)
        matched = in_path or in_fragment
        if tag in query:
            query = query.replace(tag, value)
            matched = True
        if not matched:
            additions.append((name, value))

    if additions:
        logger.debug(
            "No placeholder for %s, adding as query parameters",
            ", ".join(name for name, _ in additions),
        )
        query = _merge_query(query, additions)

    return urlunsplit((parts.scheme, parts.netloc, path, query, fragment))
