from __future__ import annotations

import re
from typing import Any, Iterable, List, Set
from urllib.parse import urlsplit, urlunsplit

URL_PATTERN = re.compile(r"https?://[^\s\"'<>]+")
TRAILING_PUNCTUATION = ".,;:!?)]}"
CLOSING_BRACKETS = {")": "(", "]": "[", "}": "{"}
ALLOWED_SCHEMES = {"http", "https"}


class InvalidUrlError(ValueError):
    """Raised when a manually entered pricing URL cannot be used."""


def normalize_url(raw_url: str) -> str:
    """Return the canonical absolute form of an http(s) URL.

    Scheme and host are lower-cased and an empty path becomes ``/``.
    """

    candidate = (raw_url or "").strip()
    if not candidate:
        raise InvalidUrlError("Enter a URL to add it to the context.")

    try:
        parts = urlsplit(candidate)
        port = parts.port
    except ValueError as exc:
        raise InvalidUrlError("Enter a valid http(s) URL.") from exc

    scheme = parts.scheme.lower()
    if scheme not in ALLOWED_SCHEMES or not parts.hostname:
        raise InvalidUrlError("Enter a valid http(s) URL.")

    netloc = parts.hostname.lower()
    if ":" in netloc:
        netloc = f"[{netloc}]"
    if port is not None and not _is_default_port(scheme, port):
        netloc = f"{netloc}:{port}"
    if parts.username:
        credentials = parts.username
        if parts.password:
            credentials = f"{credentials}:{parts.password}"
        netloc = f"{credentials}@{netloc}"

    return urlunsplit((scheme, netloc, parts.path or "/", parts.query, parts.fragment))


def looks_like_url(value: Any) -> bool:
    return isinstance(value, str) and bool(URL_PATTERN.fullmatch(value.strip()))


def extract_pricing_urls(text: str) -> List[str]:
    """Find URL-shaped substrings in free text, normalised and deduplicated."""

    if not text:
        return []
    found: List[str] = []
    for match in URL_PATTERN.findall(text):
        candidate = strip_trailing_punctuation(match)
        try:
            found.append(normalize_url(candidate))
        except InvalidUrlError:
            continue
    return deduplicate(found)


def extract_http_references(payload: Any) -> List[str]:
    """Collect every URL mentioned anywhere inside a nested JSON-like payload."""

    collected: List[str] = []

    def visit(current: Any) -> None:
        if isinstance(current, str):
            collected.extend(extract_pricing_urls(current))
        elif isinstance(current, dict):
            for value in current.values():
                visit(value)
        elif isinstance(current, (list, tuple)):
            for item in current:
                visit(item)

    visit(payload)
    return deduplicate(collected)


def deduplicate(values: Iterable[str]) -> List[str]:
    seen: Set[str] = set()
    result: List[str] = []
    for value in values:
        if not value or value in seen:
            continue
        seen.add(value)
        result.append(value)
    return result


def _is_default_port(scheme: str, port: int) -> bool:
    return (scheme == "http" and port == 80) or (scheme == "https" and port == 443)


def strip_trailing_punctuation(candidate: str) -> str:
    """Drop sentence punctuation after a URL, keeping brackets the URL itself opened."""

    while candidate and candidate[-1] in TRAILING_PUNCTUATION:
        last = candidate[-1]
        opening = CLOSING_BRACKETS.get(last)
        if opening is not None and candidate.count(opening) >= candidate.count(last):
            break
        candidate = candidate[:-1]
    return candidate
