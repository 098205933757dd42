"""Utilities to normalize hosts and match them against blocklist patterns."""

from __future__ import annotations

import re
from typing import Iterable, Optional
from urllib.parse import urlsplit

WILDCARD = "*"

_IGNORED_URL_PREFIXES = ("about:", "chrome://", "file://", "javascript:")
_VALID_HOSTNAME_PATTERN = re.compile(r"[a-z0-9.-]+")


def normalize_domain(value: str) -> str:
    """Canonicalize a raw host or URL into a comparable domain key.

    ``"WWW.Example.com/"`` and ``"https://www.example.com:8443/path"`` both
    become ``"example.com"``. The wildcard ``"*"`` is returned unchanged and
    anything without a recognizable host becomes ``""``.
    """
    trimmed = value.strip()
    if not trimmed:
        return ""

    candidate = _strip_www(trimmed.lower().strip("/"))
    if candidate == WILDCARD:
        return WILDCARD

    host = _url_host(candidate)
    if host is None and "://" not in candidate:
        host = _url_host(f"https://{candidate}")
    if host is not None:
        return _strip_www(host.strip("/"))

    plain_host = candidate.split("/", 1)[0]
    host_without_port = plain_host.split(":", 1)[0]
    if not host_without_port:
        return ""
    return _strip_www(host_without_port)


def normalize_domains(values: Iterable[str]) -> list[str]:
    """Normalize each value, keeping first-seen order and dropping blanks and ``*``."""
    seen: set[str] = set()
    result: list[str] = []
    for value in values:
        normalized = normalize_domain(value)
        if not normalized or normalized == WILDCARD or normalized in seen:
            continue
        seen.add(normalized)
        result.append(normalized)
    return result


def parse_domain_input(text: str) -> list[str]:
    """Split free-form user input on commas and newlines into a clean domain list."""
    return normalize_domains(text.replace(",", "\n").splitlines())


def matches(domain: str, pattern: str) -> bool:
    """Return whether ``domain`` falls under ``pattern``.

    ``*`` matches everything, ``*.example.com`` matches ``example.com`` and its
    subdomains, and a plain ``example.com`` also matches every subdomain.
    """
    normalized_domain = normalize_domain(domain)
    normalized_pattern = normalize_domain(pattern)
    if not normalized_domain or not normalized_pattern:
        return False

    if normalized_pattern == WILDCARD:
        return True

    if normalized_pattern.startswith("*."):
        suffix = normalized_pattern[2:]
        return normalized_domain == suffix or normalized_domain.endswith(f".{suffix}")

    return normalized_domain == normalized_pattern or normalized_domain.endswith(
        f".{normalized_pattern}"
    )


def domain_from_url(url: str) -> Optional[str]:
    """Extract the trackable domain of a tab URL, or ``None`` for internal pages."""
    if url.startswith(_IGNORED_URL_PREFIXES):
        return None
    host = _url_host(url)
    if not host:
        return None
    return _strip_www(host)


def is_valid_hostname(value: str) -> bool:
    return bool(_VALID_HOSTNAME_PATTERN.fullmatch(value))


def _url_host(value: str) -> Optional[str]:
    try:
        host = urlsplit(value).hostname
    except ValueError:
        return None
    return host or None


def _strip_www(value: str) -> str:
    return value[4:] if value.startswith("www.") else value
