"""
Site classification for streakd.

Maps a visited URL to the id of the first enabled tracked-site rule whose
pattern matches it. Matching runs against host + path only, so scheme,
query string and fragment never affect the result.
"""

import logging
from typing import Optional, Sequence
from urllib.parse import urlsplit

from .config import TrackedSiteRule
from .matcher import compile_pattern

log = logging.getLogger("streakd.classifier")

# Scheme default ports, left out of the host
DEFAULT_PORTS = {'http': 80, 'https': 443, 'ws': 80, 'wss': 443, 'ftp': 21}


def url_candidates(url: str) -> Optional[tuple[str, str]]:
    """
    Build the two strings a rule is tested against.

    Returns (host + path, bare_host + path) where bare_host has a single
    leading 'www.' removed, or None if the URL cannot be parsed.
    """
    try:
        parts = urlsplit(url)
        host = parts.hostname
        port = parts.port
    except ValueError:
        return None

    if not host:
        return None

    if port is not None and DEFAULT_PORTS.get(parts.scheme) != port:
        host = f"{host}:{port}"
    bare_host = host[4:] if host.startswith('www.') else host
    path = parts.path or '/'

    return f"{host}{path}", f"{bare_host}{path}"


def classify(url: str, rules: Sequence[TrackedSiteRule]) -> Optional[str]:
    """
    Return the site type (rule id) for a URL, or None if nothing matches.

    Never raises: unparseable URLs simply don't match.
    """
    if not url:
        return None

    candidates = url_candidates(url)
    if candidates is None:
        log.debug(f"Unparseable URL, not classified: {url!r}")
        return None

    for rule in rules:
        if not rule.enabled or not rule.pattern:
            continue
        matcher = compile_pattern(rule.pattern)
        if any(matcher.test(candidate) for candidate in candidates):
            return rule.id

    return None
