"""Domain trust policy for candidate paper URLs (no network calls)."""

from __future__ import annotations

import re
from urllib.parse import quote_plus, urlsplit, urlunsplit

SEARCH_FALLBACK_BASE = "https://www.google.com/search?q="
ARXIV_ABS_BASE = "https://arxiv.org/abs/"

# Hosts belonging to the extraction vendor's own tooling. Links to them are
# never shown to the reader.
_EXCLUDED_DOMAINS: frozenset[str] = frozenset({
    "aistudio.google.com",
    "googleapis.com",
})

_PREPRINT_DOMAIN = "arxiv.org"

_TRUSTED_DOMAINS: frozenset[str] = frozenset({
    _PREPRINT_DOMAIN,
    "openreview.net",
    "nature.com",
    "science.org",
    "neurips.cc",
    "iclr.cc",
    "acm.org",
    "ieee.org",
    "cvf.com",
    "thecvf.com",
    "aclweb.org",
    "github.com",
    "huggingface.co",
})

# New-style ids (2310.12345) or legacy category ids (hep-th/9901001).
_ARXIV_ID_PATTERN = re.compile(r"(\d{4}\.\d{4,5}|[a-z\-]+/\d{7})")


def search_fallback_url(title: str) -> str:
    """Generic web search URL for a paper title."""
    return SEARCH_FALLBACK_BASE + quote_plus((title or "").strip())


def normalize_url(raw_url: str | None, title: str) -> str:
    """Map a candidate URL to a trusted canonical URL or a search fallback.

    - Empty or "N/A" URLs, unparseable URLs, vendor-internal hosts and
      untrusted hosts all map to ``search_fallback_url(title)``.
    - arXiv URLs are rewritten to the abstract page when an identifier can
      be extracted, otherwise they fall back too.
    - Other trusted hosts keep their URL with scheme and host lowercased and
      the fragment dropped.

    Never raises.
    """
    fallback = search_fallback_url(title)
    url = raw_url.strip() if isinstance(raw_url, str) else ""
    if not url or url.upper() == "N/A":
        return fallback

    try:
        parts = urlsplit(url)
        host = (parts.hostname or "").lower()
        port = parts.port
    except ValueError:
        return fallback

    if parts.scheme.lower() not in {"http", "https"} or not host:
        return fallback

    if _matches_any(host, _EXCLUDED_DOMAINS):
        return fallback

    if _matches(host, _PREPRINT_DOMAIN):
        match = _ARXIV_ID_PATTERN.search(url)
        if match:
            return ARXIV_ABS_BASE + match.group(0)
        return fallback

    if not is_trusted_host(host):
        return fallback

    netloc = host if port is None else f"{host}:{port}"
    return urlunsplit((parts.scheme.lower(), netloc, parts.path, parts.query, ""))


def is_trusted_host(host: str) -> bool:
    """Return True if host is a whitelisted domain or one of its subdomains."""
    return _matches_any((host or "").lower(), _TRUSTED_DOMAINS)


def _matches_any(host: str, domains: frozenset[str]) -> bool:
    return any(_matches(host, domain) for domain in domains)


def _matches(host: str, domain: str) -> bool:
    return host == domain or host.endswith("." + domain)
