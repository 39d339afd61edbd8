from __future__ import annotations

from urllib.parse import urlparse


def is_valid_url(url: str) -> bool:
    """Absolute http(s) URL with a host and no embedded whitespace."""
    if not url or any(ch.isspace() for ch in url):
        return False
    try:
        result = urlparse(url)
        return all([result.scheme in ("http", "https"), result.hostname])
    except ValueError:
        return False


def extract_domain(url: str) -> str:
    """Extract domain from URL for display."""
    try:
        return urlparse(url).netloc
    except ValueError:
        return url
