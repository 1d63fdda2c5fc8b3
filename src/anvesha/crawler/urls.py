"""
URL normalization and hashing helpers.

Every component keys URLs by their normalized form, so `http://Example.com/`
and `http://example.com` are the same page everywhere.
"""

import hashlib
from urllib.parse import urlsplit, urlunsplit, parse_qsl, urlencode

from .errors import InvalidURLError


ALLOWED_SCHEMES = ('http', 'https')
DEFAULT_PORTS = {'http': 80, 'https': 443}

TRACKING_PARAMS = frozenset([
    'utm_source', 'utm_medium', 'utm_campaign', 'utm_term', 'utm_content',
    'fbclid', 'gclid',
])


def normalize_url(url: str) -> str:
    """
    Normalize a URL for deduplication and storage.

    Lowercases scheme and host, strips default ports, credentials and the
    fragment, maps an empty path to `/`, removes a non-root trailing slash,
    drops tracking parameters and sorts the remaining query parameters.

    Raises:
        InvalidURLError: if the URL is malformed or not http(s)
    """
    if not url or not isinstance(url, str):
        raise InvalidURLError("Empty URL", url)

    try:
        parsed = urlsplit(url.strip())
        port = parsed.port
    except ValueError as e:
        raise InvalidURLError(f"Malformed URL: {e}", url)

    scheme = parsed.scheme.lower()
    if scheme not in ALLOWED_SCHEMES:
        raise InvalidURLError(f"Unsupported scheme: {scheme or '(none)'}", url)

    host = parsed.hostname
    if not host:
        raise InvalidURLError("URL has no host", url)

    if ':' in host:
        host = f"[{host}]"
    netloc = host
    if port is not None and port != DEFAULT_PORTS[scheme]:
        netloc = f"{host}:{port}"

    path = parsed.path or '/'
    if len(path) > 1 and path.endswith('/'):
        path = path.rstrip('/') or '/'

    query = ''
    if parsed.query:
        params = [(k, v) for k, v in parse_qsl(parsed.query, keep_blank_values=True)
                  if k.lower() not in TRACKING_PARAMS]
        query = urlencode(sorted(params))

    return urlunsplit((scheme, netloc, path, query, ''))


def try_normalize_url(url: str):
    """Normalize a URL, returning None instead of raising."""
    try:
        return normalize_url(url)
    except InvalidURLError:
        return None


def url_hash(url: str) -> str:
    """Fixed-length digest used as the page's unique URL key."""
    return hashlib.sha256(url.encode('utf-8')).hexdigest()


def extract_domain(url: str) -> str:
    """Return the lowercased network location of a URL (host plus non-default port)."""
    return urlsplit(normalize_url(url)).netloc

