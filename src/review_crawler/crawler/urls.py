"""
URL helpers shared by source profiles, the controller and the queue.
"""

from urllib.parse import parse_qsl, urlencode, urlparse, urlunparse


def normalize_url(url: str, drop_params: frozenset[str] | set[str] = frozenset()) -> str:
    """
    Normalize URL for consistent comparison.

    - Lowercases scheme and host
    - Removes default ports
    - Removes trailing slashes (except root)
    - Removes fragments
    - Drops the named query parameters
    - Sorts remaining query parameters

    Args:
        url: URL to normalize
        drop_params: Query parameter names to remove (case-insensitive)

    Returns:
        Normalized URL string
    """
    parsed = urlparse(url.strip())

    scheme = parsed.scheme.lower()
    netloc = parsed.netloc.lower()

    if netloc.endswith(":80") and scheme == "http":
        netloc = netloc[:-3]
    elif netloc.endswith(":443") and scheme == "https":
        netloc = netloc[:-4]

    path = parsed.path or "/"
    if path != "/" and path.endswith("/"):
        path = path.rstrip("/")

    dropped = {p.lower() for p in drop_params}
    pairs = [
        (k, v) for k, v in parse_qsl(parsed.query, keep_blank_values=True)
        if k.lower() not in dropped
    ]
    query = urlencode(sorted(pairs))

    return urlunparse((scheme, netloc, path, parsed.params, query, ""))


def get_query_param(url: str, name: str) -> str | None:
    for key, value in parse_qsl(urlparse(url).query, keep_blank_values=True):
        if key == name:
            return value
    return None


def set_query_param(url: str, name: str, value: str | int) -> str:
    """Return url with one query parameter replaced or appended."""
    parsed = urlparse(url)
    pairs = [(k, v) for k, v in parse_qsl(parsed.query, keep_blank_values=True) if k != name]
    pairs.append((name, str(value)))
    return urlunparse(parsed._replace(query=urlencode(pairs)))


def host_of(url: str) -> str:
    return urlparse(url).netloc.lower()
