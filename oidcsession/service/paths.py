from __future__ import annotations

from typing import Mapping, Optional
from urllib.parse import parse_qsl, urlencode, urljoin, urlsplit, urlunsplit


def fully_qualified_local_path(path: Optional[str], app_domain: str) -> str:
    """Resolve ``path`` against ``app_domain``, keeping only its path and query.

    Any scheme or authority carried by ``path`` itself is discarded, so a
    caller-influenced value such as ``https://evil.example/x`` still resolves
    to ``{app_domain}/x``.
    """
    base = urlsplit(app_domain)
    parsed = urlsplit(urljoin(app_domain, path or ""))
    return urlunsplit((base.scheme, base.netloc, parsed.path or "/", parsed.query, ""))


def local_redirect_url(
    path: Optional[str], app_domain: str, params: Mapping[str, str]
) -> str:
    """Fully qualified ``path`` with ``params`` merged into its existing query.

    Parameters already on ``path`` are kept; ``params`` win on a name clash.
    """
    target = urlsplit(fully_qualified_local_path(path, app_domain))
    query = dict(parse_qsl(target.query, keep_blank_values=True))
    query.update(params)
    return urlunsplit((target.scheme, target.netloc, target.path, urlencode(query), ""))
