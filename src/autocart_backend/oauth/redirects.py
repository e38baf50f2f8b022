from typing import Optional
from urllib.parse import parse_qsl, quote, urlencode, urlparse, urlunparse

from ..config import DEVELOPMENT_FRONTEND_ORIGINS, Settings


DASHBOARD_PATH = "/dashboard"


def resolve_redirect_base(referer: Optional[str]) -> str:
    """
    Pick the frontend origin to send the browser back to.

    A Referer from one of the local dev servers wins; anything else (including
    no Referer at all) goes to the production frontend.
    """
    if referer:
        parsed = urlparse(referer)
        if parsed.scheme and parsed.netloc:
            origin = f"{parsed.scheme}://{parsed.netloc}".lower()
            if origin in DEVELOPMENT_FRONTEND_ORIGINS:
                return origin
    return Settings.FRONTEND_URL


def build_url_with_params(base_uri: str, params: dict[str, str | None]) -> str:
    """
    Append or merge query parameters into base_uri.

    Values are percent-encoded the way the frontend decodes them (spaces as %20).
    """
    url = urlparse(base_uri)
    query = dict(parse_qsl(url.query))
    query.update({k: v for k, v in params.items() if v is not None})
    new_query = urlencode(query, quote_via=quote)
    new_url = url._replace(query=new_query)
    return urlunparse(new_url)


def build_dashboard_url(redirect_base: str, params: dict[str, str | None]) -> str:
    return build_url_with_params(redirect_base.rstrip("/") + DASHBOARD_PATH, params)
