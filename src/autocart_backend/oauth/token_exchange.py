"""
## Payman Authorization Code Exchange

Turns an authorization code into an access token on behalf of the AutoCart
frontend, using the backend's confidential client credentials.

Two transports are tried in order:

1.  The Payman client helper (`PaymanClient.with_auth_code(...).get_access_token()`),
    a blocking `requests` call that runs in a worker thread.
2.  If that raises, a direct POST to the provider's `/oauth/token` endpoint with
    HTTP Basic client authentication and a form-encoded body.

Payman has shipped several response shapes over time (`accessToken`,
`access_token`, `token`, ...), so every payload goes through the same ordered
key lookup before a `TokenResponse` is built.

Nothing here touches ambient configuration: credentials, the Payman API base URL and the
transports are parameters so handlers and tests can inject them.
"""

import asyncio
from typing import Any, Callable, Mapping, Optional, Sequence

import httpx
from pydantic import BaseModel, ConfigDict, Field

from ..config import ClientCredentials, build_token_url
from ..logging_util import get_logger, mask_sensitive
from ..PaymanClient import PaymanClient
from ..utils.exceptions import (
    ConfigurationError,
    MissingCodeError,
    MissingTokenError,
    ProviderError,
)


logger = get_logger(__name__)

ACCESS_TOKEN_KEYS = ("accessToken", "access_token", "token")
EXPIRES_IN_KEYS = ("expiresIn", "expires_in", "expiry")
DEFAULT_EXPIRES_IN = 3600
DEFAULT_TIMEOUT_SECONDS = 10.0

ClientFactory = Callable[..., PaymanClient]


class TokenResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    access_token: str = Field(alias="accessToken", min_length=1)
    expires_in: int = Field(alias="expiresIn", gt=0)


def first_present(payload: Mapping[str, Any], keys: Sequence[str]) -> Any:
    """Return the value of the first key in `keys` that holds a non-empty value."""
    for key in keys:
        value = payload.get(key)
        if value not in (None, ""):
            return value
    return None


def _as_positive_seconds(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        seconds = int(value)
    except (TypeError, ValueError, OverflowError):
        logger.warning(f"Ignoring unusable expiry value of type {type(value).__name__}")
        return None
    return seconds if seconds > 0 else None


def _expires_in(payload: Mapping[str, Any]) -> int:
    """First expiry key that holds a positive finite number of seconds, else the default."""
    for key in EXPIRES_IN_KEYS:
        seconds = _as_positive_seconds(payload.get(key))
        if seconds is not None:
            return seconds
    return DEFAULT_EXPIRES_IN


def normalize_token_payload(payload: Optional[Mapping[str, Any]]) -> TokenResponse:
    """
    Build a TokenResponse from any known Payman token payload shape.

    Raises:
        MissingTokenError: no recognizable access token field. Only the field
            names are reported, never their values.
    """
    if not payload:
        raise MissingTokenError(fields=[])

    access_token = first_present(payload, ACCESS_TOKEN_KEYS)
    # Numeric tokens are accepted as text; containers and booleans are not tokens
    if isinstance(access_token, (int, float)) and not isinstance(access_token, bool):
        access_token = str(access_token)
    if not isinstance(access_token, str) or not access_token:
        fields = sorted(str(k) for k in payload.keys())
        logger.error(f"No access token in provider response, fields present: {fields}")
        raise MissingTokenError(fields=fields)

    expires_in = _expires_in(payload)
    return TokenResponse(access_token=access_token, expires_in=expires_in)


def basic_auth(credentials: ClientCredentials) -> httpx.BasicAuth:
    return httpx.BasicAuth(credentials.client_id, credentials.client_secret.get_secret_value())


async def _exchange_with_client_helper(
    client_factory: ClientFactory,
    credentials: ClientCredentials,
    code: str,
    base_url: str,
    timeout: float,
) -> Mapping[str, Any]:
    client = client_factory(credentials, code, base_url=base_url, timeout=timeout)
    try:
        return await asyncio.to_thread(client.get_access_token)
    finally:
        client.close()


async def _exchange_with_http(
    http_client: httpx.AsyncClient,
    credentials: ClientCredentials,
    code: str,
    token_url: str,
) -> Mapping[str, Any]:
    try:
        response = await http_client.post(
            token_url,
            data={"grant_type": "authorization_code", "code": code},
            auth=basic_auth(credentials),
            headers={
                "Content-Type": "application/x-www-form-urlencoded",
                "Accept": "application/json",
            },
        )
    except httpx.HTTPError as e:
        logger.error(f"Payman token endpoint unreachable: {e.__class__.__name__}")
        raise ProviderError("Payman token endpoint is unreachable") from e

    if not response.is_success:
        logger.error(f"Upstream error ({response.status_code}): {response.text[:500]}")
        raise ProviderError(
            f"Payman rejected the token exchange ({response.status_code})",
            upstream_status=response.status_code,
            upstream_body=response.text,
        )

    try:
        payload = response.json()
    except ValueError as e:
        raise ProviderError("Payman returned a non-JSON token response", upstream_status=response.status_code) from e

    if not isinstance(payload, dict):
        raise ProviderError("Payman returned an unexpected token response", upstream_status=response.status_code)
    return payload


async def exchange(
    credentials: Optional[ClientCredentials],
    code: Optional[str],
    *,
    base_url: str,
    timeout: float = DEFAULT_TIMEOUT_SECONDS,
    client_factory: ClientFactory = PaymanClient.with_auth_code,
    http_client: Optional[httpx.AsyncClient] = None,
) -> TokenResponse:
    """
    Exchange `code` for a Payman access token.

    Raises:
        MissingCodeError: `code` is empty; no network call is made.
        ConfigurationError: client credentials are not configured; no network call is made.
        ProviderError: the fallback HTTP call failed or was rejected.
        MissingTokenError: the provider answered without a recognizable token.
    """
    if not code:
        raise MissingCodeError()
    if credentials is None or not credentials.client_id or not credentials.client_secret.get_secret_value():
        raise ConfigurationError()

    token_url = build_token_url(base_url)
    logger.info(f"Exchanging authorization code {mask_sensitive(code)} for client {mask_sensitive(credentials.client_id, 6)}")

    try:
        payload = await _exchange_with_client_helper(client_factory, credentials, code, base_url, timeout)
        logger.debug("Token response received from Payman client helper")
    except Exception as e:
        logger.warning(
            f"Payman client helper failed ({e.__class__.__name__}), falling back to direct token request",
            exc_info=True,
        )
        if http_client is not None:
            payload = await _exchange_with_http(http_client, credentials, code, token_url)
        else:
            async with httpx.AsyncClient(timeout=timeout) as client:
                payload = await _exchange_with_http(client, credentials, code, token_url)

    token_response = normalize_token_payload(payload)
    logger.info(f"Token exchange successful (expires in {token_response.expires_in}s)")
    return token_response
