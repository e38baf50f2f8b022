"""
===========================================================================
AUTOCART OAUTH BROKER: PAYMAN AUTHORIZATION CODE EXCHANGE
===========================================================================

### Requirement ###
-------------------------------
The AutoCart frontend is a single-page app. It cannot hold the Payman client
secret, so the authorization code returned by Payman has to be exchanged for an
access token by this backend.

### Two entry points ###
-----------------------------
1.  `POST /api/oauth/token`: the frontend already holds the code (e.g. it read
    it from its own callback page) and asks for the token over an API call.
    The answer is JSON.

2.  `GET /api/oauth/callback`: Payman redirects the browser here directly.
    The backend exchanges the code in-process and sends the browser on to
    `<frontend>/dashboard` with either the token or an error in the query
    string. This endpoint always redirects; it never returns a JSON body.

### Known gap ###
-----------------------------
The `state` parameter is read but not validated against anything. There is no
CSRF protection on the callback and it must be added before relying on this
flow in production.
"""

from typing import Optional

from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse, RedirectResponse
from pydantic import BaseModel

from .config import Settings, get_client_credentials
from .logging_util import get_logger, mask_sensitive
from .oauth.redirects import build_dashboard_url, resolve_redirect_base
from .oauth.token_exchange import exchange
from .utils.exceptions import InternalError, TokenExchangeError


logger = get_logger(__name__)

oauthRouter = APIRouter(prefix="/api/oauth")

MISSING_CODE_DESCRIPTION = "No authorization code received"


class TokenRequest(BaseModel):
    code: Optional[str] = None


async def exchange_code(request: Request, code: Optional[str]):
    """
    Run the token exchange with the process-wide configuration.

    The shared httpx client (if the app started one) is reused for the fallback call.
    """
    return await exchange(
        get_client_credentials(),
        code,
        base_url=Settings.PAYMAN_API_BASE_URL,
        timeout=Settings.PAYMAN_HTTP_TIMEOUT,
        http_client=getattr(request.app.state, "http_client", None),
    )


@oauthRouter.post("/token")
async def token_exchange(request: Request, payload: Optional[TokenRequest] = None):
    """
    ## Token Exchange Endpoint (frontend API call)

    Exchanges the authorization code in the JSON body for a Payman access token.

    - 200 `{accessToken, expiresIn}` on success.
    - 400 when the code is missing.
    - 500 with `{error, error_code, ...}` for configuration, provider or unexpected failures.
    """
    code = payload.code if payload else None
    logger.info(f"Token exchange request received, code: {mask_sensitive(code)}")

    try:
        token_response = await exchange_code(request, code)
    except TokenExchangeError:
        raise
    except Exception as e:
        logger.error("Unexpected error during token exchange", exc_info=True)
        raise InternalError() from e

    return JSONResponse(content=token_response.model_dump(by_alias=True), status_code=status.HTTP_200_OK)


@oauthRouter.get("/callback")
async def oauth_callback(request: Request):
    """
    ## OAuth Callback Endpoint (Payman browser redirect)

    Process:
    1. Redirect target: chosen from the `Referer` header (local dev servers) or
       the production frontend.
    2. Provider error: forwarded as `error` / `error_description` without any exchange.
    3. Missing code: `error=missing_code`.
    4. Exchange: done in-process; success yields `access_token` / `expires_in`,
       any failure yields `error=token_exchange_failed`.
    """
    params = request.query_params
    code = params.get("code")
    error = params.get("error")
    error_description = params.get("error_description")
    state = params.get("state")

    redirect_base = resolve_redirect_base(request.headers.get("referer"))
    logger.info(f"OAuth callback received, redirect base: {redirect_base}, state: {mask_sensitive(state)}")

    if error:
        logger.error(f"OAuth error from Payman: {error} ({error_description or 'no description'})")
        return _redirect(redirect_base, {
            "error": error,
            "error_description": error_description or "",
        })

    if not code:
        logger.error("OAuth callback without authorization code")
        return _redirect(redirect_base, {
            "error": "missing_code",
            "error_description": MISSING_CODE_DESCRIPTION,
        })

    try:
        token_response = await exchange_code(request, code)
    except TokenExchangeError as e:
        logger.error(f"Token exchange error in callback: {e.message}")
        return _redirect(redirect_base, {
            "error": "token_exchange_failed",
            "error_description": e.message,
        })
    except Exception:
        logger.error("Unexpected error during callback token exchange", exc_info=True)
        return _redirect(redirect_base, {
            "error": "token_exchange_failed",
            "error_description": InternalError().message,
        })

    logger.info("Callback token exchange successful, redirecting to dashboard")
    return _redirect(redirect_base, {
        "access_token": token_response.access_token,
        "expires_in": str(token_response.expires_in),
    })


def _redirect(redirect_base: str, params: dict[str, str]) -> RedirectResponse:
    return RedirectResponse(url=build_dashboard_url(redirect_base, params), status_code=status.HTTP_302_FOUND)
