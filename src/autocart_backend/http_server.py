import contextlib
from datetime import datetime, timezone

import httpx
import uvicorn
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from .config import Settings, env_presence, get_allowed_origins
from .logging_util import configure_logging, get_logger
from .oauth_routes import oauthRouter
from .utils.exceptions import (
    TokenExchangeError,
    token_exchange_exception_handler,
    validation_exception_handler,
)


logger = get_logger(__name__)

SERVICE_NAME = "AutoCart Backend API"
ENDPOINTS = [
    "GET /health - Health check",
    "POST /api/oauth/token - Exchange OAuth code for token",
    "GET /api/oauth/callback - OAuth callback handler",
]


@contextlib.asynccontextmanager
async def app_lifespan(app: FastAPI):
    # One pooled client for the direct token-endpoint fallback
    async with httpx.AsyncClient(timeout=Settings.PAYMAN_HTTP_TIMEOUT) as client:
        app.state.http_client = client
        logger.info(f"Payman credentials: {env_presence()}")
        if Settings.RENDER_EXTERNAL_URL:
            logger.info(f"Public URL: {Settings.RENDER_EXTERNAL_URL}")
        yield
    app.state.http_client = None


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def create_app() -> FastAPI:
    app = FastAPI(title=SERVICE_NAME, lifespan=app_lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=get_allowed_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(TokenExchangeError, token_exchange_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.include_router(oauthRouter)

    @app.get("/health")
    async def health():
        return {
            "status": "ok",
            "timestamp": _now_iso(),
            "env": env_presence(),
        }

    @app.get("/")
    async def index():
        return {
            "message": SERVICE_NAME,
            "status": "running",
            "timestamp": _now_iso(),
            "endpoints": ENDPOINTS,
        }

    return app


app = create_app()


def main():
    configure_logging(level=Settings.LOG_LEVEL, log_file=Settings.LOG_FILE)
    logger.info(f"Server running on port {Settings.PORT}")
    uvicorn.run(app, host=Settings.HOST, port=Settings.PORT, log_config=None)

if __name__ == "__main__":
    main()
