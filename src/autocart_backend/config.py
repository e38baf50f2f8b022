import os
from typing import Optional
from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, SecretStr

load_dotenv()


PRODUCTION_FRONTEND_URL = "https://auto-cart.vercel.app"

# Local frontend dev servers
DEVELOPMENT_FRONTEND_ORIGINS = (
    "http://localhost:8080",
    "http://localhost:5173",
    "http://localhost:3000",
)


class Settings:

    # Payman OAuth client (confidential, never sent to the browser)
    PAYMAN_CLIENT_ID = os.getenv("PAYMAN_CLIENT_ID")
    PAYMAN_CLIENT_SECRET = os.getenv("PAYMAN_CLIENT_SECRET")
    PAYMAN_API_BASE_URL = os.getenv("PAYMAN_API_BASE_URL", "https://agent.payman.ai/api")
    PAYMAN_HTTP_TIMEOUT = float(os.getenv("PAYMAN_HTTP_TIMEOUT") or 10)

    # Frontend
    FRONTEND_URL = os.getenv("FRONTEND_URL", PRODUCTION_FRONTEND_URL).rstrip("/")

    # Server
    HOST = os.getenv("HOST", "0.0.0.0")
    PORT = int(os.getenv("PORT", "5000"))
    RENDER_EXTERNAL_URL = os.getenv("RENDER_EXTERNAL_URL")

    # Logging
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
    LOG_FILE = os.getenv("LOG_FILE")


class ClientCredentials(BaseModel):
    """Confidential client id/secret pair identifying this backend to Payman."""

    model_config = ConfigDict(frozen=True)

    client_id: str
    client_secret: SecretStr


def get_client_credentials() -> Optional[ClientCredentials]:
    """
    Returns the configured client credentials, or None when either value is missing.
    Callers turn None into a ConfigurationError without saying which one is absent.
    """
    if not Settings.PAYMAN_CLIENT_ID or not Settings.PAYMAN_CLIENT_SECRET:
        return None
    return ClientCredentials(
        client_id=Settings.PAYMAN_CLIENT_ID,
        client_secret=SecretStr(Settings.PAYMAN_CLIENT_SECRET),
    )


TOKEN_PATH = "/oauth/token"


def build_token_url(base_url: str) -> str:
    return base_url.rstrip("/") + TOKEN_PATH


def get_allowed_origins() -> list[str]:
    origins = [Settings.FRONTEND_URL, *DEVELOPMENT_FRONTEND_ORIGINS]
    if PRODUCTION_FRONTEND_URL not in origins:
        origins.insert(0, PRODUCTION_FRONTEND_URL)
    return origins


def env_presence() -> dict[str, str]:
    """Present/Missing flags for the confidential settings, safe to expose on /health."""
    return {
        "PAYMAN_CLIENT_ID": "Present" if Settings.PAYMAN_CLIENT_ID else "Missing",
        "PAYMAN_CLIENT_SECRET": "Present" if Settings.PAYMAN_CLIENT_SECRET else "Missing",
    }
