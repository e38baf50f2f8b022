import httpx
import pytest
from pydantic import SecretStr

from autocart_backend.config import ClientCredentials, Settings
from autocart_backend.http_server import create_app


CLIENT_ID = "pm-client-123456"
CLIENT_SECRET = "pm-secret-abcdef"


@pytest.fixture()
def credentials() -> ClientCredentials:
    return ClientCredentials(client_id=CLIENT_ID, client_secret=SecretStr(CLIENT_SECRET))


@pytest.fixture()
def configured(monkeypatch):
    """Point Settings at a fake Payman client and a test API base URL."""
    monkeypatch.setattr(Settings, "PAYMAN_CLIENT_ID", CLIENT_ID)
    monkeypatch.setattr(Settings, "PAYMAN_CLIENT_SECRET", CLIENT_SECRET)
    monkeypatch.setattr(Settings, "PAYMAN_API_BASE_URL", "https://payman.test/api")
    monkeypatch.setattr(Settings, "FRONTEND_URL", "https://auto-cart.vercel.app")


@pytest.fixture()
def unconfigured(monkeypatch):
    monkeypatch.setattr(Settings, "PAYMAN_CLIENT_ID", None)
    monkeypatch.setattr(Settings, "PAYMAN_CLIENT_SECRET", None)


@pytest.fixture()
def app():
    return create_app()


@pytest.fixture()
async def client(app):
    """Async HTTP client bound to the FastAPI app (lifespan is not run)."""
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
