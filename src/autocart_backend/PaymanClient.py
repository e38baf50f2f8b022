import json
import requests
from typing import Optional, Dict, Any

from .config import ClientCredentials, build_token_url


DEFAULT_BASE_URL = "https://agent.payman.ai/api"


class PaymanClientError(Exception):
    """Exception raised when the Payman token request fails."""

    def __init__(self, message: str, status_code: Optional[int] = None, resp_content: str = ""):
        self.message = message
        self.status_code = status_code
        self.resp_content = resp_content
        super().__init__(self.message)


class ResponseObject:
    """Wrapper for HTTP response."""

    def __init__(self, status_code: int, resp_content: str):
        self.status_code = status_code
        self.resp_content = resp_content


class PaymanClient:
    """
    Sync Python client for the Payman OAuth authorization-code grant.

    Mirrors the SDK flow used by the frontend team:

        client = PaymanClient.with_auth_code(credentials, code)
        token_response = client.get_access_token()

    Client credentials are sent in the JSON body (client_secret_post).
    The Basic-auth form post lives in the token exchanger as the fallback path.
    """

    def __init__(
        self,
        credentials: ClientCredentials,
        auth_code: str,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = 10.0,
    ):
        """
        Initialize the PaymanClient.

        Args:
            credentials: OAuth client id and secret
            auth_code: Authorization code issued by Payman after user consent
            base_url: Payman API base URL (default: https://agent.payman.ai/api)
            timeout: Seconds to wait for the token endpoint
        """
        self.credentials = credentials
        self.auth_code = auth_code
        self.base_url = base_url.rstrip('/')
        self.token_url = build_token_url(self.base_url)
        self.timeout = timeout
        self._session: Optional[requests.Session] = None

    @classmethod
    def with_auth_code(
        cls,
        credentials: ClientCredentials,
        auth_code: str,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = 10.0,
    ) -> "PaymanClient":
        return cls(credentials, auth_code, base_url=base_url, timeout=timeout)

    def __enter__(self):
        """Context manager entry."""
        self._ensure_session()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def _ensure_session(self):
        """Ensure a requests session exists."""
        if self._session is None:
            self._session = requests.Session()

    def close(self):
        """Close the requests session."""
        if self._session:
            self._session.close()
            self._session = None

    def submit_request(self, url: str, payload: Dict[str, Any]) -> ResponseObject:
        """
        POST a JSON payload.

        Raises:
            PaymanClientError: If the request could not be sent
        """
        self._ensure_session()

        try:
            response = self._session.post(
                url,
                json=payload,
                headers={"Accept": "application/json"},
                timeout=self.timeout,
            )
            return ResponseObject(response.status_code, response.text)
        except requests.RequestException as e:
            raise PaymanClientError(f"Token request failed: {e.__class__.__name__}")

    def get_access_token(self) -> Dict[str, Any]:
        """
        Exchange the authorization code for an access token.

        Returns:
            Decoded JSON object returned by the token endpoint. Field names
            vary between Payman API versions and are left as received.

        Raises:
            PaymanClientError: On transport failure, non-2xx status or a non-JSON body
        """
        payload = {
            "grant_type": "authorization_code",
            "code": self.auth_code,
            "client_id": self.credentials.client_id,
            "client_secret": self.credentials.client_secret.get_secret_value(),
        }
        resp_obj = self.submit_request(self.token_url, payload)

        if not str(resp_obj.status_code).startswith('2'):
            raise PaymanClientError(
                f"Token endpoint returned {resp_obj.status_code}",
                status_code=resp_obj.status_code,
                resp_content=resp_obj.resp_content,
            )

        try:
            token_response = json.loads(resp_obj.resp_content)
        except ValueError:
            raise PaymanClientError("Token endpoint returned a non-JSON body", resp_obj.status_code, resp_obj.resp_content)

        if not isinstance(token_response, dict):
            raise PaymanClientError("Token endpoint returned an unexpected body", resp_obj.status_code, resp_obj.resp_content)
        return token_response
