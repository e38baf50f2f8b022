import base64
import json
from unittest.mock import MagicMock, patch
from urllib.parse import parse_qs

import httpx
import pytest
from pydantic import SecretStr

from autocart_backend.config import ClientCredentials
from autocart_backend.oauth.token_exchange import (
    DEFAULT_EXPIRES_IN,
    exchange,
    first_present,
    normalize_token_payload,
)
from autocart_backend.PaymanClient import PaymanClientError
from autocart_backend.utils.exceptions import (
    ConfigurationError,
    MissingCodeError,
    MissingTokenError,
    ProviderError,
)


BASE_URL = "https://payman.test/api"
TOKEN_URL = f"{BASE_URL}/oauth/token"


def make_factory(payload=None, error=None):
    """Fake PaymanClient.with_auth_code recording every construction."""
    calls = []

    def factory(credentials, code, base_url, timeout):
        calls.append({"credentials": credentials, "code": code, "base_url": base_url, "timeout": timeout})
        client = MagicMock()
        if error is not None:
            client.get_access_token.side_effect = error
        else:
            client.get_access_token.return_value = payload
        return client

    factory.calls = calls
    return factory


def make_http_client(handler):
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def _no_network(request):
    raise AssertionError(f"unexpected request to {request.url}")


class TestNormalizeTokenPayload:

    @pytest.mark.parametrize("payload", [
        {"access_token": "x", "expires_in": 10},
        {"accessToken": "x", "expiresIn": 10},
        {"token": "x", "expiry": 10},
    ])
    def test_known_shapes_normalize_to_same_response(self, payload):
        result = normalize_token_payload(payload)
        assert result.model_dump(by_alias=True) == {"accessToken": "x", "expiresIn": 10}

    def test_camel_case_takes_priority(self):
        result = normalize_token_payload({"token": "old", "access_token": "snake", "accessToken": "camel"})
        assert result.access_token == "camel"

    def test_empty_values_fall_through_to_next_key(self):
        result = normalize_token_payload({"accessToken": "", "access_token": "tok", "expiresIn": None, "expires_in": 60})
        assert result.access_token == "tok"
        assert result.expires_in == 60

    def test_expiry_defaults_when_absent(self):
        assert normalize_token_payload({"access_token": "tok"}).expires_in == DEFAULT_EXPIRES_IN

    def test_string_expiry_is_coerced(self):
        assert normalize_token_payload({"access_token": "tok", "expires_in": "120"}).expires_in == 120

    @pytest.mark.parametrize("expiry", [0, -5, "soon", True])
    def test_unusable_expiry_falls_back_to_default(self, expiry):
        assert normalize_token_payload({"access_token": "tok", "expires_in": expiry}).expires_in == DEFAULT_EXPIRES_IN

    def test_non_positive_expiry_falls_through_to_next_key(self):
        result = normalize_token_payload({"accessToken": "x", "expiresIn": 0, "expires_in": 60})
        assert result.expires_in == 60

    @pytest.mark.parametrize("raw", [
        '{"access_token": "x", "expires_in": 1e999}',
        '{"access_token": "x", "expires_in": Infinity}',
        '{"access_token": "x", "expires_in": NaN}',
    ])
    def test_non_finite_expiry_uses_default(self, raw):
        assert normalize_token_payload(json.loads(raw)).expires_in == DEFAULT_EXPIRES_IN

    def test_non_finite_expiry_falls_through_to_next_key(self):
        payload = json.loads('{"access_token": "x", "expiresIn": 1e999, "expiry": 45}')
        assert normalize_token_payload(payload).expires_in == 45

    def test_numeric_token_is_accepted_as_text(self):
        assert normalize_token_payload({"access_token": 12345}).access_token == "12345"

    @pytest.mark.parametrize("token", [True, {"value": "x"}, ["x"]])
    def test_non_scalar_token_is_rejected(self, token):
        with pytest.raises(MissingTokenError):
            normalize_token_payload({"access_token": token})

    def test_unrecognized_payload_raises_with_field_names_only(self):
        with pytest.raises(MissingTokenError) as exc_info:
            normalize_token_payload({"foo": "bar", "refresh": "secret-value"})
        assert exc_info.value.fields == ["foo", "refresh"]
        assert "secret-value" not in str(exc_info.value.to_payload())

    @pytest.mark.parametrize("payload", [None, {}])
    def test_empty_payload_raises(self, payload):
        with pytest.raises(MissingTokenError):
            normalize_token_payload(payload)

    def test_first_present_returns_none_when_nothing_matches(self):
        assert first_present({"a": 1}, ("b", "c")) is None


class TestExchangePreconditions:

    @pytest.mark.parametrize("code", ["", None])
    async def test_missing_code_makes_no_network_call(self, credentials, code):
        factory = make_factory(payload={"access_token": "tok"})
        async with make_http_client(_no_network) as http_client:
            with pytest.raises(MissingCodeError):
                await exchange(credentials, code, base_url=BASE_URL, client_factory=factory, http_client=http_client)
        assert factory.calls == []

    async def test_missing_credentials_makes_no_network_call(self):
        factory = make_factory(payload={"access_token": "tok"})
        async with make_http_client(_no_network) as http_client:
            with pytest.raises(ConfigurationError) as exc_info:
                await exchange(None, "abc", base_url=BASE_URL, client_factory=factory, http_client=http_client)
        assert factory.calls == []
        assert "SECRET" not in exc_info.value.message.upper()

    async def test_blank_secret_is_a_configuration_error(self):
        creds = ClientCredentials(client_id="id", client_secret=SecretStr(""))
        factory = make_factory(payload={"access_token": "tok"})
        with pytest.raises(ConfigurationError):
            await exchange(creds, "abc", base_url=BASE_URL, client_factory=factory)
        assert factory.calls == []


class TestExchangeClientHelper:

    async def test_success_through_client_helper(self, credentials):
        factory = make_factory(payload={"accessToken": "tok1", "expiresIn": 1800})
        async with make_http_client(_no_network) as http_client:
            result = await exchange(
                credentials, "abc", base_url=BASE_URL, timeout=7.5,
                client_factory=factory, http_client=http_client,
            )

        assert result.access_token == "tok1"
        assert result.expires_in == 1800
        assert factory.calls == [{
            "credentials": credentials,
            "code": "abc",
            "base_url": "https://payman.test/api",
            "timeout": 7.5,
        }]

    async def test_helper_payload_without_token_raises(self, credentials):
        factory = make_factory(payload={"foo": "bar"})
        async with make_http_client(_no_network) as http_client:
            with pytest.raises(MissingTokenError) as exc_info:
                await exchange(credentials, "abc", base_url=BASE_URL, client_factory=factory, http_client=http_client)
        assert exc_info.value.fields == ["foo"]


class TestExchangeHttpFallback:

    async def test_falls_back_to_basic_auth_form_post(self, credentials):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["method"] = request.method
            seen["authorization"] = request.headers["authorization"]
            seen["content_type"] = request.headers["content-type"]
            seen["body"] = parse_qs(request.content.decode())
            return httpx.Response(200, json={"access_token": "tok2", "expires_in": 3600})

        factory = make_factory(error=PaymanClientError("Token endpoint returned 404", status_code=404))
        async with make_http_client(handler) as http_client:
            result = await exchange(credentials, "abc", base_url=BASE_URL, client_factory=factory, http_client=http_client)

        expected_auth = "Basic " + base64.b64encode(b"pm-client-123456:pm-secret-abcdef").decode()
        assert result.model_dump(by_alias=True) == {"accessToken": "tok2", "expiresIn": 3600}
        assert seen["url"] == TOKEN_URL
        assert seen["method"] == "POST"
        assert seen["authorization"] == expected_auth
        assert seen["content_type"] == "application/x-www-form-urlencoded"
        assert seen["body"] == {"grant_type": ["authorization_code"], "code": ["abc"]}

    async def test_non_success_status_raises_provider_error(self, credentials):
        def handler(request):
            return httpx.Response(400, text='{"error":"invalid_grant"}')

        factory = make_factory(error=RuntimeError("sdk broke"))
        async with make_http_client(handler) as http_client:
            with pytest.raises(ProviderError) as exc_info:
                await exchange(credentials, "abc", base_url=BASE_URL, client_factory=factory, http_client=http_client)

        err = exc_info.value
        assert err.upstream_status == 400
        assert err.upstream_body == '{"error":"invalid_grant"}'
        assert "upstream_body" not in err.to_payload()

    async def test_unreachable_provider_raises_provider_error(self, credentials):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        factory = make_factory(error=PaymanClientError("Token request failed: ConnectionError"))
        async with make_http_client(handler) as http_client:
            with pytest.raises(ProviderError, match="unreachable"):
                await exchange(credentials, "abc", base_url=BASE_URL, client_factory=factory, http_client=http_client)

    async def test_non_json_body_raises_provider_error(self, credentials):
        def handler(request):
            return httpx.Response(200, text="<html>oops</html>")

        factory = make_factory(error=PaymanClientError("boom"))
        async with make_http_client(handler) as http_client:
            with pytest.raises(ProviderError):
                await exchange(credentials, "abc", base_url=BASE_URL, client_factory=factory, http_client=http_client)

    async def test_fallback_payload_without_token_raises_missing_token(self, credentials):
        def handler(request):
            return httpx.Response(200, json={"foo": "bar"})

        factory = make_factory(error=PaymanClientError("boom"))
        async with make_http_client(handler) as http_client:
            with pytest.raises(MissingTokenError):
                await exchange(credentials, "abc", base_url=BASE_URL, client_factory=factory, http_client=http_client)


class TestExchangeOwnHttpClient:
    """Fallback without an injected client builds one bounded by `timeout`."""

    def patch_async_client(self, handler, created):
        real_async_client = httpx.AsyncClient

        def build(**kwargs):
            client = real_async_client(transport=httpx.MockTransport(handler), **kwargs)
            created.append(client)
            return client

        return patch("autocart_backend.oauth.token_exchange.httpx.AsyncClient", side_effect=build)

    async def test_fallback_client_uses_configured_timeout(self, credentials):
        created = []

        def handler(request):
            return httpx.Response(200, json={"access_token": "tok5", "expires_in": 300})

        factory = make_factory(error=PaymanClientError("boom"))
        with self.patch_async_client(handler, created):
            result = await exchange(credentials, "abc", base_url=BASE_URL, timeout=4.0, client_factory=factory)

        assert result.access_token == "tok5"
        assert len(created) == 1
        assert created[0].timeout == httpx.Timeout(4.0)
        assert factory.calls[0]["timeout"] == 4.0

    async def test_read_timeout_maps_to_provider_error(self, credentials):
        created = []

        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        factory = make_factory(error=PaymanClientError("boom"))
        with self.patch_async_client(handler, created):
            with pytest.raises(ProviderError, match="unreachable"):
                await exchange(credentials, "abc", base_url=BASE_URL, timeout=2.5, client_factory=factory)

        assert created[0].timeout == httpx.Timeout(2.5)
