"""Tests for the outbound HTTP clients."""

import httpx
import pytest
import respx
from httpx import Response

from memloop.client import (
    UNKNOWN_NETWORK_ERROR,
    BackendClient,
    NetworkError,
    RemoteError,
    RestClient,
    ilike_any,
    quote_filter_value,
)


@pytest.fixture
def client():
    """Create a test backend client."""
    return BackendClient(base_url="http://test-backend:8420", token="secret-token")


class TestBackendClient:
    """Tests for BackendClient.request."""

    @pytest.mark.asyncio
    @respx.mock
    async def test_returns_json_body(self, client):
        """2xx JSON responses are decoded."""
        respx.get("http://test-backend:8420/api/v1/memory/metrics").mock(
            return_value=Response(200, json={"patterns": 12})
        )

        result = await client.get("/api/v1/memory/metrics")
        assert result == {"patterns": 12}
        await client.close()

    @pytest.mark.asyncio
    @respx.mock
    async def test_falls_back_to_raw_text(self, client):
        """A 2xx body that is not JSON is returned as text."""
        respx.get("http://test-backend:8420/plain").mock(return_value=Response(200, text="all good"))

        assert await client.get("/plain") == "all good"
        await client.close()

    @pytest.mark.asyncio
    @respx.mock
    async def test_non_2xx_raises_remote_error(self, client):
        """A 503 becomes RemoteError carrying status and body excerpt."""
        respx.post("http://test-backend:8420/api/v1/context/retrieve").mock(
            return_value=Response(503, text="overloaded")
        )

        with pytest.raises(RemoteError) as exc_info:
            await client.post("/api/v1/context/retrieve", {"query": "x"})

        assert exc_info.value.status_code == 503
        assert exc_info.value.excerpt == "overloaded"
        assert "503" in str(exc_info.value)
        assert "overloaded" in str(exc_info.value)
        await client.close()

    @pytest.mark.asyncio
    @respx.mock
    async def test_error_excerpt_is_bounded(self, client):
        """Only the first 200 characters of an error body are kept."""
        respx.get("http://test-backend:8420/big").mock(return_value=Response(500, text="x" * 5000))

        with pytest.raises(RemoteError) as exc_info:
            await client.get("/big")

        assert len(exc_info.value.excerpt) == 200
        await client.close()

    @pytest.mark.asyncio
    @respx.mock
    async def test_transport_failure_raises_network_error(self, client):
        """Connection failures become NetworkError with the underlying message."""
        respx.get("http://test-backend:8420/down").mock(side_effect=httpx.ConnectError("connection refused"))

        with pytest.raises(NetworkError) as exc_info:
            await client.get("/down")

        assert exc_info.value.detail == "connection refused"
        await client.close()

    @pytest.mark.asyncio
    @respx.mock
    async def test_network_error_without_message_uses_placeholder(self, client):
        """An empty transport error message is replaced by a fixed placeholder."""
        respx.get("http://test-backend:8420/slow").mock(side_effect=httpx.ReadTimeout(""))

        with pytest.raises(NetworkError) as exc_info:
            await client.get("/slow")

        assert exc_info.value.detail == UNKNOWN_NETWORK_ERROR
        await client.close()

    @pytest.mark.asyncio
    @respx.mock
    async def test_sends_content_type_and_bearer(self, client):
        """Every request carries Content-Type and the bearer token."""
        route = respx.get("http://test-backend:8420/h").mock(return_value=Response(200, json={}))

        await client.get("/h")

        request = route.calls.last.request
        assert request.headers["Content-Type"] == "application/json"
        assert request.headers["Authorization"] == "Bearer secret-token"
        await client.close()

    @pytest.mark.asyncio
    @respx.mock
    async def test_no_authorization_without_token(self):
        """No token means no Authorization header."""
        client = BackendClient(base_url="http://test-backend:8420")
        route = respx.get("http://test-backend:8420/h").mock(return_value=Response(200, json={}))

        await client.get("/h")

        assert "Authorization" not in route.calls.last.request.headers
        await client.close()

    @pytest.mark.asyncio
    @respx.mock
    async def test_caller_headers_win(self):
        """Per-call headers override defaults and client headers."""
        client = BackendClient(
            base_url="http://test-backend:8420",
            token="secret-token",
            headers={"X-User-Id": "default-user"},
        )
        route = respx.get("http://test-backend:8420/h").mock(return_value=Response(200, json={}))

        await client.get("/h", headers={"X-User-Id": "caller", "Authorization": "Bearer other"})

        request = route.calls.last.request
        assert request.headers["X-User-Id"] == "caller"
        assert request.headers["Authorization"] == "Bearer other"
        await client.close()

    def test_rejects_unsupported_scheme(self):
        """Only http and https base URLs are accepted."""
        with pytest.raises(ValueError):
            BackendClient(base_url="ftp://files.example")


class TestRestClient:
    """Tests for the PostgREST-style helpers."""

    @pytest.mark.asyncio
    @respx.mock
    async def test_insert_returns_first_row(self):
        """insert asks for the stored row and unwraps the list."""
        rest = RestClient("http://rest.test", token="svc")
        route = respx.post("http://rest.test/rest/v1/patterns").mock(
            return_value=Response(201, json=[{"pattern_id": "p-1"}])
        )

        row = await rest.insert("patterns", {"title": "t"})

        assert row == {"pattern_id": "p-1"}
        request = route.calls.last.request
        assert request.headers["Prefer"] == "return=representation"
        assert request.headers["apikey"] == "svc"
        assert request.headers["Authorization"] == "Bearer svc"
        await rest.close()

    @pytest.mark.asyncio
    @respx.mock
    async def test_insert_minimal_returns_none(self):
        """Minimal inserts have no body to return."""
        rest = RestClient("http://rest.test", token="svc")
        route = respx.post("http://rest.test/rest/v1/decision_events").mock(return_value=Response(201))

        assert await rest.insert("decision_events", {"event_type": "x"}, returning=False) is None
        assert route.calls.last.request.headers["Prefer"] == "return=minimal"
        await rest.close()

    @pytest.mark.asyncio
    @respx.mock
    async def test_select_builds_query(self):
        """select passes columns, filters, order and limit as query params."""
        rest = RestClient("http://rest.test", token="svc")
        route = respx.route(method="GET", host="rest.test", path="/rest/v1/patterns").mock(
            return_value=Response(200, json=[{"pattern_id": "p-1"}])
        )

        rows = await rest.select(
            "patterns",
            columns="pattern_id,title",
            filters={"quarantined": "eq.false"},
            order="success_rate.desc",
            limit=3,
        )

        assert rows == [{"pattern_id": "p-1"}]
        params = route.calls.last.request.url.params
        assert params["select"] == "pattern_id,title"
        assert params["quarantined"] == "eq.false"
        assert params["order"] == "success_rate.desc"
        assert params["limit"] == "3"
        await rest.close()


class TestFilterQuoting:
    """User text must not break the or=(...) grammar."""

    def test_quotes_reserved_characters(self):
        assert quote_filter_value('a,b (c) "d"') == '"a,b (c) \\"d\\""'

    def test_ilike_any(self):
        assert ilike_any(["title", "content"], "auth") == '(title.ilike."*auth*",content.ilike."*auth*")'
