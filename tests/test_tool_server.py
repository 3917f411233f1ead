"""Tests for the tool server transport."""

import json

import pytest
from fastapi.testclient import TestClient

from shared.config import NotionSettings, ServerSettings, Settings
from shared.errors import AuthenticationError, ValidationError
from shared.models import ToolResultStatus
from storage.credentials import InMemoryCredentialStore
from storage.usage import InMemoryUsageLog
from tool_server.registry import ToolRegistry

SECRET = "s3cret"


def registry_with(**handlers):
    registry = ToolRegistry()
    for name, handler in handlers.items():
        registry.register_tool(
            f"test.{name}",
            title=name.title(),
            description=f"{name} tool",
            input_schema={"type": "object"},
            handler=handler,
        )
    return registry


class TestToolRegistry:
    """Tests for the transport tool table."""

    def test_register_and_list(self):
        """Test registration and discovery."""
        async def noop(args):
            return None

        registry = registry_with(noop=noop)

        assert "test.noop" in registry
        assert len(registry) == 1
        assert registry.list_tools() == [{
            "name": "test.noop",
            "title": "Noop",
            "description": "noop tool",
            "inputSchema": {"type": "object"},
        }]

    def test_register_duplicate_tool_raises(self):
        """Test that registering a duplicate name raises error."""
        async def noop(args):
            return None

        registry = registry_with(noop=noop)

        with pytest.raises(ValueError, match="already registered"):
            registry.register_tool(
                "test.noop", title="x", description="x", input_schema={}, handler=noop
            )


class TestAsyncToolRouter:
    """Tests for error mapping in the router."""

    @pytest.mark.asyncio
    async def test_success(self):
        """Test a successful call."""
        from tool_server.router import AsyncToolRouter

        async def echo(args):
            return {"echo": args}

        result = await AsyncToolRouter(registry_with(echo=echo)).execute("test.echo", {"a": 1})

        assert result.status == ToolResultStatus.SUCCESS
        assert result.data == {"echo": {"a": 1}}
        assert result.execution_time_ms >= 0

    @pytest.mark.asyncio
    async def test_not_found(self):
        """Test an unknown tool."""
        from tool_server.router import AsyncToolRouter

        result = await AsyncToolRouter(ToolRegistry()).execute("nope.tool")

        assert result.status == ToolResultStatus.NOT_FOUND
        assert result.error_code == "TOOL_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_error_mapping(self):
        """Test that raised errors map onto result statuses."""
        from tool_server.router import AsyncToolRouter

        async def invalid(args):
            raise ValidationError(["page_id: required"])

        async def unauthorized(args):
            raise AuthenticationError("No notion credential for subject 'ws1'")

        async def broken(args):
            raise RuntimeError("kaboom")

        router = AsyncToolRouter(
            registry_with(invalid=invalid, unauthorized=unauthorized, broken=broken)
        )

        invalid_result = await router.execute("test.invalid")
        assert invalid_result.status == ToolResultStatus.VALIDATION_ERROR
        assert invalid_result.error_code == "VALIDATION_ERROR"

        unauthorized_result = await router.execute("test.unauthorized")
        assert unauthorized_result.status == ToolResultStatus.UNAUTHORIZED
        assert "ws1" in unauthorized_result.error

        broken_result = await router.execute("test.broken")
        assert broken_result.status == ToolResultStatus.ERROR
        assert broken_result.error_code == "EXECUTION_ERROR"
        assert broken_result.error == "kaboom"


class TestSessionManager:
    """Tests for JSON-RPC sessions."""

    def test_create_get_close(self):
        """Test the session lifecycle."""
        from tool_server.sessions import SessionManager

        sessions = SessionManager()
        session = sessions.create({"name": "client"})

        assert sessions.get(session.id) is session
        assert sessions.close(session.id) is True
        assert sessions.get(session.id) is None
        assert sessions.close(session.id) is False

    def test_idle_sessions_expire(self):
        """Test that idle sessions are dropped after the TTL."""
        from tool_server.sessions import SessionManager

        now = [0.0]
        sessions = SessionManager(ttl_seconds=60, clock=lambda: now[0])
        session = sessions.create()

        now[0] = 30
        assert sessions.get(session.id) is not None
        now[0] = 85
        assert sessions.get(session.id) is not None
        now[0] = 200
        assert sessions.get(session.id) is None
        assert len(sessions) == 0


class TestSharedSecretAuth:
    """Tests for the shared secret check."""

    def test_disabled_without_secret(self):
        """Test that an empty secret lets everything through."""
        from tool_server.auth import SharedSecretAuth

        auth = SharedSecretAuth("")
        assert auth.enabled is False
        assert auth.verify(None) is True

    def test_verify(self):
        """Test secret comparison."""
        from tool_server.auth import SharedSecretAuth

        auth = SharedSecretAuth(SECRET)
        assert auth.verify(SECRET) is True
        assert auth.verify("wrong") is False
        assert auth.verify(None) is False


@pytest.fixture
def app_client(make_http):
    """Tool server with an echo provider and a static-token Notion provider."""
    import httpx

    from providers.base import Provider, text_content
    from providers.notion import NotionProvider
    from providers.registry import ProviderRegistry
    from shared.models import ToolDescriptor
    from shared.schema import object_schema
    from tool_server.main import create_app

    store = InMemoryCredentialStore()
    usage = InMemoryUsageLog()
    http, _ = make_http(lambda request: httpx.Response(200, json={"object": "user"}))

    async def echo(args):
        return text_content({"message": args["message"]})

    echo_provider = Provider("echo", usage)
    echo_provider.register_tool(ToolDescriptor(
        name="say",
        title="Say",
        description="Echo a message.",
        input_schema=object_schema({"message": {"type": "string"}}, required=["message"]),
        handler=echo,
    ))
    notion = NotionProvider(
        NotionSettings(
            client_id="cid",
            client_secret="csecret",
            redirect_uri="http://localhost:8080/oauth/notion/callback",
            static_token="",
        ),
        store,
        http,
        usage,
    )

    app = create_app(
        settings=Settings(server=ServerSettings(shared_secret=SECRET)),
        credential_store=store,
        usage_log=usage,
        providers=ProviderRegistry([echo_provider, notion]),
        http=http,
    )
    with TestClient(app) as client:
        yield client


AUTH = {"x-mcp-key": SECRET}


class TestToolServerApp:
    """Tests for the HTTP endpoints."""

    def test_health_is_public(self, app_client):
        """Test that health needs no secret."""
        response = app_client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "ok"

    def test_providers_listing(self, app_client):
        """Test the provider listing."""
        body = app_client.get("/providers").json()

        assert body["providers"] == ["echo", "notion"]
        assert "notion.search" in body["tools"]

    def test_secret_required(self, app_client):
        """Test that protected routes reject a missing or wrong secret."""
        assert app_client.get("/tools").status_code == 401
        assert app_client.get("/tools", headers={"x-mcp-key": "wrong"}).status_code == 401
        assert app_client.post("/mcp", json={"method": "initialize", "id": 1}).status_code == 401

    def test_list_tools(self, app_client):
        """Test the tool listing."""
        body = app_client.get("/tools", headers=AUTH).json()

        assert body["count"] == 6
        names = [t["name"] for t in body["tools"]]
        assert names[0] == "echo.say"

    def test_execute_and_stats(self, app_client):
        """Test execution through the stateless endpoint and usage stats."""
        response = app_client.post(
            "/execute",
            json={"tool_name": "echo.say", "arguments": {"message": "hi"}},
            headers=AUTH,
        )

        body = response.json()
        assert body["status"] == "success"
        assert json.loads(body["data"]["content"][0]["text"]) == {"message": "hi"}

        stats = app_client.get("/stats").json()
        assert stats["total"] == 1
        assert stats["by_tool"] == {"echo:say": 1}

    def test_execute_errors(self, app_client):
        """Test error statuses from the stateless endpoint."""
        missing = app_client.post(
            "/execute", json={"tool_name": "nope.tool"}, headers=AUTH
        ).json()
        invalid = app_client.post(
            "/execute", json={"tool_name": "echo.say", "arguments": {}}, headers=AUTH
        ).json()
        unauthorized = app_client.post(
            "/execute",
            json={"tool_name": "notion.get_self", "arguments": {"subject": "ws1"}},
            headers=AUTH,
        ).json()

        assert missing["status"] == "not_found"
        assert invalid["status"] == "validation_error"
        assert unauthorized["status"] == "unauthorized"
        assert "ws1" in unauthorized["error"]

    def test_oauth_routes_mounted(self, app_client):
        """Test that provider OAuth routes are public."""
        response = app_client.get("/auth/notion", follow_redirects=False)

        assert response.status_code == 302
        assert response.headers["location"].startswith("https://api.notion.com/v1/oauth/authorize")


class TestJsonRpcEndpoint:
    """Tests for the session-based JSON-RPC endpoint."""

    def initialize(self, client) -> str:
        response = client.post(
            "/mcp",
            json={"jsonrpc": "2.0", "id": 1, "method": "initialize", "params": {"clientInfo": {"name": "t"}}},
            headers=AUTH,
        )
        assert response.status_code == 200
        assert response.json()["result"]["serverInfo"]["name"] == "tool-hub"
        return response.headers["mcp-session-id"]

    def test_requires_session(self, app_client):
        """Test that calls without a session are rejected."""
        response = app_client.post(
            "/mcp", json={"jsonrpc": "2.0", "id": 1, "method": "tools/list"}, headers=AUTH
        )

        assert response.status_code == 400
        assert response.json()["error"]["code"] == -32000

    def test_list_and_call(self, app_client):
        """Test listing and calling tools in a session."""
        session_id = self.initialize(app_client)
        headers = {**AUTH, "mcp-session-id": session_id}

        listing = app_client.post(
            "/mcp", json={"jsonrpc": "2.0", "id": 2, "method": "tools/list"}, headers=headers
        ).json()
        call = app_client.post(
            "/mcp",
            json={
                "jsonrpc": "2.0",
                "id": 3,
                "method": "tools/call",
                "params": {"name": "echo.say", "arguments": {"message": "hi"}},
            },
            headers=headers,
        ).json()

        assert "echo.say" in [t["name"] for t in listing["result"]["tools"]]
        assert call["id"] == 3
        assert json.loads(call["result"]["content"][0]["text"]) == {"message": "hi"}
        assert "isError" not in call["result"]

    def test_tool_failure_is_error_result(self, app_client):
        """Test that a failed tool call returns an error result, not a protocol error."""
        session_id = self.initialize(app_client)

        call = app_client.post(
            "/mcp",
            json={
                "jsonrpc": "2.0",
                "id": 4,
                "method": "tools/call",
                "params": {"name": "notion.get_self", "arguments": {"subject": "ws1"}},
            },
            headers={**AUTH, "mcp-session-id": session_id},
        ).json()

        assert call["result"]["isError"] is True
        assert "ws1" in call["result"]["content"][0]["text"]

    def test_unknown_method_and_tool(self, app_client):
        """Test JSON-RPC error codes."""
        session_id = self.initialize(app_client)
        headers = {**AUTH, "mcp-session-id": session_id}

        unknown_method = app_client.post(
            "/mcp", json={"jsonrpc": "2.0", "id": 5, "method": "resources/list"}, headers=headers
        ).json()
        unknown_tool = app_client.post(
            "/mcp",
            json={"jsonrpc": "2.0", "id": 6, "method": "tools/call", "params": {"name": "nope"}},
            headers=headers,
        ).json()

        assert unknown_method["error"]["code"] == -32601
        assert unknown_tool["error"]["code"] == -32602

    def test_notification_accepted(self, app_client):
        """Test that notifications get 202 and no body."""
        session_id = self.initialize(app_client)

        response = app_client.post(
            "/mcp",
            json={"jsonrpc": "2.0", "method": "notifications/initialized"},
            headers={**AUTH, "mcp-session-id": session_id},
        )

        assert response.status_code == 202

    def test_close_session(self, app_client):
        """Test that a closed session can no longer be used."""
        session_id = self.initialize(app_client)
        headers = {**AUTH, "mcp-session-id": session_id}

        assert app_client.delete("/mcp", headers=headers).status_code == 200
        assert app_client.delete("/mcp", headers=headers).status_code == 400

        response = app_client.post(
            "/mcp", json={"jsonrpc": "2.0", "id": 7, "method": "ping"}, headers=headers
        )
        assert response.status_code == 400


class TestMiddleware:
    """Tests for host checking and compression."""

    def make_app(self, make_http, **server):
        import httpx

        from providers.registry import ProviderRegistry
        from tool_server.main import create_app

        http, _ = make_http(lambda request: httpx.Response(200, json={}))
        return create_app(
            settings=Settings(server=ServerSettings(**server)),
            credential_store=InMemoryCredentialStore(),
            usage_log=InMemoryUsageLog(),
            providers=ProviderRegistry(),
            http=http,
        )

    def test_unlisted_host_rejected(self, make_http):
        """Test that only allowed Host headers are served."""
        app = self.make_app(make_http, allowed_hosts="tools.example.com, localhost")

        with TestClient(app) as client:
            assert client.get("/health").status_code == 400
        with TestClient(app, base_url="http://tools.example.com") as client:
            assert client.get("/health").status_code == 200

    def test_any_host_without_allow_list(self, make_http):
        """Test that an empty allow-list disables the check."""
        with TestClient(self.make_app(make_http)) as client:
            assert client.get("/health").status_code == 200

    def test_large_responses_compressed(self, app_client):
        """Test gzip encoding of large responses."""
        response = app_client.post(
            "/execute",
            json={"tool_name": "echo.say", "arguments": {"message": "x" * 4000}},
            headers={**AUTH, "Accept-Encoding": "gzip"},
        )

        assert response.status_code == 200
        assert response.headers["content-encoding"] == "gzip"
        assert response.json()["status"] == "success"

    def test_non_string_subject_is_validation_error(self, app_client):
        """Test that a malformed subject maps to a validation status."""
        body = app_client.post(
            "/execute",
            json={"tool_name": "echo.say", "arguments": {"message": "hi", "subject": 5}},
            headers=AUTH,
        ).json()

        assert body["status"] == "validation_error"
        assert body["error_code"] == "VALIDATION_ERROR"
