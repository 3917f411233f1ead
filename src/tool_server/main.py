"""Tool server - FastAPI application.

Serves provider tools over a stateless execute endpoint and a
session-based JSON-RPC endpoint, and hosts the providers' OAuth routes.
Stores, providers and the HTTP client are built once in ``create_app``
and kept on ``app.state``.
"""

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Optional, Union

from fastapi import Depends, FastAPI, Header, Request, Response, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from shared.config import Settings, get_settings
from shared.http import ResilientClient
from shared.logging import get_logger, setup_logging
from shared.models import ToolResult, ToolResultStatus
from storage import create_stores
from storage.credentials import CredentialStore
from storage.usage import UsageLog
from providers import ProviderRegistry, build_providers
from tool_server import __version__
from tool_server.auth import SharedSecretAuth
from tool_server.registry import ToolRegistry
from tool_server.router import AsyncToolRouter
from tool_server.sessions import SessionManager

logger = get_logger(__name__)

SERVER_NAME = "tool-hub"
PROTOCOL_VERSION = "2025-03-26"
SESSION_HEADER = "Mcp-Session-Id"

# JSON-RPC error codes
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
SESSION_REQUIRED = -32000


# Request/Response Models
class ToolCallRequest(BaseModel):
    """Request to execute a tool."""
    tool_name: str = Field(..., description="Fully-qualified tool name")
    arguments: dict[str, Any] = Field(default_factory=dict)


class ToolListResponse(BaseModel):
    """List of available tools."""
    tools: list[dict[str, Any]]
    count: int


class JsonRpcRequest(BaseModel):
    """A JSON-RPC 2.0 request or notification."""
    jsonrpc: str = "2.0"
    id: Optional[Union[int, str]] = None
    method: str
    params: dict[str, Any] = Field(default_factory=dict)


def rpc_result(request_id: Any, result: Any) -> dict[str, Any]:
    return {"jsonrpc": "2.0", "id": request_id, "result": result}


def rpc_error(request_id: Any, code: int, message: str) -> dict[str, Any]:
    return {"jsonrpc": "2.0", "id": request_id, "error": {"code": code, "message": message}}


def call_tool_payload(result: ToolResult) -> dict[str, Any]:
    """Shape a tool result as a ``tools/call`` response."""
    if result.status == ToolResultStatus.SUCCESS:
        if isinstance(result.data, dict) and "content" in result.data:
            return result.data
        return {"content": [{"type": "text", "text": str(result.data)}]}
    return {"content": [{"type": "text", "text": result.error or "Tool failed"}], "isError": True}


def create_app(
    settings: Optional[Settings] = None,
    credential_store: Optional[CredentialStore] = None,
    usage_log: Optional[UsageLog] = None,
    providers: Optional[ProviderRegistry] = None,
    http: Optional[ResilientClient] = None,
) -> FastAPI:
    """
    Build the tool server.

    Anything not passed in is built from settings: stores from the storage
    section, providers from their sections.
    """
    settings = settings or get_settings()
    credential_store, usage_log = create_stores(settings.storage, credential_store, usage_log)
    http = http or ResilientClient()
    providers = providers or build_providers(settings, credential_store, usage_log, http)

    tools = ToolRegistry()
    providers.register_all(tools)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await credential_store.init()
        await usage_log.init()
        logger.info(
            "Tool server started",
            providers=providers.names(),
            tool_count=len(tools),
            shared_secret=auth.enabled,
        )
        yield
        logger.info("Shutting down tool server")
        await usage_log.close()
        await credential_store.close()
        await http.close()

    app = FastAPI(
        title="Tool Hub",
        description="OAuth-backed tool server for workspace APIs",
        version=__version__,
        lifespan=lifespan,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.server.cors_origin],
        expose_headers=[SESSION_HEADER],
        allow_headers=["Content-Type", "mcp-session-id", "x-mcp-key"],
        allow_methods=["*"],
    )
    app.add_middleware(GZipMiddleware, minimum_size=1000)
    if settings.server.allowed_host_list:
        # rejects requests whose Host header is not listed (DNS rebinding)
        app.add_middleware(TrustedHostMiddleware, allowed_hosts=settings.server.allowed_host_list)

    auth = SharedSecretAuth(settings.server.shared_secret)
    sessions = SessionManager(ttl_seconds=settings.server.session_ttl_seconds)
    router = AsyncToolRouter(tools)

    app.state.settings = settings
    app.state.credential_store = credential_store
    app.state.usage_log = usage_log
    app.state.providers = providers
    app.state.tools = tools
    app.state.sessions = sessions
    app.state.router = router

    providers.mount_all(app)

    @app.get("/health", tags=["System"])
    async def health_check():
        return {"status": "ok", "time": datetime.now(timezone.utc).isoformat()}

    @app.get("/providers", tags=["System"])
    async def list_providers():
        return {"providers": providers.names(), "tools": tools.names()}

    @app.get("/stats", tags=["System"])
    async def usage_stats():
        stats = await usage_log.stats()
        return stats.model_dump()

    @app.get("/tools", response_model=ToolListResponse, tags=["Tools"], dependencies=[Depends(auth)])
    async def list_tools():
        listing = tools.list_tools()
        return ToolListResponse(tools=listing, count=len(listing))

    @app.post("/execute", response_model=ToolResult, tags=["Execution"], dependencies=[Depends(auth)])
    async def execute_tool(request: ToolCallRequest):
        return await router.execute(request.tool_name, request.arguments)

    @app.post("/mcp", tags=["Protocol"], dependencies=[Depends(auth)])
    async def handle_rpc(
        request: Request,
        mcp_session_id: Optional[str] = Header(default=None),
    ):
        try:
            rpc = JsonRpcRequest.model_validate(await request.json())
        except ValueError:
            return JSONResponse(
                rpc_error(None, INVALID_REQUEST, "Invalid JSON-RPC request"),
                status_code=status.HTTP_400_BAD_REQUEST,
            )

        session = sessions.get(mcp_session_id)
        if session is None:
            if rpc.method != "initialize":
                return JSONResponse(
                    rpc_error(None, SESSION_REQUIRED, "Bad Request: No valid session ID provided"),
                    status_code=status.HTTP_400_BAD_REQUEST,
                )
            client_info = rpc.params.get("clientInfo")
            session = sessions.create(client_info if isinstance(client_info, dict) else None)
            return JSONResponse(
                rpc_result(rpc.id, {
                    "protocolVersion": PROTOCOL_VERSION,
                    "capabilities": {"tools": {"listChanged": False}},
                    "serverInfo": {"name": SERVER_NAME, "version": __version__},
                }),
                headers={SESSION_HEADER: session.id},
            )

        if rpc.id is None:
            # notifications get no response body
            return Response(status_code=status.HTTP_202_ACCEPTED)

        if rpc.method == "ping":
            return rpc_result(rpc.id, {})
        if rpc.method == "tools/list":
            return rpc_result(rpc.id, {"tools": tools.list_tools()})
        if rpc.method == "tools/call":
            name = rpc.params.get("name")
            if not isinstance(name, str) or name not in tools:
                return rpc_error(rpc.id, INVALID_PARAMS, f"Unknown tool: {name}")
            result = await router.execute(name, rpc.params.get("arguments") or {})
            return rpc_result(rpc.id, call_tool_payload(result))
        return rpc_error(rpc.id, METHOD_NOT_FOUND, f"Method not found: {rpc.method}")

    @app.delete("/mcp", tags=["Protocol"], dependencies=[Depends(auth)])
    async def close_session(mcp_session_id: Optional[str] = Header(default=None)):
        if not mcp_session_id or not sessions.close(mcp_session_id):
            return JSONResponse(
                {"detail": "Invalid or missing session ID"},
                status_code=status.HTTP_400_BAD_REQUEST,
            )
        return {"status": "closed"}

    return app


def main():
    """Run the tool server."""
    import uvicorn

    settings = get_settings()
    setup_logging(settings.log_level, json_output=settings.environment == "production")

    uvicorn.run(
        "tool_server.main:create_app",
        factory=True,
        host=settings.server.host,
        port=settings.server.port,
        reload=settings.environment == "development",
    )


if __name__ == "__main__":
    main()
