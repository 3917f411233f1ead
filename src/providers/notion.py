"""Notion provider.

Proxies a handful of Notion API endpoints as tools. Responses are passed
through untouched; nothing here interprets page or database schemas.
"""

from typing import Any, Optional

from shared.config import NotionSettings
from shared.http import ResilientClient
from shared.models import ToolDescriptor
from shared.schema import object_schema
from storage.credentials import CredentialStore
from storage.usage import UsageLog
from providers.base import OAuthProvider
from providers.oauth import OAuthConfig, OAuthFlow

NOTION_API = "https://api.notion.com/v1"
NOTION_VERSION = "2022-06-28"

PAGE_SIZE = {
    "type": "integer",
    "minimum": 1,
    "maximum": 100,
    "default": 25,
    "description": "Results per page",
}
START_CURSOR = {"type": "string", "description": "Cursor from a previous response"}


def notion_oauth_config(settings: NotionSettings) -> OAuthConfig:
    """OAuth client configuration for Notion's public integration flow."""
    return OAuthConfig(
        provider="notion",
        authorize_url=f"{NOTION_API}/oauth/authorize",
        token_url=f"{NOTION_API}/oauth/token",
        client_id=settings.client_id,
        client_secret=settings.client_secret,
        redirect_uri=settings.redirect_uri,
        static_token=settings.static_token or None,
        use_pkce=settings.use_pkce,
        authorize_params={"owner": "user"},
    )


class NotionProvider(OAuthProvider):
    """
    Notion workspace tools.

    Provides tools for:
    - Bot user lookup
    - Workspace search
    - Page fetch and creation
    - Database queries
    """

    api_base = NOTION_API

    def __init__(
        self,
        settings: NotionSettings,
        credentials: CredentialStore,
        http: ResilientClient,
        usage: Optional[UsageLog] = None,
        oauth: Optional[OAuthFlow] = None,
    ) -> None:
        oauth = oauth or OAuthFlow(notion_oauth_config(settings), credentials, http)
        super().__init__("notion", oauth, credentials, http, usage)
        self._define_tools()

    def auth_headers(self, token: str) -> dict[str, str]:
        return {**super().auth_headers(token), "Notion-Version": NOTION_VERSION}

    def _define_tools(self) -> None:
        """Define all Notion tools."""

        self.register_tool(ToolDescriptor(
            name="get_self",
            title="Notion: Get Bot User",
            description="Returns the bot user and workspace for the current token.",
            input_schema=object_schema({}),
            handler=self._get_self,
        ))

        self.register_tool(ToolDescriptor(
            name="search",
            title="Notion: Search",
            description="Search pages and databases shared with the integration.",
            input_schema=object_schema({
                "query": {"type": "string", "default": "", "description": "Text to search for"},
                "filter": {"description": "Notion search filter object"},
                "sort": {"description": "Notion search sort object"},
                "start_cursor": START_CURSOR,
                "page_size": PAGE_SIZE,
            }),
            handler=self._search,
        ))

        self.register_tool(ToolDescriptor(
            name="fetch_page",
            title="Notion: Fetch Page",
            description="Fetch page metadata and properties by page ID.",
            input_schema=object_schema(
                {"page_id": {"type": "string", "minLength": 1, "description": "Page ID"}},
                required=["page_id"],
            ),
            handler=self._fetch_page,
        ))

        self.register_tool(ToolDescriptor(
            name="query_database",
            title="Notion: Query Database",
            description="Query a database with an optional filter and sorts.",
            input_schema=object_schema(
                {
                    "database_id": {"type": "string", "minLength": 1, "description": "Database ID"},
                    "filter": {"description": "Notion database filter object"},
                    "sorts": {"description": "Notion sort objects"},
                    "start_cursor": START_CURSOR,
                    "page_size": PAGE_SIZE,
                },
                required=["database_id"],
            ),
            handler=self._query_database,
        ))

        self.register_tool(ToolDescriptor(
            name="create_page",
            title="Notion: Create Page",
            description="Create a new page under a parent page or database.",
            input_schema=object_schema(
                {
                    "parent": {"type": "object", "description": "Parent page or database reference"},
                    "properties": {"type": "object", "description": "Page property values"},
                    "children": {"type": "array", "description": "Block children"},
                },
                required=["parent", "properties"],
            ),
            handler=self._create_page,
        ))

    async def _get_self(self, args: dict[str, Any]) -> dict[str, Any]:
        result = await self.call_upstream(args.get("subject"), "GET", "users/me")
        return self.expect_ok("get_self", result)

    async def _search(self, args: dict[str, Any]) -> dict[str, Any]:
        body = _paged_body(args, query=args["query"], extra=("filter", "sort"))
        result = await self.call_upstream(args.get("subject"), "POST", "search", body)
        return self.expect_ok("search", result)

    async def _fetch_page(self, args: dict[str, Any]) -> dict[str, Any]:
        result = await self.call_upstream(
            args.get("subject"), "GET", f"pages/{args['page_id']}"
        )
        return self.expect_ok("fetch_page", result)

    async def _query_database(self, args: dict[str, Any]) -> dict[str, Any]:
        body = _paged_body(args, extra=("filter", "sorts"))
        result = await self.call_upstream(
            args.get("subject"), "POST", f"databases/{args['database_id']}/query", body
        )
        return self.expect_ok("query_database", result)

    async def _create_page(self, args: dict[str, Any]) -> dict[str, Any]:
        body: dict[str, Any] = {"parent": args["parent"], "properties": args["properties"]}
        if args.get("children"):
            body["children"] = args["children"]
        result = await self.call_upstream(args.get("subject"), "POST", "pages", body)
        return self.expect_ok("create_page", result)


def _paged_body(args: dict[str, Any], extra: tuple[str, ...], **fields: Any) -> dict[str, Any]:
    """Request body with paging plus whichever optional fields were given."""
    body = {**fields, "page_size": args["page_size"]}
    for name in (*extra, "start_cursor"):
        if args.get(name):
            body[name] = args[name]
    return body
