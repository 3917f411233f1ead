"""Base classes for providers.

A provider owns the tools of one upstream API. It binds each tool to the
transport under ``<provider>.<tool>`` and wraps it so every invocation is
validated, timed and written to the usage log. Handler errors are logged
and re-raised unchanged; formatting them is the transport's job.
"""

import json
import time
from abc import ABC
from typing import Any, Awaitable, Callable, Optional, Protocol

from fastapi import FastAPI
from pydantic import BaseModel

from shared.errors import AuthenticationError, UpstreamError
from shared.http import HttpResult, ResilientClient, RetryOptions
from shared.logging import get_logger
from shared.models import DEFAULT_SUBJECT, CredentialRecord, ToolDescriptor, UsageRecord
from shared.schema import validated_arguments
from storage.credentials import CredentialStore
from storage.usage import UsageLog
from providers.oauth import OAuthFlow

logger = get_logger(__name__)


class ToolServer(Protocol):
    """The part of the transport a provider registers against."""

    def register_tool(
        self,
        name: str,
        *,
        title: str,
        description: str,
        input_schema: dict[str, Any],
        handler: Callable[[dict[str, Any]], Awaitable[Any]],
    ) -> None:
        ...


def text_content(payload: Any) -> dict[str, Any]:
    """Wrap an upstream response as a text content block."""
    return {"content": [{"type": "text", "text": json.dumps(payload, indent=2)}]}


class Provider(ABC):
    """
    Base class for tool providers.

    Subclasses register their tools in ``__init__``; the tool list is not
    changed afterwards.
    """

    def __init__(self, name: str, usage: Optional[UsageLog] = None) -> None:
        self.name = name
        self.usage = usage
        self._tools: list[ToolDescriptor] = []

    @property
    def tools(self) -> list[ToolDescriptor]:
        return list(self._tools)

    def full_name(self, tool: ToolDescriptor) -> str:
        return f"{self.name}.{tool.name}"

    def register_tool(self, tool: ToolDescriptor) -> None:
        """
        Add a tool to this provider.

        Raises:
            ValueError: If a tool with the same name is already registered
        """
        if any(t.name == tool.name for t in self._tools):
            raise ValueError(f"Tool '{self.full_name(tool)}' is already registered")
        self._tools.append(tool)

    def get_tool(self, name: str) -> Optional[ToolDescriptor]:
        return next((t for t in self._tools if t.name == name), None)

    def list_tools(self) -> list[dict[str, Any]]:
        """Discovery metadata for every tool."""
        return [
            {
                "name": self.full_name(t),
                "title": t.title,
                "description": t.description,
                "input_schema": t.input_schema,
            }
            for t in self._tools
        ]

    def register_all(self, server: ToolServer) -> None:
        """Bind every tool to the transport under its full name."""
        for tool in self._tools:
            server.register_tool(
                self.full_name(tool),
                title=tool.title,
                description=tool.description,
                input_schema=tool.input_schema,
                handler=self.instrument(tool),
            )
        logger.info("Provider registered", provider=self.name, tool_count=len(self._tools))

    def mount_routes(self, app: FastAPI) -> None:
        """Hook for providers that expose HTTP routes."""

    def instrument(self, tool: ToolDescriptor) -> Callable[[dict[str, Any]], Awaitable[Any]]:
        """
        Wrap a tool handler with validation and usage logging.

        The wrapped handler validates input before anything else, then
        records one usage entry per call. Exceptions propagate unchanged.
        """

        async def handler(arguments: Optional[dict[str, Any]] = None) -> Any:
            start = time.perf_counter()
            subject = arguments.get("subject") if isinstance(arguments, dict) else None
            if not isinstance(subject, str) or not subject:
                subject = DEFAULT_SUBJECT
            try:
                validated = validated_arguments(arguments, tool.input_schema)
                result = await tool.handler(validated)
            except Exception as e:
                await self._record(tool, subject, start, error=str(e) or type(e).__name__)
                raise
            await self._record(tool, subject, start)
            return result

        handler.__name__ = f"{self.name}_{tool.name}"
        return handler

    async def _record(
        self,
        tool: ToolDescriptor,
        subject: str,
        start: float,
        error: Optional[str] = None,
    ) -> None:
        if self.usage is None:
            return
        try:
            record = UsageRecord(
                provider=self.name,
                tool_name=tool.name,
                subject=subject,
                success=error is None,
                latency_ms=int((time.perf_counter() - start) * 1000),
                error_message=error,
            )
            await self.usage.log(record)
        except Exception as e:
            # never mask the tool outcome
            logger.error("Failed to write usage record", tool=self.full_name(tool), error=str(e))


class ResolvedCredential(BaseModel):
    """Token to call with, plus the stored record when one was used."""
    token: str
    record: Optional[CredentialRecord] = None


class OAuthProvider(Provider):
    """
    Provider whose upstream API is authorized per tenant with OAuth.

    Upstream calls made with a stored token get one transparent refresh and
    retry when the upstream answers 401.
    """

    api_base: str = ""
    retry_options = RetryOptions(retries=3)

    def __init__(
        self,
        name: str,
        oauth: OAuthFlow,
        credentials: CredentialStore,
        http: ResilientClient,
        usage: Optional[UsageLog] = None,
    ) -> None:
        super().__init__(name, usage)
        self.oauth = oauth
        self.credentials = credentials
        self.http = http

    def mount_routes(self, app: FastAPI) -> None:
        self.oauth.mount(app)

    def auth_headers(self, token: str) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
        }

    async def resolve_credential(self, subject: Optional[str] = None) -> ResolvedCredential:
        """
        Find the token for a tenant.

        Raises:
            AuthenticationError: If no static token is set and nothing is stored
        """
        if self.oauth.config.static_token:
            return ResolvedCredential(token=self.oauth.config.static_token)

        subject = subject or DEFAULT_SUBJECT
        record = await self.credentials.get(self.name, subject)
        if record is None:
            raise AuthenticationError(
                f"No {self.name} credential for subject '{subject}'. "
                f"Visit {self.oauth.config.authorize_path} or configure a static token.",
                provider=self.name,
                subject=subject,
            )
        return ResolvedCredential(token=record.access_token, record=record)

    async def call_upstream(
        self,
        subject: Optional[str],
        method: str,
        path: str,
        body: Any = None,
    ) -> HttpResult:
        """
        Call the upstream API on behalf of a tenant.

        On a 401 with a refresh token on record: refresh once, persist the
        merged record, retry once. The retried outcome is returned as is.
        """
        credential = await self.resolve_credential(subject)
        url = f"{self.api_base}/{path.lstrip('/')}"

        result = await self.http.send(
            method, url, self.auth_headers(credential.token), body, self.retry_options
        )
        record = credential.record
        if result.status != 401 or record is None or not record.refresh_token:
            return result

        logger.info("Access token rejected, refreshing", provider=self.name, subject=record.subject)
        try:
            token = await self.oauth.refresh(record.refresh_token)
        except AuthenticationError as e:
            raise AuthenticationError(
                f"{self.name} refresh failed for subject '{record.subject}': {e}",
                provider=self.name,
                subject=record.subject,
                status=e.status,
            ) from e

        refreshed = self.oauth.merge_refreshed(record, token)
        await self.credentials.upsert(refreshed)
        return await self.http.send(
            method, url, self.auth_headers(refreshed.access_token), body, self.retry_options
        )

    def expect_ok(self, tool_name: str, result: HttpResult) -> dict[str, Any]:
        """
        Turn an upstream result into tool output.

        Raises:
            UpstreamError: If the upstream answered non-2xx
        """
        if not result.ok:
            raise UpstreamError(
                f"{tool_name} failed ({result.status}): {json.dumps(result.body)}",
                status=result.status,
                body=result.body,
            )
        return text_content(result.body)
