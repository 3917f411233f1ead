"""Provider registry.

Aggregates providers, exposes their combined tool listing, and forwards
transport registration and route mounting to each of them.
"""

from typing import Any, Optional

from fastapi import FastAPI

from shared.logging import get_logger
from providers.base import Provider, ToolServer

logger = get_logger(__name__)


class ProviderRegistry:
    """Ordered collection of providers."""

    def __init__(self, providers: Optional[list[Provider]] = None) -> None:
        self._providers: list[Provider] = []
        for provider in providers or []:
            self.add(provider)

    def add(self, provider: Provider) -> None:
        """
        Add a provider.

        Raises:
            ValueError: If a provider with the same name is already present
        """
        if self.get(provider.name) is not None:
            raise ValueError(f"Provider '{provider.name}' is already registered")
        self._providers.append(provider)

    def get(self, name: str) -> Optional[Provider]:
        return next((p for p in self._providers if p.name == name), None)

    def list_providers(self) -> list[Provider]:
        return list(self._providers)

    def names(self) -> list[str]:
        return [p.name for p in self._providers]

    def list_tools(self) -> list[dict[str, Any]]:
        """Tool metadata across every provider, in registration order."""
        return [tool for p in self._providers for tool in p.list_tools()]

    def register_all(self, server: ToolServer) -> None:
        for provider in self._providers:
            provider.register_all(server)

    def mount_all(self, app: FastAPI) -> None:
        """Let every provider add its HTTP routes (OAuth endpoints)."""
        for provider in self._providers:
            provider.mount_routes(app)
        logger.debug("Provider routes mounted", providers=self.names())
