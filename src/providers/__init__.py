"""Upstream API providers.

Each provider contains:
- Tool descriptors with JSON Schema input contracts
- Credential resolution and OAuth routes
- Upstream call logic

Providers are constructed once at startup and share nothing but the
stores and HTTP client handed to them.
"""

from typing import Optional

from shared.config import Settings
from shared.http import ResilientClient
from storage.credentials import CredentialStore
from storage.usage import UsageLog
from providers.base import OAuthProvider, Provider, text_content
from providers.oauth import OAuthConfig, OAuthFlow, StateCache
from providers.registry import ProviderRegistry


def build_providers(
    settings: Settings,
    credentials: CredentialStore,
    usage: Optional[UsageLog],
    http: ResilientClient,
) -> ProviderRegistry:
    """Construct every configured provider."""
    from providers.notion import NotionProvider

    return ProviderRegistry([
        NotionProvider(settings.notion, credentials, http, usage),
    ])


__all__ = [
    "OAuthConfig",
    "OAuthFlow",
    "OAuthProvider",
    "Provider",
    "ProviderRegistry",
    "StateCache",
    "build_providers",
    "text_content",
]
