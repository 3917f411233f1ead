"""Shared utilities and base types for Tool Hub."""

from shared.models import (
    CredentialRecord,
    ToolDescriptor,
    ToolResult,
    ToolResultStatus,
    UsageRecord,
    UsageStats,
)
from shared.config import Settings, get_settings
from shared.logging import get_logger, setup_logging

__all__ = [
    "CredentialRecord",
    "ToolDescriptor",
    "ToolResult",
    "ToolResultStatus",
    "UsageRecord",
    "UsageStats",
    "Settings",
    "get_settings",
    "get_logger",
    "setup_logging",
]
