"""Tool Router for the tool server.

Executes registered tools and turns their outcome, result or raised
error, into a ``ToolResult`` for remote callers.
"""

import time
from typing import Any, Optional

from shared.errors import AuthenticationError, ToolHubError, ValidationError
from shared.logging import get_logger
from shared.models import ToolResult, ToolResultStatus
from tool_server.registry import ToolRegistry

logger = get_logger(__name__)


def status_for(error: Exception) -> ToolResultStatus:
    """Map a raised error onto a result status."""
    if isinstance(error, ValidationError):
        return ToolResultStatus.VALIDATION_ERROR
    if isinstance(error, AuthenticationError):
        return ToolResultStatus.UNAUTHORIZED
    return ToolResultStatus.ERROR


class AsyncToolRouter:
    """Routes tool calls to registered handlers."""

    def __init__(self, registry: ToolRegistry) -> None:
        self.registry = registry

    async def execute(
        self,
        tool_name: str,
        arguments: Optional[dict[str, Any]] = None,
    ) -> ToolResult:
        """
        Execute a tool call.

        Args:
            tool_name: Fully-qualified tool name
            arguments: Tool input

        Returns:
            Tool execution result; errors are reported, not raised
        """
        start_time = time.perf_counter()

        tool = self.registry.get(tool_name)
        if not tool:
            return ToolResult(
                tool_name=tool_name,
                status=ToolResultStatus.NOT_FOUND,
                error=f"Tool '{tool_name}' not found",
                error_code="TOOL_NOT_FOUND",
            )

        logger.debug("Executing tool", tool=tool_name)
        try:
            data = await tool.handler(arguments or {})
            result = ToolResult(
                tool_name=tool_name,
                status=ToolResultStatus.SUCCESS,
                data=data,
            )
        except ToolHubError as e:
            logger.warning("Tool failed", tool=tool_name, error_code=e.code, error=str(e))
            result = ToolResult(
                tool_name=tool_name,
                status=status_for(e),
                error=str(e),
                error_code=e.code,
            )
        except Exception as e:
            logger.error("Tool execution failed", tool=tool_name, error=str(e), exc_info=True)
            result = ToolResult(
                tool_name=tool_name,
                status=ToolResultStatus.ERROR,
                error=str(e) or type(e).__name__,
                error_code="EXECUTION_ERROR",
            )

        result.execution_time_ms = (time.perf_counter() - start_time) * 1000
        return result
