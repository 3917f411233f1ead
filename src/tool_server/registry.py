"""Transport-side tool table.

Maps fully-qualified tool names (``provider.tool``) to the instrumented
handlers providers bind into it. Dispatch is a dictionary lookup.
"""

from typing import Any, Awaitable, Callable, Optional

from pydantic import BaseModel, ConfigDict

from shared.logging import get_logger
from shared.models import ToolHandler

logger = get_logger(__name__)


class RegisteredTool(BaseModel):
    """A callable tool as the transport sees it."""
    name: str
    title: str
    description: str
    input_schema: dict[str, Any]
    handler: ToolHandler

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    def describe(self) -> dict[str, Any]:
        """Listing entry in tool-protocol field names."""
        return {
            "name": self.name,
            "title": self.title,
            "description": self.description,
            "inputSchema": self.input_schema,
        }


class ToolRegistry:
    """
    Registry of callable tools.

    Responsibilities:
    - Hold handlers under their qualified names
    - Look tools up for execution
    - List tools for discovery
    """

    def __init__(self) -> None:
        self._tools: dict[str, RegisteredTool] = {}

    def register_tool(
        self,
        name: str,
        *,
        title: str,
        description: str,
        input_schema: dict[str, Any],
        handler: Callable[[dict[str, Any]], Awaitable[Any]],
    ) -> None:
        """
        Register a tool handler.

        Raises:
            ValueError: If the name is already registered
        """
        if name in self._tools:
            raise ValueError(f"Tool '{name}' is already registered")

        self._tools[name] = RegisteredTool(
            name=name,
            title=title,
            description=description,
            input_schema=input_schema,
            handler=handler,
        )
        logger.debug("Tool registered", tool=name)

    def get(self, name: str) -> Optional[RegisteredTool]:
        return self._tools.get(name)

    def names(self) -> list[str]:
        return list(self._tools)

    def list_tools(self) -> list[dict[str, Any]]:
        return [tool.describe() for tool in self._tools.values()]

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, name: str) -> bool:
        return name in self._tools
