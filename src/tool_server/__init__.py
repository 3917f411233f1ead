"""Tool server - transport for provider tools.

Holds the tool table, routes calls to instrumented handlers, tracks
JSON-RPC sessions and enforces the shared secret.
"""

__version__ = "0.1.0"

from tool_server.registry import ToolRegistry  # noqa: E402
from tool_server.router import AsyncToolRouter  # noqa: E402
from tool_server.sessions import SessionManager  # noqa: E402
from tool_server.auth import SharedSecretAuth  # noqa: E402

__all__ = [
    "__version__",
    "ToolRegistry",
    "AsyncToolRouter",
    "SessionManager",
    "SharedSecretAuth",
]
