"""Shared-secret protection for tool endpoints.

When a secret is configured every protected request must carry it in the
``x-mcp-key`` header. An empty secret disables the check.
"""

import secrets
from typing import Optional

from fastapi import Header, HTTPException, status

from shared.logging import get_logger

logger = get_logger(__name__)

SECRET_HEADER = "x-mcp-key"


class SharedSecretAuth:
    """FastAPI dependency enforcing the shared secret."""

    def __init__(self, secret: str = "") -> None:
        self.secret = secret

    @property
    def enabled(self) -> bool:
        return bool(self.secret)

    def verify(self, provided: Optional[str]) -> bool:
        if not self.enabled:
            return True
        return secrets.compare_digest((provided or "").encode(), self.secret.encode())

    async def __call__(
        self,
        x_mcp_key: Optional[str] = Header(default=None, alias=SECRET_HEADER),
    ) -> None:
        if not self.verify(x_mcp_key):
            logger.warning("Rejected request with invalid shared secret")
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Unauthorized",
            )
