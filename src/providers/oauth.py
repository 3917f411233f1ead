"""OAuth authorization-code flow with optional PKCE.

Handles one provider's authorization lifecycle:

    Unauthenticated -> AuthorizationRequested(state, verifier?) -> Authorized | Failed

``authorize`` issues the consent URL and records the pending state,
``callback`` exchanges the code and persists the credential, ``refresh``
re-exchanges a refresh token. Pending states are single use and expire.
"""

import base64
import hashlib
import json
import secrets
import string
import threading
import time
from datetime import timedelta
from typing import Any, Callable, Optional
from urllib.parse import urlencode

from fastapi import APIRouter, FastAPI
from fastapi.responses import PlainTextResponse, RedirectResponse
from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from shared.errors import AuthenticationError, ConfigurationError
from shared.http import HttpResult, ResilientClient, RetryOptions
from shared.logging import get_logger
from shared.models import DEFAULT_SUBJECT, CredentialRecord, TokenResponse, utcnow
from storage.credentials import CredentialStore

logger = get_logger(__name__)

# RFC 7636 unreserved characters
VERIFIER_ALPHABET = string.ascii_letters + string.digits + "-._~"
VERIFIER_LENGTH = 64

TOKEN_RETRY = RetryOptions(retries=1)


class OAuthConfig(BaseModel):
    """OAuth client configuration for one provider."""
    provider: str
    authorize_url: str
    token_url: str
    client_id: str = ""
    client_secret: str = ""
    redirect_uri: str = ""
    static_token: Optional[str] = Field(default=None, description="Fixed token that bypasses OAuth")
    use_pkce: bool = False
    authorize_params: dict[str, str] = Field(default_factory=dict)
    default_subject: str = DEFAULT_SUBJECT
    state_ttl_seconds: float = Field(default=600, gt=0)

    @property
    def authorize_path(self) -> str:
        return f"/auth/{self.provider}"

    @property
    def callback_path(self) -> str:
        return f"/oauth/{self.provider}/callback"


class AuthorizationRequest(BaseModel):
    """Outcome of ``authorize``."""
    url: Optional[str] = None
    state: Optional[str] = None
    already_authorized: bool = False


class PendingAuthorization(BaseModel):
    """A state issued by ``authorize`` and not yet consumed."""
    verifier: Optional[str] = None
    expires_at: float


class StateCache:
    """
    Single-use, TTL-bounded map of pending authorization states.

    Entries are removed exactly once: when popped by a callback, when
    discarded, or when found expired.
    """

    def __init__(
        self,
        ttl_seconds: float = 600,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: dict[str, PendingAuthorization] = {}
        self._lock = threading.Lock()

    def put(self, state: str, verifier: Optional[str] = None) -> None:
        with self._lock:
            self._purge_locked()
            self._entries[state] = PendingAuthorization(
                verifier=verifier,
                expires_at=self._clock() + self.ttl_seconds,
            )

    def pop(self, state: str) -> Optional[PendingAuthorization]:
        """Consume a state. Returns None when unknown or expired."""
        with self._lock:
            entry = self._entries.pop(state, None)
        if entry is None or entry.expires_at <= self._clock():
            return None
        return entry

    def discard(self, state: str) -> None:
        with self._lock:
            self._entries.pop(state, None)

    def purge_expired(self) -> int:
        with self._lock:
            return self._purge_locked()

    def _purge_locked(self) -> int:
        now = self._clock()
        expired = [s for s, e in self._entries.items() if e.expires_at <= now]
        for state in expired:
            del self._entries[state]
        return len(expired)

    def __contains__(self, state: str) -> bool:
        with self._lock:
            return state in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


def generate_verifier(length: int = VERIFIER_LENGTH) -> str:
    """Random PKCE code verifier."""
    return "".join(secrets.choice(VERIFIER_ALPHABET) for _ in range(length))


def code_challenge(verifier: str) -> str:
    """S256 challenge: unpadded base64url of SHA-256(verifier)."""
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


def basic_auth_header(client_id: str, client_secret: str) -> str:
    credentials = f"{client_id}:{client_secret}".encode("utf-8")
    return "Basic " + base64.b64encode(credentials).decode("ascii")


class OAuthFlow:
    """
    Authorization-code flow for one provider.

    The token endpoint is authenticated either with the client secret
    (HTTP Basic) or, in PKCE mode, with the recorded code verifier; never
    both.
    """

    def __init__(
        self,
        config: OAuthConfig,
        store: CredentialStore,
        http: ResilientClient,
        states: Optional[StateCache] = None,
    ) -> None:
        self.config = config
        self.store = store
        self.http = http
        self.states = states or StateCache(ttl_seconds=config.state_ttl_seconds)

    @property
    def provider(self) -> str:
        return self.config.provider

    @property
    def static_mode(self) -> bool:
        return bool(self.config.static_token)

    def authorize(self) -> AuthorizationRequest:
        """
        Start an authorization attempt.

        Returns:
            The consent URL and state, or ``already_authorized`` when a
            static token is configured

        Raises:
            ConfigurationError: If client id or redirect URI is missing
        """
        if self.static_mode:
            return AuthorizationRequest(already_authorized=True)

        missing = [
            name for name in ("client_id", "redirect_uri")
            if not getattr(self.config, name)
        ]
        if missing:
            raise ConfigurationError(
                f"{self.provider} OAuth not configured; missing {', '.join(missing)}"
            )

        state = secrets.token_urlsafe(24)
        params: dict[str, str] = {
            "client_id": self.config.client_id,
            "response_type": "code",
            **self.config.authorize_params,
            "redirect_uri": self.config.redirect_uri,
            "state": state,
        }
        verifier = None
        if self.config.use_pkce:
            verifier = generate_verifier()
            params["code_challenge_method"] = "S256"
            params["code_challenge"] = code_challenge(verifier)
        self.states.put(state, verifier)

        logger.info("Authorization requested", provider=self.provider, pkce=self.config.use_pkce)
        return AuthorizationRequest(
            url=f"{self.config.authorize_url}?{urlencode(params)}",
            state=state,
        )

    async def callback(self, code: str, state: str) -> CredentialRecord:
        """
        Complete an authorization attempt and persist the credential.

        The state is consumed whatever the outcome.

        Raises:
            AuthenticationError: Missing code, unknown or expired state, or a
                failed token exchange. Nothing is stored in these cases.
        """
        pending = self.states.pop(state) if state else None
        if not code:
            raise AuthenticationError("Missing authorization code", provider=self.provider)
        if pending is None:
            raise AuthenticationError(
                "Unknown or expired authorization state", provider=self.provider
            )

        body: dict[str, Any] = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": self.config.redirect_uri,
        }
        if self.config.use_pkce:
            body["client_id"] = self.config.client_id
            body["code_verifier"] = pending.verifier

        result = await self.http.send(
            "POST", self.config.token_url, self._token_headers(), body, TOKEN_RETRY
        )
        token = self._parse_token(result, "token exchange")

        record = CredentialRecord(
            provider=self.provider,
            subject=token.workspace_id or self.config.default_subject,
            access_token=token.access_token,
            refresh_token=token.refresh_token,
            expires_at=self._expiry(token),
            scope=token.scope_string,
            workspace_id=token.workspace_id,
            workspace_name=token.workspace_name,
            bot_id=token.bot_id,
            raw=token.payload,
        )
        await self.store.upsert(record)
        logger.info("Authorization completed", provider=self.provider, subject=record.subject)
        return record

    async def refresh(self, refresh_token: str) -> TokenResponse:
        """
        Exchange a refresh token for new tokens.

        Raises:
            AuthenticationError: If the token endpoint rejects the refresh
        """
        body: dict[str, Any] = {"grant_type": "refresh_token", "refresh_token": refresh_token}
        if self.config.use_pkce:
            body["client_id"] = self.config.client_id

        result = await self.http.send(
            "POST", self.config.token_url, self._token_headers(), body, TOKEN_RETRY
        )
        return self._parse_token(result, "refresh")

    def merge_refreshed(
        self, previous: CredentialRecord, token: TokenResponse
    ) -> CredentialRecord:
        """Build the replacement record, keeping fields the refresh omitted."""
        return CredentialRecord(
            provider=previous.provider,
            subject=previous.subject,
            access_token=token.access_token,
            refresh_token=token.refresh_token or previous.refresh_token,
            expires_at=self._expiry(token) if token.expires_in is not None else previous.expires_at,
            scope=token.scope_string or previous.scope,
            workspace_id=token.workspace_id or previous.workspace_id,
            workspace_name=token.workspace_name or previous.workspace_name,
            bot_id=token.bot_id or previous.bot_id,
            raw=token.payload,
            created_at=previous.created_at,
        )

    def mount(self, app: FastAPI) -> None:
        """Add the authorize and callback routes to an app."""
        router = APIRouter(tags=["OAuth"])

        @router.get(self.config.authorize_path)
        async def start_authorization():
            try:
                request = self.authorize()
            except ConfigurationError as e:
                return PlainTextResponse(str(e), status_code=400)
            if request.already_authorized:
                return PlainTextResponse(
                    f"Static token mode enabled; {self.provider} OAuth not required."
                )
            return RedirectResponse(request.url, status_code=302)

        @router.get(self.config.callback_path)
        async def complete_authorization(code: str = "", state: str = ""):
            try:
                record = await self.callback(code, state)
            except AuthenticationError as e:
                # a status means the token endpoint was reached
                status_code = 500 if e.status is not None else 400
                return PlainTextResponse(
                    f"{self.provider} OAuth failed: {e}", status_code=status_code
                )
            return PlainTextResponse(
                f"{self.provider} authorized for workspace '{record.subject}'. "
                "You can close this tab."
            )

        app.include_router(router)

    def _token_headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json", "Content-Type": "application/json"}
        if not self.config.use_pkce:
            headers["Authorization"] = basic_auth_header(
                self.config.client_id, self.config.client_secret
            )
        return headers

    def _parse_token(self, result: HttpResult, action: str) -> TokenResponse:
        if not result.ok:
            logger.warning(
                "Token endpoint rejected request",
                provider=self.provider,
                action=action,
                status=result.status,
            )
            raise AuthenticationError(
                f"{self.provider} {action} failed ({result.status}): {json.dumps(result.body)}",
                provider=self.provider,
                status=result.status,
            )
        try:
            return TokenResponse.from_payload(result.body)
        except PydanticValidationError as e:
            raise AuthenticationError(
                f"{self.provider} {action} returned an invalid token payload",
                provider=self.provider,
                status=result.status,
            ) from e

    @staticmethod
    def _expiry(token: TokenResponse):
        if token.expires_in is None:
            return None
        return utcnow() + timedelta(seconds=token.expires_in)
