"""Bearer-token authentication.

Tokens are verified by the configured ``Authenticator``:

- ``SupabaseAuthenticator`` asks the Supabase auth API who the token belongs to
- ``StaticTokenAuthenticator`` maps fixed tokens to user ids (tests, local dev)
"""

import logging
import uuid
from typing import Annotated, Protocol

import httpx
from fastapi import Depends, Header, Request

from backend.app.config import Settings
from backend.app.db.context import RequestContext
from backend.app.errors import Unauthorized

logger = logging.getLogger(__name__)

AuthUser = RequestContext


class Authenticator(Protocol):
    """Resolves a bearer token to the authenticated user."""

    async def authenticate(self, token: str) -> AuthUser:
        """Verify a token.

        Raises:
            Unauthorized: If the token is invalid or expired
        """
        ...


class StaticTokenAuthenticator:
    """Fixed token -> user id mapping."""

    def __init__(self, tokens: dict[str, str]) -> None:
        self._tokens: dict[str, uuid.UUID] = {}
        for token, user_id in tokens.items():
            self._tokens[token] = uuid.UUID(user_id)

    async def authenticate(self, token: str) -> AuthUser:
        user_id = self._tokens.get(token)
        if user_id is None:
            raise Unauthorized("Invalid or expired token")
        return AuthUser(user_id=user_id)


class SupabaseAuthenticator:
    """Verifies tokens against Supabase ``GET /auth/v1/user``."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        *,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._url = f"{base_url.rstrip('/')}/auth/v1/user"
        self._api_key = api_key
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def authenticate(self, token: str) -> AuthUser:
        try:
            response = await self._client.get(
                self._url,
                headers={"Authorization": f"Bearer {token}", "apikey": self._api_key},
            )
        except httpx.HTTPError as e:
            logger.error(f"Auth service request failed: {e}")
            raise Unauthorized("Invalid or expired token") from e

        if response.status_code != 200:
            raise Unauthorized("Invalid or expired token")

        payload = response.json()
        try:
            user_id = uuid.UUID(str(payload["id"]))
        except (KeyError, ValueError) as e:
            raise Unauthorized("Invalid or expired token") from e
        return AuthUser(user_id=user_id, email=payload.get("email") or "")

    async def aclose(self) -> None:
        await self._client.aclose()


def get_authenticator(settings: Settings) -> Authenticator:
    """Factory: Supabase auth when configured, static tokens otherwise."""
    key = settings.supabase_anon_key or settings.supabase_service_role_key
    if settings.supabase_url and key and key.get_secret_value():
        logger.info("Using Supabase authenticator")
        return SupabaseAuthenticator(settings.supabase_url, key.get_secret_value())

    logger.warning("Supabase auth not configured, using static dev tokens")
    return StaticTokenAuthenticator(settings.dev_auth_tokens)


def get_authenticator_dependency(request: Request) -> Authenticator:
    return request.app.state.services.authenticator


async def get_current_user(
    authenticator: Annotated[Authenticator, Depends(get_authenticator_dependency)],
    authorization: Annotated[str | None, Header()] = None,
) -> AuthUser:
    """Extract and verify the bearer token.

    Raises:
        Unauthorized: If the header is missing, malformed or the token is rejected
    """
    if not authorization or not authorization.startswith("Bearer "):
        raise Unauthorized()

    token = authorization[7:].strip()
    if not token:
        raise Unauthorized()

    return await authenticator.authenticate(token)
