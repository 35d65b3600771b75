"""
Token sources: async callables ``source(force_refresh=False) -> str | None``
that hand a bearer credential to the retry wrapper.
"""

import asyncio
from typing import Optional

import jwt as pyjwt
import requests
from jwt import PyJWTError

from app.config import Settings
from app.errors import CredentialExpired
from app.logger import get_logger

logger = get_logger("TokenSource")

# Session tokens are short-lived; a caller may present one that lapsed moments ago
SESSION_TOKEN_LEEWAY = 300


class AnonymousTokenSource:
    async def __call__(self, force_refresh: bool = False) -> Optional[str]:
        return None


class StaticTokenSource:
    """Wraps a token the caller already holds. It cannot be refreshed, so a forced refresh returns it again."""

    def __init__(self, token: str):
        self.token = token

    async def __call__(self, force_refresh: bool = False) -> Optional[str]:
        if force_refresh:
            logger.info("Caller-supplied token cannot be refreshed; reusing it.")
        return self.token


class SessionTokenSource:
    """
    Fetches templated session tokens from the identity provider's backend API.
    The last token is cached; ``force_refresh=True`` skips the cache.
    """

    def __init__(self, session_id: str, settings: Settings, timeout: float = 10.0):
        self.session_id = session_id
        self.settings = settings
        self.timeout = timeout
        self._token: Optional[str] = None

    async def __call__(self, force_refresh: bool = False) -> Optional[str]:
        if self._token and not force_refresh:
            return self._token
        self._token = await asyncio.to_thread(self._fetch)
        return self._token

    def _fetch(self) -> str:
        url = (
            f"{self.settings.identity_api_url}/sessions/{self.session_id}"
            f"/tokens/{self.settings.identity_token_template}"
        )
        try:
            resp = requests.post(
                url,
                headers={"Authorization": f"Bearer {self.settings.identity_secret_key}"},
                timeout=self.timeout,
            )
        except requests.RequestException as rexc:
            logger.error(f"Network error requesting session token: {rexc}")
            raise CredentialExpired(f"Could not obtain a session token: {rexc}") from rexc

        if resp.status_code != 200:
            logger.warning(f"Identity provider refused token for session {self.session_id}: {resp.status_code}")
            raise CredentialExpired("Session is no longer valid. Please sign in again.")

        token = (resp.json() or {}).get("jwt")
        if not token:
            raise CredentialExpired("Identity provider returned no token for this session.")
        logger.debug(f"Fetched session token for {self.session_id}")
        return token


def verified_session_id(token: str, settings: Settings) -> Optional[str]:
    """
    The ``sid`` claim of a bearer token signed by the identity provider, or None
    when the token does not verify against the configured key.
    """
    if not settings.identity_jwt_key:
        return None
    try:
        claims = pyjwt.decode(
            token,
            settings.identity_jwt_key,
            algorithms=[settings.identity_jwt_algorithm],
            leeway=SESSION_TOKEN_LEEWAY,
            options={"verify_aud": False},
        )
    except PyJWTError as exc:
        logger.warning(f"Bearer token did not verify as a session token: {exc}")
        return None
    return claims.get("sid")
