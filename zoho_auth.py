"""
Zoho OAuth token provider.

Exchanges an account's refresh token for an access token and caches it
until shortly before expiry. Refreshes are single-flighted per account:
concurrent callers wait on the same per-account asyncio.Lock and pick up
the token the first caller cached.
"""

import asyncio
import logging
import time
import uuid
from typing import Dict, Optional, Tuple

import aiohttp

import config
from utils.logging_utils import async_retry_with_backoff

logger = logging.getLogger("zohojobs.zoho_auth")


class AuthError(Exception):
    """The refresh-token exchange failed."""


class ZohoTokenProvider:
    """
    Per-account access-token cache.

    Usage:
        tokens = ZohoTokenProvider()
        token = await tokens.get_valid_token(account)
    """

    def __init__(self, accounts_url: str = None, expiry_skew: int = None, timeout: float = None):
        self.accounts_url = accounts_url or config.ZOHO_ACCOUNTS_URL
        self.expiry_skew = config.TOKEN_EXPIRY_SKEW_SECONDS if expiry_skew is None else expiry_skew
        self.timeout = aiohttp.ClientTimeout(total=timeout or config.HTTP_TIMEOUT_SECONDS)
        self._cache: Dict[str, Tuple[str, float]] = {}  # account id -> (token, monotonic expiry)
        self._locks: Dict[str, asyncio.Lock] = {}

    def _get_lock(self, account_id: str) -> asyncio.Lock:
        if account_id not in self._locks:
            self._locks[account_id] = asyncio.Lock()
        return self._locks[account_id]

    def _cached(self, account_id: str) -> Optional[str]:
        entry = self._cache.get(account_id)
        if entry and entry[1] > time.monotonic():
            return entry[0]
        return None

    async def get_valid_token(self, account) -> str:
        account_id = str(account.id)
        token = self._cached(account_id)
        if token:
            return token

        async with self._get_lock(account_id):
            # Another caller may have refreshed while we waited
            token = self._cached(account_id)
            if token:
                return token

            token, expires_in = await self._fetch_token(
                account.client_id, account.client_secret, account.refresh_token, account_id
            )
            self._cache[account_id] = (token, time.monotonic() + expires_in - self.expiry_skew)
            logger.info("token_refreshed", extra={"account_id": account_id, "expires_in": expires_in})
            return token

    async def validate_credentials(self, client_id: str, client_secret: str, refresh_token: str):
        """Try one exchange without caching. Returns (connected, error_message)."""
        try:
            await self._fetch_token(client_id, client_secret, refresh_token, f"validation-{uuid.uuid4()}")
        except AuthError as e:
            return False, str(e)
        return True, None

    async def _fetch_token(self, client_id, client_secret, refresh_token, account_id) -> Tuple[str, int]:
        try:
            payload = await self._post_token_request({
                "refresh_token": refresh_token,
                "client_id": client_id,
                "client_secret": client_secret,
                "grant_type": "refresh_token",
            })
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            logger.error(f"token_refresh_failed: account={account_id} error={e}")
            raise AuthError(f"Token refresh failed: {e}") from e

        token = payload.get("access_token") if isinstance(payload, dict) else None
        if not token:
            error = payload.get("error") if isinstance(payload, dict) else payload
            logger.error(f"token_refresh_rejected: account={account_id} error={error}")
            raise AuthError(f"Invalid refresh token or other Zoho API error: {error}")

        return token, int(payload.get("expires_in", 3600))

    @async_retry_with_backoff(
        max_retries=config.TOKEN_REFRESH_RETRIES,
        initial_delay=1.0,
        exceptions=(aiohttp.ClientConnectionError, asyncio.TimeoutError),
        on_retry=lambda attempt, e, delay: logger.warning(
            f"token_request_retry: attempt={attempt} delay={delay}s error={e}"
        ),
    )
    async def _post_token_request(self, params: Dict[str, str]) -> dict:
        async with aiohttp.ClientSession(timeout=self.timeout) as session:
            async with session.post(f"{self.accounts_url}/oauth/v2/token", params=params) as resp:
                payload = await resp.json(content_type=None)
                if resp.status >= 400 and isinstance(payload, dict):
                    payload.setdefault("error", f"HTTP {resp.status}")
                return payload or {}
