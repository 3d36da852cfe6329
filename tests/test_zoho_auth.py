"""
Comprehensive unit tests for zoho_auth.py

Tests cover:
- Token fetched once and cached until (expiry - skew)
- Concurrent callers share one refresh per account
- Separate accounts refresh independently
- Zoho error payloads and network failures → AuthError
- validate_credentials never caches
"""

import asyncio
import unittest
from unittest.mock import AsyncMock, MagicMock, patch
import sys
import os

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))


def run_async(coro):
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


def account(account_id="1001"):
    return MagicMock(id=account_id, client_id="cid", client_secret="secret", refresh_token="refresh")


class TestTokenCache(unittest.TestCase):

    def test_fetches_then_caches(self):
        from zoho_auth import ZohoTokenProvider

        provider = ZohoTokenProvider(expiry_skew=60)
        with patch.object(provider, "_post_token_request", new=AsyncMock(
            return_value={"access_token": "tok-1", "expires_in": 3600}
        )) as post:
            async def scenario():
                first = await provider.get_valid_token(account())
                second = await provider.get_valid_token(account())
                return first, second

            first, second = run_async(scenario())

        self.assertEqual((first, second), ("tok-1", "tok-1"))
        post.assert_awaited_once()
        params = post.await_args.args[0]
        self.assertEqual(params["grant_type"], "refresh_token")
        self.assertEqual(params["refresh_token"], "refresh")

    def test_expired_token_is_refreshed(self):
        from zoho_auth import ZohoTokenProvider

        provider = ZohoTokenProvider(expiry_skew=60)
        responses = [
            {"access_token": "short", "expires_in": 30},  # already inside the skew window
            {"access_token": "fresh", "expires_in": 3600},
        ]
        with patch.object(provider, "_post_token_request", new=AsyncMock(side_effect=responses)) as post:
            async def scenario():
                await provider.get_valid_token(account())
                return await provider.get_valid_token(account())

            token = run_async(scenario())

        self.assertEqual(token, "fresh")
        self.assertEqual(post.await_count, 2)

    def test_concurrent_callers_share_one_refresh(self):
        from zoho_auth import ZohoTokenProvider

        provider = ZohoTokenProvider()

        async def slow_post(params):
            await asyncio.sleep(0.05)
            return {"access_token": "shared", "expires_in": 3600}

        with patch.object(provider, "_post_token_request", new=AsyncMock(side_effect=slow_post)) as post:
            async def scenario():
                return await asyncio.gather(*(provider.get_valid_token(account()) for _ in range(5)))

            tokens = run_async(scenario())

        self.assertEqual(tokens, ["shared"] * 5)
        post.assert_awaited_once()

    def test_accounts_are_cached_separately(self):
        from zoho_auth import ZohoTokenProvider

        provider = ZohoTokenProvider()
        responses = [
            {"access_token": "tok-a", "expires_in": 3600},
            {"access_token": "tok-b", "expires_in": 3600},
        ]
        with patch.object(provider, "_post_token_request", new=AsyncMock(side_effect=responses)):
            async def scenario():
                a = await provider.get_valid_token(account("A"))
                b = await provider.get_valid_token(account("B"))
                return a, b

            self.assertEqual(run_async(scenario()), ("tok-a", "tok-b"))


class TestTokenErrors(unittest.TestCase):

    def test_error_payload_raises_auth_error(self):
        from zoho_auth import AuthError, ZohoTokenProvider

        provider = ZohoTokenProvider()
        with patch.object(provider, "_post_token_request", new=AsyncMock(return_value={"error": "invalid_code"})):
            with self.assertRaises(AuthError) as ctx:
                run_async(provider.get_valid_token(account()))

        self.assertIn("invalid_code", str(ctx.exception))
        self.assertIsNone(provider._cached("1001"))

    def test_network_error_raises_auth_error(self):
        import aiohttp
        from zoho_auth import AuthError, ZohoTokenProvider

        provider = ZohoTokenProvider()
        with patch.object(provider, "_post_token_request", new=AsyncMock(
            side_effect=aiohttp.ClientConnectionError("connection refused")
        )):
            with self.assertRaises(AuthError):
                run_async(provider.get_valid_token(account()))

    def test_validate_credentials(self):
        from zoho_auth import ZohoTokenProvider

        provider = ZohoTokenProvider()
        with patch.object(provider, "_post_token_request", new=AsyncMock(
            return_value={"access_token": "tok", "expires_in": 3600}
        )):
            self.assertEqual(run_async(provider.validate_credentials("cid", "secret", "refresh")), (True, None))
        self.assertEqual(provider._cache, {})

        with patch.object(provider, "_post_token_request", new=AsyncMock(return_value={"error": "invalid_client"})):
            ok, error = run_async(provider.validate_credentials("cid", "secret", "refresh"))
        self.assertFalse(ok)
        self.assertIn("invalid_client", error)


class TestRetryDecorator(unittest.TestCase):
    """async_retry_with_backoff as used for the token request."""

    def test_retries_then_succeeds(self):
        from utils.logging_utils import async_retry_with_backoff

        calls = []

        @async_retry_with_backoff(max_retries=2, initial_delay=0.001, exceptions=(ConnectionError,))
        async def flaky():
            calls.append(1)
            if len(calls) < 3:
                raise ConnectionError("down")
            return "ok"

        self.assertEqual(run_async(flaky()), "ok")
        self.assertEqual(len(calls), 3)

    def test_gives_up_and_reraises(self):
        from utils.logging_utils import async_retry_with_backoff

        on_retry = MagicMock()

        @async_retry_with_backoff(max_retries=1, initial_delay=0.001, exceptions=(ConnectionError,), on_retry=on_retry)
        async def always_down():
            raise ConnectionError("down")

        with self.assertRaises(ConnectionError):
            run_async(always_down())
        on_retry.assert_called_once()

    def test_other_exceptions_not_retried(self):
        from utils.logging_utils import async_retry_with_backoff

        calls = []

        @async_retry_with_backoff(max_retries=3, initial_delay=0.001, exceptions=(ConnectionError,))
        async def broken():
            calls.append(1)
            raise KeyError("nope")

        with self.assertRaises(KeyError):
            run_async(broken())
        self.assertEqual(len(calls), 1)


if __name__ == "__main__":
    unittest.main()
