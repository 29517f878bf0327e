"""
Staff identity resolution against the hosted auth provider (Supabase)
"""
import asyncio
import hashlib
import logging
import threading
from functools import lru_cache
from typing import Dict, Optional, Tuple

import requests

from ..config import settings
from ..exceptions import AuthProviderError, ConfigurationError

logger = logging.getLogger(__name__)


class SupabaseAuthClient:
    """Blocking client for the provider's /auth/v1/user endpoint"""

    def __init__(self, base_url: Optional[str] = None, api_key: Optional[str] = None, timeout: Optional[float] = None):
        self.base_url = (base_url or settings.SUPABASE_URL).rstrip("/")
        self.api_key = api_key if api_key is not None else settings.SUPABASE_SERVICE_ROLE_KEY
        self.timeout = timeout or settings.HTTP_TIMEOUT_SECONDS
        self.session = requests.Session()

    def get_user(self, access_token: str) -> Optional[dict]:
        """
        Return the provider's user object for an access token.

        None means the token was rejected (401/403). Transport errors and
        provider failures raise AuthProviderError.
        """
        if not self.api_key:
            raise ConfigurationError("SUPABASE_SERVICE_ROLE_KEY is not configured")

        headers = {
            "apikey": self.api_key,
            "Authorization": f"Bearer {access_token}",
        }
        try:
            response = self.session.get(f"{self.base_url}/auth/v1/user", headers=headers, timeout=self.timeout)
        except requests.RequestException as e:
            logger.error(f"Auth provider unreachable: {e}")
            raise AuthProviderError("Auth provider unreachable") from e

        if response.status_code in (401, 403):
            return None
        if not response.ok:
            logger.error(f"Auth provider error {response.status_code}: {response.text[:200]}")
            raise AuthProviderError(f"Auth provider returned {response.status_code}")

        try:
            user = response.json()
        except ValueError as e:
            raise AuthProviderError("Auth provider returned invalid JSON") from e

        if not isinstance(user, dict) or not user.get("id"):
            return None
        return user


class AuthResolver:
    """
    Shared, time-bounded token resolution.

    Concurrent resolutions of the same access token share one provider call.
    A call that outlives the timeout counts as an authentication failure and
    its in-flight entry is dropped, so the next request starts fresh.
    """

    def __init__(self, provider, timeout: Optional[float] = None):
        self.provider = provider
        self.timeout = timeout if timeout is not None else settings.AUTH_CHECK_TIMEOUT_SECONDS
        self._inflight: Dict[str, Tuple[asyncio.AbstractEventLoop, asyncio.Future]] = {}
        self._lock = threading.Lock()

    @staticmethod
    def _key(access_token: str) -> str:
        return hashlib.sha256(access_token.encode("utf-8")).hexdigest()

    def _forget(self, key: str, entry) -> None:
        with self._lock:
            if self._inflight.get(key) is entry:
                del self._inflight[key]

    def _on_done(self, key: str, entry):
        def callback(future: asyncio.Future):
            self._forget(key, entry)
            # Mark the result retrieved even if every waiter timed out
            if not future.cancelled():
                future.exception()
        return callback

    def in_flight(self) -> int:
        with self._lock:
            return len(self._inflight)

    def invalidate(self, access_token: str) -> None:
        """Drop any pending resolution for a token (sign-out)"""
        key = self._key(access_token)
        with self._lock:
            self._inflight.pop(key, None)

    async def resolve(self, access_token: str) -> Optional[dict]:
        """
        Provider user for `access_token`, or None if rejected or timed out.

        Raises AuthProviderError when the provider itself fails.
        """
        key = self._key(access_token)
        loop = asyncio.get_running_loop()

        with self._lock:
            entry = self._inflight.get(key)
            if entry is None or entry[0] is not loop:
                future = loop.run_in_executor(None, self.provider.get_user, access_token)
                entry = (loop, future)
                self._inflight[key] = entry
                future.add_done_callback(self._on_done(key, entry))

        try:
            return await asyncio.wait_for(asyncio.shield(entry[1]), self.timeout)
        except asyncio.TimeoutError:
            self._forget(key, entry)
            logger.warning(f"Auth check timed out after {self.timeout}s")
            return None


@lru_cache()
def get_auth_resolver() -> AuthResolver:
    return AuthResolver(SupabaseAuthClient())
