"""Device fingerprint used by the backend's anti-abuse checks."""

import asyncio
import secrets
import time
from typing import Awaitable, Callable, Optional

from .logging_utils import get_logger
from .storage import SessionStore, default_session_store

logger = get_logger(__name__)

FALLBACK_KEY = "fp_fallback_id"
FALLBACK_PREFIX = "fb_"


class FingerprintProvider:
    """Resolves a device fingerprint once and caches it.

    When the fingerprint source fails, a random fallback id is generated and
    kept in session storage so the same device keeps the same id.
    """

    def __init__(
        self,
        source: Optional[Callable[[], Awaitable[str]]] = None,
        store: Optional[SessionStore] = None,
    ):
        self._source = source
        self.store = store or default_session_store()
        self._cached: Optional[str] = None
        self._pending: Optional[asyncio.Future] = None

    async def get(self) -> str:
        if self._cached:
            return self._cached

        # Concurrent callers share one lookup
        if self._pending is not None:
            return await self._pending

        self._pending = asyncio.ensure_future(self._resolve())
        try:
            self._cached = await self._pending
        finally:
            self._pending = None
        return self._cached

    async def _resolve(self) -> str:
        if self._source is not None:
            try:
                visitor_id = await self._source()
                if visitor_id:
                    return visitor_id
                logger.warning("Fingerprint source returned an empty id, using fallback")
            except Exception as e:
                logger.warning(f"Fingerprint source failed, using fallback: {e}")
        return self._fallback_id()

    def _fallback_id(self) -> str:
        fallback_id = self.store.get(FALLBACK_KEY)

        if fallback_id and not fallback_id.startswith(FALLBACK_PREFIX):
            logger.warning("Stored fallback fingerprint is corrupted, regenerating")
            self.store.delete(FALLBACK_KEY)
            fallback_id = None

        if not fallback_id:
            fallback_id = f"{FALLBACK_PREFIX}{int(time.time() * 1000)}_{secrets.token_hex(6)}"
            self.store.set(FALLBACK_KEY, fallback_id)

        return fallback_id
