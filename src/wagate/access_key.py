"""
Daily access key.

The management API is gated by a key that changes every day. Today's key is
published by an external lottery API; it is fetched with httpx and cached in
memory per calendar day, so the API is hit at most once a day in normal
operation. When the API is unreachable an expired cache entry for the same
day is still accepted.
"""

import asyncio
import hmac
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Optional

import httpx

from wagate.logger import get_logger

logger = get_logger(__name__)

DEFAULT_API_URL = "https://apisbotman.unatecla.com/api/loterias"
DEFAULT_KEY_FIELD = "lot_unatecla"
CACHE_KEY_PREFIX = "clave_hoy_"
USER_AGENT = "wagate/1.0"


class AccessKeyError(Exception):
    """Today's key could not be obtained."""


@dataclass
class CacheEntry:
    data: dict[str, Any]
    created_at: datetime
    expires_at: datetime


@dataclass
class KeyValidation:
    valid: bool
    provided_key: Optional[str] = None
    expected_key: Optional[str] = None
    source_data: Optional[dict[str, Any]] = None
    error: Optional[str] = None

    def to_dict(self, expose_expected: bool = False) -> dict[str, Any]:
        data: dict[str, Any] = {"valid": self.valid, "provided_key": self.provided_key}
        if self.error:
            data["error"] = self.error
        if expose_expected:
            data["expected_key"] = self.expected_key
        return data


class DailyKeyService:
    """
    Fetches, caches and validates the daily access key.

    Args:
        api_url: Endpoint returning a JSON object with the key field.
        key_field: Name of the field holding today's key.
        ttl_hours: Lifetime of a cache entry.
        timeout: HTTP timeout in seconds.
        transport: Optional httpx transport (tests use httpx.MockTransport).
        clock: Returns the current local time.
    """

    def __init__(
        self,
        api_url: str = DEFAULT_API_URL,
        key_field: str = DEFAULT_KEY_FIELD,
        ttl_hours: float = 24,
        timeout: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.api_url = api_url
        self.key_field = key_field
        self.ttl = timedelta(hours=ttl_hours)
        self.timeout = timeout
        self.transport = transport
        self.clock = clock
        self._cache: dict[str, CacheEntry] = {}
        self._lock = asyncio.Lock()

    # -- Cache keys ----------------------------------------------------------

    def date_string(self) -> str:
        return self.clock().strftime("%Y%m%d")

    def cache_key(self) -> str:
        return f"{CACHE_KEY_PREFIX}{self.date_string()}"

    def cache_keys(self) -> list[str]:
        return list(self._cache.keys())

    # -- Fetching ------------------------------------------------------------

    async def fetch(self) -> dict[str, Any]:
        """Call the key API and return its JSON payload."""
        logger.info(f"Fetching daily key from {self.api_url}")
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self.transport
            ) as client:
                response = await client.get(
                    self.api_url,
                    headers={"User-Agent": USER_AGENT, "Accept": "application/json"},
                )
                response.raise_for_status()
                data = response.json()
        except httpx.TimeoutException as e:
            raise AccessKeyError("Timed out contacting the key API") from e
        except httpx.HTTPStatusError as e:
            raise AccessKeyError(
                f"Key API returned HTTP {e.response.status_code}"
            ) from e
        except httpx.HTTPError as e:
            raise AccessKeyError(f"Could not reach the key API: {e}") from e
        except ValueError as e:
            raise AccessKeyError("Key API returned invalid JSON") from e

        if not isinstance(data, dict) or not data:
            raise AccessKeyError("Empty response from the key API")
        if not data.get(self.key_field):
            raise AccessKeyError(f"Field '{self.key_field}' missing from key API response")
        return data

    async def today(self) -> dict[str, Any]:
        """
        Return today's key data, from cache when fresh.

        Falls back to an expired entry for today if the API fails.

        Raises:
            AccessKeyError: API failed and nothing is cached for today.
        """
        async with self._lock:
            key = self.cache_key()
            entry = self._cache.get(key)
            now = self.clock()
            if entry and entry.expires_at > now:
                return entry.data

            try:
                data = await self.fetch()
            except AccessKeyError as e:
                logger.error(f"Failed to fetch daily key: {e}")
                if entry:
                    logger.warning("Using expired cached key as fallback")
                    return entry.data
                raise

            self._cache[key] = CacheEntry(data=data, created_at=now, expires_at=now + self.ttl)
            logger.info(f"Cached daily key under {key}")
            return data

    async def refresh(self) -> dict[str, Any]:
        """Drop today's entry and fetch again."""
        self._cache.pop(self.cache_key(), None)
        logger.info("Daily key cache cleared, refreshing")
        return await self.today()

    def clean_expired(self) -> int:
        now = self.clock()
        expired = [key for key, entry in self._cache.items() if entry.expires_at <= now]
        for key in expired:
            del self._cache[key]
        if expired:
            logger.info(f"Removed {len(expired)} expired key cache entr{'y' if len(expired) == 1 else 'ies'}")
        return len(expired)

    # -- Validation ----------------------------------------------------------

    async def validate_key(self, candidate: Any) -> KeyValidation:
        """Compare a provided key against today's key. Never raises."""
        if not candidate or not isinstance(candidate, str):
            return KeyValidation(
                valid=False,
                provided_key=candidate if isinstance(candidate, str) else None,
                error="Access key missing or empty",
            )

        try:
            data = await self.today()
        except AccessKeyError as e:
            return KeyValidation(valid=False, provided_key=candidate, error=str(e))

        expected = str(data[self.key_field]).strip()
        valid = hmac.compare_digest(candidate.strip().encode(), expected.encode())
        if not valid:
            logger.warning("Rejected invalid access key")
        return KeyValidation(
            valid=valid,
            provided_key=candidate,
            expected_key=expected,
            source_data=data,
        )

    async def cache_info(self, auto_load: bool = False) -> dict[str, Any]:
        key = self.cache_key()
        info: dict[str, Any] = {
            "exists": False,
            "cache_key": key,
            "date": self.date_string(),
            "total_entries": len(self._cache),
        }

        entry = self._cache.get(key)
        if entry is None and auto_load:
            try:
                await self.today()
            except AccessKeyError as e:
                info["auto_load_error"] = str(e)
                return info
            entry = self._cache.get(key)
            info["total_entries"] = len(self._cache)

        if entry is None:
            return info

        remaining = (entry.expires_at - self.clock()).total_seconds()
        info.update(
            {
                "exists": True,
                "is_expired": remaining <= 0,
                "expires_in_seconds": max(0, int(remaining)),
                "expires_in_hours": max(0, int(remaining // 3600)),
                "created_at": entry.created_at.isoformat(),
                "expires_at": entry.expires_at.isoformat(),
            }
        )
        return info
