"""Redis cache for geocoding results."""

import hashlib
import logging
from typing import Optional

from pydantic import ValidationError
from redis import Redis
from redis.exceptions import RedisError

from address_resolver.core.geocoding.models import Address, AddressCandidate, Point

logger = logging.getLogger(__name__)


class CandidateCache:
    """Caches best-match candidates and reverse geocoded addresses.

    Redis failures are logged and treated as cache misses.
    """

    def __init__(
        self,
        redis_url: Optional[str] = None,
        ttl: int = 2592000,
        client: Optional[Redis] = None,
    ):
        """Initialize the cache.

        Args:
            redis_url: Redis connection URL; the cache is disabled without one
            ttl: Entry lifetime in seconds
            client: Optional preconfigured Redis client
        """
        self.ttl = ttl
        self.redis_client: Optional[Redis] = client
        if self.redis_client is None and redis_url:
            try:
                self.redis_client = Redis.from_url(redis_url, decode_responses=True)
                self.redis_client.ping()
                logger.info("Redis caching enabled for geocoding")
            except RedisError as e:
                logger.warning(f"Redis connection failed, caching disabled: {e}")
                self.redis_client = None

    @property
    def enabled(self) -> bool:
        return self.redis_client is not None

    @staticmethod
    def address_key(address: Address, kind: str) -> str:
        """Cache key for a forward geocoding request."""
        text = "|".join(getattr(address, name) for name in sorted(Address.model_fields))
        address_hash = hashlib.sha256(text.lower().encode()).hexdigest()
        return f"geocode:{kind}:{address_hash}"

    @staticmethod
    def location_key(location: Point, kind: str) -> str:
        """Cache key for a reverse geocoding request."""
        return f"reverse:{kind}:{location.x:.6f},{location.y:.6f}"

    def _get(self, key: str) -> Optional[str]:
        if not self.redis_client:
            return None
        try:
            return self.redis_client.get(key)
        except RedisError as e:
            logger.warning(f"Cache retrieval error: {e}")
            return None

    def _set(self, key: str, value: str) -> None:
        if not self.redis_client:
            return
        try:
            self.redis_client.setex(key, self.ttl, value)
        except RedisError as e:
            logger.warning(f"Cache storage error: {e}")

    def get_candidate(self, address: Address, kind: str) -> Optional[AddressCandidate]:
        cached = self._get(self.address_key(address, kind))
        if not cached:
            return None
        try:
            candidate = AddressCandidate.model_validate_json(cached)
        except ValidationError as e:
            logger.warning(f"Discarding invalid cached candidate: {e}")
            return None
        logger.debug(f"Cache hit for address: {address.full_address[:50]}")
        return candidate

    def set_candidate(
        self, address: Address, kind: str, candidate: AddressCandidate
    ) -> None:
        self._set(self.address_key(address, kind), candidate.model_dump_json())

    def get_address(self, location: Point, kind: str) -> Optional[Address]:
        cached = self._get(self.location_key(location, kind))
        if not cached:
            return None
        try:
            address = Address.model_validate_json(cached)
        except ValidationError as e:
            logger.warning(f"Discarding invalid cached address: {e}")
            return None
        logger.debug(f"Cache hit for reverse geocoding: {location.x},{location.y}")
        return address

    def set_address(self, location: Point, kind: str, address: Address) -> None:
        self._set(self.location_key(location, kind), address.model_dump_json())
