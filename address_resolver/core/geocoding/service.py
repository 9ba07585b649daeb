"""Host-facing geocoding service.

This module bundles the configured geocoders into a single entry point that:
- Selects the current and streets geocoders from the service configuration
- Caches best matches and reverse geocoded addresses in Redis
- Validates address-point matches against the streets geocoder
"""

import logging
import threading
from typing import Hashable, Iterable, Optional, Sequence

from address_resolver.core.config import Settings
from address_resolver.core.config import settings as default_settings
from address_resolver.core.geocoding.base import Geocoder
from address_resolver.core.geocoding.cache import CandidateCache
from address_resolver.core.geocoding.errors import (
    GeocoderArgumentError,
    GeocoderConfigurationError,
)
from address_resolver.core.geocoding.factory import (
    ClientFactory,
    GeocoderSet,
    create_geocoders,
)
from address_resolver.core.geocoding.gateway import (
    ReverseGeocodeHandler,
    ReverseGeocodeRequest,
)
from address_resolver.core.geocoding.models import (
    Address,
    AddressCandidate,
    AddressField,
    AddressFormat,
    Point,
)
from address_resolver.core.geocoding.service_info import (
    GeocodingInfo,
    load_geocoding_info,
)
from address_resolver.core.geocoding.validator import LocationValidator
from address_resolver.core.logging import get_operation_logger

logger = logging.getLogger(__name__)


class GeocodingService:
    """Geocoding entry point for host applications."""

    def __init__(
        self,
        geocoders: GeocoderSet,
        cache: Optional[CandidateCache] = None,
    ):
        """Initialize the service.

        Args:
            geocoders: Current and streets geocoders
            cache: Optional result cache
        """
        self.geocoders = geocoders
        self.cache = cache or CandidateCache()
        self.validator = LocationValidator(geocoders.streets_geocoder)
        self._cache_kind = type(geocoders.geocoder).__name__.lower()

    @classmethod
    def from_info(
        cls,
        info: GeocodingInfo,
        settings: Optional[Settings] = None,
        client_factory: Optional[ClientFactory] = None,
    ) -> "GeocodingService":
        settings = settings or default_settings
        geocoders = create_geocoders(info, client_factory=client_factory, settings=settings)
        cache = CandidateCache(settings.REDIS_URL, ttl=settings.GEOCODING_CACHE_TTL)
        return cls(geocoders, cache)

    @property
    def geocoder(self) -> Geocoder:
        return self.geocoders.geocoder

    @property
    def streets_geocoder(self) -> Geocoder:
        return self.geocoders.streets_geocoder

    @property
    def address_fields(self) -> list[AddressField]:
        return self.geocoder.address_fields

    @property
    def address_format(self) -> AddressFormat:
        return self.geocoder.address_format

    @property
    def minimum_match_score(self) -> int:
        return self.geocoder.minimum_match_score

    def is_confident(self, candidate: Optional[AddressCandidate]) -> bool:
        return self.geocoder.is_confident(candidate)

    def geocode(self, address: Address) -> Optional[AddressCandidate]:
        """Geocode an address to its best candidate.

        Args:
            address: Address to geocode

        Returns:
            Best candidate, or None if nothing was found
        """
        if address is None:
            raise GeocoderArgumentError("address")

        cached = self.cache.get_candidate(address, self._cache_kind)
        if cached is not None:
            return cached

        candidate = self.geocoder.geocode(address)
        if candidate is not None:
            self.cache.set_candidate(address, self._cache_kind, candidate)
        return candidate

    def batch_geocode(
        self, addresses: Sequence[Optional[Address]]
    ) -> list[Optional[AddressCandidate]]:
        """Geocode many addresses; results are not cached."""
        if addresses is None:
            raise GeocoderArgumentError("addresses")

        log = get_operation_logger("batch_geocode", count=len(addresses))
        candidates = self.geocoder.batch_geocode(addresses)
        found = sum(1 for c in candidates if c is not None)
        log.info("batch geocoded", found=found, returned=len(candidates))
        return candidates

    def geocode_candidates(
        self, address: Address, include_disabled_locators: bool = False
    ) -> Optional[list[AddressCandidate]]:
        return self.geocoder.geocode_candidates(address, include_disabled_locators)

    def reverse_geocode(self, location: Point) -> Optional[Address]:
        """Find the address at a location.

        Args:
            location: Point to reverse geocode

        Returns:
            Found address, or None
        """
        if location is None:
            raise GeocoderArgumentError("location")

        cached = self.cache.get_address(location, self._cache_kind)
        if cached is not None:
            return cached

        address = self.geocoder.reverse_geocode(location)
        if address is not None:
            self.cache.set_address(location, self._cache_kind, address)
        return address

    def add_reverse_geocode_handler(self, handler: ReverseGeocodeHandler) -> None:
        self.geocoder.add_reverse_geocode_handler(handler)

    def remove_reverse_geocode_handler(self, handler: ReverseGeocodeHandler) -> None:
        self.geocoder.remove_reverse_geocode_handler(handler)

    def reverse_geocode_async(
        self, location: Point, token: Hashable
    ) -> ReverseGeocodeRequest:
        return self.geocoder.reverse_geocode_async(location, token)

    def reverse_geocode_async_cancel(self, token: Hashable) -> bool:
        return self.geocoder.reverse_geocode_async_cancel(token)

    def find_incorrect_locations(
        self, candidates: Iterable[Optional[AddressCandidate]]
    ) -> Iterable[int]:
        return self.validator.find_incorrect_locations(candidates)

    def close(self) -> None:
        self.geocoders.close()


# Singleton instance
_geocoding_service: Optional[GeocodingService] = None
_geocoding_service_lock = threading.Lock()


def get_geocoding_service() -> GeocodingService:
    """Get or create the singleton geocoding service instance.

    Returns:
        GeocodingService instance

    Raises:
        GeocoderConfigurationError: If ``GEOCODING_CONFIG_PATH`` is not set or
            the configuration is invalid
    """
    global _geocoding_service
    if _geocoding_service is None:
        with _geocoding_service_lock:
            if _geocoding_service is None:
                path = default_settings.GEOCODING_CONFIG_PATH
                if not path:
                    logger.error("GEOCODING_CONFIG_PATH is not set")
                    raise GeocoderConfigurationError("GEOCODING_CONFIG_PATH is not set")
                _geocoding_service = GeocodingService.from_info(
                    load_geocoding_info(path), default_settings
                )
    return _geocoding_service


def reset_geocoding_service() -> None:
    """Drop the singleton instance, closing its geocoders."""
    global _geocoding_service
    with _geocoding_service_lock:
        if _geocoding_service is not None:
            _geocoding_service.close()
        _geocoding_service = None
