"""Single-field geocoder over the ArcGIS World geocoding service (via geopy)."""

import logging
from typing import Any, Callable, Optional, Sequence
from urllib.parse import urlparse

from geopy.exc import (
    GeocoderAuthenticationFailure,
    GeocoderInsufficientPrivileges,
    GeopyError,
)
from geopy.extra.rate_limiter import RateLimiter
from geopy.geocoders import ArcGIS
from geopy.location import Location

from address_resolver.core.geocoding.base import Geocoder
from address_resolver.core.geocoding.constants import (
    ADDRTYPE_PROPERTY_KEY,
    DEFAULT_MINIMUM_MATCH_SCORE,
    REVERSE_DISTANCE,
    WORLD_ADDRESS_FIELD_TITLE,
)
from address_resolver.core.geocoding.errors import (
    GeocodeServiceFault,
    GeocoderArgumentError,
    GeocoderAuthenticationError,
    GeocoderConfigurationError,
)
from address_resolver.core.geocoding.models import (
    Address,
    AddressCandidate,
    AddressField,
    AddressFormat,
    AddressPart,
    LocatorInfo,
    Point,
)
from address_resolver.core.geocoding.service_info import GeocodingServiceInfo

logger = logging.getLogger(__name__)

ADDRESS_FIELD = AddressField(
    title=WORLD_ADDRESS_FIELD_TITLE, type=AddressPart.FULL_ADDRESS, visible=True
)

# Reverse geocoding result attribute -> address part
REVERSE_ATTRIBUTES: dict[str, AddressPart] = {
    "Address": AddressPart.ADDRESS_LINE,
    "City": AddressPart.LOCALITY3,
    "Region": AddressPart.STATE_PROVINCE,
    "Postal": AddressPart.POSTAL_CODE1,
    "CountryCode": AddressPart.COUNTRY,
}


def build_arcgis(service_info: GeocodingServiceInfo, timeout: int) -> ArcGIS:
    """Create the geopy ArcGIS geocoder addressed by the service's REST url."""
    if not service_info.rest_url:
        return ArcGIS(timeout=timeout)
    parsed = urlparse(service_info.rest_url)
    if not parsed.netloc:
        raise GeocoderConfigurationError(
            f"Invalid world geocoder url: {service_info.rest_url!r}"
        )
    return ArcGIS(timeout=timeout, domain=parsed.netloc, scheme=parsed.scheme or "https")


class WorldGeocoder(Geocoder):
    """Geocoder for the single-line ArcGIS World locator.

    The World locator has no sub-locators; candidates carry no locator. Async
    reverse geocoding can be canceled by token.
    """

    def __init__(
        self,
        service_info: Optional[GeocodingServiceInfo],
        geolocator: Optional[ArcGIS] = None,
        timeout: int = 10,
        rate_limit: float = 0.5,
        max_retries: int = 3,
        max_workers: int = 4,
        reverse_distance: float = REVERSE_DISTANCE,
    ):
        """Initialize the World geocoder.

        Args:
            service_info: Geocoding service configuration
            geolocator: Optional preconfigured geopy ArcGIS geocoder
            timeout: Request timeout in seconds
            rate_limit: Minimum delay between requests in seconds
            max_retries: Retries for transient service errors
            max_workers: Worker threads for async reverse geocoding
            reverse_distance: Reverse geocoding search distance in meters
        """
        if service_info is None:
            raise GeocoderConfigurationError("Default geocoding info is not set")
        super().__init__(supports_cancellation=True, max_workers=max_workers)

        self._service_info = service_info
        self._reverse_distance = reverse_distance
        self.geolocator = geolocator or build_arcgis(service_info, timeout)

        # Exceptions are re-raised once retries run out so faults can be told
        # apart from "not found".
        self._geocode = RateLimiter(
            self.geolocator.geocode,
            min_delay_seconds=rate_limit,
            max_retries=max_retries,
            error_wait_seconds=5,
            swallow_exceptions=False,
        )
        self._reverse = RateLimiter(
            self.geolocator.reverse,
            min_delay_seconds=rate_limit,
            max_retries=max_retries,
            error_wait_seconds=5,
            swallow_exceptions=False,
        )
        logger.info(f"World geocoder initialized with {rate_limit}s rate limit")

    @property
    def service_info(self) -> GeocodingServiceInfo:
        return self._service_info

    @property
    def minimum_match_score(self) -> int:
        score = self._service_info.minimum_match_score
        return DEFAULT_MINIMUM_MATCH_SCORE if score is None else score

    @property
    def minimum_candidate_score(self) -> int:
        return self._service_info.minimum_candidate_score

    @property
    def locators(self) -> tuple[LocatorInfo, ...]:
        return ()

    @property
    def is_composite_locator(self) -> bool:
        return False

    @property
    def address_fields(self) -> list[AddressField]:
        return [ADDRESS_FIELD]

    @property
    def address_format(self) -> AddressFormat:
        return AddressFormat.SINGLE_FIELD

    def _call(self, func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        """Invoke a geopy call, translating its errors into geocoding errors."""
        try:
            return func(*args, **kwargs)
        except (GeocoderAuthenticationFailure, GeocoderInsufficientPrivileges) as e:
            raise GeocoderAuthenticationError(
                f"World geocoder rejected credentials: {e}",
                service=self.geolocator.domain,
            ) from e
        except GeopyError as e:
            raise GeocodeServiceFault(f"World geocoder request failed: {e}") from e

    @staticmethod
    def _query(address: Address) -> str:
        if address.country:
            return f"{address.full_address}, {address.country}"
        return address.full_address

    @staticmethod
    def _convert(location: Optional[Location]) -> Optional[AddressCandidate]:
        """Convert a geopy location; None when score, address or point is missing."""
        if location is None:
            return None
        raw = location.raw or {}
        score = raw.get("score")
        if score is None or not location.address:
            return None
        if location.latitude is None or location.longitude is None:
            return None

        attributes = raw.get("attributes") or {}
        return AddressCandidate(
            address=Address(full_address=location.address),
            geo_location=Point(x=location.longitude, y=location.latitude),
            score=max(0, min(100, int(round(float(score))))),
            address_type=attributes.get(ADDRTYPE_PROPERTY_KEY, "")
            or attributes.get("Addr_type", ""),
        )

    def geocode(self, address: Address) -> Optional[AddressCandidate]:
        if address is None:
            raise GeocoderArgumentError("address")
        if not address.full_address.strip():
            return None

        try:
            location = self._call(
                self._geocode,
                self._query(address),
                exactly_one=True,
                out_fields=[ADDRTYPE_PROPERTY_KEY],
            )
        except GeocodeServiceFault as e:
            logger.info(f"World geocoding failed for '{address.full_address[:50]}': {e}")
            return None
        return self._convert(location)

    def batch_geocode(
        self, addresses: Sequence[Optional[Address]]
    ) -> list[Optional[AddressCandidate]]:
        """Geocode addresses one by one; only found candidates are returned."""
        if addresses is None:
            raise GeocoderArgumentError("addresses")

        candidates: list[Optional[AddressCandidate]] = []
        for address in addresses:
            candidate = self.geocode(address if address is not None else Address())
            if candidate is not None:
                candidates.append(candidate)
        return candidates

    def geocode_candidates(
        self, address: Address, include_disabled_locators: bool = False
    ) -> Optional[list[AddressCandidate]]:
        if address is None:
            raise GeocoderArgumentError("address")

        try:
            locations = self._call(
                self._geocode,
                self._query(address),
                exactly_one=False,
                out_fields=[ADDRTYPE_PROPERTY_KEY],
            )
        except GeocodeServiceFault as e:
            logger.info(
                f"World candidate search failed for '{address.full_address[:50]}': {e}"
            )
            return None

        minimum = self.minimum_candidate_score
        candidates = [self._convert(location) for location in locations or []]
        return [c for c in candidates if c is not None and c.score >= minimum]

    def _reverse_location(self, location: Point) -> Optional[Location]:
        # geopy expects "latitude, longitude"
        return self._call(
            self._reverse,
            (location.y, location.x),
            exactly_one=True,
            distance=self._reverse_distance,
        )

    @staticmethod
    def _address_from_location(found: Location) -> Address:
        address = Address(full_address=found.address or "")
        raw = found.raw or {}
        for key, part in REVERSE_ATTRIBUTES.items():
            value = raw.get(key)
            if value:
                address[part] = " ".join(str(value).split())
        return address

    def reverse_geocode(self, location: Point) -> Optional[Address]:
        if location is None:
            raise GeocoderArgumentError("location")

        try:
            found = self._reverse_location(location)
        except GeocodeServiceFault as e:
            logger.info(
                f"World reverse geocoding failed for ({location.x}, {location.y}): {e}"
            )
            return None
        if found is None:
            return None
        return self._address_from_location(found)

    def _reverse_geocode_for_async(
        self, location: Point
    ) -> Optional[tuple[Address, Point]]:
        found = self._reverse_location(location)
        if found is None or not found.address:
            return None
        found_at = location
        if found.latitude is not None and found.longitude is not None:
            found_at = Point(x=found.longitude, y=found.latitude)
        return self._address_from_location(found), found_at
