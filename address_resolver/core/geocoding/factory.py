"""Geocoder selection from the geocoding service configuration."""

import logging
from dataclasses import dataclass
from typing import Callable, Optional

from address_resolver.core.config import Settings
from address_resolver.core.config import settings as default_settings
from address_resolver.core.geocoding.base import Geocoder
from address_resolver.core.geocoding.composite import CompositeGeocoder
from address_resolver.core.geocoding.constants import (
    ARCGIS_GEOCODER_TYPE,
    STREETS_GEOCODER_TYPE,
    WORLD_GEOCODER_TYPE,
)
from address_resolver.core.geocoding.errors import GeocoderConfigurationError
from address_resolver.core.geocoding.service_info import (
    GeocodingInfo,
    GeocodingServiceInfo,
)
from address_resolver.core.geocoding.transport import (
    ArcGISServerClient,
    GeocodeServiceClient,
)
from address_resolver.core.geocoding.world import WorldGeocoder

logger = logging.getLogger(__name__)

ClientFactory = Callable[[GeocodingServiceInfo, Settings], GeocodeServiceClient]


@dataclass(frozen=True)
class GeocoderSet:
    """The application's current geocoder and its street-level geocoder."""

    geocoder: Geocoder
    streets_geocoder: Geocoder

    def close(self) -> None:
        self.geocoder.close()
        if self.streets_geocoder is not self.geocoder:
            self.streets_geocoder.close()


def arcgis_client_factory(
    service_info: GeocodingServiceInfo, settings: Settings
) -> GeocodeServiceClient:
    """Create the REST client for an ArcGIS Server geocoding service."""
    url = service_info.rest_url or service_info.url
    if not url:
        raise GeocoderConfigurationError(
            f"Geocoding service '{service_info.title}' has no url"
        )
    return ArcGISServerClient(
        url, token=settings.ARCGIS_API_KEY, timeout=settings.GEOCODING_TIMEOUT
    )


def _is_type(service_info: GeocodingServiceInfo, kind: str) -> bool:
    return service_info.type.lower() == kind.lower()


def _composite(
    service_info: GeocodingServiceInfo,
    client_factory: ClientFactory,
    settings: Settings,
) -> CompositeGeocoder:
    return CompositeGeocoder(
        service_info,
        client_factory(service_info, settings),
        max_workers=settings.REVERSE_GEOCODE_WORKERS,
    )


def create_geocoders(
    info: GeocodingInfo,
    client_factory: Optional[ClientFactory] = None,
    settings: Optional[Settings] = None,
) -> GeocoderSet:
    """Build the current geocoder and the streets geocoder.

    Args:
        info: Geocoding service configuration
        client_factory: Creates the transport for a composite geocoder
        settings: Application settings (defaults to the global settings)

    Returns:
        The selected geocoders

    Raises:
        GeocoderConfigurationError: If no service, or more than one, is current
    """
    settings = settings or default_settings
    client_factory = client_factory or arcgis_client_factory

    current: Optional[GeocodingServiceInfo] = None
    streets_geocoder: Optional[Geocoder] = None
    for service_info in info.services:
        if service_info.current:
            if current is not None:
                raise GeocoderConfigurationError("Default geocoding info is not unique")
            current = service_info

        if streets_geocoder is None and _is_type(service_info, STREETS_GEOCODER_TYPE):
            streets_geocoder = _composite(service_info, client_factory, settings)
            logger.info(f"Using '{service_info.title}' as the streets geocoder")

    if current is None:
        raise GeocoderConfigurationError("Default geocoding info is not set")

    geocoder: Geocoder
    if _is_type(current, ARCGIS_GEOCODER_TYPE):
        geocoder = _composite(current, client_factory, settings)
        streets_geocoder = geocoder
    elif _is_type(current, WORLD_GEOCODER_TYPE):
        geocoder = WorldGeocoder(
            current,
            timeout=settings.GEOCODING_TIMEOUT,
            rate_limit=settings.GEOCODING_RATE_LIMIT,
            max_retries=settings.GEOCODING_MAX_RETRIES,
            max_workers=settings.REVERSE_GEOCODE_WORKERS,
        )
        streets_geocoder = geocoder
    else:
        geocoder = _composite(current, client_factory, settings)

    if streets_geocoder is None:
        streets_geocoder = geocoder

    logger.info(f"Using '{current.title}' ({current.type or 'default'}) geocoder")
    return GeocoderSet(geocoder=geocoder, streets_geocoder=streets_geocoder)
