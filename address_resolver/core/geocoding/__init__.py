"""Address resolution engine.

This package provides geocoding against ArcGIS geocoding services including:
- Composite (multi-locator) and World geocoders
- Batch geocoding with service-sized chunks
- Cancellable asynchronous reverse geocoding
- Plausibility checks for address-point matches
"""

# Import main components for easy access
from address_resolver.core.geocoding.base import Geocoder
from address_resolver.core.geocoding.cache import CandidateCache
from address_resolver.core.geocoding.composite import CompositeGeocoder
from address_resolver.core.geocoding.errors import (
    CancellationNotSupportedError,
    GeocodeServiceFault,
    GeocoderArgumentError,
    GeocoderAuthenticationError,
    GeocoderConfigurationError,
    GeocodingError,
)
from address_resolver.core.geocoding.factory import GeocoderSet, create_geocoders
from address_resolver.core.geocoding.gateway import (
    ReverseGeocodeCompleted,
    ReverseGeocodeState,
)
from address_resolver.core.geocoding.models import (
    Address,
    AddressCandidate,
    AddressField,
    AddressFormat,
    AddressPart,
    LocatorInfo,
    Point,
    SublocatorType,
)
from address_resolver.core.geocoding.service import (
    GeocodingService,
    get_geocoding_service,
)
from address_resolver.core.geocoding.service_info import (
    GeocodingInfo,
    GeocodingServiceInfo,
    load_geocoding_info,
)
from address_resolver.core.geocoding.transport import ArcGISServerClient, RecordSet
from address_resolver.core.geocoding.validator import LocationValidator
from address_resolver.core.geocoding.world import WorldGeocoder

__all__ = [
    "Address",
    "AddressCandidate",
    "AddressField",
    "AddressFormat",
    "AddressPart",
    "ArcGISServerClient",
    "CancellationNotSupportedError",
    "CandidateCache",
    "CompositeGeocoder",
    "GeocodeServiceFault",
    "Geocoder",
    "GeocoderArgumentError",
    "GeocoderAuthenticationError",
    "GeocoderConfigurationError",
    "GeocoderSet",
    "GeocodingError",
    "GeocodingInfo",
    "GeocodingService",
    "GeocodingServiceInfo",
    "LocationValidator",
    "LocatorInfo",
    "Point",
    "RecordSet",
    "ReverseGeocodeCompleted",
    "ReverseGeocodeState",
    "SublocatorType",
    "WorldGeocoder",
    "create_geocoders",
    "get_geocoding_service",
    "load_geocoding_info",
]
