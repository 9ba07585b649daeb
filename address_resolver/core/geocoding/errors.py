"""Exceptions raised by the geocoding engine."""


class GeocodingError(Exception):
    """Base class for geocoding engine errors."""


class GeocoderConfigurationError(GeocodingError):
    """Raised when the geocoding service configuration is missing or malformed."""


class GeocoderArgumentError(GeocodingError, ValueError):
    """Raised when a public method receives a null or invalid argument."""

    def __init__(self, argument: str, message: str | None = None):
        super().__init__(message or f"Argument '{argument}' must not be None")
        self.argument = argument


class GeocodeServiceFault(GeocodingError):
    """Raised by a transport when the remote geocoding call fails.

    Geocoders catch this at their boundary and turn it into a "no result"
    outcome.
    """

    def __init__(self, message: str, code: int | None = None):
        super().__init__(message)
        self.code = code


class GeocoderAuthenticationError(GeocodingError):
    """Raised when the geocoding server rejects the caller's credentials.

    Never converted into a "no result" outcome; the host application is
    expected to re-authenticate.
    """

    def __init__(self, message: str, service: str | None = None):
        super().__init__(message)
        self.service = service


class CancellationNotSupportedError(GeocodingError, NotImplementedError):
    """Raised when a geocoder cannot cancel an in-flight reverse geocode."""
