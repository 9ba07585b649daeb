"""Capability set shared by every geocoder variant."""

from abc import ABC, abstractmethod
from typing import Hashable, Optional, Sequence

from address_resolver.core.geocoding.gateway import (
    ReverseGeocodeGateway,
    ReverseGeocodeHandler,
    ReverseGeocodeRequest,
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


def detect_address_format(
    fields: Sequence[AddressField], use_single_line_input: bool
) -> AddressFormat:
    """Work out which address format a service expects from its field mappings.

    A lone ``FullAddress`` mapping means single-field input and a lone
    structured mapping means multiple fields. Otherwise single-field input is
    used only when the service prefers single-line input and a ``FullAddress``
    mapping exists.
    """
    if len(fields) == 1:
        if fields[0].type == AddressPart.FULL_ADDRESS:
            return AddressFormat.SINGLE_FIELD
        return AddressFormat.MULTIPLE_FIELDS

    has_full_address = any(f.type == AddressPart.FULL_ADDRESS for f in fields)
    if use_single_line_input and has_full_address:
        return AddressFormat.SINGLE_FIELD
    return AddressFormat.MULTIPLE_FIELDS


def fields_for_format(
    fields: Sequence[AddressField], address_format: AddressFormat
) -> list[AddressField]:
    """Select the fields a caller should fill in for ``address_format``."""
    if address_format == AddressFormat.MULTIPLE_FIELDS:
        return [f for f in fields if f.type != AddressPart.FULL_ADDRESS]
    return [f for f in fields if f.type == AddressPart.FULL_ADDRESS][:1]


class Geocoder(ABC):
    """Geocoder capability set.

    Synchronous operations block on network I/O. ``geocode`` and friends are
    best effort: transport faults are logged and reported as "no result".
    Argument errors and authentication errors are raised.
    """

    def __init__(self, supports_cancellation: bool, max_workers: int = 4):
        self._gateway = ReverseGeocodeGateway(
            self._reverse_geocode_for_async,
            supports_cancellation=supports_cancellation,
            max_workers=max_workers,
            name=f"{type(self).__name__}-reverse",
        )

    @property
    @abstractmethod
    def minimum_match_score(self) -> int:
        """Minimum score for a candidate to count as a confident match."""

    @property
    @abstractmethod
    def locators(self) -> tuple[LocatorInfo, ...]:
        """Sub-locators of a composite locator; empty for simple locators."""

    @property
    @abstractmethod
    def is_composite_locator(self) -> bool: ...

    @property
    @abstractmethod
    def address_fields(self) -> list[AddressField]: ...

    @property
    @abstractmethod
    def address_format(self) -> AddressFormat: ...

    @abstractmethod
    def geocode(self, address: Address) -> Optional[AddressCandidate]:
        """Return the best candidate for ``address`` or None."""

    @abstractmethod
    def batch_geocode(
        self, addresses: Sequence[Optional[Address]]
    ) -> list[Optional[AddressCandidate]]:
        """Geocode many addresses in one logical call."""

    @abstractmethod
    def geocode_candidates(
        self, address: Address, include_disabled_locators: bool = False
    ) -> Optional[list[AddressCandidate]]:
        """Return every acceptable candidate, or None if the service call failed."""

    @abstractmethod
    def reverse_geocode(self, location: Point) -> Optional[Address]:
        """Find the address at ``location`` or None."""

    @abstractmethod
    def _reverse_geocode_for_async(
        self, location: Point
    ) -> Optional[tuple[Address, Point]]:
        """Reverse geocode for the async gateway; raises on transport faults."""

    @property
    def supports_reverse_geocode_cancel(self) -> bool:
        return self._gateway.supports_cancellation

    def is_confident(self, candidate: Optional[AddressCandidate]) -> bool:
        return candidate is not None and candidate.score >= self.minimum_match_score

    def add_reverse_geocode_handler(self, handler: ReverseGeocodeHandler) -> None:
        self._gateway.add_handler(handler)

    def remove_reverse_geocode_handler(self, handler: ReverseGeocodeHandler) -> None:
        self._gateway.remove_handler(handler)

    def reverse_geocode_async(
        self, location: Point, token: Hashable
    ) -> ReverseGeocodeRequest:
        """Start reverse geocoding ``location`` in the background.

        Completion is reported through registered handlers and the returned
        request's future. Raises ``GeocoderArgumentError`` for a None token.
        """
        return self._gateway.submit(location, token)

    def reverse_geocode_async_cancel(self, token: Hashable) -> bool:
        """Cancel a pending async reverse geocode.

        Raises ``CancellationNotSupportedError`` when the geocoder cannot cancel.
        """
        return self._gateway.cancel(token)

    def close(self) -> None:
        self._gateway.shutdown(wait=False)
