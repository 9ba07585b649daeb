"""Plausibility check for address-point geocoding matches.

Rooftop (address point) matches are reverse geocoded against a street-level
geocoder; a candidate whose street line does not appear in its own full
address is reported as incorrectly located.
"""

import locale
import logging
from typing import Iterable, Iterator, Optional

from address_resolver.core.geocoding.base import Geocoder
from address_resolver.core.geocoding.errors import GeocoderArgumentError
from address_resolver.core.geocoding.models import AddressCandidate, SublocatorType

logger = logging.getLogger(__name__)


def is_integer(value: str) -> bool:
    """Check whether ``value`` parses as an integer in the current locale."""
    try:
        locale.atoi(value)
    except ValueError:
        return False
    return True


def strip_house_number(address_line: str) -> str:
    """Remove a leading or trailing house number from an address line.

    ``"123 Main St"`` and ``"Main St 123"`` both become ``"Main St"``; a line
    without a numeric first or last token is returned unchanged.
    """
    parts = address_line.split(" ")
    if len(parts) < 2:
        return address_line

    first, last = parts[0], parts[-1]
    if is_integer(first):
        return address_line[len(first) :].lstrip(" ")
    if is_integer(last):
        return address_line[: len(address_line) - len(last)].rstrip(" ")
    return address_line


class IncorrectLocations:
    """Lazily evaluated indexes of implausibly located candidates.

    Every iteration runs the checks again from the first candidate.
    """

    def __init__(
        self,
        validator: "LocationValidator",
        candidates: Iterable[Optional[AddressCandidate]],
    ):
        self._validator = validator
        self._candidates = candidates

    def __iter__(self) -> Iterator[int]:
        return self._validator._find_incorrect_locations(self._candidates)


class LocationValidator:
    """Finds address-point candidates whose location contradicts their address."""

    def __init__(self, streets_geocoder: Geocoder):
        if streets_geocoder is None:
            raise GeocoderArgumentError("streets_geocoder")
        self._streets_geocoder = streets_geocoder

    @property
    def streets_geocoder(self) -> Geocoder:
        return self._streets_geocoder

    def find_incorrect_locations(
        self, candidates: Iterable[Optional[AddressCandidate]]
    ) -> IncorrectLocations:
        """Return the indexes of implausibly located candidates, lazily.

        Only candidates resolved by an ``AddressPoint`` locator are checked;
        each check costs one reverse geocoding request.

        Raises:
            GeocoderArgumentError: If ``candidates`` is None
        """
        if candidates is None:
            raise GeocoderArgumentError("candidates")
        return IncorrectLocations(self, candidates)

    def _find_incorrect_locations(
        self, candidates: Iterable[Optional[AddressCandidate]]
    ) -> Iterator[int]:
        for index, candidate in enumerate(candidates):
            if (
                candidate is None
                or candidate.locator is None
                or candidate.locator.type != SublocatorType.ADDRESS_POINT
            ):
                continue

            if candidate.geo_location is None:
                logger.debug(f"Candidate {index} has no location")
                yield index
                continue

            address = self._streets_geocoder.reverse_geocode(candidate.geo_location)
            if address is None:
                yield index
                continue

            full_address = candidate.address.full_address.upper()
            address_line = address.address_line
            # Without a unit the house number is part of the address line.
            if not address.unit:
                address_line = strip_house_number(address_line)

            if address_line.upper() in full_address:
                continue
            logger.debug(
                f"Candidate {index} '{candidate.address.full_address}' is located "
                f"at '{address.address_line}'"
            )
            yield index
