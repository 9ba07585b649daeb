"""Geocoder for composite (multi-locator) ArcGIS geocoding services.

Requests are built from the configured field mappings and sent through a
``GeocodeServiceClient``. Candidates are attributed to the sub-locator named in
their ``Loc_name`` value and filtered by locator enablement and score.
"""

import logging
import threading
from types import MappingProxyType
from typing import Any, Mapping, Optional, Sequence

from address_resolver.core.geocoding.base import (
    Geocoder,
    detect_address_format,
    fields_for_format,
)
from address_resolver.core.geocoding.constants import (
    ADDRTYPE_PROPERTY_KEY,
    BATCHSIZE_PROPERTY,
    DEFAULT_BATCH_SIZE,
    DEFAULT_MINIMUM_MATCH_SCORE,
    LOCATOR_PROPERTY_MODIFIERS,
    LOCNAME_PROPERTY_KEY,
    MATCHADDR_PROPERTY_KEY,
    MAXIMUM_SCORE,
    OBJECT_ID_PROPERTY_KEY,
    RESULT_ID_PROPERTY_KEY,
    REVERSE_DISTANCE,
    REVERSE_DISTANCE_PROPERTY,
    REVERSE_DISTANCE_UNITS,
    REVERSE_DISTANCE_UNITS_PROPERTY,
    SCORE_PROPERTY_KEY,
    SHAPE_PROPERTY_KEY,
)
from address_resolver.core.geocoding.errors import (
    GeocodeServiceFault,
    GeocoderArgumentError,
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
    SublocatorType,
)
from address_resolver.core.geocoding.service_info import GeocodingServiceInfo
from address_resolver.core.geocoding.transport import GeocodeServiceClient, RecordSet

logger = logging.getLogger(__name__)


def collapse_whitespace(value: Any) -> str:
    """Collapse runs of whitespace and trim; None becomes an empty string."""
    if value is None:
        return ""
    return " ".join(str(value).split())


def parse_score(value: Any) -> int:
    """Convert a service score to an integer in 0..100."""
    try:
        score = int(round(float(value)))
    except (TypeError, ValueError):
        return 0
    return max(0, min(MAXIMUM_SCORE, score))


def result_order(row: Sequence[Any], index: int) -> tuple[int, int]:
    """Sort key for a batch row by result id; rows without a usable id sort last."""
    try:
        return 0, int(row[index])
    except (IndexError, TypeError, ValueError):
        return 1, 0


class CompositeGeocoder(Geocoder):
    """Geocoder backed by a (possibly composite) ArcGIS locator.

    Async reverse geocoding cannot be canceled:
    ``reverse_geocode_async_cancel`` raises ``CancellationNotSupportedError``.
    """

    def __init__(
        self,
        service_info: Optional[GeocodingServiceInfo],
        client: GeocodeServiceClient,
        max_workers: int = 4,
        reverse_distance: float = REVERSE_DISTANCE,
        reverse_distance_units: str = REVERSE_DISTANCE_UNITS,
    ):
        """Initialize the geocoder from its service configuration.

        Args:
            service_info: Geocoding service configuration
            client: Transport used for every service call
            max_workers: Worker threads for async reverse geocoding
            reverse_distance: Reverse geocoding search tolerance
            reverse_distance_units: Units of ``reverse_distance``

        Raises:
            GeocoderConfigurationError: If no service configuration is given
        """
        if service_info is None:
            raise GeocoderConfigurationError("Default geocoding info is not set")
        if client is None:
            raise GeocoderArgumentError("client")
        super().__init__(supports_cancellation=False, max_workers=max_workers)

        self._service_info = service_info
        self._client = client
        self._property_modifiers = dict(LOCATOR_PROPERTY_MODIFIERS)
        self._reverse_properties = {
            REVERSE_DISTANCE_PROPERTY: reverse_distance,
            REVERSE_DISTANCE_UNITS_PROPERTY: reverse_distance_units,
        }

        mappings = service_info.field_mappings
        self._all_fields: tuple[AddressField, ...] = tuple(
            m.to_address_field() for m in mappings
        )
        self._locator_field_names: tuple[str, ...] = tuple(
            m.locator_field for m in mappings
        )

        self._locator_infos: tuple[LocatorInfo, ...] = tuple(service_info.locators())
        table: dict[str, LocatorInfo] = {}
        for locator in self._locator_infos:
            table.setdefault(locator.name.lower(), locator)
        self._locators: Mapping[str, LocatorInfo] = MappingProxyType(table)

        self._default_locator = LocatorInfo(
            name="",
            title="",
            primary=True,
            enabled=True,
            type=SublocatorType.STREETS,
            internal_fields=tuple(m.address_field for m in mappings),
        )

        # Filled once from service metadata on first use.
        self._init_lock = threading.Lock()
        self._initialized = False
        self._batch_size = DEFAULT_BATCH_SIZE
        self._service_field_names: tuple[str, ...] = ()

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
        return self._locator_infos

    @property
    def is_composite_locator(self) -> bool:
        return self._service_info.is_composite_locator

    @property
    def address_fields(self) -> list[AddressField]:
        return fields_for_format(self._all_fields, self.address_format)

    @property
    def address_format(self) -> AddressFormat:
        return detect_address_format(
            self._all_fields, self._service_info.use_single_line_input
        )

    @property
    def default_locator(self) -> LocatorInfo:
        return self._default_locator

    @property
    def batch_size(self) -> int:
        self._ensure_initialized()
        return self._batch_size

    def find_locator(self, name: Optional[str]) -> Optional[LocatorInfo]:
        """Look up a configured sub-locator by name, ignoring case."""
        return self._locators.get((name or "").lower())

    def _ensure_initialized(self) -> None:
        """Query locator metadata once; concurrent callers reuse the result.

        Authentication errors and faults raised by the metadata query propagate.
        """
        if self._initialized:
            return
        with self._init_lock:
            if self._initialized:
                return

            properties = self._client.get_locator_properties() or {}
            batch_size = DEFAULT_BATCH_SIZE
            for key, value in properties.items():
                if key.lower() == BATCHSIZE_PROPERTY.lower():
                    try:
                        batch_size = int(value)
                    except (TypeError, ValueError):
                        logger.warning(f"Ignoring invalid {BATCHSIZE_PROPERTY}: {value!r}")
                    break
            if batch_size <= 0:
                batch_size = DEFAULT_BATCH_SIZE

            self._batch_size = batch_size
            self._service_field_names = tuple(self._client.get_address_fields() or ())
            self._initialized = True
            logger.info(
                f"Geocoder '{self._service_info.title}' initialized "
                f"(batch size {self._batch_size}, format {self.address_format.value})"
            )

    def geocode(self, address: Address) -> Optional[AddressCandidate]:
        if address is None:
            raise GeocoderArgumentError("address")
        self._ensure_initialized()

        try:
            geocoded = self._client.geocode_address(
                self._property_set(address), self._property_modifiers
            )
        except GeocodeServiceFault as e:
            logger.info(f"Geocoding failed for '{address.full_address[:50]}': {e}")
            return None
        if not geocoded:
            return None

        candidate = self._candidate_from_properties(geocoded)
        if candidate is None:
            return None
        if candidate.locator is not None and not candidate.locator.primary:
            # Alternates are only reachable through geocode_candidates.
            return None
        return candidate

    def batch_geocode(
        self, addresses: Sequence[Optional[Address]]
    ) -> list[Optional[AddressCandidate]]:
        """Geocode ``addresses`` in chunks no larger than the service batch size.

        Chunks are sent one after another. A failed chunk contributes no
        candidates; rows attributed to disabled locators are None.
        """
        if addresses is None:
            raise GeocoderArgumentError("addresses")
        self._ensure_initialized()

        results: list[Optional[AddressCandidate]] = []
        for start in range(0, len(addresses), self._batch_size):
            chunk = list(addresses[start : start + self._batch_size])
            chunk_candidates = self._geocode_chunk(chunk)
            if chunk_candidates is None:
                logger.info(
                    f"Batch chunk {start}..{start + len(chunk) - 1} returned no candidates"
                )
                continue
            results.extend(chunk_candidates)
        return results

    def geocode_candidates(
        self, address: Address, include_disabled_locators: bool = False
    ) -> Optional[list[AddressCandidate]]:
        if address is None:
            raise GeocoderArgumentError("address")
        self._ensure_initialized()

        try:
            record_set = self._client.find_address_candidates(
                self._property_set(address), self._property_modifiers
            )
        except GeocodeServiceFault as e:
            logger.info(
                f"Candidate search failed for '{address.full_address[:50]}': {e}"
            )
            return None
        if record_set is None:
            return None

        return self.filter_candidates(record_set, include_disabled_locators)

    def filter_candidates(
        self, record_set: RecordSet, include_disabled_locators: bool = False
    ) -> list[AddressCandidate]:
        """Convert a candidate record set, dropping disabled and low-score rows."""
        minimum = self.minimum_candidate_score
        return [
            candidate
            for candidate in self._candidates_from_records(
                record_set, include_disabled_locators
            )
            if candidate is not None and candidate.score >= minimum
        ]

    def reverse_geocode(self, location: Point) -> Optional[Address]:
        if location is None:
            raise GeocoderArgumentError("location")
        self._ensure_initialized()

        try:
            properties = self._client.reverse_geocode(
                location, False, self._reverse_properties
            )
        except GeocodeServiceFault as e:
            logger.info(f"Reverse geocoding failed for ({location.x}, {location.y}): {e}")
            return None
        if not properties:
            return None
        return self._address_from_properties(properties)

    def _reverse_geocode_for_async(
        self, location: Point
    ) -> Optional[tuple[Address, Point]]:
        self._ensure_initialized()
        properties = self._client.reverse_geocode(
            location, False, self._reverse_properties
        )
        if not properties:
            return None
        address = self._address_from_properties(properties)
        # A point without an address line is not reported.
        if address is None or not address.address_line:
            return None
        found_at = self._property(properties, SHAPE_PROPERTY_KEY)
        return address, found_at if isinstance(found_at, Point) else location

    def _property_set(self, address: Address) -> dict[str, str]:
        """Build the single-address request for the detected format."""
        properties: dict[str, str] = {}
        if self.address_format == AddressFormat.MULTIPLE_FIELDS:
            for field, name in zip(self._all_fields, self._locator_field_names):
                if field.type != AddressPart.FULL_ADDRESS:
                    properties[name] = address[field.type]
        else:
            for field, name in zip(self._all_fields, self._locator_field_names):
                if field.type == AddressPart.FULL_ADDRESS:
                    properties[name] = address[field.type]
                    break
        return properties

    def _single_line_batch_field(self) -> str:
        # Batch mode needs a concrete service field name, not the logical role.
        if self._service_field_names:
            return self._service_field_names[0]
        for field, name in zip(self._all_fields, self._locator_field_names):
            if field.type == AddressPart.FULL_ADDRESS:
                return name
        raise GeocoderConfigurationError(
            "Single-field batch geocoding needs a service address field"
        )

    def _batch_request(
        self, addresses: Sequence[Optional[Address]]
    ) -> tuple[RecordSet, dict[str, str]]:
        """Build the record set and field mapping for one batch chunk."""
        structured = [f for f in self._all_fields if f.type != AddressPart.FULL_ADDRESS]

        if self.address_format == AddressFormat.SINGLE_FIELD:
            field_name = self._single_line_batch_field()
            fields = [OBJECT_ID_PROPERTY_KEY, field_name]
            mapping = {field_name: field_name}
        else:
            fields = [OBJECT_ID_PROPERTY_KEY] + [f.type.value for f in structured]
            mapping = {
                name: field.type.value
                for field, name in zip(self._all_fields, self._locator_field_names)
                if field.type != AddressPart.FULL_ADDRESS
            }

        records: list[list[Any]] = []
        for index, address in enumerate(addresses):
            address = address if address is not None else Address()
            if self.address_format == AddressFormat.SINGLE_FIELD:
                values = [address.full_address]
            else:
                values = [address[f.type] for f in structured]
            records.append([index, *values])
        return RecordSet(fields=fields, records=records), mapping

    def _geocode_chunk(
        self, addresses: Sequence[Optional[Address]]
    ) -> Optional[list[Optional[AddressCandidate]]]:
        record_set, mapping = self._batch_request(addresses)
        try:
            geocoded = self._client.geocode_addresses(
                record_set, mapping, self._property_modifiers
            )
        except GeocodeServiceFault as e:
            logger.info(f"Batch geocoding of {len(addresses)} addresses failed: {e}")
            return None
        if geocoded is None:
            return None
        return self._candidates_from_records(geocoded, include_disabled_locators=False)

    def _candidates_from_records(
        self, record_set: RecordSet, include_disabled_locators: bool
    ) -> list[Optional[AddressCandidate]]:
        """Convert every row; rows from disabled locators become None unless included.

        Rows are ordered by their result id when the service reports one, so
        batch results line up with the request order.
        """
        indexes = {
            key: record_set.index_of(key)
            for key in (
                SHAPE_PROPERTY_KEY,
                SCORE_PROPERTY_KEY,
                MATCHADDR_PROPERTY_KEY,
                LOCNAME_PROPERTY_KEY,
                ADDRTYPE_PROPERTY_KEY,
                RESULT_ID_PROPERTY_KEY,
            )
        }

        records = list(record_set.records)
        result_id_index = indexes[RESULT_ID_PROPERTY_KEY]
        if result_id_index != -1:
            records.sort(key=lambda row: result_order(row, result_id_index))

        def value(row: list[Any], key: str) -> Any:
            index = indexes[key]
            return row[index] if index != -1 and index < len(row) else None

        candidates: list[Optional[AddressCandidate]] = []
        for row in records:
            location = value(row, SHAPE_PROPERTY_KEY)
            candidate = AddressCandidate(
                address=Address(
                    full_address=value(row, MATCHADDR_PROPERTY_KEY) or "",
                    match_method=value(row, LOCNAME_PROPERTY_KEY) or "",
                ),
                geo_location=location if isinstance(location, Point) else None,
                score=parse_score(value(row, SCORE_PROPERTY_KEY)),
                address_type=value(row, ADDRTYPE_PROPERTY_KEY) or "",
            )
            usable = self._update_locator_properties(candidate)
            if not usable and not include_disabled_locators:
                candidates.append(None)
            else:
                candidates.append(candidate)
        return candidates

    @staticmethod
    def _property(properties: dict[str, Any], key: str) -> Any:
        wanted = key.lower()
        for name, value in properties.items():
            if name.lower() == wanted:
                return value
        return None

    def _candidate_from_properties(
        self, properties: dict[str, Any]
    ) -> Optional[AddressCandidate]:
        """Convert a single-result property set; None if its locator is disabled."""
        location = self._property(properties, SHAPE_PROPERTY_KEY)
        candidate = AddressCandidate(
            address=Address(
                full_address=self._property(properties, MATCHADDR_PROPERTY_KEY) or "",
                match_method=self._property(properties, LOCNAME_PROPERTY_KEY) or "",
            ),
            geo_location=location if isinstance(location, Point) else None,
            score=parse_score(self._property(properties, SCORE_PROPERTY_KEY)),
            address_type=self._property(properties, ADDRTYPE_PROPERTY_KEY) or "",
        )
        if not self._update_locator_properties(candidate):
            return None
        return candidate

    def _address_from_properties(self, properties: dict[str, Any]) -> Optional[Address]:
        """Map a reverse geocoding property set onto an ``Address``.

        An empty result is reported as None.
        """
        address = Address()
        for key, raw in properties.items():
            wanted = key.lower()
            for field, name in zip(self._all_fields, self._locator_field_names):
                if name.lower() == wanted:
                    address[field.type] = collapse_whitespace(raw)
                    break
            if wanted == LOCNAME_PROPERTY_KEY.lower():
                address.match_method = raw or ""

        full_address = address.compose_full_address(f.type for f in self._all_fields)
        if full_address:
            address.full_address = full_address
        if address.is_empty() and not address.full_address:
            return None

        self._update_locator_properties(AddressCandidate(address=address))
        return address

    def _update_locator_properties(self, candidate: AddressCandidate) -> bool:
        """Attach the locator that produced ``candidate``.

        Returns whether the candidate is usable, i.e. its locator is enabled.
        Unknown locator names are kept as reported and stay usable.
        """
        if not self.is_composite_locator:
            candidate.locator = self._default_locator
            return True

        locator = self.find_locator(candidate.address.match_method)
        if locator is None:
            return True

        candidate.locator = locator
        if locator.enabled:
            candidate.address.match_method = locator.title
        return locator.enabled
