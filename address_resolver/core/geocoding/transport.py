"""Transport contract between the geocoders and a remote geocoding service.

Geocoders only see flat property sets (``dict[str, Any]``) and record sets.
``ArcGISServerClient`` implements the contract over an ArcGIS Server
``GeocodeServer`` REST endpoint.
"""

import json
import logging
import math
from dataclasses import dataclass, field
from typing import Any, Optional, Protocol

import requests

from address_resolver.core.geocoding.constants import (
    MATCHADDR_PROPERTY_KEY,
    OBJECT_ID_PROPERTY_KEY,
    REVERSE_DISTANCE_PROPERTY,
    SCORE_PROPERTY_KEY,
    SHAPE_PROPERTY_KEY,
)
from address_resolver.core.geocoding.errors import (
    GeocodeServiceFault,
    GeocoderAuthenticationError,
)
from address_resolver.core.geocoding.models import Point

logger = logging.getLogger(__name__)

# ArcGIS error codes for invalid/expired and missing tokens
AUTH_ERROR_CODES = {401, 403, 498, 499}


@dataclass
class RecordSet:
    """Tabular request/response payload: named fields and rows of values."""

    fields: list[str] = field(default_factory=list)
    records: list[list[Any]] = field(default_factory=list)

    def index_of(self, name: str) -> int:
        """Return the index of field ``name`` (case-insensitive) or -1."""
        wanted = name.lower()
        for index, field_name in enumerate(self.fields):
            if field_name.lower() == wanted:
                return index
        return -1


class GeocodeServiceClient(Protocol):
    """Operations a composite geocoder needs from its transport.

    Implementations raise ``GeocodeServiceFault`` when a call fails and
    ``GeocoderAuthenticationError`` when the server rejects the caller.
    """

    def get_locator_properties(self) -> dict[str, Any]: ...

    def get_address_fields(self) -> list[str]: ...

    def geocode_address(
        self, address: dict[str, str], properties: dict[str, Any]
    ) -> Optional[dict[str, Any]]: ...

    def find_address_candidates(
        self, address: dict[str, str], properties: dict[str, Any]
    ) -> Optional[RecordSet]: ...

    def geocode_addresses(
        self,
        addresses: RecordSet,
        field_mapping: dict[str, str],
        properties: dict[str, Any],
    ) -> Optional[RecordSet]: ...

    def reverse_geocode(
        self, location: Point, return_intersection: bool, properties: dict[str, Any]
    ) -> Optional[dict[str, Any]]: ...


def point_from_json(location: Any) -> Optional[Point]:
    """Convert an ArcGIS ``{"x": .., "y": ..}`` object to a ``Point``.

    Unmatched batch rows carry missing or NaN coordinates; those yield None.
    """
    if not isinstance(location, dict):
        return None
    try:
        x = float(location["x"])
        y = float(location["y"])
    except (KeyError, TypeError, ValueError):
        return None
    if math.isnan(x) or math.isnan(y):
        return None
    return Point(x=x, y=y)


class ArcGISServerClient:
    """``GeocodeServiceClient`` over an ArcGIS Server GeocodeServer REST endpoint."""

    def __init__(
        self,
        url: str,
        token: Optional[str] = None,
        timeout: int = 10,
        session: Optional[requests.Session] = None,
    ):
        """Initialize the client.

        Args:
            url: GeocodeServer root URL
            token: Optional ArcGIS token or API key sent with each request
            timeout: Request timeout in seconds
            session: Optional requests session (shared connection pool)
        """
        self.url = url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self.session = session or requests.Session()
        self._metadata: Optional[dict[str, Any]] = None

    def _request(
        self, operation: str, params: dict[str, Any], method: str = "get"
    ) -> dict[str, Any]:
        """Call a GeocodeServer operation and return the decoded JSON body."""
        params = {**params, "f": "json"}
        if self.token:
            params["token"] = self.token
        url = f"{self.url}/{operation}" if operation else self.url

        try:
            if method == "post":
                response = self.session.post(url, data=params, timeout=self.timeout)
            else:
                response = self.session.get(url, params=params, timeout=self.timeout)
        except requests.Timeout as e:
            raise GeocodeServiceFault(f"Geocode service timed out: {e}") from e
        except requests.RequestException as e:
            raise GeocodeServiceFault(f"Geocode service request failed: {e}") from e

        if response.status_code in AUTH_ERROR_CODES:
            raise GeocoderAuthenticationError(
                f"Geocode service rejected credentials (HTTP {response.status_code})",
                service=self.url,
            )
        try:
            response.raise_for_status()
        except requests.HTTPError as e:
            raise GeocodeServiceFault(
                f"Geocode service returned HTTP {response.status_code}",
                code=response.status_code,
            ) from e

        try:
            data = response.json()
        except ValueError as e:
            raise GeocodeServiceFault(f"Invalid JSON from geocode service: {e}") from e

        error = data.get("error") if isinstance(data, dict) else None
        if error:
            code = error.get("code")
            message = error.get("message", "Unknown error")
            if code in AUTH_ERROR_CODES:
                raise GeocoderAuthenticationError(
                    f"Geocode service rejected credentials: {message}",
                    service=self.url,
                )
            details = "; ".join(error.get("details") or [])
            raise GeocodeServiceFault(
                f"{message} {details}".strip(), code=code
            )
        return data

    def _service_metadata(self) -> dict[str, Any]:
        if self._metadata is None:
            self._metadata = self._request("", {})
        return self._metadata

    def get_locator_properties(self) -> dict[str, Any]:
        return dict(self._service_metadata().get("locatorProperties") or {})

    def get_address_fields(self) -> list[str]:
        fields = self._service_metadata().get("addressFields") or []
        return [f["name"] for f in fields if f.get("name")]

    @staticmethod
    def _candidate_properties(candidate: dict[str, Any]) -> dict[str, Any]:
        properties: dict[str, Any] = dict(candidate.get("attributes") or {})
        properties[SHAPE_PROPERTY_KEY] = point_from_json(candidate.get("location"))
        properties[SCORE_PROPERTY_KEY] = candidate.get("score", 0)
        properties[MATCHADDR_PROPERTY_KEY] = candidate.get("address", "")
        return properties

    @classmethod
    def _record_set(cls, candidates: list[dict[str, Any]]) -> RecordSet:
        rows = [cls._candidate_properties(c) for c in candidates]
        names: list[str] = []
        for row in rows:
            for key in row:
                if key not in names:
                    names.append(key)
        return RecordSet(
            fields=names, records=[[row.get(name) for name in names] for row in rows]
        )

    def geocode_address(
        self, address: dict[str, str], properties: dict[str, Any]
    ) -> Optional[dict[str, Any]]:
        # Property modifiers have no REST equivalent and are not sent.
        params = {**address, "outFields": "*", "maxLocations": 1}
        data = self._request("findAddressCandidates", params)
        candidates = data.get("candidates") or []
        if not candidates:
            return None
        best = max(candidates, key=lambda c: c.get("score", 0))
        return self._candidate_properties(best)

    def find_address_candidates(
        self, address: dict[str, str], properties: dict[str, Any]
    ) -> Optional[RecordSet]:
        params = {**address, "outFields": "*"}
        data = self._request("findAddressCandidates", params)
        return self._record_set(data.get("candidates") or [])

    def geocode_addresses(
        self,
        addresses: RecordSet,
        field_mapping: dict[str, str],
        properties: dict[str, Any],
    ) -> Optional[RecordSet]:
        # field_mapping is locator field -> request field; invert it
        request_to_locator = {value: key for key, value in field_mapping.items()}
        oid_index = addresses.index_of(OBJECT_ID_PROPERTY_KEY)
        records = []
        for row in addresses.records:
            attributes: dict[str, Any] = {}
            for index, name in enumerate(addresses.fields):
                if index == oid_index:
                    attributes["OBJECTID"] = row[index]
                else:
                    attributes[request_to_locator.get(name, name)] = row[index]
            records.append({"attributes": attributes})

        params = {
            "addresses": json.dumps({"records": records}),
            "outFields": "*",
        }
        data = self._request("geocodeAddresses", params, method="post")
        return self._record_set(data.get("locations") or [])

    def reverse_geocode(
        self, location: Point, return_intersection: bool, properties: dict[str, Any]
    ) -> Optional[dict[str, Any]]:
        params: dict[str, Any] = {
            "location": f"{location.x},{location.y}",
            "returnIntersection": str(bool(return_intersection)).lower(),
        }
        distance = properties.get(REVERSE_DISTANCE_PROPERTY)
        if distance is not None:
            # The REST endpoint always measures distance in meters
            params["distance"] = distance
        data = self._request("reverseGeocode", params)
        address = data.get("address")
        if not address:
            return None
        result: dict[str, Any] = dict(address)
        result[SHAPE_PROPERTY_KEY] = point_from_json(data.get("location"))
        return result
