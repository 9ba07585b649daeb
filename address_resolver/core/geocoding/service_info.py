"""Geocoding service configuration model.

The configuration is a JSON document listing the geocoding services the host
application knows about, e.g.::

    {
      "services": [
        {
          "type": "ArcGisGeocoder",
          "current": true,
          "title": "Streets and address points",
          "url": "https://example.com/arcgis/rest/services/Composite/GeocodeServer",
          "use_single_line_input": false,
          "minimum_candidate_score": 60,
          "field_mappings": [
            {"address_field": "AddressLine", "locator_field": "Street"},
            {"address_field": "Locality3", "locator_field": "City"}
          ],
          "internal_locators": [
            {"name": "AddressPoints", "title": "Address points",
             "primary": true, "enable": true, "type": "AddressPoint",
             "field_mappings": ["AddressLine", "Locality3"]}
          ]
        }
      ]
    }
"""

import json
import logging
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, ValidationError, field_validator

from address_resolver.core.geocoding.errors import GeocoderConfigurationError
from address_resolver.core.geocoding.models import (
    AddressField,
    AddressPart,
    LocatorInfo,
    SublocatorType,
)

logger = logging.getLogger(__name__)


class InputFieldMapping(BaseModel):
    """Maps an address part to the locator's input field name."""

    address_field: AddressPart
    locator_field: str
    visible: bool = True
    description: str = ""

    @field_validator("address_field", mode="before")
    @classmethod
    def _parse_part(cls, value: object) -> object:
        if isinstance(value, str):
            return AddressPart.parse(value)
        return value

    def to_address_field(self, title: Optional[str] = None) -> AddressField:
        return AddressField(
            title=self.locator_field if title is None else title,
            type=self.address_field,
            visible=self.visible,
            description=self.description,
        )


class SublocatorInfo(BaseModel):
    """Sub-locator of a composite locator as described by configuration."""

    name: str
    title: str = ""
    primary: bool = False
    enable: bool = True
    type: SublocatorType = SublocatorType.STREETS
    field_mappings: list[AddressPart] = Field(default_factory=list)

    @field_validator("type", mode="before")
    @classmethod
    def _parse_type(cls, value: object) -> object:
        if isinstance(value, str):
            return SublocatorType.parse(value)
        return value

    @field_validator("field_mappings", mode="before")
    @classmethod
    def _parse_parts(cls, value: object) -> object:
        if isinstance(value, list):
            return [AddressPart.parse(v) if isinstance(v, str) else v for v in value]
        return value

    def to_locator_info(self) -> LocatorInfo:
        return LocatorInfo(
            name=self.name,
            title=self.title,
            primary=self.primary,
            enabled=self.enable,
            type=self.type,
            internal_fields=tuple(self.field_mappings),
        )


class GeocodingServiceInfo(BaseModel):
    """Configuration of a single geocoding service."""

    type: str = ""
    server: str = ""
    current: bool = False
    title: str = ""
    url: str = ""
    rest_url: str = ""
    field_mappings: list[InputFieldMapping] = Field(default_factory=list)
    use_single_line_input: bool = False
    minimum_candidate_score: int = 0
    minimum_match_score: Optional[int] = None
    internal_locators: Optional[list[SublocatorInfo]] = None

    @property
    def is_composite_locator(self) -> bool:
        return self.internal_locators is not None

    def locators(self) -> list[LocatorInfo]:
        """Build the sub-locator descriptors; empty for simple locators."""
        return [info.to_locator_info() for info in self.internal_locators or []]


class GeocodingInfo(BaseModel):
    """All configured geocoding services."""

    services: list[GeocodingServiceInfo] = Field(default_factory=list)


def load_geocoding_info(path: str | Path) -> GeocodingInfo:
    """Load and validate a geocoding service configuration file.

    Args:
        path: Path to the JSON configuration document

    Returns:
        Validated geocoding configuration

    Raises:
        GeocoderConfigurationError: If the file cannot be read or is invalid
    """
    config_path = Path(path)
    try:
        raw = config_path.read_text(encoding="utf-8")
    except OSError as e:
        logger.error(f"Cannot read geocoding configuration '{config_path}': {e}")
        raise GeocoderConfigurationError(
            f"Cannot read geocoding configuration '{config_path}': {e}"
        ) from e

    try:
        return GeocodingInfo.model_validate(json.loads(raw))
    except (json.JSONDecodeError, ValidationError) as e:
        logger.error(f"Invalid geocoding configuration '{config_path}': {e}")
        raise GeocoderConfigurationError(
            f"Invalid geocoding configuration '{config_path}': {e}"
        ) from e
