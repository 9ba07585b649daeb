"""Address and locator value types shared by every geocoder.

``Address`` and ``AddressCandidate`` are mutable per-request records owned by the
caller. ``AddressField``, ``LocatorInfo`` and ``Point`` are immutable and are
shared for the lifetime of a geocoder.
"""

from enum import Enum
from typing import Iterable, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class AddressPart(str, Enum):
    """Roles an address value can play."""

    UNIT = "Unit"
    ADDRESS_LINE = "AddressLine"
    LOCALITY1 = "Locality1"
    LOCALITY2 = "Locality2"
    LOCALITY3 = "Locality3"
    COUNTY_PREFECTURE = "CountyPrefecture"
    POSTAL_CODE1 = "PostalCode1"
    POSTAL_CODE2 = "PostalCode2"
    STATE_PROVINCE = "StateProvince"
    COUNTRY = "Country"
    FULL_ADDRESS = "FullAddress"

    @classmethod
    def parse(cls, name: str) -> "AddressPart":
        """Parse an address part name, ignoring case.

        Raises:
            ValueError: If the name does not denote an address part
        """
        for part in cls:
            if part.value.lower() == (name or "").strip().lower():
                return part
        raise ValueError(f"Unknown address part: {name!r}")


class SublocatorType(str, Enum):
    """Geography a sub-locator of a composite locator is specialised for."""

    ADDRESS_POINT = "AddressPoint"
    STREETS = "Streets"
    ZIP = "Zip"
    CITY_STATE = "CityState"

    @classmethod
    def parse(cls, name: str) -> "SublocatorType":
        """Parse a sub-locator type name, ignoring case.

        Raises:
            ValueError: If the name does not denote a sub-locator type
        """
        for kind in cls:
            if kind.value.lower() == (name or "").strip().lower():
                return kind
        raise ValueError(f"Unknown sublocator type: {name!r}")


class AddressFormat(str, Enum):
    """Shape of the address input a geocoding service expects."""

    SINGLE_FIELD = "SingleField"
    MULTIPLE_FIELDS = "MultipleFields"


# Attribute backing each address part on ``Address``.
PART_ATTRIBUTES: dict[AddressPart, str] = {
    AddressPart.UNIT: "unit",
    AddressPart.ADDRESS_LINE: "address_line",
    AddressPart.LOCALITY1: "locality1",
    AddressPart.LOCALITY2: "locality2",
    AddressPart.LOCALITY3: "locality3",
    AddressPart.COUNTY_PREFECTURE: "county_prefecture",
    AddressPart.POSTAL_CODE1: "postal_code1",
    AddressPart.POSTAL_CODE2: "postal_code2",
    AddressPart.STATE_PROVINCE: "state_province",
    AddressPart.COUNTRY: "country",
    AddressPart.FULL_ADDRESS: "full_address",
}


class Point(BaseModel):
    """A location; ``x`` is longitude and ``y`` latitude for WGS84 points."""

    x: float = Field(..., description="X coordinate (longitude)")
    y: float = Field(..., description="Y coordinate (latitude)")

    model_config = ConfigDict(frozen=True)


class Address(BaseModel):
    """Mutable address record with indexed access by ``AddressPart``."""

    unit: str = ""
    full_address: str = ""
    address_line: str = ""
    locality1: str = ""
    locality2: str = ""
    locality3: str = ""
    county_prefecture: str = ""
    postal_code1: str = ""
    postal_code2: str = ""
    state_province: str = ""
    country: str = ""
    match_method: str = Field(
        default="", description="Locator name (or title) reported by the service"
    )

    model_config = ConfigDict(validate_assignment=True)

    @field_validator("*", mode="before")
    @classmethod
    def _none_as_empty(cls, value: object) -> object:
        return "" if value is None else value

    def __getitem__(self, part: AddressPart) -> str:
        return getattr(self, PART_ATTRIBUTES[part])

    def __setitem__(self, part: AddressPart, value: Optional[str]) -> None:
        setattr(self, PART_ATTRIBUTES[part], value or "")

    def __eq__(self, other: object) -> bool:
        if self is other:
            return True
        if not isinstance(other, Address):
            return False
        if self.match_method.lower() != other.match_method.lower():
            return False
        return all(self[part].lower() == other[part].lower() for part in AddressPart)

    def __str__(self) -> str:
        return self.full_address

    def is_empty(self) -> bool:
        """Check whether every structured part is empty.

        ``FullAddress`` and the match method are not considered.
        """
        return not any(
            self[part] for part in AddressPart if part != AddressPart.FULL_ADDRESS
        )

    def compose_full_address(self, parts: Iterable[AddressPart]) -> str:
        """Join the non-empty values of ``parts`` with ", "."""
        values = [self[part] for part in parts if part != AddressPart.FULL_ADDRESS]
        return ", ".join(value for value in values if value)

    def copy_to(self, other: "Address") -> None:
        for part in AddressPart:
            other[part] = self[part]
        other.match_method = self.match_method

    def clone(self) -> "Address":
        return self.model_copy(deep=True)


class AddressField(BaseModel):
    """Descriptor of one address input field of a geocoding service."""

    title: Optional[str] = None
    type: AddressPart
    visible: bool = True
    description: str = ""

    model_config = ConfigDict(frozen=True)


class LocatorInfo(BaseModel):
    """Descriptor of a sub-locator of a composite locator."""

    name: str
    title: str = ""
    primary: bool = False
    enabled: bool = True
    type: SublocatorType = SublocatorType.STREETS
    internal_fields: tuple[AddressPart, ...] = ()

    model_config = ConfigDict(frozen=True)


class AddressCandidate(BaseModel):
    """A geocoding match for an address."""

    address: Address = Field(default_factory=Address)
    geo_location: Optional[Point] = None
    score: int = Field(default=0, ge=0, le=100, description="Match confidence")
    locator: Optional[LocatorInfo] = None
    address_type: str = ""

    model_config = ConfigDict(validate_assignment=True)
