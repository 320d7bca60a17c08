"""Pydantic models for address ranges, countries and compilation results, plus the error taxonomy."""

from enum import IntEnum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


# Virtual countries use artificially large identifiers so they sort after every real one
ULONG_MAX = 2**64 - 1
PROXY_GEONAME_ID = ULONG_MAX - 3
SAT_GEONAME_ID = ULONG_MAX - 2
OTHER_GEONAME_ID = ULONG_MAX - 1
RESERVED_GEONAME_IDS = frozenset({PROXY_GEONAME_ID, SAT_GEONAME_ID, OTHER_GEONAME_ID})

PROXY_COUNTRY_CODE = "A1"
SAT_COUNTRY_CODE = "A2"
OTHER_COUNTRY_CODE = "O1"

COUNTRY_CODE_SIZE = 2


class AddressFamily(IntEnum):
    """Address family of a range or range file."""
    V4 = 4
    V6 = 6

    @property
    def width(self) -> int:
        """Address width in bytes."""
        return 4 if self is AddressFamily.V4 else 16

    @property
    def bits(self) -> int:
        return self.width * 8

    @property
    def suffix(self) -> str:
        """File name suffix used by the xtables geoip module."""
        return ".iv4" if self is AddressFamily.V4 else ".iv6"

    @property
    def label(self) -> str:
        return "IPv4" if self is AddressFamily.V4 else "IPv6"


class AddressRange(BaseModel):
    """A CIDR block resolved to inclusive start and end addresses."""
    family: AddressFamily
    prefix_length: int = Field(ge=0, le=128)
    base: bytes
    mask: bytes
    start: bytes
    end: bytes

    model_config = ConfigDict(frozen=True)

    @model_validator(mode="after")
    def _check_widths(self) -> "AddressRange":
        width = self.family.width
        if self.prefix_length > self.family.bits:
            raise ValueError(f"prefix length {self.prefix_length} exceeds {self.family.bits} bits")
        for name in ("base", "mask", "start", "end"):
            if len(getattr(self, name)) != width:
                raise ValueError(f"{name} must be {width} bytes for {self.family.label}")
        if self.start > self.end:
            raise ValueError("start address comes after end address")
        return self

    @property
    def width(self) -> int:
        return self.family.width


class Country(BaseModel):
    """Country (or virtual country) known to the registry."""
    geoname_id: int = Field(ge=1)
    country_code: str = Field(min_length=COUNTRY_CODE_SIZE, max_length=COUNTRY_CODE_SIZE)
    forbidden: bool = False

    @property
    def is_virtual(self) -> bool:
        """True for the proxy, satellite and unresolved placeholders."""
        return self.geoname_id in RESERVED_GEONAME_IDS


class ColumnLayout(BaseModel):
    """Positions of required columns discovered in a CSV header row."""
    required: List[str]
    positions: Dict[str, int] = Field(default_factory=dict)
    found: int = 0
    highest_column: int = 0

    @property
    def missing(self) -> List[str]:
        return [name for name in self.required if name not in self.positions]

    def require(self) -> "ColumnLayout":
        """Raise MissingColumns unless every required column was found."""
        if self.found != len(self.required):
            raise MissingColumns(
                "Required columns not found in header",
                details=", ".join(self.missing),
            )
        return self

    def index(self, name: str) -> int:
        return self.positions[name]


class CompileReport(BaseModel):
    """Summary of a single range file compilation."""
    family: AddressFamily
    source: Optional[str] = None
    ranges_compiled: int = 0
    ranges_merged: int = 0
    rows_skipped: int = 0
    countries_opened: int = 0

    @property
    def intervals_written(self) -> int:
        return self.ranges_compiled - self.ranges_merged


class GeoIPError(Exception):
    """Base exception for failures while reading feeds or writing range tables."""

    def __init__(
        self,
        error: str,
        *,
        details: Optional[str] = None,
        line_number: Optional[int] = None,
    ) -> None:
        self.error = error
        self.details = details
        self.line_number = line_number
        message = error
        if details:
            message = f"{message}: {details}"
        if line_number:
            message = f"{message} (Line {line_number})"
        super().__init__(message)

    def with_line(self, line_number: int) -> "GeoIPError":
        """Return a copy of this error tagged with a 1-based input line number."""
        return type(self)(self.error, details=self.details, line_number=line_number)


class MalformedInput(GeoIPError):
    """Bad CIDR text, bad prefix or wrong address family."""


class MalformedPrefix(MalformedInput):
    pass


class PrefixOutOfRange(MalformedInput):
    pass


class MalformedAddress(MalformedInput):
    pass


class WrongAddressFamily(MalformedInput):
    pass


class StructuralInput(GeoIPError):
    """Input whose shape or ordering breaks the assumptions of the compiler."""


class MissingColumns(StructuralInput):
    pass


class InsufficientColumns(StructuralInput):
    pass


class UnsortedOrDuplicateIdentifier(StructuralInput):
    pass


class ReservedIdentifier(StructuralInput):
    pass


class NoUsableData(StructuralInput):
    pass


class ResourceError(GeoIPError):
    """File open, read, write or seek failure."""


class RenderError(GeoIPError):
    """An address range could not be rendered back to text."""


class InvalidArgument(GeoIPError, ValueError):
    """A caller passed an argument outside the accepted domain."""
