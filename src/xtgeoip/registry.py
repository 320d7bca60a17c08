"""Country registry: geoname_id lookups, packed country code index and filtering."""

import logging
from pathlib import Path
from typing import Iterable, Iterator, List, Optional, Sequence, Tuple, Union

from .models import (
    Country,
    InsufficientColumns,
    NoUsableData,
    ReservedIdentifier,
    ResourceError,
    UnsortedOrDuplicateIdentifier,
    GeoIPError,
    OTHER_COUNTRY_CODE,
    OTHER_GEONAME_ID,
    PROXY_COUNTRY_CODE,
    PROXY_GEONAME_ID,
    RESERVED_GEONAME_IDS,
    SAT_COUNTRY_CODE,
    SAT_GEONAME_ID,
)
from .utils.csv_fields import decode_lines, detect_columns, tokenize_line

logger = logging.getLogger(__name__)

MAX_COUNTRIES = 0xFFFF + 1

COUNTRY_COLUMNS = ("geoname_id", "continent_code", "country_iso_code")

VIRTUAL_COUNTRIES = (
    (PROXY_GEONAME_ID, PROXY_COUNTRY_CODE),
    (SAT_GEONAME_ID, SAT_COUNTRY_CODE),
    (OTHER_GEONAME_ID, OTHER_COUNTRY_CODE),
)


def geoname_id_reserved(geoname_id: int) -> bool:
    """Check whether a geoname_id is reserved for a virtual country."""
    return geoname_id in RESERVED_GEONAME_IDS


def country_code_pos(country_code: Optional[str]) -> int:
    """Pack a 2-letter country code into an index for the code lookup table.

    Returns 0 unless the uppercased code is exactly two Latin-1 characters.
    """
    if not country_code:
        return 0

    # case folding may change the length, "ß" becomes "SS"
    country_code = country_code.upper()
    if len(country_code) != 2:
        return 0

    first, second = country_code
    if ord(first) > 0xFF or ord(second) > 0xFF:
        return 0

    return (ord(first) << 8) | ord(second)


def parse_country_code_list(country_codes: str) -> List[int]:
    """Parse a comma-separated list of country codes into packed positions.

    Invalid codes are dropped.
    """
    tokens = tokenize_line(country_codes, MAX_COUNTRIES)
    return [pos for pos in (country_code_pos(code.strip()) for code in tokens) if pos]


class CountryRegistry:
    """Ascending-by-geoname_id country list with a dense country code index."""

    def __init__(self) -> None:
        self._countries: List[Country] = []
        self._code_lookup: List[Optional[Country]] = [None] * MAX_COUNTRIES
        # (list searched, geoname_id, result)
        self._cache: Tuple[Optional[List[Country]], int, Optional[Country]] = (None, 0, None)

    def __len__(self) -> int:
        return len(self._countries)

    def __iter__(self) -> Iterator[Country]:
        return iter(self._countries)

    @property
    def countries(self) -> Tuple[Country, ...]:
        return tuple(self._countries)

    def _rebuild(self, countries: List[Country]) -> None:
        lookup: List[Optional[Country]] = [None] * MAX_COUNTRIES
        for country in countries:
            lookup[country_code_pos(country.country_code)] = country
        self._countries = countries
        self._code_lookup = lookup

    def load_file(self, country_file: Union[str, Path]) -> int:
        """Populate the registry from a country locations CSV file."""
        try:
            with open(country_file, "rb") as f:
                return self.load(decode_lines(f))
        except OSError as e:
            raise ResourceError("Error reading country file", details=str(e)) from e

    def load(self, lines: Iterable[str]) -> int:
        """Populate the registry from country CSV lines, header first.

        Rows must be strictly ascending by geoname_id. Any violation aborts the
        whole load and leaves the registry untouched.
        """
        countries: List[Country] = []
        seen_codes = set()
        layout = None
        last_geoname_id = 0
        line_num = 0

        for line_num, line in enumerate(lines, start=1):
            fields = tokenize_line(line)

            if line_num == 1:
                try:
                    layout = detect_columns(fields, COUNTRY_COLUMNS).require()
                except GeoIPError as e:
                    raise e.with_line(line_num) from e
                geoname_id_col = layout.index("geoname_id")
                continent_code_col = layout.index("continent_code")
                country_code_col = layout.index("country_iso_code")
                continue

            if len(fields) < layout.highest_column + 1:
                raise InsufficientColumns(
                    "Insufficient columns",
                    details=f"expected at least {layout.highest_column + 1}, got {len(fields)}",
                    line_number=line_num,
                )

            geoname_id = parse_geoname_id(fields[geoname_id_col])
            if geoname_id <= last_geoname_id:
                raise UnsortedOrDuplicateIdentifier(
                    "Invalid, duplicate, or unsorted geoname_id",
                    details=fields[geoname_id_col],
                    line_number=line_num,
                )
            last_geoname_id = geoname_id

            if geoname_id_reserved(geoname_id):
                raise ReservedIdentifier("Reserved geoname_id", details=str(geoname_id), line_number=line_num)

            # country code may be empty, fall back to the continent code
            country_code = fields[country_code_col] or fields[continent_code_col]

            country_pos = country_code_pos(country_code)
            if not country_pos:
                logger.debug("Skipping invalid country code %r on line %d", country_code, line_num)
                continue

            if country_pos in seen_codes:
                logger.debug("Skipping duplicate country code %r on line %d", country_code, line_num)
                continue

            seen_codes.add(country_pos)
            countries.append(Country(geoname_id=geoname_id, country_code=country_code.upper()))

        if not countries:
            raise NoUsableData("No usable data in file", line_number=line_num or None)

        self._rebuild(countries)
        logger.debug("Loaded %d countries", len(countries))
        return len(countries)

    def add_virtual_countries(self) -> int:
        """Append the proxy, satellite provider and unresolved virtual countries.

        Virtual countries have the highest geoname_ids, so this must run after
        the real countries were loaded.
        """
        if any(country.is_virtual for country in self._countries):
            raise ReservedIdentifier("Virtual countries already added")

        countries = list(self._countries)
        for geoname_id, country_code in VIRTUAL_COUNTRIES:
            countries.append(Country(geoname_id=geoname_id, country_code=country_code))

        self._rebuild(countries)
        return len(VIRTUAL_COUNTRIES)

    def get_country(
        self,
        geoname_id: Optional[int],
        proxy: bool = False,
        satellite: bool = False,
    ) -> Optional[Country]:
        """Find a country by geoname_id, substituting virtual countries by flag."""
        countries = self._countries
        if not countries:
            return None

        if proxy:
            geoname_id = PROXY_GEONAME_ID
        elif satellite:
            geoname_id = SAT_GEONAME_ID
        elif not geoname_id:
            geoname_id = OTHER_GEONAME_ID

        # ranges for one country usually come in long runs
        cached_countries, cached_geoname_id, cached_country = self._cache
        if cached_countries is countries and cached_geoname_id == geoname_id:
            return cached_country

        found = None
        start, end = 0, len(countries) - 1
        while start <= end:
            mid = start + (end - start) // 2
            mid_id = countries[mid].geoname_id
            if mid_id == geoname_id:
                found = countries[mid]
                break
            if mid_id < geoname_id:
                start = mid + 1
            else:
                end = mid - 1

        self._cache = (countries, geoname_id, found)
        return found

    def lookup_code(self, country_code: Optional[str]) -> Optional[Country]:
        pos = country_code_pos(country_code)
        if not pos:
            return None
        return self._code_lookup[pos]

    def set_filtered_countries(self, country_positions: Sequence[int], forbid: bool) -> int:
        """Forbid only the listed countries, or (``forbid=False``) allow only them.

        Unknown positions are ignored. Returns how many countries actually
        changed state because of the listed positions.
        """
        if not self._countries:
            return 0

        if not forbid:
            for country in self._countries:
                country.forbidden = True

        processed = 0
        for pos in country_positions:
            if not 0 < pos < MAX_COUNTRIES:
                continue
            country = self._code_lookup[pos]
            if country is None:
                continue
            if country.forbidden != forbid:
                country.forbidden = forbid
                processed += 1

        return processed


def parse_geoname_id(text: str) -> int:
    """Leading decimal digits of *text* as an integer, 0 if there are none."""
    digits = 0
    for c in text:
        if not "0" <= c <= "9":
            break
        digits += 1
    return int(text[:digits]) if digits else 0
