"""Streaming compiler from CSV range files to per-country binary range tables."""

import io
import logging
from pathlib import Path
from typing import BinaryIO, Dict, Iterable, List, Optional, Union

from .cidr import parse_cidr, ranges_contiguous
from .models import (
    AddressFamily,
    AddressRange,
    ColumnLayout,
    CompileReport,
    Country,
    GeoIPError,
    InsufficientColumns,
    NoUsableData,
    ReservedIdentifier,
    ResourceError,
    WrongAddressFamily,
    OTHER_GEONAME_ID,
)
from .registry import CountryRegistry, country_code_pos, geoname_id_reserved, parse_geoname_id
from .utils.csv_fields import decode_lines, detect_columns, tokenize_line

logger = logging.getLogger(__name__)

RANGE_COLUMNS = (
    "network",
    "geoname_id",
    "registered_country_geoname_id",
    "is_anonymous_proxy",
    "is_satellite_provider",
)


def str2bool(value: str) -> bool:
    """Flags are true unless the cell is empty or exactly ``"0"``."""
    return not (value == "" or value == "0")


class CountrySinks:
    """Binary output files for one address family, one per allowed country."""

    def __init__(self, target_dir: Union[str, Path], family: AddressFamily):
        self.target_dir = Path(target_dir)
        self.family = family
        self._files: Dict[int, BinaryIO] = {}

    def __enter__(self) -> "CountrySinks":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def __len__(self) -> int:
        return len(self._files)

    def __contains__(self, country_pos: int) -> bool:
        return country_pos in self._files

    def path_for(self, country: Country) -> Path:
        return self.target_dir / f"{country.country_code}{self.family.suffix}"

    def open(self, countries: Iterable[Country]) -> int:
        """Open (truncating) an output file for every country that isn't forbidden."""
        for country in countries:
            if country.forbidden:
                continue

            path = self.path_for(country)
            try:
                self._files[country_code_pos(country.country_code)] = open(path, "wb")
            except OSError as e:
                raise ResourceError("Error opening an output file", details=str(e)) from e

        logger.debug("Opened %d %s output files in %s", len(self._files), self.family.label, self.target_dir)
        return len(self._files)

    def write(self, country_pos: int, address_range: AddressRange, merge: bool = False) -> None:
        """Append a start/end pair, or overwrite the last end address when merging."""
        out_file = self._files.get(country_pos)
        if out_file is None:
            raise ResourceError("No output file open for country", details=str(country_pos))

        try:
            if merge:
                out_file.seek(-address_range.width, io.SEEK_CUR)
            else:
                out_file.write(address_range.start)
            out_file.write(address_range.end)
        except OSError as e:
            raise ResourceError("Error writing range", details=str(e)) from e

    def close(self) -> None:
        files, self._files = list(self._files.values()), {}
        errors: List[OSError] = []
        for out_file in files:
            try:
                out_file.close()
            except OSError as e:
                errors.append(e)
        if errors:
            raise ResourceError("Error closing output files", details=str(errors[0])) from errors[0]


class LastWrite:
    """The most recently written range and the country it was written for.

    There is a single slot for all countries: merging relies on contiguous
    ranges of one country appearing on consecutive rows of the range file.
    """

    def __init__(self) -> None:
        self.country_pos = 0
        self.address_range: Optional[AddressRange] = None

    def continues(self, country_pos: int, address_range: AddressRange) -> bool:
        return (
            self.address_range is not None
            and country_pos == self.country_pos
            and ranges_contiguous(address_range, self.address_range)
        )

    def update(self, country_pos: int, address_range: AddressRange) -> None:
        self.country_pos = country_pos
        self.address_range = address_range


class RangeCompiler:
    """Compiles one range file of a single address family into per-country tables."""

    def __init__(
        self,
        registry: CountryRegistry,
        family: AddressFamily,
        target_dir: Union[str, Path],
    ):
        self.registry = registry
        self.family = AddressFamily(family)
        self.target_dir = Path(target_dir)
        self.report = CompileReport(family=self.family)

    def compile_file(self, range_file: Union[str, Path]) -> int:
        """Compile a range CSV file, returning the number of ranges written or merged."""
        if not len(self.registry):
            raise NoUsableData("No countries to process")

        try:
            with open(range_file, "rb") as f:
                return self.compile_lines(decode_lines(f), source=str(range_file))
        except OSError as e:
            raise ResourceError("Error reading range file", details=str(e)) from e

    def compile_lines(self, lines: Iterable[str], source: Optional[str] = None) -> int:
        """Compile range CSV lines, header first.

        Output files for every allowed country are opened (and truncated)
        before the first row is read and closed on every exit path. Any fatal
        error leaves the outputs of this run incomplete.
        """
        if not len(self.registry):
            raise NoUsableData("No countries to process")

        report = CompileReport(family=self.family, source=source)
        self.report = report
        last_write = LastWrite()
        layout: Optional[ColumnLayout] = None
        line_num = 0

        with CountrySinks(self.target_dir, self.family) as sinks:
            report.countries_opened = sinks.open(self.registry)

            for line_num, line in enumerate(lines, start=1):
                fields = tokenize_line(line)
                try:
                    if line_num == 1:
                        layout = detect_columns(fields, RANGE_COLUMNS).require()
                        continue

                    self._compile_row(fields, layout, sinks, last_write, report)
                except GeoIPError as e:
                    if e.line_number is None:
                        raise e.with_line(line_num) from e
                    raise

        if not report.ranges_compiled:
            raise NoUsableData("No usable data in file", line_number=line_num or None)

        logger.info(
            "Compiled %d %s ranges into %d intervals (%d merged, %d rows skipped)",
            report.ranges_compiled,
            self.family.label,
            report.intervals_written,
            report.ranges_merged,
            report.rows_skipped,
        )
        return report.ranges_compiled

    def _compile_row(
        self,
        fields: List[str],
        layout: ColumnLayout,
        sinks: CountrySinks,
        last_write: LastWrite,
        report: CompileReport,
    ) -> None:
        if len(fields) < layout.highest_column + 1:
            raise InsufficientColumns(
                "Insufficient columns",
                details=f"expected at least {layout.highest_column + 1}, got {len(fields)}",
            )

        # geoname_id may be empty, fall back to registered_country_geoname_id
        geoname_id_str = fields[layout.index("geoname_id")]
        if not ("0" <= geoname_id_str[:1] <= "9"):
            geoname_id_str = fields[layout.index("registered_country_geoname_id")]

        geoname_id = parse_geoname_id(geoname_id_str)
        if geoname_id_reserved(geoname_id):
            raise ReservedIdentifier("Reserved geoname_id", details=str(geoname_id))

        proxy = str2bool(fields[layout.index("is_anonymous_proxy")])
        satellite = str2bool(fields[layout.index("is_satellite_provider")])

        country = self.registry.get_country(geoname_id, proxy, satellite)
        if country is None:
            country = self.registry.get_country(OTHER_GEONAME_ID)
        if country is None:
            logger.debug("No country for geoname_id %d, skipping row", geoname_id)
            report.rows_skipped += 1
            return

        if country.forbidden:
            report.rows_skipped += 1
            return

        country_pos = country_code_pos(country.country_code)

        address_range = parse_cidr(fields[layout.index("network")])
        if address_range.family != self.family:
            raise WrongAddressFamily(
                "Wrong address family",
                details=f"expected {self.family.label}, got {address_range.family.label}",
            )

        # relies on the range file being sorted
        merge = last_write.continues(country_pos, address_range)
        sinks.write(country_pos, address_range, merge=merge)

        if merge:
            report.ranges_merged += 1
        report.ranges_compiled += 1
        last_write.update(country_pos, address_range)
