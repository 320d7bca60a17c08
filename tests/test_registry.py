"""Tests for the country registry."""

import string

import pytest

from xtgeoip.models import (
    InsufficientColumns,
    MissingColumns,
    NoUsableData,
    ReservedIdentifier,
    ResourceError,
    UnsortedOrDuplicateIdentifier,
    OTHER_GEONAME_ID,
    PROXY_GEONAME_ID,
    SAT_GEONAME_ID,
)
from xtgeoip.registry import (
    CountryRegistry,
    country_code_pos,
    geoname_id_reserved,
    parse_country_code_list,
    parse_geoname_id,
)

from conftest import COUNTRY_HEADER, DE_ID, EU_ID, GB_ID, RW_ID, US_ID, country_row


class TestCountryCodePos:
    """Test cases for country_code_pos."""

    def test_packs_two_characters(self):
        assert country_code_pos("US") == (ord("U") << 8) | ord("S")

    def test_case_insensitive(self):
        assert country_code_pos("us") == country_code_pos("US")
        assert country_code_pos("uS") == country_code_pos("US")

    @pytest.mark.parametrize("code", [None, "", "U", "USA", "ĀA"])
    def test_invalid_codes(self, code):
        assert country_code_pos(code) == 0

    def test_code_longer_once_uppercased(self):
        assert country_code_pos("ßa") == 0

    def test_order_preserving(self):
        assert country_code_pos("AA") < country_code_pos("AB") < country_code_pos("BA") < country_code_pos("ZZ")

    def test_injective_over_letter_pairs(self):
        positions = {
            country_code_pos(a + b)
            for a in string.ascii_uppercase
            for b in string.ascii_uppercase
        }
        assert len(positions) == 26 * 26
        assert 0 not in positions


class TestParseCountryCodeList:
    """Test cases for parse_country_code_list."""

    def test_valid_codes(self):
        assert parse_country_code_list("US,de") == [country_code_pos("US"), country_code_pos("DE")]

    def test_invalid_codes_are_dropped(self):
        assert parse_country_code_list("US,,X,USA, gb") == [country_code_pos("US"), country_code_pos("GB")]

    def test_code_longer_once_uppercased_is_dropped(self):
        assert parse_country_code_list("ßa,DE") == [country_code_pos("DE")]

    def test_empty(self):
        assert parse_country_code_list("") == []


class TestParseGeonameId:
    """Test cases for parse_geoname_id."""

    def test_digits(self):
        assert parse_geoname_id("6252001") == 6252001

    def test_leading_digits_only(self):
        assert parse_geoname_id("42abc") == 42

    def test_no_digits(self):
        assert parse_geoname_id("") == 0
        assert parse_geoname_id("abc") == 0
        assert parse_geoname_id(" 5") == 0

    def test_reserved(self):
        assert geoname_id_reserved(PROXY_GEONAME_ID)
        assert geoname_id_reserved(SAT_GEONAME_ID)
        assert geoname_id_reserved(OTHER_GEONAME_ID)
        assert not geoname_id_reserved(US_ID)


class TestLoad:
    """Test cases for CountryRegistry.load."""

    def test_load(self, country_lines):
        registry = CountryRegistry()

        assert registry.load(country_lines) == 5
        assert len(registry) == 5
        assert [c.country_code for c in registry] == ["RW", "GB", "DE", "US", "EU"]
        assert [c.geoname_id for c in registry] == [RW_ID, GB_ID, DE_ID, US_ID, EU_ID]
        assert not any(c.forbidden for c in registry)

    def test_continent_code_fallback(self, real_registry):
        europe = real_registry.lookup_code("EU")

        assert europe is not None
        assert europe.geoname_id == EU_ID

    def test_codes_are_uppercased(self):
        registry = CountryRegistry()
        registry.load([COUNTRY_HEADER, country_row(1, "eu", "de")])

        assert registry.countries[0].country_code == "DE"

    def test_duplicate_code_is_skipped(self):
        registry = CountryRegistry()
        count = registry.load([
            COUNTRY_HEADER,
            country_row(1, "NA", "US"),
            country_row(2, "NA", "us"),
            country_row(3, "EU", "DE"),
        ])

        assert count == 2
        assert registry.lookup_code("US").geoname_id == 1

    def test_invalid_code_is_skipped(self):
        registry = CountryRegistry()
        count = registry.load([
            COUNTRY_HEADER,
            country_row(1, "", ""),
            country_row(2, "EU", "DEU"),
            country_row(3, "EU", "DE"),
        ])

        assert count == 1
        assert registry.countries[0].geoname_id == 3

    def test_code_longer_once_uppercased_is_skipped(self):
        registry = CountryRegistry()
        count = registry.load([
            COUNTRY_HEADER,
            country_row(1, "EU", "ßa"),
            country_row(2, "EU", "DE"),
        ])

        assert count == 1
        assert registry.countries[0].geoname_id == 2

    def test_blank_line_is_fatal(self):
        registry = CountryRegistry()

        with pytest.raises(InsufficientColumns) as exc_info:
            registry.load([
                COUNTRY_HEADER,
                country_row(GB_ID, "EU", "GB"),
                "\n",
                country_row(DE_ID, "EU", "DE"),
            ])

        assert exc_info.value.line_number == 3
        assert len(registry) == 0

    def test_duplicate_identifier_cites_second_occurrence(self):
        registry = CountryRegistry()

        with pytest.raises(UnsortedOrDuplicateIdentifier) as exc_info:
            registry.load([
                COUNTRY_HEADER,
                country_row(5, "EU", "DE"),
                country_row(5, "EU", "GB"),
                country_row(9, "NA", "US"),
            ])

        assert exc_info.value.line_number == 3
        assert "(Line 3)" in str(exc_info.value)

    def test_unsorted_identifier(self):
        registry = CountryRegistry()

        with pytest.raises(UnsortedOrDuplicateIdentifier) as exc_info:
            registry.load([
                COUNTRY_HEADER,
                country_row(9, "NA", "US"),
                country_row(5, "EU", "DE"),
            ])

        assert exc_info.value.line_number == 3

    def test_non_numeric_identifier(self):
        registry = CountryRegistry()

        with pytest.raises(UnsortedOrDuplicateIdentifier) as exc_info:
            registry.load([COUNTRY_HEADER, country_row("abc", "EU", "DE")])

        assert exc_info.value.line_number == 2

    def test_reserved_identifier(self):
        registry = CountryRegistry()

        with pytest.raises(ReservedIdentifier) as exc_info:
            registry.load([COUNTRY_HEADER, country_row(PROXY_GEONAME_ID, "EU", "DE")])

        assert exc_info.value.line_number == 2

    def test_missing_column_fails_before_rows_are_read(self):
        lines = iter([
            "geoname_id,locale_code,continent_code,continent_name,country_name\n",
            "1,en,EU,Europe,Germany\n",
        ])
        registry = CountryRegistry()

        with pytest.raises(MissingColumns) as exc_info:
            registry.load(lines)

        assert exc_info.value.line_number == 1
        assert "country_iso_code" in str(exc_info.value)
        assert next(lines) == "1,en,EU,Europe,Germany\n"

    def test_insufficient_columns(self):
        registry = CountryRegistry()

        with pytest.raises(InsufficientColumns) as exc_info:
            registry.load([COUNTRY_HEADER, country_row(1, "EU", "DE"), "2,en,EU\n"])

        assert exc_info.value.line_number == 3

    def test_header_only(self):
        registry = CountryRegistry()

        with pytest.raises(NoUsableData):
            registry.load([COUNTRY_HEADER])

    def test_empty_input(self):
        with pytest.raises(NoUsableData):
            CountryRegistry().load([])

    def test_failed_load_keeps_previous_contents(self, real_registry):
        with pytest.raises(UnsortedOrDuplicateIdentifier):
            real_registry.load([
                COUNTRY_HEADER,
                country_row(7, "EU", "FR"),
                country_row(7, "EU", "ES"),
            ])

        assert len(real_registry) == 5
        assert real_registry.lookup_code("FR") is None

    def test_load_file(self, write_feed, country_lines):
        path = write_feed("countries.csv", country_lines)
        registry = CountryRegistry()

        assert registry.load_file(path) == 5

    def test_load_missing_file(self, tmp_path):
        with pytest.raises(ResourceError):
            CountryRegistry().load_file(tmp_path / "missing.csv")

    def test_undecodable_line_is_reported(self, tmp_path):
        path = tmp_path / "countries.csv"
        path.write_bytes(
            (COUNTRY_HEADER + country_row(GB_ID, "EU", "GB")).encode("utf-8")
            + b"2921044,en,EU,Europe,DE,\"Deutschl\xe4nd\",0\n"
        )

        with pytest.raises(ResourceError) as exc_info:
            CountryRegistry().load_file(path)

        assert exc_info.value.line_number == 3


class TestVirtualCountries:
    """Test cases for CountryRegistry.add_virtual_countries."""

    def test_adds_three_countries_last(self, real_registry):
        assert real_registry.add_virtual_countries() == 3

        codes = [c.country_code for c in real_registry]
        assert codes[-3:] == ["A1", "A2", "O1"]
        assert all(c.is_virtual for c in real_registry.countries[-3:])
        assert not any(c.forbidden for c in real_registry.countries[-3:])

    def test_identifiers_stay_ascending(self, registry):
        ids = [c.geoname_id for c in registry]
        assert ids == sorted(ids)
        assert len(set(ids)) == len(ids)

    def test_virtual_codes_are_indexed(self, registry):
        assert registry.lookup_code("A1").geoname_id == PROXY_GEONAME_ID
        assert registry.lookup_code("a2").geoname_id == SAT_GEONAME_ID
        assert registry.lookup_code("O1").geoname_id == OTHER_GEONAME_ID

    def test_cannot_add_twice(self, registry):
        with pytest.raises(ReservedIdentifier):
            registry.add_virtual_countries()

        assert len(registry) == 8


class TestGetCountry:
    """Test cases for CountryRegistry.get_country."""

    def test_find_by_identifier(self, registry):
        for geoname_id, code in ((RW_ID, "RW"), (GB_ID, "GB"), (DE_ID, "DE"), (US_ID, "US"), (EU_ID, "EU")):
            assert registry.get_country(geoname_id).country_code == code

    def test_unknown_identifier(self, registry):
        assert registry.get_country(12345) is None

    def test_proxy_overrides_identifier(self, registry):
        assert registry.get_country(US_ID, proxy=True).country_code == "A1"
        assert registry.get_country(US_ID, proxy=True, satellite=True).country_code == "A1"

    def test_satellite_overrides_identifier(self, registry):
        assert registry.get_country(US_ID, satellite=True).country_code == "A2"

    def test_zero_or_missing_identifier_is_other(self, registry):
        assert registry.get_country(0).country_code == "O1"
        assert registry.get_country(None).country_code == "O1"

    def test_empty_registry(self):
        assert CountryRegistry().get_country(US_ID) is None

    def test_repeated_lookup_returns_same_record(self, registry):
        first = registry.get_country(DE_ID)
        assert registry.get_country(DE_ID) is first

    def test_cache_follows_rebuilt_country_list(self, real_registry):
        assert real_registry.get_country(0) is None

        real_registry.add_virtual_countries()

        assert real_registry.get_country(0).country_code == "O1"

    def test_without_virtual_countries(self, real_registry):
        assert real_registry.get_country(US_ID, proxy=True) is None


class TestSetFilteredCountries:
    """Test cases for CountryRegistry.set_filtered_countries."""

    def test_allow_list(self, registry):
        changed = registry.set_filtered_countries(parse_country_code_list("US,DE"), forbid=False)

        assert changed == 2
        allowed = {c.country_code for c in registry if not c.forbidden}
        assert allowed == {"US", "DE"}

    def test_forbid_list(self, registry):
        changed = registry.set_filtered_countries(parse_country_code_list("US,A1"), forbid=True)

        assert changed == 2
        forbidden = {c.country_code for c in registry if c.forbidden}
        assert forbidden == {"US", "A1"}

    def test_unknown_and_duplicate_codes(self, registry):
        changed = registry.set_filtered_countries(parse_country_code_list("US,ZZ,us"), forbid=True)

        assert changed == 1
        assert registry.lookup_code("US").forbidden is True

    def test_forbid_is_idempotent(self, registry):
        positions = parse_country_code_list("GB")
        assert registry.set_filtered_countries(positions, forbid=True) == 1
        assert registry.set_filtered_countries(positions, forbid=True) == 0

    def test_allow_list_of_unknown_codes_forbids_everything(self, registry):
        assert registry.set_filtered_countries(parse_country_code_list("ZZ"), forbid=False) == 0
        assert all(c.forbidden for c in registry)

    def test_out_of_range_positions_are_ignored(self, registry):
        assert registry.set_filtered_countries([0, -1, 1 << 20], forbid=True) == 0

    def test_empty_registry(self):
        assert CountryRegistry().set_filtered_countries([country_code_pos("US")], forbid=True) == 0
