"""Pytest fixtures for building country and range feeds."""

import ipaddress

import pytest

from xtgeoip.registry import CountryRegistry

COUNTRY_HEADER = (
    "geoname_id,locale_code,continent_code,continent_name,"
    "country_iso_code,country_name,is_in_european_union\n"
)

RANGE_HEADER = (
    "network,geoname_id,registered_country_geoname_id,"
    "represented_country_geoname_id,is_anonymous_proxy,is_satellite_provider\n"
)

RW_ID = 49518
GB_ID = 2635167
DE_ID = 2921044
US_ID = 6252001
EU_ID = 6255148


def country_row(geoname_id, continent_code, country_code, name=""):
    """Build one country feed line."""
    return f'{geoname_id},en,{continent_code},Continent,{country_code},"{name}",0\n'


def range_row(network, geoname_id="", registered="", proxy="0", satellite="0"):
    """Build one range feed line."""
    return f"{network},{geoname_id},{registered},,{proxy},{satellite}\n"


def packed(address):
    """Packed big-endian bytes of a textual address."""
    return ipaddress.ip_address(address).packed


@pytest.fixture
def country_lines():
    """Country feed lines for RW, GB, DE, US and a continent-only row (EU)."""
    return [
        COUNTRY_HEADER,
        country_row(RW_ID, "AF", "RW", "Rwanda"),
        country_row(GB_ID, "EU", "GB", "United Kingdom"),
        country_row(DE_ID, "EU", "DE", "Germany"),
        country_row(US_ID, "NA", "US", "United States"),
        country_row(EU_ID, "EU", "", "Europe"),
    ]


@pytest.fixture
def registry(country_lines):
    """Registry loaded with the sample countries and the virtual countries."""
    registry = CountryRegistry()
    registry.load(country_lines)
    registry.add_virtual_countries()
    return registry


@pytest.fixture
def real_registry(country_lines):
    """Registry loaded with the sample countries only."""
    registry = CountryRegistry()
    registry.load(country_lines)
    return registry


@pytest.fixture
def write_feed(tmp_path):
    """Write feed lines to a file under tmp_path and return its path."""

    def _write(name, lines):
        path = tmp_path / name
        path.write_text("".join(lines), encoding="utf-8")
        return path

    return _write


@pytest.fixture
def output_dir(tmp_path):
    """Empty directory for compiled range tables."""
    path = tmp_path / "xt_geoip"
    path.mkdir()
    return path
