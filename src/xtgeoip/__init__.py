"""Compile MaxMind GeoLite2 CSV country data into xtables geoip range tables."""

__version__ = "0.9.0"
