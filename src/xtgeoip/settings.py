"""Configuration settings for the xtgeoip range table compiler."""

import logging
import os
import sys
from pathlib import Path
from typing import Optional, Tuple

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_COUNTRY_FILE_NAME = "GeoLite2-Country-Locations-en.csv"
DEFAULT_IPV4_RANGE_FILE_NAME = "GeoLite2-Country-Blocks-IPv4.csv"
DEFAULT_IPV6_RANGE_FILE_NAME = "GeoLite2-Country-Blocks-IPv6.csv"
DEFAULT_OUTPUT_DIRECTORY = "/usr/share/xt_geoip"

_LOG_LEVELS = ("CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG")


class Settings(BaseSettings):
    """Application settings loaded from XTGEOIP_* environment variables."""

    # Input feeds
    country_file: str = Field(default=DEFAULT_COUNTRY_FILE_NAME)
    ipv4_file: Optional[str] = Field(default=DEFAULT_IPV4_RANGE_FILE_NAME)
    ipv6_file: Optional[str] = Field(default=DEFAULT_IPV6_RANGE_FILE_NAME)

    # Output
    target_dir: str = Field(default=DEFAULT_OUTPUT_DIRECTORY)

    # Country filtering
    allow_countries: Optional[str] = Field(default=None)
    forbid_countries: Optional[str] = Field(default=None)
    no_virtual_countries: bool = Field(default=False)

    # Logging
    verbose: bool = Field(default=False)
    log_level: str = Field(default="WARNING")

    model_config = SettingsConfigDict(
        env_prefix="XTGEOIP_",
        env_file=None,
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    def __init__(self, _env_file: Optional[str] = None, **data: object) -> None:
        if _env_file is None:
            running_tests = 'pytest' in sys.modules or os.environ.get('PYTEST_CURRENT_TEST') is not None
            if not running_tests:
                # Look for a .env file in the current directory or its parents
                current_dir = Path.cwd()
                for path in [current_dir] + list(current_dir.parents):
                    env_file = path / '.env'
                    if env_file.exists():
                        _env_file = str(env_file)
                        break

        super().__init__(_env_file=_env_file, **data)

    @field_validator("ipv4_file", "ipv6_file", "allow_countries", "forbid_countries", mode="before")
    @classmethod
    def _empty_as_none(cls, value: object) -> object:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("log_level")
    @classmethod
    def _check_log_level(cls, value: str) -> str:
        level = value.strip().upper()
        if level not in _LOG_LEVELS:
            raise ValueError(f"log_level must be one of {', '.join(_LOG_LEVELS)}")
        return level

    @model_validator(mode="after")
    def _check_filters(self) -> "Settings":
        if self.allow_countries is not None and self.forbid_countries is not None:
            raise ValueError("Can't specify both allowed and forbidden countries")
        return self

    @property
    def filtered_countries(self) -> Optional[Tuple[str, bool]]:
        """The country list to filter by and whether it forbids (True) or allows (False)."""
        if self.allow_countries is not None:
            return self.allow_countries, False
        if self.forbid_countries is not None:
            return self.forbid_countries, True
        return None

    @property
    def effective_log_level(self) -> int:
        if self.verbose:
            return min(logging.INFO, getattr(logging, self.log_level))
        return getattr(logging, self.log_level)
