"""Command-line entry point: converts MaxMind geoip CSV databases to xtables geoip range tables."""

import argparse
import logging
import sys
from typing import List, Optional

from pydantic import ValidationError

from . import __version__
from .compiler import RangeCompiler
from .models import AddressFamily, GeoIPError
from .registry import CountryRegistry, parse_country_code_list
from .settings import (
    DEFAULT_COUNTRY_FILE_NAME,
    DEFAULT_IPV4_RANGE_FILE_NAME,
    DEFAULT_IPV6_RANGE_FILE_NAME,
    DEFAULT_OUTPUT_DIRECTORY,
    Settings,
)

logger = logging.getLogger(__name__)

EXIT_SUCCESS = 0
EXIT_COUNTRY_FILE = 1
EXIT_RANGE_FILES = 2
EXIT_USAGE = 64

_EPILOG = """\
Return values:
    0 - Success
    1 - Unable to process country file
    2 - Unable to process range files
    Other - Unable to parse command-line arguments
"""


class _ArgumentParser(argparse.ArgumentParser):
    """ArgumentParser that keeps exit status 2 free for range file failures."""

    def error(self, message: str) -> None:
        self.print_usage(sys.stderr)
        self.exit(EXIT_USAGE, f"{self.prog}: error: {message}\n")


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser. Options left out fall back to Settings."""
    parser = _ArgumentParser(
        prog="xtgeoip",
        description="Converts MaxMind geoip CSV databases to the format used by the xtables geoip match module.",
        epilog=_EPILOG,
        formatter_class=argparse.RawDescriptionHelpFormatter,
        argument_default=argparse.SUPPRESS,
    )

    filters = parser.add_mutually_exclusive_group()
    filters.add_argument(
        "-a", "--allow-countries",
        metavar="COUNTRIES",
        help="Process ranges only from the specified comma-separated country codes.",
    )
    filters.add_argument(
        "-f", "--forbid-countries",
        metavar="COUNTRIES",
        help="Process all ranges but those from the specified comma-separated country codes.",
    )

    parser.add_argument(
        "-n", "--no-virtual-countries",
        action="store_true",
        help="Do not process ranges for virtual countries "
             "(A1 -- proxies; A2 -- satellite providers; O1 -- unknown).",
    )
    parser.add_argument(
        "-c", "--country-file",
        metavar="FILE",
        help=f"Use the specified CSV file as source for country data. Default: {DEFAULT_COUNTRY_FILE_NAME}",
    )
    parser.add_argument(
        "-4", "--ipv4-file",
        metavar="FILE",
        nargs="?",
        const="",
        help="Use the specified CSV file as source for IPv4 ranges. "
             "Without FILE, no IPv4 ranges will be processed. "
             f"Default: {DEFAULT_IPV4_RANGE_FILE_NAME}",
    )
    parser.add_argument(
        "-6", "--ipv6-file",
        metavar="FILE",
        nargs="?",
        const="",
        help="Use the specified CSV file as source for IPv6 ranges. "
             "Without FILE, no IPv6 ranges will be processed. "
             f"Default: {DEFAULT_IPV6_RANGE_FILE_NAME}",
    )
    parser.add_argument(
        "-d", "--target-dir",
        metavar="DIRECTORY",
        help=f"Write output files to the specified directory. Default: {DEFAULT_OUTPUT_DIRECTORY}",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Log details of the program's activity. Without this option, only errors are reported.",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")

    return parser


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=settings.effective_log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def load_registry(settings: Settings) -> CountryRegistry:
    """Load countries, add virtual countries and apply country filtering."""
    registry = CountryRegistry()

    logger.info("Processing country file (%s)...", settings.country_file)
    num_countries = registry.load_file(settings.country_file)
    logger.info("Read %d countries.", num_countries)

    if not settings.no_virtual_countries:
        logger.info("Adding virtual countries...")
        num_virtual = registry.add_virtual_countries()
        logger.info("Added %d virtual countries.", num_virtual)

    filtered = settings.filtered_countries
    if filtered is not None:
        country_codes, forbid = filtered
        logger.info("Setting up country filtering...")
        positions = parse_country_code_list(country_codes)
        num_filtered = registry.set_filtered_countries(positions, forbid)
        logger.info("Filtered by %d countries.", num_filtered)

    return registry


def run(settings: Settings) -> int:
    """Compile the configured feeds and return the process exit status."""
    try:
        registry = load_registry(settings)
    except GeoIPError as e:
        logger.error("Unable to process country file: %s", e)
        return EXIT_COUNTRY_FILE

    compiled_any = False
    for family, range_file in (
        (AddressFamily.V4, settings.ipv4_file),
        (AddressFamily.V6, settings.ipv6_file),
    ):
        if range_file is None:
            continue

        logger.info("Processing %s range file (%s)...", family.label, range_file)
        compiler = RangeCompiler(registry, family, settings.target_dir)
        try:
            num_ranges = compiler.compile_file(range_file)
        except GeoIPError as e:
            logger.error("Unable to process %s range file: %s", family.label, e)
            continue

        logger.info("Processed %d %s ranges.", num_ranges, family.label)
        compiled_any = True

    # success if at least one of the range files had usable data
    return EXIT_SUCCESS if compiled_any else EXIT_RANGE_FILES


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)

    try:
        settings = Settings(**vars(args))
    except ValidationError as e:
        print(f"xtgeoip: invalid configuration: {e}", file=sys.stderr)
        return EXIT_USAGE

    configure_logging(settings)
    return run(settings)


if __name__ == "__main__":
    sys.exit(main())
