"""CIDR parsing, rendering and contiguity checks."""

import ipaddress
import re

from .models import (
    AddressFamily,
    AddressRange,
    MalformedAddress,
    MalformedPrefix,
    PrefixOutOfRange,
    RenderError,
)
from .utils.ip_utils import compare_addrs, step_addr

_PREFIX_RE = re.compile(r"[0-9]+")


def detect_family(cidr: str) -> AddressFamily:
    """Guess the family from the position of the first dot, IPv6 otherwise."""
    if "." in cidr[1:4]:
        return AddressFamily.V4
    return AddressFamily.V6


def _pack_address(address: str, family: AddressFamily) -> bytes:
    try:
        if family is AddressFamily.V4:
            return ipaddress.IPv4Address(address).packed
        if "%" in address:
            raise ValueError("scoped addresses are not allowed")
        return ipaddress.IPv6Address(address).packed
    except ValueError as e:
        raise MalformedAddress(f"Invalid {family.label} address", details=f"{address!r}: {e}") from e


def build_mask(prefix_length: int, family: AddressFamily) -> bytes:
    """Network mask with the high *prefix_length* bits set."""
    bits = family.bits
    value = ((1 << bits) - 1) ^ ((1 << (bits - prefix_length)) - 1)
    return value.to_bytes(family.width, "big")


def parse_cidr(cidr: str) -> AddressRange:
    """Parse ``address/prefix`` text into an :class:`AddressRange`."""
    if len(cidr) < 4:
        raise MalformedAddress("CIDR too short", details=repr(cidr))

    family = detect_family(cidr)

    address, separator, prefix = cidr.partition("/")
    if not separator:
        raise MalformedPrefix("CIDR must include a slash", details=repr(cidr))

    if not _PREFIX_RE.fullmatch(prefix):
        raise MalformedPrefix("Invalid prefix length", details=repr(cidr))

    prefix_length = int(prefix)
    if prefix_length > family.bits:
        raise PrefixOutOfRange(
            "Prefix length exceeds address size",
            details=f"{prefix_length} > {family.bits}",
        )

    base = _pack_address(address, family)
    mask = build_mask(prefix_length, family)

    start = bytes(b & m for b, m in zip(base, mask))
    end = bytes(s | (~m & 0xFF) for s, m in zip(start, mask))

    return AddressRange(
        family=family,
        prefix_length=prefix_length,
        base=base,
        mask=mask,
        start=start,
        end=end,
    )


def unparse_cidr(address_range: AddressRange) -> str:
    """Render a range back to ``address/prefix`` text."""
    try:
        if address_range.family is AddressFamily.V4:
            address = ipaddress.IPv4Address(address_range.base)
        else:
            address = ipaddress.IPv6Address(address_range.base)
    except ValueError as e:
        raise RenderError("Unable to render address", details=str(e)) from e

    return f"{address.compressed}/{address_range.prefix_length}"


def ranges_contiguous(range1: AddressRange, range2: AddressRange) -> bool:
    """Return True if one range ends immediately before the other starts.

    The ranges can be given in any order. Ranges sharing a start address are
    never contiguous, and neither are overlapping ones.
    """
    if range1.family != range2.family:
        return False

    family = range1.family

    comparison = compare_addrs(range1.start, range2.start, family)
    if comparison < 0:
        first, second = range1, range2
    elif comparison > 0:
        first, second = range2, range1
    else:
        return False

    after_first = step_addr(bytearray(first.end), family, 1)

    return compare_addrs(after_first, second.start, family) == 0
