"""Fixed-width address arithmetic helpers."""

from __future__ import annotations

from typing import Union

from ..models import AddressFamily, InvalidArgument

AddressBytes = Union[bytes, bytearray, memoryview]


def _family(addr_family: object) -> AddressFamily:
    try:
        return AddressFamily(addr_family)
    except ValueError:
        raise InvalidArgument("Invalid address family", details=repr(addr_family)) from None


def compare_addrs(addr1: AddressBytes, addr2: AddressBytes, addr_family: AddressFamily) -> int:
    """Compare two addresses of the same family as unsigned big-endian numbers.

    Returns a negative number if *addr1* comes first, zero if both are equal
    and a positive number if *addr1* comes after *addr2*.
    """
    width = _family(addr_family).width
    left = bytes(addr1[:width])
    right = bytes(addr2[:width])
    return (left > right) - (left < right)


def step_addr(addr: bytearray, addr_family: AddressFamily, inc_dec: int) -> bytearray:
    """Increment (*inc_dec* > 0) or decrement (*inc_dec* < 0) *addr* by one, in place.

    Carries and borrows propagate from the least significant byte. The value
    wraps around at the all-ones / all-zeros boundary without complaint.
    """
    width = _family(addr_family).width

    if inc_dec > 0:
        inc_dec, find, replace = 1, 0xFF, 0x00
    elif inc_dec < 0:
        inc_dec, find, replace = -1, 0x00, 0xFF
    else:
        raise InvalidArgument("Step direction must be non-zero")

    for i in range(width - 1, -1, -1):
        if addr[i] == find:
            addr[i] = replace
        else:
            addr[i] += inc_dec
            break

    return addr
