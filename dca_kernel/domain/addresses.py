"""Chain address validation and case normalization (ZERO I/O)."""

from __future__ import annotations

import re
from typing import Any

from dca_kernel.exceptions import InvalidAddressError

ZERO_ADDRESS = "0x" + "0" * 40

_ADDRESS_RE = re.compile(r"^0x[a-fA-F0-9]{40}$")


def is_address(value: Any) -> bool:
    return isinstance(value, str) and bool(_ADDRESS_RE.match(value.strip()))


def normalize_address(value: Any, field_name: str | None = None) -> str:
    """Validate a 20-byte hex address and return it lower-cased.

    Raises:
        InvalidAddressError: If ``value`` is not ``0x`` + 40 hex digits.
    """
    if not is_address(value):
        raise InvalidAddressError(value, field_name)
    return value.strip().lower()
