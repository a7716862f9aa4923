"""EVM contract address normalization."""

from __future__ import annotations

import re
from typing import Iterable, List

from spamwatch.errors import InvalidAddressError

_ADDRESS_PATTERN = re.compile(r"^0x[0-9a-f]{40}$")


def normalize_address(raw: object) -> str:
    """Return ``raw`` as a lowercase ``0x``-prefixed 40 hex character address.

    Matching is case-insensitive, the ``0X`` prefix included.

    Raises:
        InvalidAddressError: If ``raw`` is not a string of that shape.
    """

    if not isinstance(raw, str):
        raise InvalidAddressError(raw)
    candidate = raw.strip().lower()
    if not _ADDRESS_PATTERN.match(candidate):
        raise InvalidAddressError(raw)
    return candidate


def dedupe_addresses(raw_addresses: Iterable[object]) -> List[str]:
    """Normalize addresses and drop repeats, keeping first-seen order."""

    seen: set[str] = set()
    ordered: List[str] = []
    for raw in raw_addresses:
        address = normalize_address(raw)
        if address in seen:
            continue
        seen.add(address)
        ordered.append(address)
    return ordered
