"""Stable identifiers for monitors and monitor sets.

A display identifier hashes vendor/model/serial/resolution, never position,
so sliding a monitor around in display settings keeps its identity.  A
configuration identifier hashes the sorted display identifiers, so the same
physical setup maps to the same storage key whatever order the OS
enumerates the monitors in.
"""

import hashlib
from typing import Iterable

CONFIG_PREFIX = "config-"


def _short_digest(text: str) -> str:
    # First 8 bytes of SHA-256, hex encoded.
    return hashlib.sha256(text.encode("utf-8")).digest()[:8].hex()


def display_identity(vendor, model, serial, width: int, height: int) -> str:
    combined = "-".join([
        f"v{vendor}",
        f"m{model}",
        f"s{serial}",
        f"r{int(width)}x{int(height)}",
    ])
    return _short_digest(combined)


def configuration_identity(display_identifiers: Iterable[str]) -> str:
    combined = "+".join(sorted(display_identifiers))
    return CONFIG_PREFIX + _short_digest(combined)
