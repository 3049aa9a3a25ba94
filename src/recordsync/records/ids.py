"""Client-side id generation.

Records created on this device get an id before any remote call, and the
same id is used as the remote document key.
"""

from __future__ import annotations

import secrets
import time

_ALPHABET = "0123456789abcdefghijklmnopqrstuvwxyz"


def _random_suffix(length: int) -> str:
    return "".join(secrets.choice(_ALPHABET) for _ in range(length))


def generate_local_id(prefix: str, now: float | None = None) -> str:
    """Generate an id of the form ``<prefix>_<ms timestamp>_<9 base36 chars>``.

    Example: "txn_1703123456789_k3j9x0q2a"
    """
    millis = int((time.time() if now is None else now) * 1000)
    return f"{prefix}_{millis}_{_random_suffix(9)}"


def generate_item_id(index: int, now: float | None = None) -> str:
    """Id for an item inside a multi-resource transaction."""
    millis = int((time.time() if now is None else now) * 1000)
    return f"{millis}-{index}-{_random_suffix(9)}"
