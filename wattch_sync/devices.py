from __future__ import annotations

from enum import Enum
from typing import Sequence


DEVICE_KEY_PREFIX = "ESP"


class LoadCategory(str, Enum):
    LIGHT = "light"
    MEDIUM = "medium"
    HEAVY = "heavy"
    UNIVERSAL = "universal"
    UNKNOWN = "unknown"


LOAD_CATEGORY_PREFIXES: tuple[tuple[str, LoadCategory], ...] = (
    ("ESP1", LoadCategory.LIGHT),
    ("ESP2", LoadCategory.MEDIUM),
    ("ESP3", LoadCategory.HEAVY),
    ("ESP4", LoadCategory.UNIVERSAL),
)


def is_device_key(key: object) -> bool:
    """Return True for realtime-store keys that name a device (ESP1, ESP1_1, ...)."""

    return isinstance(key, str) and key.startswith(DEVICE_KEY_PREFIX)


def classify(
    device_id: str,
    table: Sequence[tuple[str, LoadCategory]] = LOAD_CATEGORY_PREFIXES,
) -> LoadCategory:
    """Map a device id to its load category.

    The most specific (longest) matching prefix wins; among prefixes of equal
    length the earlier table entry wins.
    """

    best: LoadCategory | None = None
    best_len = -1
    for prefix, category in table:
        if len(prefix) > best_len and device_id.startswith(prefix):
            best = category
            best_len = len(prefix)
    return best if best is not None else LoadCategory.UNKNOWN


def load_type(device_id: str) -> str | None:
    """Wire value for the downstream ``load_type`` field (``None`` when unknown)."""

    category = classify(device_id)
    if category is LoadCategory.UNKNOWN:
        return None
    return category.value
