from __future__ import annotations

import re
import uuid
from collections import Counter
from typing import Any, Iterable, Literal

Shape = Literal["uuid", "hex", "numeric"]

_UUID_RE = re.compile(
    r"^[0-9a-fA-F]{8}-?[0-9a-fA-F]{4}-?[0-9a-fA-F]{4}-?[0-9a-fA-F]{4}-?[0-9a-fA-F]{12}$"
)
# 24 hex digits is the common object-id width; anything >= 16 counts as a token.
_HEX_RE = re.compile(r"^[0-9a-fA-F]{16,64}$")
_INT_RE = re.compile(r"^[0-9]{1,19}$")


def value_shape(value: Any) -> Shape | None:
    """Classify one sampled value as a foreign-identifier shape, if it is one."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, uuid.UUID):
        return "uuid"
    if isinstance(value, int):
        return "numeric" if value >= 0 else None
    if isinstance(value, float):
        return "numeric" if value.is_integer() and value >= 0 else None
    if isinstance(value, (bytes, bytearray)):
        value = bytes(value).hex()
    if not isinstance(value, str):
        return None
    s = value.strip()
    if _UUID_RE.match(s) and ("-" in s or len(s) == 32):
        return "uuid"
    if _INT_RE.match(s):
        return "numeric"
    if _HEX_RE.match(s) and any(c.isalpha() for c in s):
        return "hex"
    return None


def dominant_shape(values: Iterable[Any]) -> tuple[Shape | None, float]:
    """Return (most common shape, fraction of all values having it)."""
    vals = [v for v in values if v is not None]
    if not vals:
        return None, 0.0
    counts = Counter(s for s in (value_shape(v) for v in vals) if s is not None)
    if not counts:
        return None, 0.0
    # Ties resolve by shape name so the result does not depend on sample order.
    shape, n = min(counts.items(), key=lambda kv: (-kv[1], kv[0]))
    return shape, n / len(vals)
