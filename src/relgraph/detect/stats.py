from __future__ import annotations

from typing import Any, Sequence

import numpy as np


def _keys(values: Sequence[Any]) -> np.ndarray:
    # Compare on the text form so 7, "7" and 7.0 from different stores line up.
    out = []
    for v in values:
        if v is None:
            continue
        if isinstance(v, float) and v.is_integer():
            v = int(v)
        out.append(str(v))
    return np.array(out, dtype=str)


def distinct_ratio(values: Sequence[Any]) -> float:
    """Distinct / total over non-null values (0.0 for an empty sample)."""
    keys = _keys(values)
    if keys.size == 0:
        return 0.0
    return float(np.unique(keys).size) / float(keys.size)


def overlap_ratio(values: Sequence[Any], target_keys: Sequence[Any]) -> float:
    """Fraction of distinct sampled values found among the target's sampled keys."""
    vals = np.unique(_keys(values))
    if vals.size == 0:
        return 0.0
    keys = np.unique(_keys(target_keys))
    if keys.size == 0:
        return 0.0
    hits = np.isin(vals, keys)
    return float(np.count_nonzero(hits)) / float(vals.size)


def best_overlap(
    values: Sequence[Any],
    keys_by_entity: dict[str, Sequence[Any]],
    *,
    prefer: str | None = None,
) -> tuple[str | None, float]:
    """Best-overlapping target.

    Ties go to `prefer` when it is among the tied entities, otherwise to the
    alphabetically first one.
    """
    best: tuple[str | None, float] = (None, 0.0)
    for entity in sorted(keys_by_entity):
        r = overlap_ratio(values, keys_by_entity[entity])
        if r > best[1] or (r == best[1] and r > 0.0 and entity == prefer):
            best = (entity, r)
    return best
