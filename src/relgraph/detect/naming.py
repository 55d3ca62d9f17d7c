from __future__ import annotations

import re
from typing import Iterable

# Foreign-key style column names: user_id, userId, userID, author_ref, ownerRef, parent_reference, ...
_REF_RE = re.compile(r"^(?P<prefix>.+?)(?:_id|Id|ID|_ref|Ref|_reference|Reference)$")

_CAMEL_RE = re.compile(r"(?<=[a-z0-9])(?=[A-Z])")

_ES_ENDINGS = ("s", "x", "z", "ch", "sh")


def snake_case(name: str) -> str:
    s = _CAMEL_RE.sub("_", name.strip())
    s = re.sub(r"[\s\-]+", "_", s)
    return re.sub(r"_+", "_", s).strip("_").lower()


def reference_prefix(field_name: str) -> str | None:
    """Return the entity-ish prefix of a reference-looking field, else None."""
    m = _REF_RE.match(field_name)
    if not m:
        return None
    prefix = snake_case(m.group("prefix"))
    return prefix or None


def is_reference_name(field_name: str) -> bool:
    return reference_prefix(field_name) is not None


def pluralize(word: str) -> str:
    if not word:
        return word
    if word.endswith("y") and len(word) > 1 and word[-2] not in "aeiou":
        return word[:-1] + "ies"
    if word.endswith(_ES_ENDINGS):
        return word + "es"
    return word + "s"


def singularize(word: str) -> str:
    if word.endswith("ies") and len(word) > 3:
        return word[:-3] + "y"
    for end in _ES_ENDINGS:
        if word.endswith(end + "es") and len(word) > len(end) + 2:
            return word[:-2]
    if word.endswith("s") and not word.endswith("ss") and len(word) > 1:
        return word[:-1]
    return word


def name_variants(prefix: str) -> list[str]:
    out = [prefix, pluralize(prefix), singularize(prefix)]
    # Compound names pluralize on the last word: order_item -> order_items
    if "_" in prefix:
        head, _, last = prefix.rpartition("_")
        out += [f"{head}_{pluralize(last)}", f"{head}_{singularize(last)}"]
    seen: list[str] = []
    for v in out:
        if v and v not in seen:
            seen.append(v)
    return seen


def resolve_entity(prefix: str, entities: Iterable[str]) -> str | None:
    """Map a field prefix to a known entity name, preferring the closest form."""
    by_norm: dict[str, str] = {}
    for e in sorted(entities):
        by_norm.setdefault(snake_case(e), e)
    for variant in name_variants(snake_case(prefix)):
        hit = by_norm.get(variant)
        if hit is not None:
            return hit
    return None
