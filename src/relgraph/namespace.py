from __future__ import annotations

SEPARATOR = ":"

_ESCAPES = (("%", "%25"), (":", "%3A"))


def escape_component(value: str) -> str:
    out = str(value)
    for raw, enc in _ESCAPES:
        out = out.replace(raw, enc)
    return out


def unescape_component(value: str) -> str:
    out = value
    for raw, enc in reversed(_ESCAPES):
        out = out.replace(enc, raw)
    return out


def namespace(entity: str, uid: str) -> str:
    """Return the deterministic `entity:uid` name of one graph's chunk set.

    Both parts are percent-escaped so a separator inside an entity name or
    uid can never produce an ambiguous namespace.
    """
    entity = str(entity)
    uid = str(uid)
    if not entity:
        raise ValueError("entity must be non-empty")
    if not uid:
        raise ValueError("uid must be non-empty")
    return f"{escape_component(entity)}{SEPARATOR}{escape_component(uid)}"


def parse_namespace(ns: str) -> tuple[str, str]:
    parts = ns.split(SEPARATOR)
    if len(parts) != 2 or not parts[0] or not parts[1]:
        raise ValueError(f"Not a valid namespace: {ns!r}")
    return unescape_component(parts[0]), unescape_component(parts[1])


def chunk_id(ns: str, index: int) -> str:
    return f"{ns}{SEPARATOR}chunk{SEPARATOR}{int(index)}"
