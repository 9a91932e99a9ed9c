from __future__ import annotations

from .base import BaseCollector

# kind (lowercase) -> collector class; filled by @register at import of each collector module
_KINDS: dict[str, type[BaseCollector]] = {}


def _normalize(kind: object) -> str:
    return kind.strip().lower() if isinstance(kind, str) else ""


def register(cls: type[BaseCollector]) -> type[BaseCollector]:
    """Class decorator. Re-registering the same class is a no-op; a second class for a kind is an error."""
    key = _normalize(getattr(cls, "kind", ""))
    if not key:
        raise ValueError(f"{cls.__name__} cannot be registered without a 'kind'")
    current = _KINDS.setdefault(key, cls)
    if current is not cls:
        raise ValueError(f"collector kind {key!r} is taken by {current.__name__}")
    return cls


def get(kind: str) -> type[BaseCollector]:
    try:
        return _KINDS[_normalize(kind)]
    except KeyError:
        known = ", ".join(sorted(_KINDS)) or "none"
        raise KeyError(f"no collector for kind {kind!r} (known: {known})") from None


def all_kinds() -> dict[str, type[BaseCollector]]:
    return dict(_KINDS)
