from __future__ import annotations

from typing import Any, Callable, Dict

from ..types import Dialect
from .base import ConnectionFactory

# builder(config) -> zero-arg factory called once on each worker thread
FactoryBuilder = Callable[[Any], ConnectionFactory]

_REGISTRY: Dict[str, FactoryBuilder] = {}


def register(dialect: Dialect, builder: FactoryBuilder) -> None:
    name = getattr(dialect, "value", dialect)
    if not name or not isinstance(name, str):
        raise ValueError("Driver must be registered under a non-empty dialect name")
    _REGISTRY[name.lower()] = builder


def get(name: str) -> FactoryBuilder:
    k = (getattr(name, "value", name) or "").lower()
    if k not in _REGISTRY:
        available_names = ", ".join(sorted(_REGISTRY.keys()))
        raise KeyError(f"Unknown driver '{name}'. Available: {available_names}")
    return _REGISTRY[k]


def available() -> Dict[str, FactoryBuilder]:
    return dict(_REGISTRY)
