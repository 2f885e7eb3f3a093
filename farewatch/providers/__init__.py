"""Flight-data provider adapters.

The set of providers is closed: ``PROVIDER_CLASSES`` lists every adapter the
application knows, and :func:`build_providers` turns the configured names
into instances for :class:`farewatch.orchestrator.CheckConfig`.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from ..config import Settings, get_settings
from .base import FlightProvider
from .kiwi import KiwiProvider
from .mock import MockProvider
from .serpapi import SerpApiProvider

PROVIDER_CLASSES = {
    "kiwi": KiwiProvider,
    "serpapi": SerpApiProvider,
    "mock": MockProvider,
}


def provider_kwargs(name: str, settings: Settings) -> Dict[str, Any]:
    """Constructor arguments for provider *name* taken from *settings*."""
    if name == "kiwi":
        return {
            "api_key": settings.kiwi_api_key,
            "group_size": settings.kiwi_airport_group_size,
            "fallback": MockProvider() if settings.mock_fallback else None,
        }
    if name == "serpapi":
        return {
            "api_key": settings.serpapi_api_key,
            "max_date_pairs": settings.serpapi_max_date_pairs,
        }
    return {}


def build_providers(settings: Optional[Settings] = None) -> List[FlightProvider]:
    """Instantiate the providers named in ``settings.providers``, in order."""
    settings = settings or get_settings()
    return [
        PROVIDER_CLASSES[name](**provider_kwargs(name, settings))
        for name in settings.providers
    ]


__all__ = [
    "FlightProvider",
    "KiwiProvider",
    "SerpApiProvider",
    "MockProvider",
    "PROVIDER_CLASSES",
    "provider_kwargs",
    "build_providers",
]
