from __future__ import annotations

import logging
from typing import Dict, List, Optional, Tuple

from ..settings import Settings
from .base import Provider, call_with_reauth, find_episode_link
from .easternspirit import EasternSpiritProvider
from .subsland import SubsLandProvider
from .subssab import SubsSabProvider
from .subsunacs import SubsunacsProvider

log = logging.getLogger("subs_relay.providers")


def build_registry(settings: Settings) -> Dict[str, Provider]:
    return {
        "subsunacs": SubsunacsProvider(),
        "subssab": SubsSabProvider(),
        "subsland": SubsLandProvider(relay_url=settings.subsland_relay_url),
        "easternspirit": EasternSpiritProvider(
            username=settings.easternspirit_username,
            password=settings.easternspirit_password,
        ),
    }


def build_providers(
    settings: Settings,
    registry: Optional[Dict[str, Provider]] = None,
) -> Tuple[List[Provider], Optional[Provider]]:
    """Primary providers in configured order plus the optional fallback."""
    if registry is None:
        registry = build_registry(settings)
    primaries: List[Provider] = []
    for name in settings.primary_providers:
        provider = registry.get(name)
        if provider is None:
            log.warning("unknown provider %r in primary_providers", name)
            continue
        primaries.append(provider)
    fallback = registry.get(settings.fallback_provider) if settings.fallback_provider else None
    if fallback is not None and isinstance(fallback, EasternSpiritProvider) and not fallback.configured:
        log.info("easternspirit credentials not set; fallback provider disabled")
        fallback = None
    return primaries, fallback


__all__ = [
    "EasternSpiritProvider",
    "Provider",
    "SubsLandProvider",
    "SubsSabProvider",
    "SubsunacsProvider",
    "build_providers",
    "build_registry",
    "call_with_reauth",
    "find_episode_link",
]
