"""Shared FastAPI dependencies.

Separated to avoid circular imports between route modules.
"""

from __future__ import annotations

from functools import lru_cache
from typing import TYPE_CHECKING

if TYPE_CHECKING:  # pragma: no cover
    from telephony.registry import SessionRegistry


@lru_cache(maxsize=1)
def _registry_factory() -> SessionRegistry:
    # Lazy import so API modules load without network clients configured.
    from config.settings import get_settings
    from integrations.speech_endpoint import build_speech_endpoint
    from integrations.telnyx_client import build_telnyx_client
    from telephony.registry import SessionConfig, SessionRegistry

    return SessionRegistry(
        build_telnyx_client(),
        build_speech_endpoint,
        SessionConfig.from_settings(get_settings()),
    )


def registry_built() -> bool:
    return _registry_factory.cache_info().currsize > 0


def get_registry() -> SessionRegistry:
    return _registry_factory()
