"""
Provider registry for PhotoRoute.

The single source of truth for which backends the routing engine may
dispatch to.  Other components query the registry; they never
instantiate or hard-code backends themselves.
"""

import logging
import threading
from typing import Any, Dict, List, Optional

from photoroute.config import Settings, get_settings
from photoroute.exceptions import ProviderNotFoundError
from photoroute.models.edit import EditTask, ProviderID
from photoroute.providers.base import ImageEditProvider
from photoroute.providers.clipdrop import ClipdropProvider
from photoroute.providers.credentials import CredentialStore, EnvCredentialStore
from photoroute.providers.fal import FalFluxProvider
from photoroute.providers.gemini import GeminiProvider
from photoroute.providers.local import LocalEnhanceProvider
from photoroute.providers.openai_images import OpenAIImageProvider

logger = logging.getLogger(__name__)


class ProviderRegistry:
    """Thread-safe mapping of :class:`ProviderID` to backend instance."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._providers: Dict[ProviderID, ImageEditProvider] = {}

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def add(self, provider: ImageEditProvider) -> None:
        """Register or replace a backend.

        Args:
            provider: The backend to register under its ``provider_id``.
        """
        with self._lock:
            if provider.provider_id in self._providers:
                logger.warning(
                    "Overwriting existing provider",
                    extra={"provider": provider.provider_id.value},
                )
            self._providers[provider.provider_id] = provider
        logger.info("Provider registered", extra={"provider": provider.provider_id.value})

    def get(self, provider_id: ProviderID) -> ImageEditProvider:
        """Return the backend registered under ``provider_id``.

        Raises:
            ProviderNotFoundError: If no such backend is registered.
        """
        with self._lock:
            provider = self._providers.get(provider_id)
            if provider is None:
                raise ProviderNotFoundError(
                    f"Provider '{getattr(provider_id, 'value', provider_id)}' not registered. "
                    f"Available: {[p.value for p in self._providers]}"
                )
            return provider

    def remove(self, provider_id: ProviderID) -> None:
        """De-register a backend.

        Raises:
            ProviderNotFoundError: If the backend is not registered.
        """
        with self._lock:
            if provider_id not in self._providers:
                raise ProviderNotFoundError(
                    f"Cannot remove unknown provider '{getattr(provider_id, 'value', provider_id)}'"
                )
            del self._providers[provider_id]
        logger.info("Provider removed", extra={"provider": provider_id.value})

    def all(self) -> List[ImageEditProvider]:
        """Return all registered backends in registration order."""
        with self._lock:
            return list(self._providers.values())

    def supporting(self, task: EditTask) -> List[ImageEditProvider]:
        """Return backends whose capability matrix includes ``task``."""
        return [p for p in self.all() if p.supports(task)]

    def close(self) -> None:
        for provider in self.all():
            provider.close()

    def to_dict(self) -> Dict[str, Any]:
        """Serialize the capability matrix for CLI output.

        Returns:
            Dict with ``providers`` list and ``count``.
        """
        providers = self.all()
        return {
            "providers": [
                {
                    "id": p.provider_id.value,
                    "name": p.display_name,
                    "cost_class": p.cost_class.value,
                    "tasks": sorted(t.value for t in p.supported_tasks),
                    "primary_tasks": sorted(t.value for t in p.primary_tasks),
                }
                for p in providers
            ],
            "count": len(providers),
        }

    def __len__(self) -> int:
        with self._lock:
            return len(self._providers)

    def __contains__(self, provider_id: object) -> bool:
        with self._lock:
            return provider_id in self._providers


def build_default_registry(
    credentials: Optional[CredentialStore] = None,
    settings: Optional[Settings] = None,
) -> ProviderRegistry:
    """Build a registry holding all five backends.

    Args:
        credentials: API-key source; defaults to environment variables.
        settings: Endpoint configuration; defaults to :func:`get_settings`.
    """
    credentials = credentials or EnvCredentialStore()
    settings = settings or get_settings()
    endpoints = settings.providers

    registry = ProviderRegistry()
    registry.add(LocalEnhanceProvider())
    registry.add(ClipdropProvider(endpoints.clipdrop, credentials))
    registry.add(FalFluxProvider(endpoints.fal_flux, credentials))
    registry.add(OpenAIImageProvider(endpoints.openai, credentials))
    registry.add(GeminiProvider(endpoints.gemini, credentials))
    return registry
