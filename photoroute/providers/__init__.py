"""Image edit backends and the provider registry."""

from photoroute.providers.base import HttpImageProvider, ImageEditProvider
from photoroute.providers.clipdrop import ClipdropProvider
from photoroute.providers.credentials import (
    CredentialStore,
    EnvCredentialStore,
    StaticCredentialStore,
)
from photoroute.providers.fal import FalFluxProvider
from photoroute.providers.gemini import GeminiProvider
from photoroute.providers.local import LocalEnhanceProvider
from photoroute.providers.openai_images import OpenAIImageProvider
from photoroute.providers.registry import ProviderRegistry, build_default_registry

__all__ = [
    "ClipdropProvider",
    "CredentialStore",
    "EnvCredentialStore",
    "FalFluxProvider",
    "GeminiProvider",
    "HttpImageProvider",
    "ImageEditProvider",
    "LocalEnhanceProvider",
    "OpenAIImageProvider",
    "ProviderRegistry",
    "StaticCredentialStore",
    "build_default_registry",
]
