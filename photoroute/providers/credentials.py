"""
Credential sources for remote providers.

The routing core never reads secrets directly; it asks a
:class:`CredentialStore` for one opaque API key per backend.
"""

import logging
import os
import threading
from typing import Dict, Mapping, Optional, Protocol, runtime_checkable

logger = logging.getLogger(__name__)


@runtime_checkable
class CredentialStore(Protocol):
    """Protocol for API-key lookups."""

    def get(self, name: str) -> Optional[str]:
        """Return the secret stored under ``name`` or ``None``."""
        ...


class EnvCredentialStore:
    """Reads API keys from environment variables (``.env`` is loaded by config)."""

    def get(self, name: str) -> Optional[str]:
        if not name:
            return None
        return os.environ.get(name) or None


class StaticCredentialStore:
    """In-memory, mutable credential store for embedding hosts and tests.

    Args:
        secrets: Initial mapping of credential name to secret.
    """

    def __init__(self, secrets: Optional[Mapping[str, str]] = None) -> None:
        self._lock = threading.Lock()
        self._secrets: Dict[str, str] = dict(secrets or {})

    def get(self, name: str) -> Optional[str]:
        with self._lock:
            return self._secrets.get(name) or None

    def set(self, name: str, secret: str) -> None:
        with self._lock:
            self._secrets[name] = secret
        logger.info("Credential updated", extra={"credential": name})

    def delete(self, name: str) -> None:
        with self._lock:
            self._secrets.pop(name, None)
        logger.info("Credential removed", extra={"credential": name})
