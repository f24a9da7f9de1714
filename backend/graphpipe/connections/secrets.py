"""Secret references and the secret store collaborator."""

from __future__ import annotations

import os
import re
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional


@dataclass(frozen=True)
class SecretReference:
    """
    Opaque pointer to credentials held by a secret store.

    Attributes:
        name: Secret name in the store (workspace scoped)
        provider: Store that holds the secret
        version: Pinned version, latest when None
        vault_url: Store location for remote providers
    """

    name: str
    provider: str = "memory"
    version: Optional[str] = None
    vault_url: Optional[str] = None

    def to_dict(self) -> dict:
        result: Dict[str, Any] = {"name": self.name, "provider": self.provider}
        if self.version:
            result["version"] = self.version
        if self.vault_url:
            result["vaultUrl"] = self.vault_url
        return result

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> SecretReference:
        return cls(
            name=data.get("name") or data.get("secretName"),
            provider=data.get("provider", "memory"),
            version=data.get("version"),
            vault_url=data.get("vaultUrl", data.get("vault_url")),
        )


class SecretStore(ABC):
    """
    Abstract secret store.

    The engine only reads; ``set_secret`` exists for the flows that
    register credentials after a successful connection test.
    """

    @abstractmethod
    def get_secret(self, reference: SecretReference) -> Optional[str]:
        """
        Fetch a secret payload.

        Returns:
            The payload (JSON or connection URL), or None if absent
        """
        pass

    @abstractmethod
    def set_secret(self, reference: SecretReference, payload: str) -> SecretReference:
        """
        Store a payload, returning the reference to the stored version.
        """
        pass


class InMemorySecretStore(SecretStore):
    """Process-local store with simple integer versions."""

    def __init__(self) -> None:
        self._secrets: Dict[str, Dict[str, str]] = {}
        self._latest: Dict[str, str] = {}
        self._lock = threading.Lock()

    def get_secret(self, reference: SecretReference) -> Optional[str]:
        versions = self._secrets.get(reference.name)
        if not versions:
            return None
        version = reference.version or self._latest.get(reference.name)
        return versions.get(version) if version else None

    def set_secret(self, reference: SecretReference, payload: str) -> SecretReference:
        with self._lock:
            versions = self._secrets.setdefault(reference.name, {})
            version = str(len(versions) + 1)
            versions[version] = payload
            self._latest[reference.name] = version
        return SecretReference(name=reference.name, provider=reference.provider, version=version)


class EnvSecretStore(SecretStore):
    """
    Read secrets from environment variables.

    ``tenant-1-warehouse`` is read from ``{prefix}TENANT_1_WAREHOUSE``.
    """

    def __init__(self, prefix: str = "GRAPHABLE_SECRET_", environ: Optional[Mapping[str, str]] = None) -> None:
        self.prefix = prefix
        self._environ = environ if environ is not None else os.environ

    def variable_name(self, name: str) -> str:
        return self.prefix + re.sub(r"[^A-Za-z0-9]", "_", name).upper()

    def get_secret(self, reference: SecretReference) -> Optional[str]:
        return self._environ.get(self.variable_name(reference.name))

    def set_secret(self, reference: SecretReference, payload: str) -> SecretReference:
        raise NotImplementedError("Environment secrets are read-only")

