"""
Credential sources for installer steps.

Registry credentials used by the Nephio installer are looked up here at
run time; they never appear in configuration defaults, command lines or
logs.

Lookup order (``build_secret_store``):
1. Files in ``config.secrets_dir`` (one file per secret, e.g. mounted
   Kubernetes/Docker secrets)
2. Environment variables ``KUBESTEP_SECRET_<NAME>``

Example:
    store = build_secret_store(config)
    token = store.get("dockerhub_token").get_secret_value()
"""

from __future__ import annotations

import logging
import os
from abc import ABC, abstractmethod
from pathlib import Path
from typing import TYPE_CHECKING, Mapping, Optional, Sequence

from pydantic import SecretStr

from kubestep.errors import SecretNotFound

if TYPE_CHECKING:
    from kubestep.config import KubestepConfig

logger = logging.getLogger(__name__)

__all__ = [
    "DOCKERHUB_USERNAME",
    "DOCKERHUB_TOKEN",
    "SecretStore",
    "EnvSecretStore",
    "FileSecretStore",
    "ChainedSecretStore",
    "build_secret_store",
]

DOCKERHUB_USERNAME = "dockerhub_username"
DOCKERHUB_TOKEN = "dockerhub_token"


class SecretStore(ABC):
    """Read-only source of named secrets."""

    @abstractmethod
    def get_optional(self, name: str) -> Optional[SecretStr]:
        """Return the secret, or None if this store does not have it."""

    def get(self, name: str) -> SecretStr:
        """Return the secret; raises ``SecretNotFound`` if it is missing."""
        value = self.get_optional(name)
        if value is None:
            raise SecretNotFound(name)
        return value


class EnvSecretStore(SecretStore):
    """Secrets from environment variables: ``<prefix><NAME>`` (upper-cased)."""

    def __init__(self, prefix: str = "KUBESTEP_SECRET_", environ: Optional[Mapping[str, str]] = None):
        self.prefix = prefix
        self._environ = environ if environ is not None else os.environ

    def get_optional(self, name: str) -> Optional[SecretStr]:
        value = self._environ.get(f"{self.prefix}{name.upper()}")
        if not value:
            return None
        return SecretStr(value)


class FileSecretStore(SecretStore):
    """Secrets stored one per file; the trailing newline is stripped."""

    def __init__(self, directory: str | Path):
        self.directory = Path(directory)

    def get_optional(self, name: str) -> Optional[SecretStr]:
        path = self.directory / name
        if not path.is_file():
            return None
        value = path.read_text(encoding="utf-8").rstrip("\r\n")
        if not value:
            logger.warning("Secret file %s is empty", path)
            return None
        return SecretStr(value)


class ChainedSecretStore(SecretStore):
    """First store that has the secret wins."""

    def __init__(self, stores: Sequence[SecretStore]):
        self.stores = list(stores)

    def get_optional(self, name: str) -> Optional[SecretStr]:
        for store in self.stores:
            value = store.get_optional(name)
            if value is not None:
                return value
        return None


def build_secret_store(config: "KubestepConfig") -> SecretStore:
    """Secret store described by the configuration."""
    stores: list[SecretStore] = []
    if config.secrets_dir:
        stores.append(FileSecretStore(config.secrets_dir))
    stores.append(EnvSecretStore(prefix=config.secret_env_prefix))
    return ChainedSecretStore(stores)
