"""
Named outputs produced by provisioning steps.

Later steps read what earlier steps produced (the kubeadm join command,
the admin kubeconfig) from an explicit store instead of fixed paths in
the working directory.

Example:
    from kubestep.artifacts import get_artifact_store, JOIN_COMMAND

    store = get_artifact_store(config)
    store.put(JOIN_COMMAND, script, mode=0o755)
    store.get(JOIN_COMMAND)
"""

from __future__ import annotations

import logging
import os
import tempfile
from abc import ABC, abstractmethod
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Callable, Dict, List, Optional, Type

from kubestep.errors import ArtifactNotFound

if TYPE_CHECKING:
    from kubestep.config import KubestepConfig

logger = logging.getLogger(__name__)

__all__ = [
    "JOIN_COMMAND",
    "KUBECONFIG",
    "KUBEADM_INIT_OUTPUT",
    "INTERNAL_IP",
    "RUN_SUMMARY",
    "ArtifactStoreType",
    "ArtifactStore",
    "MemoryArtifactStore",
    "FileArtifactStore",
    "get_artifact_store",
]

# Well-known artifact names
JOIN_COMMAND = "join-command"
KUBECONFIG = "kubeconfig"
KUBEADM_INIT_OUTPUT = "kubeadm-init-output"
INTERNAL_IP = "internal-ip"
RUN_SUMMARY = "run-summary"

# On-disk file names for the well-known artifacts
_FILE_NAMES = {
    JOIN_COMMAND: "kubeadm-join-command.sh",
    KUBECONFIG: "kubeconfig",
    KUBEADM_INIT_OUTPUT: "kubeadm-init.out",
    INTERNAL_IP: "internal-ip",
    RUN_SUMMARY: "run-summary.json",
}


class ArtifactStoreType(str, Enum):
    """Available artifact store backends."""
    FILE = "file"
    MEMORY = "memory"


class ArtifactStore(ABC):
    """Mapping of artifact name to opaque bytes."""

    @abstractmethod
    def put(self, name: str, data: bytes, *, mode: Optional[int] = None) -> None:
        """Store (or replace) an artifact."""

    @abstractmethod
    def get(self, name: str) -> bytes:
        """Return an artifact; raises ``ArtifactNotFound`` if missing."""

    @abstractmethod
    def has(self, name: str) -> bool:
        ...

    @abstractmethod
    def names(self) -> List[str]:
        ...

    def path_for(self, name: str) -> Optional[Path]:
        """Filesystem path of a stored artifact, for tools that need a file."""
        return None

    def get_text(self, name: str) -> str:
        return self.get(name).decode("utf-8")

    def put_text(self, name: str, text: str, *, mode: Optional[int] = None) -> None:
        self.put(name, text.encode("utf-8"), mode=mode)


_BACKENDS: Dict[ArtifactStoreType, Type[ArtifactStore]] = {}


def register_backend(
    store_type: ArtifactStoreType,
) -> Callable[[Type[ArtifactStore]], Type[ArtifactStore]]:
    """Decorator registering an artifact store implementation."""

    def decorator(cls: Type[ArtifactStore]) -> Type[ArtifactStore]:
        _BACKENDS[store_type] = cls
        return cls

    return decorator


@register_backend(ArtifactStoreType.MEMORY)
class MemoryArtifactStore(ArtifactStore):
    """In-process store for dry runs and tests."""

    def __init__(self) -> None:
        self._data: Dict[str, bytes] = {}
        self._modes: Dict[str, int] = {}

    def put(self, name: str, data: bytes, *, mode: Optional[int] = None) -> None:
        self._data[name] = bytes(data)
        if mode is not None:
            self._modes[name] = mode

    def get(self, name: str) -> bytes:
        try:
            return self._data[name]
        except KeyError:
            raise ArtifactNotFound(name) from None

    def has(self, name: str) -> bool:
        return name in self._data

    def names(self) -> List[str]:
        return sorted(self._data)

    def mode_of(self, name: str) -> Optional[int]:
        return self._modes.get(name)


@register_backend(ArtifactStoreType.FILE)
class FileArtifactStore(ArtifactStore):
    """
    Artifacts as files under one directory.

    Data layout:
        ~/.kubestep/artifacts/
        ├── kubeadm-join-command.sh
        ├── kubeadm-init.out
        ├── kubeconfig
        └── run-summary.json
    """

    def __init__(self, base_dir: Optional[str] = None):
        self.base_dir = Path(
            base_dir or os.environ.get(
                "KUBESTEP_ARTIFACT_DIR",
                os.path.expanduser("~/.kubestep/artifacts"),
            )
        )
        self.base_dir.mkdir(parents=True, exist_ok=True)
        logger.debug(f"FileArtifactStore initialized at {self.base_dir}")

    def _path(self, name: str) -> Path:
        if "/" in name or name in ("", ".", ".."):
            raise ValueError(f"invalid artifact name {name!r}")
        return self.base_dir / _FILE_NAMES.get(name, name)

    def put(self, name: str, data: bytes, *, mode: Optional[int] = None) -> None:
        """Write atomically: temp file in the same directory, then rename."""
        path = self._path(name)
        fd, tmp = tempfile.mkstemp(dir=self.base_dir, prefix=f".{path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
            os.chmod(tmp, mode if mode is not None else 0o644)
            os.replace(tmp, path)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise
        logger.info(f"Saved artifact {name} to {path}")

    def get(self, name: str) -> bytes:
        path = self._path(name)
        try:
            return path.read_bytes()
        except FileNotFoundError:
            raise ArtifactNotFound(name) from None

    def has(self, name: str) -> bool:
        return self._path(name).exists()

    def names(self) -> List[str]:
        by_file = {v: k for k, v in _FILE_NAMES.items()}
        return sorted(
            by_file.get(p.name, p.name)
            for p in self.base_dir.iterdir()
            if p.is_file() and not p.name.startswith(".")
        )

    def path_for(self, name: str) -> Optional[Path]:
        path = self._path(name)
        return path if path.exists() else None


def get_artifact_store(
    config: Optional["KubestepConfig"] = None,
    store_type: Optional[ArtifactStoreType] = None,
) -> ArtifactStore:
    """
    Build the configured artifact store.

    Args:
        config: Configuration; ``artifact_store`` and ``artifact_dir`` are used
        store_type: Explicit backend, overriding the configuration
    """
    if store_type is None:
        store_type = ArtifactStoreType(config.artifact_store if config else "file")

    cls = _BACKENDS[store_type]
    if store_type == ArtifactStoreType.FILE:
        return cls(base_dir=config.artifact_dir if config else None)
    return cls()
