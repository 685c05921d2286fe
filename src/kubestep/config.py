"""
Centralized configuration for kubestep.

Uses Pydantic BaseSettings for environment variable integration
and validation. All configurable values should be defined here.

Configuration sources (in order of precedence):
1. Explicit constructor arguments
2. Environment variables (KUBESTEP_*)
3. .env file
4. Default values

Credentials are deliberately absent: registry usernames and tokens come
from a secret store (see ``kubestep.secrets``), never from settings.

Example:
    from kubestep.config import get_config

    config = get_config()
    print(config.kubernetes_version)  # From KUBESTEP_KUBERNETES_VERSION or default

    # Override at runtime
    config = get_config(dry_run=True)
"""

from __future__ import annotations

import getpass
import ipaddress
import os
import re
from pathlib import Path
from typing import Literal, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from kubestep.timeouts import (
    DEFAULT_MAX_ATTEMPTS,
    DEFAULT_RETRY_BACKOFF,
    DEFAULT_RETRY_DELAY_S,
    DEFAULT_RETRY_JITTER,
    DEFAULT_RETRY_MAX_DELAY_S,
    POLL_INTERVAL_S,
    SUBPROCESS_DEFAULT_TIMEOUT_S,
    WAIT_TIMEOUT_S,
)

_K8S_VERSION_RE = re.compile(r"^v\d+\.\d+$")


class KubestepConfig(BaseSettings):
    """
    Central configuration for kubestep.

    All settings can be overridden via environment variables
    prefixed with KUBESTEP_.

    Example:
        export KUBESTEP_KUBERNETES_VERSION=v1.33
        export KUBESTEP_LOG_LEVEL=debug
    """

    model_config = SettingsConfigDict(
        env_prefix="KUBESTEP_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    service_name: str = Field(
        default="kubestep",
        description="Service name for log and telemetry attribution",
    )

    # Logging
    log_file: str = Field(
        default="~/k8s-setup.log",
        description="Session transcript capturing every step and command output",
    )
    log_level: Literal["debug", "info", "warning", "error"] = Field(
        default="info",
        description="Logging level",
    )
    log_format: Literal["json", "text"] = Field(
        default="json",
        description="Log output format (json for aggregation, text for console)",
    )

    # Artifacts
    artifact_dir: str = Field(
        default="~/.kubestep/artifacts",
        description="Directory for the file artifact store",
    )
    artifact_store: Literal["file", "memory"] = Field(
        default="file",
        description="Artifact store backend",
    )

    # Retry policy
    default_max_attempts: int = Field(
        default=DEFAULT_MAX_ATTEMPTS,
        ge=1,
        description="Attempts per step unless the step overrides it",
    )
    default_retry_delay_s: float = Field(
        default=DEFAULT_RETRY_DELAY_S,
        ge=0,
        description="Delay between attempts (initial delay for exponential backoff)",
    )
    backoff_strategy: Literal["fixed", "exponential"] = Field(
        default="fixed",
        description="Delay strategy between attempts",
    )
    backoff_multiplier: float = Field(
        default=DEFAULT_RETRY_BACKOFF,
        ge=1.0,
        description="Growth factor for exponential backoff",
    )
    backoff_max_s: float = Field(
        default=DEFAULT_RETRY_MAX_DELAY_S,
        ge=0,
        description="Upper bound for a single exponential delay",
    )
    backoff_jitter: float = Field(
        default=DEFAULT_RETRY_JITTER,
        ge=0.0,
        le=1.0,
        description="Fraction of each exponential delay that may be randomized",
    )

    # Waiting
    poll_interval_s: float = Field(default=POLL_INTERVAL_S, gt=0)
    wait_timeout_s: int = Field(default=WAIT_TIMEOUT_S, gt=0)
    command_timeout_s: int = Field(default=SUBPROCESS_DEFAULT_TIMEOUT_S, gt=0)

    # Cluster
    kubernetes_version: str = Field(
        default="v1.34",
        description="Kubernetes minor release used for the apt repository",
    )
    pod_network_cidr: str = Field(
        default="10.244.0.0/16",
        description="Pod network CIDR passed to kubeadm init (Flannel default)",
    )
    advertise_address: Optional[str] = Field(
        default=None,
        description="API server advertise address (auto-detected if not set)",
    )
    install_user_kubeconfig: bool = Field(
        default=True,
        description="Also install the admin kubeconfig to ~/.kube/config",
    )
    kubeconfig: Optional[str] = Field(
        default=None,
        description="Path to kubeconfig file (taken from the artifact store if not set)",
    )

    # Add-on manifests
    flannel_manifest_url: str = Field(
        default="https://raw.githubusercontent.com/flannel-io/flannel/master/Documentation/kube-flannel.yml",
    )
    local_path_manifest_url: str = Field(
        default="https://raw.githubusercontent.com/rancher/local-path-provisioner/v0.0.24/deploy/local-path-storage.yaml",
    )
    metal3_version: str = Field(default="v0.11.0")
    cert_manager_version: str = Field(default="v1.16.2")

    # Nephio
    install_nephio: bool = Field(default=True)
    nephio_branch: str = Field(default="main")
    nephio_init_url: str = Field(
        default="https://raw.githubusercontent.com/nephio-project/test-infra/main/e2e/provision/init.sh",
    )
    nephio_debug: bool = Field(default=False)
    nephio_user: Optional[str] = Field(
        default=None,
        description="User the Nephio installer provisions for (current user if not set)",
    )

    # Secrets
    secrets_dir: Optional[str] = Field(
        default=None,
        description="Directory of mounted secret files, one file per secret",
    )
    secret_env_prefix: str = Field(
        default="KUBESTEP_SECRET_",
        description="Environment variable prefix for secrets",
    )

    # Telemetry
    otlp_endpoint: Optional[str] = Field(
        default=None,
        description="OTLP gRPC endpoint; spans are exported only when set",
    )

    dry_run: bool = Field(
        default=False,
        description="Log commands instead of running them",
    )

    @field_validator("log_file", "artifact_dir", "secrets_dir", "kubeconfig")
    @classmethod
    def expand_path(cls, v: Optional[str]) -> Optional[str]:
        """Expand ~ and environment variables in paths."""
        if v is None:
            return v
        return os.path.expanduser(os.path.expandvars(v))

    @field_validator("pod_network_cidr")
    @classmethod
    def validate_cidr(cls, v: str) -> str:
        """Reject anything that is not a network in CIDR notation."""
        try:
            ipaddress.ip_network(v, strict=True)
        except ValueError as e:
            raise ValueError(f"invalid pod network CIDR {v!r}: {e}") from e
        return v

    @field_validator("kubernetes_version")
    @classmethod
    def validate_kubernetes_version(cls, v: str) -> str:
        """Accept 1.34 or v1.34; normalize to the v-prefixed form."""
        if not v.startswith("v"):
            v = f"v{v}"
        if not _K8S_VERSION_RE.match(v):
            raise ValueError(
                f"invalid Kubernetes version {v!r}: expected a minor release like v1.34"
            )
        return v

    @field_validator("advertise_address")
    @classmethod
    def validate_address(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        ipaddress.ip_address(v)
        return v

    def get_artifact_path(self) -> Path:
        """Get artifact directory path."""
        return Path(self.artifact_dir)

    def get_nephio_user(self) -> str:
        """User the Nephio installer should provision for."""
        return self.nephio_user or getpass.getuser()

    def kubernetes_repo_url(self) -> str:
        """Base URL of the pkgs.k8s.io apt repository for the configured release."""
        return f"https://pkgs.k8s.io/core:/stable:/{self.kubernetes_version}/deb/"

    def metal3_base_url(self) -> str:
        return (
            "https://raw.githubusercontent.com/metal3-io/baremetal-operator/"
            f"{self.metal3_version}/config"
        )

    def cert_manager_manifest_url(self) -> str:
        return (
            "https://github.com/cert-manager/cert-manager/releases/download/"
            f"{self.cert_manager_version}/cert-manager.yaml"
        )


# Global singleton
_config: Optional[KubestepConfig] = None


def get_config(**overrides) -> KubestepConfig:
    """
    Get the global configuration instance.

    Creates a singleton on first call. Subsequent calls return
    the same instance unless overrides are provided.

    Args:
        **overrides: Override any config values

    Returns:
        KubestepConfig instance
    """
    global _config

    if overrides or _config is None:
        _config = KubestepConfig(**overrides)

    return _config


def reset_config() -> None:
    """Reset the global configuration (for testing)."""
    global _config
    _config = None
