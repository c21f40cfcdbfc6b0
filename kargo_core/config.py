"""Configuration objects for kargo-core."""

from dataclasses import dataclass
import os

from .exceptions import InputException
from .manifest import DEFAULT_ARGOCD_NAMESPACE

KARGO_NAMESPACE_ENV = "KARGO_NAMESPACE"
SHARD_NAME_ENV = "SHARD_NAME"
ARGOCD_NAMESPACE_ENV = "ARGOCD_NAMESPACE"


@dataclass
class WarehouseControllerConfig:
    """Configuration for the WarehouseController."""

    fetch_timeout: float = 60.0
    """Seconds allowed for listing the candidates of one subscription."""


@dataclass
class ApplicationsControllerConfig:
    """Configuration for the ApplicationsController."""

    shard_name: str | None = None
    """Only handle Stages and Applications labeled for this shard, if set."""

    argocd_namespace: str = DEFAULT_ARGOCD_NAMESPACE
    """Namespace of Applications referenced without an explicit namespace."""

    @classmethod
    def from_env(cls) -> "ApplicationsControllerConfig":
        return cls(
            shard_name=os.environ.get(SHARD_NAME_ENV) or None,
            argocd_namespace=os.environ.get(ARGOCD_NAMESPACE_ENV)
            or DEFAULT_ARGOCD_NAMESPACE,
        )


@dataclass
class WebhookConfig:
    """Configuration for the admission webhooks."""

    kargo_namespace: str
    """Namespace the control plane (and its API server service account) runs in."""

    @classmethod
    def from_env(cls) -> "WebhookConfig":
        """Read the webhook configuration from the environment."""
        if not (kargo_namespace := os.environ.get(KARGO_NAMESPACE_ENV)):
            raise InputException(
                f"Required environment variable {KARGO_NAMESPACE_ENV} is not set"
            )
        return cls(kargo_namespace=kargo_namespace)
