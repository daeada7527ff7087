"""Kubernetes client for namespace-based CWS environments."""

from src.spinwick.kube.client import (
    KubeClient,
    KubernetesAPIError,
    LoadBalancerTimeoutError,
)

__all__ = ["KubeClient", "KubernetesAPIError", "LoadBalancerTimeoutError"]
