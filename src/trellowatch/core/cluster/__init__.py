"""
Kubernetes access for runtime-selected kinds.
"""

from .client import ClusterClient, WatchEvent, load_cluster_config

__all__ = ["ClusterClient", "WatchEvent", "load_cluster_config"]
