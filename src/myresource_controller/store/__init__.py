"""
Resource stores: where MyResource objects live.

The reconciler only depends on the ResourceStore interface; pick the
implementation that matches where the controller runs.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from .base import LocalResourceStore, MemoryResourceStore, ResourceStore
from .file import FileResourceStore
from .kubernetes import KubernetesResourceStore

__all__ = [
    "ResourceStore",
    "LocalResourceStore",
    "MemoryResourceStore",
    "FileResourceStore",
    "KubernetesResourceStore",
    "open_store",
]


def open_store(kind: str, home: Path, namespace: Optional[str] = None) -> ResourceStore:
    """Build the store named in the controller config.

    Args:
        kind: 'kubernetes', 'file', or 'memory'.
        home: Controller home directory (used by the file store).
        namespace: Namespace restriction for the Kubernetes store.

    Raises:
        RuntimeError: If the store kind is unknown.
    """
    if kind == "kubernetes":
        return KubernetesResourceStore(namespace=namespace)
    if kind == "file":
        return FileResourceStore(home)
    if kind == "memory":
        return MemoryResourceStore()
    raise RuntimeError(f"Unknown store: {kind}")
