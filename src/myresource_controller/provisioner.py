"""
Cloud provisioner: routes a converge request to exactly one backend.

The provisioner never touches a cloud API itself and never retries;
whatever the backend raises reaches the reconciler unchanged.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Dict, Optional

from .models import ProviderConfig, ProviderKind
from .providers import ProviderBackend, backend_class

logger = logging.getLogger("myresource.provisioner")


class CloudProvisioner:
    """Dispatches converge calls by provider kind.

    Args:
        backends: Pre-built backends keyed by kind. Kinds not listed are
            built on first use from the backend registry.
        options: Constructor keyword arguments for registry-built backends,
            keyed by kind.
    """

    def __init__(
        self,
        backends: Optional[Dict[ProviderKind, ProviderBackend]] = None,
        options: Optional[Dict[ProviderKind, Dict[str, Any]]] = None,
    ) -> None:
        self._backends: Dict[ProviderKind, ProviderBackend] = dict(backends or {})
        self._options = options or {}
        self._lock = threading.Lock()

    def backend_for(self, kind: ProviderKind) -> ProviderBackend:
        """Return the backend for a provider kind, building it if needed.

        Raises:
            RuntimeError: If no backend is registered for the kind.
        """
        with self._lock:
            backend = self._backends.get(kind)
            if backend is not None:
                return backend
            cls = backend_class(kind)
            if cls is None:
                raise RuntimeError(f"Unknown cloud provider: {kind}")
            backend = cls(**self._options.get(kind, {}))
            self._backends[kind] = backend
            return backend

    def converge(
        self,
        config: ProviderConfig,
        current_count: int,
        desired_count: int,
        cancel: Optional[threading.Event] = None,
    ) -> None:
        """Converge the instance count for one provider config.

        Args:
            config: The populated provider config (its ``kind`` picks the backend).
            current_count: Count last recorded in status.
            desired_count: Target count.
            cancel: Event that aborts in-flight waits.
        """
        backend = self.backend_for(config.kind)
        logger.info(
            "Converging %s from %d to %d instance(s) in %s",
            config.kind.value, current_count, desired_count, config.scope,
        )
        backend.converge(config, current_count, desired_count, cancel=cancel)
