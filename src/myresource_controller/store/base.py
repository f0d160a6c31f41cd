"""
Resource store interface and the in-process implementations.

The reconciler only ever talks to a ResourceStore. Two local stores
share the API-server semantics the reconciler relies on:

- optimistic concurrency: a write carrying a stale resourceVersion
  raises ConflictError;
- finalizer-aware deletion: deleting an object that still has
  finalizers only stamps deletionTimestamp, and the object disappears
  once an update leaves it deleting with no finalizers.
"""

from __future__ import annotations

import logging
import queue
import threading
import uuid
from typing import Dict, Iterator, List, Optional

from ..errors import ConflictError, PersistenceError
from ..models import MyResource, ResourceKey

logger = logging.getLogger("myresource.store")

WATCH_POLL_SECONDS = 0.5


class ResourceStore:
    """Abstract base for where MyResource objects live."""

    supports_watch: bool = False

    def get(self, key: ResourceKey) -> Optional[MyResource]:
        """Load one object.

        Returns:
            The object, or None if it does not exist.
        """
        raise NotImplementedError

    def list_keys(self) -> List[ResourceKey]:
        """Return the keys of every object in scope."""
        raise NotImplementedError

    def create(self, resource: MyResource) -> MyResource:
        """Create a new object.

        Raises:
            ConflictError: If an object with the same key exists.
        """
        raise NotImplementedError

    def update(self, resource: MyResource) -> MyResource:
        """Write metadata and spec (never status).

        Raises:
            ConflictError: On a stale resourceVersion.
            PersistenceError: If the object is gone or the write fails.
        """
        raise NotImplementedError

    def update_status(self, resource: MyResource) -> MyResource:
        """Write the status subresource only.

        Raises:
            ConflictError: On a stale resourceVersion.
            PersistenceError: If the object is gone or the write fails.
        """
        raise NotImplementedError

    def delete(self, key: ResourceKey) -> bool:
        """Request deletion.

        Returns:
            False if the object did not exist.
        """
        raise NotImplementedError

    def watch(self, stop: threading.Event) -> Iterator[ResourceKey]:
        """Yield the key of every object that changes until ``stop`` is set."""
        raise NotImplementedError


class LocalResourceStore(ResourceStore):
    """API-server semantics over a pluggable local backing.

    Subclasses provide ``_read``, ``_write``, ``_remove`` and ``_keys``.
    """

    supports_watch = True

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._watchers: List["queue.Queue[ResourceKey]"] = []

    # ------------------------------------------------------------------
    # Backing storage
    # ------------------------------------------------------------------

    def _read(self, key: ResourceKey) -> Optional[MyResource]:
        raise NotImplementedError

    def _write(self, resource: MyResource) -> None:
        raise NotImplementedError

    def _remove(self, key: ResourceKey) -> None:
        raise NotImplementedError

    def _keys(self) -> List[ResourceKey]:
        raise NotImplementedError

    # ------------------------------------------------------------------
    # ResourceStore API
    # ------------------------------------------------------------------

    def get(self, key: ResourceKey) -> Optional[MyResource]:
        with self._lock:
            return self._read(key)

    def list_keys(self) -> List[ResourceKey]:
        with self._lock:
            return sorted(self._keys())

    def create(self, resource: MyResource) -> MyResource:
        with self._lock:
            if self._read(resource.key) is not None:
                raise ConflictError(f"{resource.key} already exists")
            stored = resource.model_copy(deep=True)
            stored.metadata.uid = stored.metadata.uid or str(uuid.uuid4())
            stored.metadata.resource_version = "1"
            stored.metadata.generation = 1
            stored.metadata.deletion_timestamp = None
            self._write(stored)
            self._notify(stored.key)
            return stored.model_copy(deep=True)

    def update(self, resource: MyResource) -> MyResource:
        with self._lock:
            existing = self._existing(resource)
            stored = existing.model_copy(deep=True)
            stored.metadata.finalizers = list(resource.metadata.finalizers)
            stored.metadata.labels = dict(resource.metadata.labels)
            if resource.spec != existing.spec:
                stored.spec = resource.spec.model_copy(deep=True)
                stored.metadata.generation = (existing.metadata.generation or 0) + 1

            if stored.is_deleting and not stored.metadata.finalizers:
                logger.debug("Finalizers cleared on %s; removing it", stored.key)
                self._remove(stored.key)
                self._notify(stored.key)
                return stored

            if stored == existing:
                return existing
            return self._commit(stored)

    def update_status(self, resource: MyResource) -> MyResource:
        with self._lock:
            existing = self._existing(resource)
            if resource.status == existing.status:
                # Unchanged writes keep the resourceVersion and emit no event.
                return existing
            stored = existing.model_copy(deep=True)
            stored.status = resource.status.model_copy(deep=True)
            return self._commit(stored)

    def delete(self, key: ResourceKey) -> bool:
        with self._lock:
            existing = self._read(key)
            if existing is None:
                return False
            if existing.metadata.finalizers:
                existing.mark_deleted()
                self._commit(existing)
            else:
                self._remove(key)
                self._notify(key)
            return True

    def watch(self, stop: threading.Event) -> Iterator[ResourceKey]:
        events: "queue.Queue[ResourceKey]" = queue.Queue()
        with self._lock:
            self._watchers.append(events)
        try:
            while not stop.is_set():
                try:
                    yield events.get(timeout=WATCH_POLL_SECONDS)
                except queue.Empty:
                    continue
        finally:
            with self._lock:
                self._watchers.remove(events)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _existing(self, resource: MyResource) -> MyResource:
        existing = self._read(resource.key)
        if existing is None:
            raise PersistenceError(f"{resource.key} not found")
        incoming = resource.metadata.resource_version
        if incoming is not None and incoming != existing.metadata.resource_version:
            raise ConflictError(
                f"{resource.key}: resourceVersion {incoming} is stale "
                f"(current {existing.metadata.resource_version})"
            )
        return existing

    def _commit(self, stored: MyResource) -> MyResource:
        stored.metadata.resource_version = str(int(stored.metadata.resource_version or "0") + 1)
        self._write(stored)
        self._notify(stored.key)
        return stored.model_copy(deep=True)

    def _notify(self, key: ResourceKey) -> None:
        for events in list(self._watchers):
            events.put(key)


class MemoryResourceStore(LocalResourceStore):
    """Thread-safe in-memory store."""

    def __init__(self) -> None:
        super().__init__()
        self._objects: Dict[ResourceKey, MyResource] = {}

    def _read(self, key: ResourceKey) -> Optional[MyResource]:
        obj = self._objects.get(key)
        return obj.model_copy(deep=True) if obj is not None else None

    def _write(self, resource: MyResource) -> None:
        self._objects[resource.key] = resource.model_copy(deep=True)

    def _remove(self, key: ResourceKey) -> None:
        self._objects.pop(key, None)

    def _keys(self) -> List[ResourceKey]:
        return list(self._objects)
