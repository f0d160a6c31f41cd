"""
Provider backend base: one converge algorithm, three bindings.

A backend turns (config, current_count, desired_count) into cloud calls.
The arithmetic, ordering, cancellation checks and error wrapping live
here; subclasses only know how to open a session and how to create,
list and delete a single instance on their cloud.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Dict, List, Optional

from ..errors import CloudProviderError, ControllerError, OperationCancelled
from ..models import ProviderConfig, ProviderKind
from ..naming import ManagedInstance, NameGenerator, RandomNameGenerator, deletion_order

logger = logging.getLogger("myresource.providers")


# ---------------------------------------------------------------------------
# Backend registry
# ---------------------------------------------------------------------------

_BACKENDS: Dict[ProviderKind, type] = {}


def register_backend(kind: ProviderKind):
    """Decorator to register a backend class for a provider kind.

    Args:
        kind: The provider kind the class handles.
    """
    def wrapper(cls):
        _BACKENDS[kind] = cls
        return cls
    return wrapper


def backend_class(kind: ProviderKind) -> Optional[type]:
    """Return the registered backend class for a kind, if any."""
    return _BACKENDS.get(kind)


# ---------------------------------------------------------------------------
# Backend interface
# ---------------------------------------------------------------------------

class ProviderBackend:
    """Abstract base for cloud backends.

    Args:
        name_generator: Source of names for new instances. Defaults to a
            RandomNameGenerator private to this backend.
    """

    kind: ProviderKind
    label: str = "cloud"

    def __init__(self, name_generator: Optional[NameGenerator] = None) -> None:
        self._names = name_generator or RandomNameGenerator()

    # ------------------------------------------------------------------
    # Provider-specific primitives
    # ------------------------------------------------------------------

    def open_session(self, config: ProviderConfig) -> Any:
        """Build the SDK client(s) for one pass.

        Args:
            config: The provider config from the resource spec.

        Returns:
            An opaque session handed back to the other primitives.
        """
        raise NotImplementedError

    def create_instance(
        self,
        session: Any,
        config: ProviderConfig,
        name: str,
        cancel: Optional[threading.Event] = None,
    ) -> None:
        """Create one instance and block until the cloud reports it created."""
        raise NotImplementedError

    def list_instances(self, session: Any, config: ProviderConfig) -> List[ManagedInstance]:
        """List every instance in the config's scope whose name matches the prefix."""
        raise NotImplementedError

    def delete_instance(
        self,
        session: Any,
        config: ProviderConfig,
        instance: ManagedInstance,
        cancel: Optional[threading.Event] = None,
    ) -> None:
        """Delete one instance."""
        raise NotImplementedError

    # ------------------------------------------------------------------
    # Converge
    # ------------------------------------------------------------------

    def converge(
        self,
        config: ProviderConfig,
        current_count: int,
        desired_count: int,
        cancel: Optional[threading.Event] = None,
    ) -> None:
        """Drive the instance count in the config's scope to desired_count.

        Creates or deletes ``desired_count - current_count`` instances,
        one at a time. The first failure stops the batch; instances
        already created or deleted stay that way.

        Args:
            config: Provider config from the resource spec.
            current_count: Count last recorded in status.
            desired_count: Target count from the spec.
            cancel: Event that aborts the batch between cloud calls.

        Raises:
            CloudProviderError: Any cloud failure, wrapped with the
                operation and target.
        """
        diff = desired_count - current_count
        if diff == 0:
            logger.debug("[%s] Nothing to do at %d instance(s)", self.label, current_count)
            return

        session = self._open(config)
        if diff > 0:
            self._scale_up(session, config, diff, cancel)
        else:
            self._scale_down(session, config, -diff, cancel)

    def _open(self, config: ProviderConfig) -> Any:
        try:
            return self.open_session(config)
        except ControllerError:
            raise
        except Exception as exc:
            raise CloudProviderError("open session for", config.scope, exc) from exc

    def _scale_up(
        self,
        session: Any,
        config: ProviderConfig,
        count: int,
        cancel: Optional[threading.Event],
    ) -> None:
        logger.info("[%s] Creating %d instance(s) in %s", self.label, count, config.scope)
        for _ in range(count):
            self._check_cancel(cancel, "create instance in", config.scope)
            try:
                name = self._names.next_name()
            except Exception as exc:
                raise CloudProviderError("name instance in", config.scope, exc) from exc
            try:
                self.create_instance(session, config, name, cancel=cancel)
            except ControllerError:
                raise
            except Exception as exc:
                raise CloudProviderError("create instance", name, exc) from exc
            logger.info("[%s] Created instance %s", self.label, name)

    def _scale_down(
        self,
        session: Any,
        config: ProviderConfig,
        count: int,
        cancel: Optional[threading.Event],
    ) -> None:
        try:
            found = self.list_instances(session, config)
        except ControllerError:
            raise
        except Exception as exc:
            raise CloudProviderError("list instances in", config.scope, exc) from exc

        candidates = deletion_order(found)
        if len(candidates) < count:
            logger.warning(
                "[%s] Asked to delete %d instance(s) but only %d managed instance(s) found",
                self.label, count, len(candidates),
            )
        to_delete = candidates[:count]
        logger.info(
            "[%s] Deleting %d instance(s): %s",
            self.label, len(to_delete), [inst.name for inst in to_delete],
        )

        for instance in to_delete:
            self._check_cancel(cancel, "delete instance", instance.name)
            try:
                self.delete_instance(session, config, instance, cancel=cancel)
            except ControllerError:
                raise
            except Exception as exc:
                raise CloudProviderError("delete instance", instance.instance_id, exc) from exc
            logger.info("[%s] Deleted instance %s", self.label, instance.name)

    @staticmethod
    def _check_cancel(cancel: Optional[threading.Event], operation: str, target: str) -> None:
        if cancel is not None and cancel.is_set():
            raise OperationCancelled(operation, target, "cancelled")
