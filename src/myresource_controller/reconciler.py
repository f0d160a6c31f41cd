"""
Reconciler: the MyResource control loop.

One call to ``reconcile`` is one pass for one object:

  1. Load it (gone already? nothing to do)
  2. Make sure our finalizer is on it, or take it off if it is deleting
  3. Validate the spec
  4. Pick the provider config
  5. Converge the cloud through the provisioner
  6. Publish currentCount and phase

Nothing is remembered between passes. Everything the next pass needs
is in the object itself: the finalizer, status.currentCount, status.phase.
"""

from __future__ import annotations

import logging
import threading
from typing import Optional

from pydantic import BaseModel

from . import FINALIZER
from .errors import InvalidFieldError, PersistenceError
from .models import MyResource, Phase, ResourceKey
from .provisioner import CloudProvisioner
from .store import ResourceStore
from .validation import validate_spec

logger = logging.getLogger("myresource.reconciler")


class ReconcileResult(BaseModel):
    """What one pass did.

    Attributes:
        key: The object reconciled, as 'namespace/name'.
        action: absent, finalizer_added, finalized, deleting, skipped or
            provisioned.
        requeue: The trigger source should run another pass right away.
        phase: Phase published by this pass, if any.
    """

    key: str
    action: str
    requeue: bool = False
    phase: Optional[Phase] = None


def classify(previous_count: int, desired_count: int) -> Phase:
    """Phase for a successful converge from previous_count to desired_count."""
    if desired_count > previous_count:
        return Phase.SCALED_UP
    if desired_count < previous_count:
        return Phase.SCALED_DOWN
    return Phase.NO_OP


class Reconciler:
    """Drives one MyResource toward its declared instance count.

    Args:
        store: Where MyResource objects are read and written.
        provisioner: Cloud provisioner façade.
        finalizer: Finalizer marker owned by this controller.
    """

    def __init__(
        self,
        store: ResourceStore,
        provisioner: CloudProvisioner,
        finalizer: str = FINALIZER,
    ) -> None:
        self._store = store
        self._provisioner = provisioner
        self._finalizer = finalizer

    def reconcile(
        self,
        key: ResourceKey,
        cancel: Optional[threading.Event] = None,
    ) -> ReconcileResult:
        """Run one reconcile pass.

        Args:
            key: The object to reconcile.
            cancel: Event that aborts in-flight cloud waits.

        Returns:
            ReconcileResult describing the pass.

        Raises:
            InvalidFieldError: The spec is invalid (status set to Error).
            CloudProviderError: Provisioning failed (status set to Error).
            PersistenceError: Loading or writing the object failed.
        """
        logger.info("Reconciling %s", key)

        resource = self._store.get(key)
        if resource is None:
            logger.info("%s not found; it may have been deleted", key)
            return ReconcileResult(key=str(key), action="absent")

        if resource.is_deleting:
            return self._finalize(resource)

        if resource.add_finalizer(self._finalizer):
            logger.info("Adding finalizer to %s", key)
            try:
                self._store.update(resource)
            except PersistenceError as exc:
                logger.error("Failed to add finalizer to %s: %s", key, exc)
                raise
            return ReconcileResult(key=str(key), action="finalizer_added", requeue=True)

        try:
            validate_spec(resource)
        except InvalidFieldError as exc:
            logger.error("Spec validation failed for %s: %s", key, exc)
            self._publish_error(resource)
            raise

        config = resource.spec.provider
        if config is None:
            logger.info("No cloud configuration on %s; skipping provisioning", key)
            return ReconcileResult(key=str(key), action="skipped")

        previous = resource.status.current_count
        desired = resource.spec.desired_count
        logger.info("Using %s configuration for %s", config.kind.value, key)

        try:
            self._provisioner.converge(config, previous, desired, cancel=cancel)
        except Exception as exc:
            logger.error("Failed to update %s instances for %s: %s", config.kind.value, key, exc)
            self._publish_error(resource)
            raise

        resource.status.current_count = desired
        resource.status.phase = classify(previous, desired)
        try:
            self._store.update_status(resource)
        except PersistenceError as exc:
            logger.error("Failed to update status of %s: %s", key, exc)
            raise

        logger.info(
            "Provisioning succeeded for %s (currentCount=%d, phase=%s)",
            key, desired, resource.status.phase.value,
        )
        return ReconcileResult(key=str(key), action="provisioned", phase=resource.status.phase)

    def _finalize(self, resource: MyResource) -> ReconcileResult:
        """Release a deleting object. No cloud instances are touched."""
        key = resource.key
        if not resource.remove_finalizer(self._finalizer):
            logger.info("%s is being deleted; nothing left to finalize", key)
            return ReconcileResult(key=str(key), action="deleting")

        logger.info("Finalizing %s", key)
        try:
            self._store.update(resource)
        except PersistenceError as exc:
            logger.error("Failed to remove finalizer from %s: %s", key, exc)
            raise
        return ReconcileResult(key=str(key), action="finalized")

    def _publish_error(self, resource: MyResource) -> None:
        """Best-effort Error status; a failed write is logged, not raised."""
        resource.status.phase = Phase.ERROR
        try:
            self._store.update_status(resource)
        except PersistenceError as exc:
            logger.warning("Could not record Error phase on %s: %s", resource.key, exc)
