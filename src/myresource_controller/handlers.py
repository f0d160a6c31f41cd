"""
kopf handlers: the trigger source when MyResource objects live in a cluster.

kopf watches the custom resource, runs at most one change handler per
object at a time, and retries handlers that fail. Every handler here
funnels into a single reconcile pass:

- create, spec update, and resume when the operator (re)starts;
- delete, while the finalizer still holds the object;
- a timer that resyncs each object periodically.

kopf's finalizer is set to the reconciler's own marker, so both agree on
what blocks deletion. Progress and diff-base records live in annotations;
status belongs to the reconciler alone.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timezone
from typing import Any, Optional

import kopf

from . import API_GROUP, API_VERSION, FINALIZER, PLURAL
from .config import ControllerConfig
from .controller import ControllerState, build_reconciler, configure_logging
from .errors import ControllerError, InvalidFieldError, OperationCancelled
from .models import ResourceKey
from .reconciler import Reconciler, ReconcileResult
from .store import KubernetesResourceStore
from .workqueue import backoff_delay

logger = logging.getLogger("myresource.handlers")

RESOURCE = (API_GROUP, API_VERSION, PLURAL)


def build_memo(config: ControllerConfig, reconciler: Reconciler) -> kopf.Memo:
    """Operator-wide state handed to every handler as ``memo``.

    kopf shallow-copies the memo per object, so the lock table and the
    state counters stay shared.
    """
    return kopf.Memo(
        config=config,
        reconciler=reconciler,
        state=ControllerState(),
        stop_event=threading.Event(),
        locks={},
    )


def run_reconcile(
    memo: kopf.Memo, namespace: str, name: str, retry: int = 0,
) -> Optional[ReconcileResult]:
    """Reconcile namespace/name once, mapping failures onto kopf's retries.

    The timer and the change handlers run independently in kopf, so a
    per-object lock keeps two passes from converging the same cloud at once.

    Raises:
        kopf.PermanentError: The spec is invalid; the next edit retriggers.
        kopf.TemporaryError: Any other controller error; retried after the
            exponential backoff for this attempt.
    """
    key = ResourceKey(namespace, name)
    lock = memo.locks.setdefault(key, threading.Lock())
    with lock:
        try:
            result = memo.reconciler.reconcile(key, cancel=memo.stop_event)
            if result.requeue:
                result = memo.reconciler.reconcile(key, cancel=memo.stop_event)
        except OperationCancelled:
            logger.info("Reconcile of %s cancelled by shutdown", key)
            return None
        except InvalidFieldError as exc:
            memo.state.record_error(f"{key}: {exc}")
            raise kopf.PermanentError(f"Invalid spec on {key}: {exc}") from exc
        except ControllerError as exc:
            memo.state.record_error(f"{key}: {exc}")
            delay = backoff_delay(retry + 1, memo.config.base_backoff, memo.config.max_backoff)
            raise kopf.TemporaryError(f"Reconcile of {key} failed: {exc}", delay=delay) from exc

    memo.state.record_reconcile()
    return result


# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------

def configure(settings: kopf.OperatorSettings, memo: kopf.Memo, **_: Any) -> None:
    """Apply controller settings to kopf before watching starts."""
    settings.persistence.finalizer = FINALIZER
    settings.persistence.progress_storage = kopf.AnnotationsProgressStorage(prefix=API_GROUP)
    settings.persistence.diffbase_storage = kopf.AnnotationsDiffBaseStorage(prefix=API_GROUP)
    settings.posting.level = logging.WARNING
    settings.execution.max_workers = memo.config.workers
    memo.state.started_at = datetime.now(timezone.utc)
    logger.info(
        "Operator starting: namespace=%s workers=%d resync=%ss",
        memo.config.namespace or "*",
        memo.config.workers,
        memo.config.resync_interval,
    )


def login(**kwargs: Any) -> Any:
    return kopf.login_via_client(**kwargs)


def cleanup(memo: kopf.Memo, **_: Any) -> None:
    """Cancel in-flight cloud waits on shutdown."""
    memo.stop_event.set()
    snap = memo.state.snapshot()
    logger.info(
        "Operator stopped after %d reconcile(s), %d failure(s)",
        snap["reconciles"], snap["failures"],
    )


def reconcile_object(name: str, namespace: str, memo: kopf.Memo, retry: int = 0, **_: Any) -> None:
    run_reconcile(memo, namespace, name, retry)


def finalize_object(name: str, namespace: str, memo: kopf.Memo, retry: int = 0, **_: Any) -> None:
    """Release a deleting object; the reconciler drops the finalizer."""
    run_reconcile(memo, namespace, name, retry)


def resync_object(name: str, namespace: str, memo: kopf.Memo, retry: int = 0, **_: Any) -> None:
    run_reconcile(memo, namespace, name, retry)


def build_registry(config: ControllerConfig) -> kopf.OperatorRegistry:
    """Register every handler on a fresh registry.

    The resync timer interval comes from the config, so registration
    happens here rather than at import time.
    """
    registry = kopf.OperatorRegistry()
    kopf.on.startup(registry=registry)(configure)
    kopf.on.login(registry=registry)(login)
    kopf.on.cleanup(registry=registry)(cleanup)
    kopf.on.resume(*RESOURCE, registry=registry)(reconcile_object)
    kopf.on.create(*RESOURCE, registry=registry)(reconcile_object)
    kopf.on.update(*RESOURCE, field="spec", registry=registry)(reconcile_object)
    kopf.on.delete(*RESOURCE, registry=registry)(finalize_object)
    kopf.timer(*RESOURCE, interval=config.resync_interval, registry=registry)(resync_object)
    return registry


def run_operator(
    config: ControllerConfig,
    reconciler: Optional[Reconciler] = None,
    foreground: bool = True,
    setup_logging: bool = True,
) -> None:
    """Run the kopf operator until SIGINT/SIGTERM.

    Args:
        config: Controller configuration; ``namespace`` None watches the
            whole cluster.
        reconciler: Reconciler; built against the Kubernetes store when omitted.
        foreground: Also log to the console.
        setup_logging: Install log handlers before starting.

    Raises:
        RuntimeError: If no cluster configuration can be found.
    """
    if setup_logging:
        configure_logging(config, foreground)
    if reconciler is None:
        reconciler = build_reconciler(config, KubernetesResourceStore(namespace=config.namespace))

    kopf.run(
        registry=build_registry(config),
        memo=build_memo(config, reconciler),
        standalone=True,
        clusterwide=config.namespace is None,
        namespaces=[config.namespace] if config.namespace else (),
    )
