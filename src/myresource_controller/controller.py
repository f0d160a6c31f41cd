"""
Controller service, the long-running trigger source for local stores.

Feeds the reconciler from three places:
- a periodic resync that enqueues every object in the store,
- the store's watch stream, when it has one,
- requeues: immediate after a finalizer change, backed off after a failure.

Worker threads pull keys from the WorkQueue, which guarantees a key is
never reconciled by two workers at once.

A Kubernetes store is driven by kopf instead (see ``handlers``).
"""

from __future__ import annotations

import logging
import signal
import threading
from datetime import datetime, timezone
from typing import List, Optional

from .config import ControllerConfig
from .errors import InvalidFieldError, OperationCancelled
from .models import ResourceKey
from .provisioner import CloudProvisioner
from .reconciler import Reconciler
from .store import ResourceStore, open_store
from .workqueue import WorkQueue

logger = logging.getLogger("myresource.controller")

LOG_FORMAT = "%(asctime)s [%(name)s] %(levelname)s: %(message)s"


class ControllerState:
    """Thread-safe counters describing what the service has done."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.started_at: Optional[datetime] = None
        self.reconciles: int = 0
        self.failures: int = 0
        self.last_reconcile: Optional[datetime] = None
        self.errors: List[str] = []

    def record_reconcile(self) -> None:
        with self._lock:
            self.reconciles += 1
            self.last_reconcile = datetime.now(timezone.utc)

    def record_error(self, error: str) -> None:
        """Record an error, keeping only the last 50."""
        with self._lock:
            self.failures += 1
            ts = datetime.now(timezone.utc).isoformat()
            self.errors.append(f"[{ts}] {error}")
            if len(self.errors) > 50:
                self.errors = self.errors[-50:]

    def snapshot(self) -> dict:
        with self._lock:
            return {
                "started_at": self.started_at.isoformat() if self.started_at else None,
                "reconciles": self.reconciles,
                "failures": self.failures,
                "last_reconcile": (
                    self.last_reconcile.isoformat() if self.last_reconcile else None
                ),
                "recent_errors": self.errors[-10:],
            }


def configure_logging(config: ControllerConfig, foreground: bool = True) -> None:
    """Configure file (and, in foreground, console) logging."""
    log_file = config.effective_log_file
    log_file.parent.mkdir(parents=True, exist_ok=True)
    formatter = logging.Formatter(LOG_FORMAT)

    root = logging.getLogger()
    handler = logging.FileHandler(log_file)
    handler.setFormatter(formatter)
    root.addHandler(handler)
    if foreground:
        console = logging.StreamHandler()
        console.setFormatter(formatter)
        root.addHandler(console)
    root.setLevel(config.log_level)


def build_reconciler(config: ControllerConfig, store: ResourceStore) -> Reconciler:
    """Wire a reconciler with registry-built backends tuned by the config."""
    provisioner = CloudProvisioner(options=config.backend_options())
    return Reconciler(store, provisioner)


class ControllerService:
    """Runs reconcile workers, resync and watch threads.

    Args:
        config: Controller configuration.
        store: Resource store; built from the config when omitted.
        reconciler: Reconciler; built from the config when omitted.
        foreground: Also log to the console.
        configure_logging: Install log handlers on start.
    """

    def __init__(
        self,
        config: ControllerConfig,
        store: Optional[ResourceStore] = None,
        reconciler: Optional[Reconciler] = None,
        foreground: bool = True,
        configure_logging: bool = True,
    ) -> None:
        self.config = config
        self.foreground = foreground
        self._configure_logging = configure_logging
        self.store = store or open_store(config.store, config.home, config.namespace)
        self.reconciler = reconciler or build_reconciler(config, self.store)
        self.queue = WorkQueue(config.base_backoff, config.max_backoff)
        self.state = ControllerState()
        self._stop_event = threading.Event()
        self._threads: List[threading.Thread] = []

    @property
    def stopping(self) -> bool:
        return self._stop_event.is_set()

    def start(self) -> None:
        """Start worker, resync and (if supported) watch threads."""
        if self._configure_logging:
            self._setup_logging()
        self.state.started_at = datetime.now(timezone.utc)
        logger.info(
            "Controller starting: store=%s namespace=%s workers=%d resync=%ss",
            self.config.store,
            self.config.namespace or "*",
            self.config.workers,
            self.config.resync_interval,
        )

        targets = [(f"worker-{i + 1}", self._worker_loop) for i in range(self.config.workers)]
        targets.append(("resync", self._resync_loop))
        if self.store.supports_watch:
            targets.append(("watch", self._watch_loop))

        for name, target in targets:
            t = threading.Thread(target=target, name=f"controller-{name}", daemon=True)
            t.start()
            self._threads.append(t)

    def stop(self) -> None:
        """Stop all threads. In-flight cloud waits are cancelled."""
        logger.info("Controller stopping...")
        self._stop_event.set()
        self.queue.shut_down()
        for t in self._threads:
            t.join(timeout=5)
        self._threads = []
        logger.info("Controller stopped.")

    def run_forever(self) -> None:
        """Block until SIGINT/SIGTERM, then stop."""
        self._setup_signals()
        try:
            while not self._stop_event.is_set():
                self._stop_event.wait(timeout=1)
        except KeyboardInterrupt:
            pass
        finally:
            self.stop()

    def enqueue(self, key: ResourceKey) -> None:
        self.queue.add(key)

    def process_item(self, key: ResourceKey) -> None:
        """Reconcile one key and decide whether it comes back."""
        try:
            result = self.reconciler.reconcile(key, cancel=self._stop_event)
        except OperationCancelled:
            logger.info("Reconcile of %s cancelled by shutdown", key)
            return
        except InvalidFieldError as exc:
            # Retrying cannot help; the next spec edit triggers a new pass.
            self.queue.forget(key)
            self.state.record_error(f"{key}: {exc}")
            logger.error("Invalid spec on %s: %s", key, exc)
            return
        except Exception as exc:
            delay = self.queue.add_rate_limited(key)
            self.state.record_error(f"{key}: {exc}")
            logger.error("Reconcile of %s failed: %s (retry in %.0fs)", key, exc, delay)
            return

        self.state.record_reconcile()
        self.queue.forget(key)
        if result.requeue:
            self.queue.add(key)

    # ------------------------------------------------------------------
    # Threads
    # ------------------------------------------------------------------

    def _worker_loop(self) -> None:
        while not self._stop_event.is_set():
            key = self.queue.get(timeout=1.0)
            if key is None:
                continue
            try:
                self.process_item(key)
            finally:
                self.queue.done(key)

    def _resync_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                keys = self.store.list_keys()
                for key in keys:
                    self.queue.add(key)
                logger.debug("Resync queued %d object(s)", len(keys))
            except Exception as exc:
                logger.error("Resync failed: %s", exc)
                self.state.record_error(f"Resync: {exc}")
            self._stop_event.wait(timeout=self.config.resync_interval)

    def _watch_loop(self) -> None:
        try:
            for key in self.store.watch(self._stop_event):
                self.queue.add(key)
        except Exception as exc:
            logger.error("Watch stopped: %s", exc)
            self.state.record_error(f"Watch: {exc}")

    # ------------------------------------------------------------------
    # Logging and signals
    # ------------------------------------------------------------------

    def _setup_logging(self) -> None:
        configure_logging(self.config, self.foreground)

    def _setup_signals(self) -> None:
        """Register signal handlers for graceful shutdown."""
        for sig in (signal.SIGTERM, signal.SIGINT):
            signal.signal(sig, self._handle_signal)

    def _handle_signal(self, signum, frame):
        logger.info("Received signal %s, stopping", signal.Signals(signum).name)
        self._stop_event.set()
