"""
GCP zonal operation waiter.

Compute Engine mutations return an Operation that finishes later. The
backend blocks on it here, polling ZoneOperations.get until the status
is DONE, a deadline passes, or the pass is cancelled.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Any, Callable, List, Optional

from .errors import CloudProviderError, OperationCancelled, OperationTimeout

logger = logging.getLogger("myresource.waiter")

DEFAULT_POLL_INTERVAL = 2.0

_DONE = "DONE"


def _status_name(status: Any) -> str:
    """Normalize an operation status (proto enum or plain string) to its name."""
    return str(getattr(status, "name", status))


def _operation_errors(operation: Any) -> List[str]:
    """Extract error messages from a finished operation, if any."""
    error = getattr(operation, "error", None)
    errors = getattr(error, "errors", None) or []
    messages = []
    for item in errors:
        code = getattr(item, "code", "")
        message = getattr(item, "message", "") or str(item)
        messages.append(f"{code}: {message}" if code else message)
    return messages


def wait_until_done(
    operations_client: Any,
    project: str,
    zone: str,
    operation_name: str,
    *,
    poll_interval: float = DEFAULT_POLL_INTERVAL,
    timeout: Optional[float] = None,
    cancel: Optional[threading.Event] = None,
    clock: Callable[[], float] = time.monotonic,
) -> Any:
    """Block until a zonal operation reaches DONE.

    Args:
        operations_client: A compute_v1.ZoneOperationsClient (or anything
            with the same ``get(project=, zone=, operation=)`` method).
        project: GCP project ID.
        zone: Compute zone of the operation.
        operation_name: Operation name returned by the mutating call.
        poll_interval: Seconds between status fetches.
        timeout: Give up after this many seconds. None waits forever.
        cancel: Event that aborts the wait when set.
        clock: Monotonic clock, injectable for tests.

    Returns:
        The finished operation.

    Raises:
        OperationTimeout: The deadline passed before DONE.
        OperationCancelled: ``cancel`` was set.
        CloudProviderError: Fetching the status failed, or the operation
            finished with errors.
    """
    target = f"operation {operation_name}"
    deadline = None if timeout is None else clock() + timeout
    logger.info("[GCP] Waiting for operation %s in zone %s", operation_name, zone)

    while True:
        if cancel is not None and cancel.is_set():
            raise OperationCancelled("wait for", target, "cancelled")

        try:
            operation = operations_client.get(
                project=project, zone=zone, operation=operation_name,
            )
        except Exception as exc:
            raise CloudProviderError("get", target, exc) from exc

        if _status_name(getattr(operation, "status", "")) == _DONE:
            errors = _operation_errors(operation)
            if errors:
                raise CloudProviderError(
                    "complete", target, "; ".join(errors),
                )
            logger.info("[GCP] Operation %s completed", operation_name)
            return operation

        delay = poll_interval
        if deadline is not None:
            remaining = deadline - clock()
            if remaining <= 0:
                raise OperationTimeout(
                    "wait for", target, f"not done after {timeout}s",
                )
            delay = min(delay, remaining)

        if cancel is not None:
            if cancel.wait(delay):
                raise OperationCancelled("wait for", target, "cancelled")
        else:
            time.sleep(delay)
