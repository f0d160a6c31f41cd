"""
Error taxonomy for the controller.

Three families reach the trigger source:
- InvalidFieldError: the desired state is malformed. Not worth retrying
  until someone edits the object.
- CloudProviderError: a cloud call failed (auth, quota, not-found,
  transient). Carries the operation and target for the logs.
- PersistenceError: writing the object back to the store failed. Cloud
  mutations already made are not undone.
"""

from __future__ import annotations

from typing import Any, Optional


class ControllerError(Exception):
    """Base class for every error raised by the controller core."""


class InvalidFieldError(ControllerError):
    """A field of the desired state failed validation.

    Args:
        field_path: Dotted path to the field (e.g. 'spec.desiredCount').
        value: The offending value.
        detail: Human-readable reason.
    """

    def __init__(self, field_path: str, value: Any, detail: str) -> None:
        self.field_path = field_path
        self.value = value
        self.detail = detail
        super().__init__(f"{field_path}: Invalid value: {value!r}: {detail}")


class CloudProviderError(ControllerError):
    """A cloud API call failed.

    Args:
        operation: What was being attempted (e.g. 'create instance').
        target: The instance, operation, or scope it was attempted on.
        cause: Underlying error or message.
    """

    def __init__(self, operation: str, target: str, cause: Optional[Any] = None) -> None:
        self.operation = operation
        self.target = target
        self.cause = cause
        message = f"failed to {operation} {target}"
        if cause is not None:
            message = f"{message}: {cause}"
        super().__init__(message)


class OperationTimeout(CloudProviderError):
    """A long-running cloud operation did not finish before its deadline."""


class OperationCancelled(CloudProviderError):
    """The caller cancelled the pass while a cloud operation was in flight."""


class PersistenceError(ControllerError):
    """Reading or writing the resource object in the store failed."""


class ConflictError(PersistenceError):
    """The write carried a stale resourceVersion."""
