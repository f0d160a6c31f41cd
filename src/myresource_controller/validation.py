"""Structural checks on desired state, run before any cloud call."""

from __future__ import annotations

from .errors import InvalidFieldError
from .models import MyResource


def validate_spec(resource: MyResource) -> None:
    """Reject a spec the backends cannot act on.

    Zero provider configs is allowed: the reconciler simply has nothing
    to provision.

    Args:
        resource: The resource whose spec to check.

    Raises:
        InvalidFieldError: desiredCount is negative, more than one
            provider config is populated, or an Azure config carries no
            login credential.
    """
    spec = resource.spec
    if spec.desired_count < 0:
        raise InvalidFieldError(
            "spec.desiredCount",
            spec.desired_count,
            "desiredCount cannot be negative",
        )

    populated = spec.populated_providers
    if len(populated) > 1:
        raise InvalidFieldError(
            "spec",
            populated,
            "at most one provider config may be set",
        )

    azure = spec.azure_config
    if azure is not None and not (azure.admin_password or azure.ssh_public_key):
        raise InvalidFieldError(
            "spec.azureConfig.adminPassword",
            azure.admin_password,
            "adminPassword or sshPublicKey is required",
        )
