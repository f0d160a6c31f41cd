"""
Azure Compute backend using azure-identity and azure-mgmt-compute.

Credentials come from DefaultAzureCredential (environment, managed
identity, Azure CLI login, ...). Create and delete are long-running
operations; each poller is waited on before the next VM is touched.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Any, Callable, List, Optional

from ..errors import OperationCancelled, OperationTimeout
from ..models import AzureConfig, ProviderKind
from ..naming import ManagedInstance, NameGenerator, is_managed
from .base import ProviderBackend, register_backend

logger = logging.getLogger("myresource.providers.azure")

DEFAULT_POLL_INTERVAL = 5.0


def build_vm(config: AzureConfig, name: str) -> Any:
    """Build the VirtualMachine model for a new managed VM.

    An sshPublicKey is installed for adminUsername; password login is
    disabled unless adminPassword is also set.

    Args:
        config: Azure provider config.
        name: Generated VM name, also used as the computer name.

    Returns:
        azure.mgmt.compute.models.VirtualMachine.

    Raises:
        RuntimeError: If azure-mgmt-compute is not installed.
    """
    try:
        from azure.mgmt.compute import models
    except ImportError:
        raise RuntimeError(
            "Azure backend requires azure-mgmt-compute: "
            "pip install azure-mgmt-compute azure-identity"
        )

    linux_configuration = None
    if config.ssh_public_key:
        linux_configuration = models.LinuxConfiguration(
            disable_password_authentication=not config.admin_password,
            ssh=models.SshConfiguration(
                public_keys=[
                    models.SshPublicKey(
                        path=f"/home/{config.admin_username}/.ssh/authorized_keys",
                        key_data=config.ssh_public_key,
                    ),
                ],
            ),
        )

    return models.VirtualMachine(
        location=config.region,
        tags={"managed-by": "myresource-controller"},
        hardware_profile=models.HardwareProfile(vm_size=config.vm_size),
        storage_profile=models.StorageProfile(
            image_reference=models.ImageReference(
                publisher=config.image_publisher,
                offer=config.image_offer,
                sku=config.image_sku,
                version=config.image_version,
            ),
        ),
        os_profile=models.OSProfile(
            computer_name=name,
            admin_username=config.admin_username,
            admin_password=config.admin_password,
            linux_configuration=linux_configuration,
        ),
        network_profile=models.NetworkProfile(
            network_interfaces=[
                models.NetworkInterfaceReference(id=config.network_interface_id),
            ],
        ),
    )


@register_backend(ProviderKind.AZURE)
class AzureBackend(ProviderBackend):
    """Converges virtual machines in one resource group.

    Args:
        name_generator: Source of VM names.
        poll_interval: Seconds between poller checks.
        operation_timeout: Seconds to wait for each create/delete; None
            waits indefinitely.
    """

    kind = ProviderKind.AZURE
    label = "Azure"

    def __init__(
        self,
        name_generator: Optional[NameGenerator] = None,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        operation_timeout: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        super().__init__(name_generator)
        self._poll_interval = poll_interval
        self._operation_timeout = operation_timeout
        self._clock = clock

    def open_session(self, config: AzureConfig) -> Any:
        """Create a ComputeManagementClient for the config's subscription.

        Raises:
            RuntimeError: If the Azure SDK packages are not installed.
        """
        try:
            from azure.identity import DefaultAzureCredential
            from azure.mgmt.compute import ComputeManagementClient
        except ImportError:
            raise RuntimeError(
                "Azure backend requires azure-identity and azure-mgmt-compute: "
                "pip install azure-identity azure-mgmt-compute"
            )
        credential = DefaultAzureCredential()
        return ComputeManagementClient(credential, config.subscription_id)

    def create_instance(
        self,
        session: Any,
        config: AzureConfig,
        name: str,
        cancel: Optional[threading.Event] = None,
    ) -> None:
        logger.info(
            "[Azure] Creating VM %s in resource group %s (size=%s)",
            name, config.resource_group, config.vm_size,
        )
        poller = session.virtual_machines.begin_create_or_update(
            config.resource_group, name, build_vm(config, name),
        )
        self._wait(poller, f"virtual machine {name}", cancel)

    def list_instances(self, session: Any, config: AzureConfig) -> List[ManagedInstance]:
        found = []
        for vm in session.virtual_machines.list(config.resource_group):
            if is_managed(vm.name):
                found.append(ManagedInstance(name=vm.name, instance_id=vm.name))
        return found

    def delete_instance(
        self,
        session: Any,
        config: AzureConfig,
        instance: ManagedInstance,
        cancel: Optional[threading.Event] = None,
    ) -> None:
        poller = session.virtual_machines.begin_delete(config.resource_group, instance.name)
        self._wait(poller, f"virtual machine {instance.name}", cancel)

    def _wait(self, poller: Any, target: str, cancel: Optional[threading.Event]) -> Any:
        """Wait for an LROPoller, honouring the deadline and cancellation.

        Raises:
            OperationTimeout: The poller was still running at the deadline.
            OperationCancelled: ``cancel`` was set while waiting.
        """
        deadline = (
            None if self._operation_timeout is None
            else self._clock() + self._operation_timeout
        )
        while not poller.done():
            if cancel is not None and cancel.is_set():
                raise OperationCancelled("wait for", target, "cancelled")
            delay = self._poll_interval
            if deadline is not None:
                remaining = deadline - self._clock()
                if remaining <= 0:
                    raise OperationTimeout(
                        "wait for", target, f"not done after {self._operation_timeout}s",
                    )
                delay = min(delay, remaining)
            poller.wait(delay)
        return poller.result()
