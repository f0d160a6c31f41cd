"""
GCP Compute Engine backend using the google-cloud-compute library.

Expects credentials via Application Default Credentials
(GOOGLE_APPLICATION_CREDENTIALS or gcloud auth application-default login).

Inserts and deletes return zonal operations; both are waited on with
the operation waiter before the next instance is touched.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, List, NamedTuple, Optional

from ..models import GCPConfig, ProviderKind
from ..naming import ManagedInstance, NameGenerator, is_managed
from ..waiter import DEFAULT_POLL_INTERVAL, wait_until_done
from .base import ProviderBackend, register_backend

logger = logging.getLogger("myresource.providers.gcp")

MANAGED_BY_LABEL = "myresource-controller"


def _compute_v1() -> Any:
    """Import google.cloud.compute_v1.

    Raises:
        RuntimeError: If google-cloud-compute is not installed.
    """
    try:
        from google.cloud import compute_v1
    except ImportError:
        raise RuntimeError(
            "GCP backend requires google-cloud-compute: "
            "pip install google-cloud-compute"
        )
    return compute_v1


class GCPSession(NamedTuple):
    """Clients opened once per pass."""

    instances: Any
    operations: Any


def build_instance(config: GCPConfig, name: str) -> Any:
    """Build the compute_v1.Instance resource for a new managed instance.

    Args:
        config: GCP provider config.
        name: Generated instance name.

    Returns:
        compute_v1.Instance ready for ``InstancesClient.insert``.
    """
    compute_v1 = _compute_v1()

    instance = compute_v1.Instance()
    instance.name = name
    instance.machine_type = f"zones/{config.zone}/machineTypes/{config.machine_type}"

    disk = compute_v1.AttachedDisk()
    disk.auto_delete = True
    disk.boot = True
    disk.type_ = "PERSISTENT"
    init_params = compute_v1.AttachedDiskInitializeParams()
    init_params.source_image = config.source_image
    disk.initialize_params = init_params
    instance.disks = [disk]

    net_iface = compute_v1.NetworkInterface()
    net_iface.network = config.network
    access_config = compute_v1.AccessConfig()
    access_config.name = "External NAT"
    access_config.type_ = "ONE_TO_ONE_NAT"
    net_iface.access_configs = [access_config]
    instance.network_interfaces = [net_iface]

    instance.labels = {"managed-by": MANAGED_BY_LABEL}
    return instance


@register_backend(ProviderKind.GCP)
class GCPBackend(ProviderBackend):
    """Converges Compute Engine instances in one project/zone.

    Args:
        name_generator: Source of instance names.
        poll_interval: Seconds between operation status polls.
        operation_timeout: Seconds to wait for each operation; None waits
            indefinitely.
    """

    kind = ProviderKind.GCP
    label = "GCP"

    def __init__(
        self,
        name_generator: Optional[NameGenerator] = None,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        operation_timeout: Optional[float] = None,
    ) -> None:
        super().__init__(name_generator)
        self._poll_interval = poll_interval
        self._operation_timeout = operation_timeout

    def open_session(self, config: GCPConfig) -> GCPSession:
        compute_v1 = _compute_v1()
        return GCPSession(
            instances=compute_v1.InstancesClient(),
            operations=compute_v1.ZoneOperationsClient(),
        )

    def create_instance(
        self,
        session: GCPSession,
        config: GCPConfig,
        name: str,
        cancel: Optional[threading.Event] = None,
    ) -> None:
        logger.info(
            "[GCP] Creating instance %s (machineType=%s, zone=%s)",
            name, config.machine_type, config.zone,
        )
        operation = session.instances.insert(
            project=config.project_id,
            zone=config.zone,
            instance_resource=build_instance(config, name),
        )
        self._wait(session, config, operation, cancel)

    def list_instances(self, session: GCPSession, config: GCPConfig) -> List[ManagedInstance]:
        found = []
        for inst in session.instances.list(project=config.project_id, zone=config.zone):
            if is_managed(inst.name):
                found.append(ManagedInstance(name=inst.name, instance_id=inst.name))
        return found

    def delete_instance(
        self,
        session: GCPSession,
        config: GCPConfig,
        instance: ManagedInstance,
        cancel: Optional[threading.Event] = None,
    ) -> None:
        operation = session.instances.delete(
            project=config.project_id,
            zone=config.zone,
            instance=instance.name,
        )
        self._wait(session, config, operation, cancel)

    def _wait(
        self,
        session: GCPSession,
        config: GCPConfig,
        operation: Any,
        cancel: Optional[threading.Event],
    ) -> None:
        wait_until_done(
            session.operations,
            config.project_id,
            config.zone,
            operation.name,
            poll_interval=self._poll_interval,
            timeout=self._operation_timeout,
            cancel=cancel,
        )
