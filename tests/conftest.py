"""Shared test fixtures for myresource-controller."""

from __future__ import annotations

import threading
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest

from myresource_controller import FINALIZER
from myresource_controller.models import (
    AWSConfig,
    GCPConfig,
    MyResource,
    MyResourceSpec,
    MyResourceStatus,
    ObjectMeta,
    ProviderKind,
)
from myresource_controller.naming import ManagedInstance, SequentialNameGenerator
from myresource_controller.providers.base import ProviderBackend
from myresource_controller.provisioner import CloudProvisioner
from myresource_controller.reconciler import Reconciler
from myresource_controller.store import MemoryResourceStore


class FakeBackend(ProviderBackend):
    """In-memory cloud: records every create/delete, can fail on demand."""

    kind = ProviderKind.GCP
    label = "Fake"

    def __init__(self, existing: Optional[List[ManagedInstance]] = None, fail_on_create: int = 0):
        super().__init__(SequentialNameGenerator())
        self.instances: List[ManagedInstance] = list(existing or [])
        self.created: List[str] = []
        self.deleted: List[str] = []
        self.sessions = 0
        self.fail_on_create = fail_on_create

    def open_session(self, config: Any) -> Any:
        self.sessions += 1
        return object()

    def create_instance(self, session, config, name, cancel=None):
        if self.fail_on_create and len(self.created) + 1 == self.fail_on_create:
            raise RuntimeError("quota exceeded")
        self.created.append(name)
        self.instances.append(ManagedInstance(name=name, instance_id=name))

    def list_instances(self, session, config):
        return list(self.instances)

    def delete_instance(self, session, config, instance, cancel=None):
        self.deleted.append(instance.instance_id)
        self.instances = [i for i in self.instances if i.instance_id != instance.instance_id]

    @property
    def calls(self) -> int:
        return len(self.created) + len(self.deleted)


@pytest.fixture
def tmp_home(tmp_path: Path) -> Path:
    """Provide a temporary controller home directory."""
    home = tmp_path / ".myresource"
    home.mkdir()
    return home


@pytest.fixture
def make_resource():
    """Factory for MyResource objects."""

    def _make(
        name: str = "web",
        namespace: str = "default",
        desired: int = 0,
        current: int = 0,
        gcp: bool = True,
        aws: bool = False,
        finalizers: Optional[List[str]] = None,
    ) -> MyResource:
        spec = MyResourceSpec(
            desired_count=desired,
            gcp_config=GCPConfig(project_id="proj", region="us-central1", zone="us-central1-a") if gcp else None,
            aws_config=AWSConfig(region="us-west-2") if aws else None,
        )
        return MyResource(
            metadata=ObjectMeta(
                name=name,
                namespace=namespace,
                finalizers=list(finalizers) if finalizers is not None else [FINALIZER],
            ),
            spec=spec,
            status=MyResourceStatus(current_count=current),
        )

    return _make


@pytest.fixture
def store() -> MemoryResourceStore:
    return MemoryResourceStore()


@pytest.fixture
def fake_backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def reconciler(store, fake_backend) -> Reconciler:
    """Reconciler wired to the memory store and a fake GCP backend."""
    provisioner = CloudProvisioner(backends={ProviderKind.GCP: fake_backend})
    return Reconciler(store, provisioner)


@pytest.fixture
def cancel_event() -> threading.Event:
    return threading.Event()
