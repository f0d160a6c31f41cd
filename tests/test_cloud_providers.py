"""Tests for the GCP, AWS and Azure backends.

All cloud API calls are mocked; no real infrastructure required.
"""

from __future__ import annotations

import threading
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest

from myresource_controller.errors import CloudProviderError, OperationCancelled, OperationTimeout
from myresource_controller.models import AWSConfig, AzureConfig, GCPConfig, ProviderKind
from myresource_controller.naming import SequentialNameGenerator
from myresource_controller.providers import AWSBackend, AzureBackend, GCPBackend, backend_class
from myresource_controller.providers.aws import LIVE_STATES, build_run_kwargs
from myresource_controller.providers.azure import build_vm
from myresource_controller.providers.gcp import GCPSession


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _gcp_config() -> GCPConfig:
    return GCPConfig(project_id="proj", region="us-central1", zone="us-central1-a")


def _gcp_session(names=()) -> GCPSession:
    instances = MagicMock()
    instances.insert.return_value = SimpleNamespace(name="op-insert")
    instances.delete.return_value = SimpleNamespace(name="op-delete")
    instances.list.return_value = [SimpleNamespace(name=n) for n in names]
    operations = MagicMock()
    operations.get.return_value = SimpleNamespace(status="DONE", error=None)
    return GCPSession(instances=instances, operations=operations)


def _ec2_page(*pairs):
    return {
        "Reservations": [
            {
                "Instances": [
                    {"InstanceId": iid, "Tags": [{"Key": "Name", "Value": name}]}
                    for iid, name in pairs
                ]
            }
        ]
    }


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


class TestBackendRegistry:
    def test_every_kind_registered(self):
        assert backend_class(ProviderKind.GCP) is GCPBackend
        assert backend_class(ProviderKind.AWS) is AWSBackend
        assert backend_class(ProviderKind.AZURE) is AzureBackend


# ---------------------------------------------------------------------------
# GCP
# ---------------------------------------------------------------------------


class TestGCPBackend:
    """Tests for GCPBackend against a mocked compute_v1 session."""

    @pytest.fixture
    def backend(self):
        return GCPBackend(name_generator=SequentialNameGenerator(), poll_interval=0)

    def test_scale_up_inserts_and_waits(self, backend):
        session = _gcp_session()
        with patch.object(GCPBackend, "open_session", return_value=session), \
             patch("myresource_controller.providers.gcp.build_instance") as build:
            build.side_effect = lambda config, name: {"name": name}
            backend.converge(_gcp_config(), 3, 7)

        assert session.instances.insert.call_count == 4
        names = [c.kwargs["instance_resource"]["name"] for c in session.instances.insert.call_args_list]
        assert names == ["myresource-1", "myresource-2", "myresource-3", "myresource-4"]
        first = session.instances.insert.call_args_list[0].kwargs
        assert first["project"] == "proj"
        assert first["zone"] == "us-central1-a"
        assert session.operations.get.call_count == 4
        session.operations.get.assert_called_with(
            project="proj", zone="us-central1-a", operation="op-insert",
        )

    def test_scale_down_deletes_ascending_managed_only(self, backend):
        session = _gcp_session(
            ["myresource-30", "db-primary", "myresource-12", "myresource-21", "myresource-05"]
        )
        with patch.object(GCPBackend, "open_session", return_value=session):
            backend.converge(_gcp_config(), 5, 2)

        deleted = [c.kwargs["instance"] for c in session.instances.delete.call_args_list]
        assert deleted == ["myresource-05", "myresource-12", "myresource-21"]
        # Deletions are waited on as well.
        assert session.operations.get.call_count == 3

    def test_delete_floor(self, backend):
        session = _gcp_session(["myresource-1", "myresource-2"])
        with patch.object(GCPBackend, "open_session", return_value=session):
            backend.converge(_gcp_config(), 5, 0)
        assert session.instances.delete.call_count == 2

    def test_no_change_opens_no_session(self, backend):
        with patch.object(GCPBackend, "open_session") as open_session:
            backend.converge(_gcp_config(), 4, 4)
        open_session.assert_not_called()

    def test_failed_operation_stops_batch(self, backend):
        session = _gcp_session()
        session.operations.get.side_effect = [
            SimpleNamespace(status="DONE", error=None),
            SimpleNamespace(
                status="DONE",
                error=SimpleNamespace(errors=[SimpleNamespace(code="ZONE_RESOURCE_POOL_EXHAUSTED", message="no capacity")]),
            ),
        ]
        with patch.object(GCPBackend, "open_session", return_value=session), \
             patch("myresource_controller.providers.gcp.build_instance", return_value={}):
            with pytest.raises(CloudProviderError, match="ZONE_RESOURCE_POOL_EXHAUSTED"):
                backend.converge(_gcp_config(), 0, 3)
        assert session.instances.insert.call_count == 2

    def test_insert_failure_names_instance(self, backend):
        session = _gcp_session()
        session.instances.insert.side_effect = PermissionError("forbidden")
        with patch.object(GCPBackend, "open_session", return_value=session), \
             patch("myresource_controller.providers.gcp.build_instance", return_value={}):
            with pytest.raises(CloudProviderError) as exc_info:
                backend.converge(_gcp_config(), 0, 1)
        assert exc_info.value.target == "myresource-1"
        assert str(exc_info.value) == "failed to create instance myresource-1: forbidden"

    def test_open_session_failure_wrapped(self, backend):
        with patch.object(GCPBackend, "open_session", side_effect=ValueError("no credentials")):
            with pytest.raises(CloudProviderError) as exc_info:
                backend.converge(_gcp_config(), 0, 1)
        assert exc_info.value.target == "projects/proj/zones/us-central1-a"

    def test_operation_timeout_passed_to_waiter(self):
        backend = GCPBackend(poll_interval=0, operation_timeout=0.0001)
        session = _gcp_session()
        session.operations.get.return_value = SimpleNamespace(status="RUNNING", error=None)
        with patch.object(GCPBackend, "open_session", return_value=session), \
             patch("myresource_controller.providers.gcp.build_instance", return_value={}), \
             patch("myresource_controller.waiter.time.sleep"):
            with pytest.raises(OperationTimeout):
                backend.converge(_gcp_config(), 0, 1)

    def test_cancel_stops_before_next_create(self, backend):
        cancel = threading.Event()
        session = _gcp_session()

        def insert(**kwargs):
            cancel.set()
            return SimpleNamespace(name="op-insert")

        session.instances.insert.side_effect = insert
        session.operations.get.return_value = SimpleNamespace(status="DONE", error=None)
        with patch.object(GCPBackend, "open_session", return_value=session), \
             patch("myresource_controller.providers.gcp.build_instance", return_value={}):
            with pytest.raises(OperationCancelled):
                backend.converge(_gcp_config(), 0, 3, cancel=cancel)
        assert session.instances.insert.call_count == 1


# ---------------------------------------------------------------------------
# AWS
# ---------------------------------------------------------------------------


class TestBuildRunKwargs:
    def test_minimal(self):
        kwargs = build_run_kwargs(AWSConfig(region="us-east-1"), "myresource-5")
        assert kwargs["MinCount"] == kwargs["MaxCount"] == 1
        assert kwargs["InstanceType"] == "t3.micro"
        tags = kwargs["TagSpecifications"][0]["Tags"]
        assert {"Key": "Name", "Value": "myresource-5"} in tags
        assert "KeyName" not in kwargs
        assert "SubnetId" not in kwargs

    def test_optional_fields(self):
        config = AWSConfig(
            region="us-east-1", key_name="ops", subnet_id="subnet-1",
            security_group_ids=["sg-1", "sg-2"],
        )
        kwargs = build_run_kwargs(config, "myresource-1")
        assert kwargs["KeyName"] == "ops"
        assert kwargs["SubnetId"] == "subnet-1"
        assert kwargs["SecurityGroupIds"] == ["sg-1", "sg-2"]


class TestAWSBackend:
    """Tests for AWSBackend against a mocked boto3 EC2 client."""

    @pytest.fixture
    def ec2(self):
        client = MagicMock()
        client.run_instances.return_value = {"Instances": [{"InstanceId": "i-new"}]}
        return client

    @pytest.fixture
    def backend(self):
        return AWSBackend(name_generator=SequentialNameGenerator())

    def test_scale_up(self, backend, ec2):
        with patch.object(AWSBackend, "open_session", return_value=ec2):
            backend.converge(AWSConfig(region="us-west-2"), 0, 2)
        assert ec2.run_instances.call_count == 2
        names = [
            c.kwargs["TagSpecifications"][0]["Tags"][0]["Value"]
            for c in ec2.run_instances.call_args_list
        ]
        assert names == ["myresource-1", "myresource-2"]

    def test_scale_down_terminates_in_name_order(self, backend, ec2):
        ec2.get_paginator.return_value.paginate.return_value = [
            _ec2_page(("i-ccc", "myresource-3"), ("i-aaa", "myresource-9")),
            _ec2_page(("i-bbb", "myresource-1")),
        ]
        with patch.object(AWSBackend, "open_session", return_value=ec2):
            backend.converge(AWSConfig(region="us-west-2"), 3, 1)

        terminated = [c.kwargs["InstanceIds"] for c in ec2.terminate_instances.call_args_list]
        assert terminated == [["i-bbb"], ["i-ccc"]]

    def test_list_filters_live_managed_instances(self, backend, ec2):
        ec2.get_paginator.return_value.paginate.return_value = [_ec2_page()]
        backend.list_instances(ec2, AWSConfig())
        ec2.get_paginator.assert_called_once_with("describe_instances")
        filters = ec2.get_paginator.return_value.paginate.call_args.kwargs["Filters"]
        assert {"Name": "tag:Name", "Values": ["myresource-*"]} in filters
        assert {"Name": "instance-state-name", "Values": LIVE_STATES} in filters

    def test_untagged_instances_ignored(self, backend, ec2):
        ec2.get_paginator.return_value.paginate.return_value = [
            {"Reservations": [{"Instances": [{"InstanceId": "i-x"}]}]}
        ]
        assert backend.list_instances(ec2, AWSConfig()) == []

    def test_terminate_failure_names_instance_id(self, backend, ec2):
        ec2.get_paginator.return_value.paginate.return_value = [_ec2_page(("i-aaa", "myresource-1"))]
        ec2.terminate_instances.side_effect = RuntimeError("UnauthorizedOperation")
        with patch.object(AWSBackend, "open_session", return_value=ec2):
            with pytest.raises(CloudProviderError) as exc_info:
                backend.converge(AWSConfig(), 1, 0)
        assert exc_info.value.target == "i-aaa"


# ---------------------------------------------------------------------------
# Azure
# ---------------------------------------------------------------------------


def _poller(done_sequence=(True,), result=None):
    poller = MagicMock()
    poller.done.side_effect = list(done_sequence)
    poller.result.return_value = result
    return poller


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        self.now += 1.0
        return self.now


class TestAzureBackend:
    """Tests for AzureBackend against a mocked ComputeManagementClient."""

    @pytest.fixture
    def config(self):
        return AzureConfig(
            subscription_id="sub", resource_group="rg", region="eastus",
            network_interface_id="/subscriptions/sub/nic",
        )

    def test_scale_up_waits_on_poller(self, config):
        backend = AzureBackend(name_generator=SequentialNameGenerator(), poll_interval=0)
        client = MagicMock()
        poller = _poller(done_sequence=[False, False, True])
        client.virtual_machines.begin_create_or_update.return_value = poller
        with patch.object(AzureBackend, "open_session", return_value=client), \
             patch("myresource_controller.providers.azure.build_vm", return_value="vm-model"):
            backend.converge(config, 0, 1)

        client.virtual_machines.begin_create_or_update.assert_called_once_with(
            "rg", "myresource-1", "vm-model",
        )
        assert poller.wait.call_count == 2
        poller.result.assert_called_once()

    def test_scale_down_deletes_ascending(self, config):
        backend = AzureBackend(poll_interval=0)
        client = MagicMock()
        client.virtual_machines.list.return_value = [
            SimpleNamespace(name="myresource-8"),
            SimpleNamespace(name="jumpbox"),
            SimpleNamespace(name="myresource-4"),
        ]
        client.virtual_machines.begin_delete.side_effect = lambda rg, name: _poller()
        with patch.object(AzureBackend, "open_session", return_value=client):
            backend.converge(config, 2, 0)

        deleted = [c.args[1] for c in client.virtual_machines.begin_delete.call_args_list]
        assert deleted == ["myresource-4", "myresource-8"]

    def test_poller_timeout(self, config):
        backend = AzureBackend(poll_interval=0, operation_timeout=3, clock=FakeClock())
        poller = MagicMock()
        poller.done.return_value = False
        with pytest.raises(OperationTimeout):
            backend._wait(poller, "virtual machine myresource-1", None)

    def test_poller_cancel(self, config):
        backend = AzureBackend(poll_interval=0)
        poller = MagicMock()
        poller.done.return_value = False
        cancel = threading.Event()
        cancel.set()
        with pytest.raises(OperationCancelled):
            backend._wait(poller, "virtual machine myresource-1", cancel)
        poller.wait.assert_not_called()


class TestBuildVM:
    """Tests for the Azure VirtualMachine model."""

    def _config(self, **kwargs):
        return AzureConfig(
            subscription_id="sub", resource_group="rg", region="eastus",
            network_interface_id="/subscriptions/sub/nic", **kwargs,
        )

    def test_ssh_key_installed_for_admin(self):
        vm = build_vm(self._config(ssh_public_key="ssh-ed25519 AAAA"), "myresource-1")

        linux = vm.os_profile.linux_configuration
        assert linux.disable_password_authentication is True
        key = linux.ssh.public_keys[0]
        assert key.path == "/home/azureuser/.ssh/authorized_keys"
        assert key.key_data == "ssh-ed25519 AAAA"
        assert vm.os_profile.admin_password is None

    def test_password_kept_alongside_key(self):
        vm = build_vm(
            self._config(admin_password="s3cret!", ssh_public_key="ssh-ed25519 AAAA"),
            "myresource-1",
        )
        assert vm.os_profile.linux_configuration.disable_password_authentication is False
        assert vm.os_profile.admin_password == "s3cret!"

    def test_password_only(self):
        vm = build_vm(self._config(admin_password="s3cret!"), "myresource-1")
        assert vm.os_profile.linux_configuration is None
        assert vm.os_profile.computer_name == "myresource-1"
