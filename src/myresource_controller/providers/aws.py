"""
AWS EC2 backend using boto3.

Expects AWS credentials via environment variables, ~/.aws/credentials,
or an IAM instance profile. Managed instances are recognised by their
Name tag.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Dict, List, Optional

from ..models import AWSConfig, ProviderKind
from ..naming import MANAGED_PREFIX, ManagedInstance, is_managed
from .base import ProviderBackend, register_backend

logger = logging.getLogger("myresource.providers.aws")

# Terminated and shutting-down instances no longer count toward the fleet.
LIVE_STATES = ["pending", "running", "stopping", "stopped"]


def _name_tag(instance: Dict[str, Any]) -> Optional[str]:
    for tag in instance.get("Tags", []) or []:
        if tag.get("Key") == "Name":
            return tag.get("Value")
    return None


def build_run_kwargs(config: AWSConfig, name: str) -> Dict[str, Any]:
    """Assemble RunInstances arguments for one managed instance.

    Args:
        config: AWS provider config.
        name: Generated instance name, written to the Name tag.

    Returns:
        Keyword arguments for ``ec2.run_instances``.
    """
    run_kwargs: Dict[str, Any] = {
        "ImageId": config.image_id,
        "InstanceType": config.instance_type,
        "MinCount": 1,
        "MaxCount": 1,
        "TagSpecifications": [
            {
                "ResourceType": "instance",
                "Tags": [
                    {"Key": "Name", "Value": name},
                    {"Key": "ManagedBy", "Value": "myresource-controller"},
                ],
            }
        ],
    }
    if config.key_name:
        run_kwargs["KeyName"] = config.key_name
    if config.security_group_ids:
        run_kwargs["SecurityGroupIds"] = list(config.security_group_ids)
    if config.subnet_id:
        run_kwargs["SubnetId"] = config.subnet_id
    return run_kwargs


@register_backend(ProviderKind.AWS)
class AWSBackend(ProviderBackend):
    """Converges EC2 instances in one region."""

    kind = ProviderKind.AWS
    label = "AWS"

    def open_session(self, config: AWSConfig) -> Any:
        """Create a boto3 EC2 client for the config's region.

        Raises:
            RuntimeError: If boto3 is not installed.
        """
        try:
            import boto3
        except ImportError:
            raise RuntimeError(
                "AWS backend requires boto3: pip install boto3"
            )
        return boto3.client("ec2", region_name=config.region)

    def create_instance(
        self,
        session: Any,
        config: AWSConfig,
        name: str,
        cancel: Optional[threading.Event] = None,
    ) -> None:
        logger.info(
            "[AWS] Launching EC2 instance %s (type=%s ami=%s region=%s)",
            name, config.instance_type, config.image_id, config.region,
        )
        result = session.run_instances(**build_run_kwargs(config, name))
        instance_id = result["Instances"][0]["InstanceId"]
        logger.info("[AWS] Created EC2 instance %s (%s)", instance_id, name)

    def list_instances(self, session: Any, config: AWSConfig) -> List[ManagedInstance]:
        paginator = session.get_paginator("describe_instances")
        pages = paginator.paginate(
            Filters=[
                {"Name": "tag:Name", "Values": [f"{MANAGED_PREFIX}*"]},
                {"Name": "instance-state-name", "Values": LIVE_STATES},
            ],
        )
        found = []
        for page in pages:
            for reservation in page.get("Reservations", []):
                for instance in reservation.get("Instances", []):
                    name = _name_tag(instance)
                    if is_managed(name):
                        found.append(
                            ManagedInstance(name=name, instance_id=instance["InstanceId"])
                        )
        return found

    def delete_instance(
        self,
        session: Any,
        config: AWSConfig,
        instance: ManagedInstance,
        cancel: Optional[threading.Event] = None,
    ) -> None:
        session.terminate_instances(InstanceIds=[instance.instance_id])
        logger.info("[AWS] Terminated EC2 instance %s (%s)", instance.instance_id, instance.name)
