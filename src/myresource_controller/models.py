"""
Pydantic models for the MyResource custom resource.

Attributes are snake_case; the wire format (what Kubernetes and the
YAML manifests carry) is camelCase via field aliases. Both spellings are
accepted on input.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, ClassVar, Dict, List, NamedTuple, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from . import API_GROUP, API_VERSION, KIND


class _WireModel(BaseModel):
    """Base for models that round-trip through the camelCase wire format."""

    model_config = ConfigDict(populate_by_name=True)


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class ProviderKind(str, Enum):
    """Cloud backends the controller can drive."""

    GCP = "gcp"
    AWS = "aws"
    AZURE = "azure"


class Phase(str, Enum):
    """Outcome of the most recent reconcile pass, published in status."""

    ERROR = "Error"
    SCALED_UP = "ScaledUp"
    SCALED_DOWN = "ScaledDown"
    NO_OP = "NoOp"


# ---------------------------------------------------------------------------
# Provider configurations
# ---------------------------------------------------------------------------

class GCPConfig(_WireModel):
    """Placement and machine settings for Compute Engine."""

    kind: ClassVar[ProviderKind] = ProviderKind.GCP
    project_id: str = Field(default="", alias="projectID")
    region: str = ""
    zone: str = ""
    machine_type: str = Field(default="e2-medium", alias="machineType")
    credentials_secret_ref: Optional[str] = Field(default=None, alias="credentialsSecretRef")
    source_image: str = Field(
        default="projects/debian-cloud/global/images/family/debian-11",
        alias="sourceImage",
    )
    network: str = "global/networks/default"

    @property
    def scope(self) -> str:
        return f"projects/{self.project_id}/zones/{self.zone}"


class AWSConfig(_WireModel):
    """Region and launch settings for EC2."""

    kind: ClassVar[ProviderKind] = ProviderKind.AWS
    region: str = "us-east-1"
    instance_type: str = Field(default="t3.micro", alias="instanceType")
    image_id: str = Field(default="ami-0abcdef1234567890", alias="imageId")
    subnet_id: Optional[str] = Field(default=None, alias="subnetId")
    security_group_ids: List[str] = Field(default_factory=list, alias="securityGroupIds")
    key_name: Optional[str] = Field(default=None, alias="keyName")
    credentials_secret_ref: Optional[str] = Field(default=None, alias="credentialsSecretRef")

    @property
    def scope(self) -> str:
        return f"region {self.region}"


class AzureConfig(_WireModel):
    """Resource group, image and VM settings for Azure Compute."""

    kind: ClassVar[ProviderKind] = ProviderKind.AZURE
    subscription_id: str = Field(default="", alias="subscriptionID")
    resource_group: str = Field(default="", alias="resourceGroup")
    region: str = ""
    vm_size: str = Field(default="Standard_B1s", alias="vmSize")
    image_publisher: str = Field(default="Canonical", alias="imagePublisher")
    image_offer: str = Field(default="0001-com-ubuntu-server-jammy", alias="imageOffer")
    image_sku: str = Field(default="22_04-lts", alias="imageSKU")
    image_version: str = Field(default="latest", alias="imageVersion")
    admin_username: str = Field(default="azureuser", alias="adminUsername")
    admin_password: Optional[str] = Field(default=None, alias="adminPassword")
    ssh_public_key: Optional[str] = Field(default=None, alias="sshPublicKey")
    network_interface_id: str = Field(default="", alias="networkInterfaceID")

    @property
    def scope(self) -> str:
        return f"resourceGroups/{self.resource_group}"


ProviderConfig = Union[GCPConfig, AWSConfig, AzureConfig]

# Wire field name -> attribute name, in declaration order.
PROVIDER_FIELDS: Dict[str, str] = {
    "gcpConfig": "gcp_config",
    "awsConfig": "aws_config",
    "azureConfig": "azure_config",
}


# ---------------------------------------------------------------------------
# Spec / status
# ---------------------------------------------------------------------------

class MyResourceSpec(_WireModel):
    """Desired state: how many instances, and on which cloud."""

    desired_count: int = Field(default=0, alias="desiredCount")
    gcp_config: Optional[GCPConfig] = Field(default=None, alias="gcpConfig")
    aws_config: Optional[AWSConfig] = Field(default=None, alias="awsConfig")
    azure_config: Optional[AzureConfig] = Field(default=None, alias="azureConfig")

    @property
    def populated_providers(self) -> List[str]:
        """Wire names of the provider config fields that are set."""
        return [
            wire for wire, attr in PROVIDER_FIELDS.items()
            if getattr(self, attr) is not None
        ]

    @property
    def provider(self) -> Optional[ProviderConfig]:
        """The single populated provider config, or None.

        Raises:
            ValueError: If more than one provider config is populated.
                Validate the spec before asking for the provider.
        """
        configs = [
            getattr(self, attr) for attr in PROVIDER_FIELDS.values()
            if getattr(self, attr) is not None
        ]
        if len(configs) > 1:
            raise ValueError(
                f"ambiguous provider config: {self.populated_providers}"
            )
        return configs[0] if configs else None


class MyResourceStatus(_WireModel):
    """Observed state, owned by the reconciler."""

    current_count: int = Field(default=0, alias="currentCount")
    phase: Optional[Phase] = None


# ---------------------------------------------------------------------------
# Object envelope
# ---------------------------------------------------------------------------

class ObjectMeta(_WireModel):
    """The slice of Kubernetes object metadata the controller cares about."""

    name: str
    namespace: str = "default"
    uid: Optional[str] = None
    resource_version: Optional[str] = Field(default=None, alias="resourceVersion")
    generation: Optional[int] = None
    finalizers: List[str] = Field(default_factory=list)
    deletion_timestamp: Optional[datetime] = Field(default=None, alias="deletionTimestamp")
    labels: Dict[str, str] = Field(default_factory=dict)


class ResourceKey(NamedTuple):
    """Identity of a MyResource object in the store."""

    namespace: str
    name: str

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"

    @classmethod
    def parse(cls, value: str) -> "ResourceKey":
        """Parse 'namespace/name' (or a bare name in 'default')."""
        if "/" in value:
            namespace, name = value.split("/", 1)
        else:
            namespace, name = "default", value
        if not name or not namespace:
            raise ValueError(f"invalid resource key: {value!r}")
        return cls(namespace, name)


class MyResource(_WireModel):
    """A complete MyResource object: metadata, desired spec, observed status."""

    api_version: str = Field(default=f"{API_GROUP}/{API_VERSION}", alias="apiVersion")
    kind: str = KIND
    metadata: ObjectMeta
    spec: MyResourceSpec = Field(default_factory=MyResourceSpec)
    status: MyResourceStatus = Field(default_factory=MyResourceStatus)

    @property
    def key(self) -> ResourceKey:
        return ResourceKey(self.metadata.namespace, self.metadata.name)

    @property
    def is_deleting(self) -> bool:
        return self.metadata.deletion_timestamp is not None

    def has_finalizer(self, finalizer: str) -> bool:
        return finalizer in self.metadata.finalizers

    def add_finalizer(self, finalizer: str) -> bool:
        """Add a finalizer; returns True if the object changed."""
        if finalizer in self.metadata.finalizers:
            return False
        self.metadata.finalizers.append(finalizer)
        return True

    def remove_finalizer(self, finalizer: str) -> bool:
        """Remove a finalizer; returns True if the object changed."""
        if finalizer not in self.metadata.finalizers:
            return False
        self.metadata.finalizers = [
            f for f in self.metadata.finalizers if f != finalizer
        ]
        return True

    def mark_deleted(self) -> None:
        """Stamp the object as deleting, the way the API server does."""
        if self.metadata.deletion_timestamp is None:
            self.metadata.deletion_timestamp = datetime.now(timezone.utc)

    @classmethod
    def from_manifest(cls, data: Dict[str, Any]) -> "MyResource":
        """Parse a wire-format dict (as served by the API or a YAML file)."""
        return cls.model_validate(data)

    def to_manifest(self) -> Dict[str, Any]:
        """Render the camelCase wire-format dict."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)
