"""
Kubernetes-backed resource store.

Reads and writes MyResource custom objects through the CustomObjectsApi.
The API server provides optimistic concurrency (409 on a stale
resourceVersion) and finalizer-aware deletion; this module only maps
its errors onto the controller's taxonomy.

Writes are JSON merge patches, never full replacements. The model only
knows a slice of each object, so a PUT would drop annotations, owner
references and spec fields written by newer clients.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from .. import API_GROUP, API_VERSION, PLURAL
from ..errors import ConflictError, PersistenceError
from ..models import MyResource, ResourceKey
from .base import ResourceStore


def load_custom_objects_api() -> Any:
    """Build a CustomObjectsApi from in-cluster config, falling back to kubeconfig.

    Raises:
        RuntimeError: If the kubernetes client is not installed or no
            cluster configuration can be found.
    """
    try:
        from kubernetes import client, config
    except ImportError:
        raise RuntimeError(
            "Kubernetes store requires the kubernetes client: pip install kubernetes"
        )
    try:
        config.load_incluster_config()
    except config.ConfigException:
        try:
            config.load_kube_config()
        except config.ConfigException as exc:
            raise RuntimeError(
                f"No Kubernetes configuration found ({exc}); use --store file for local runs"
            ) from exc
    return client.CustomObjectsApi()


def _status_code(exc: Exception) -> Optional[int]:
    return getattr(exc, "status", None)


def metadata_patch(resource: MyResource) -> Dict[str, Any]:
    """Merge patch for the mutable metadata and spec of ``resource``.

    Only spec fields that were actually present on the object (or set by
    the caller) are sent, so server-side values the model does not know
    about survive and defaults are never written back.
    """
    meta = resource.metadata
    body: Dict[str, Any] = {
        "metadata": {
            "finalizers": list(meta.finalizers),
            "labels": dict(meta.labels),
        },
        "spec": resource.spec.model_dump(mode="json", by_alias=True, exclude_unset=True),
    }
    if meta.resource_version is not None:
        body["metadata"]["resourceVersion"] = meta.resource_version
    return body


def status_patch(resource: MyResource) -> Dict[str, Any]:
    """Merge patch for the status subresource of ``resource``."""
    body: Dict[str, Any] = {
        "status": resource.status.model_dump(mode="json", by_alias=True),
    }
    if resource.metadata.resource_version is not None:
        body["metadata"] = {"resourceVersion": resource.metadata.resource_version}
    return body


class KubernetesResourceStore(ResourceStore):
    """Stores MyResource objects in a Kubernetes cluster.

    Change notifications come from kopf, not from this store.

    Args:
        namespace: Restrict to one namespace; None lists all namespaces.
        api: A CustomObjectsApi; built from ambient config when omitted.
    """

    def __init__(self, namespace: Optional[str] = None, api: Any = None) -> None:
        self._namespace = namespace
        self._api = api if api is not None else load_custom_objects_api()

    def get(self, key: ResourceKey) -> Optional[MyResource]:
        try:
            data = self._api.get_namespaced_custom_object(
                API_GROUP, API_VERSION, key.namespace, PLURAL, key.name,
            )
        except Exception as exc:
            if _status_code(exc) == 404:
                return None
            raise PersistenceError(f"Failed to get {key}: {exc}") from exc
        return MyResource.from_manifest(data)

    def list_keys(self) -> List[ResourceKey]:
        try:
            data = self._list()
        except Exception as exc:
            raise PersistenceError(f"Failed to list {PLURAL}: {exc}") from exc
        keys = []
        for item in data.get("items", []):
            meta = item.get("metadata", {})
            keys.append(ResourceKey(meta.get("namespace", "default"), meta["name"]))
        return sorted(keys)

    def create(self, resource: MyResource) -> MyResource:
        body = resource.to_manifest()
        body.pop("status", None)
        body["metadata"].pop("resourceVersion", None)
        data = self._call(
            "create", resource.key,
            self._api.create_namespaced_custom_object,
            API_GROUP, API_VERSION, resource.metadata.namespace, PLURAL, body,
        )
        return MyResource.from_manifest(data)

    def update(self, resource: MyResource) -> MyResource:
        data = self._call(
            "update", resource.key,
            self._api.patch_namespaced_custom_object,
            API_GROUP, API_VERSION, resource.metadata.namespace, PLURAL,
            resource.metadata.name, metadata_patch(resource),
        )
        return MyResource.from_manifest(data)

    def update_status(self, resource: MyResource) -> MyResource:
        data = self._call(
            "update status of", resource.key,
            self._api.patch_namespaced_custom_object_status,
            API_GROUP, API_VERSION, resource.metadata.namespace, PLURAL,
            resource.metadata.name, status_patch(resource),
        )
        return MyResource.from_manifest(data)

    def delete(self, key: ResourceKey) -> bool:
        try:
            self._api.delete_namespaced_custom_object(
                API_GROUP, API_VERSION, key.namespace, PLURAL, key.name,
            )
        except Exception as exc:
            if _status_code(exc) == 404:
                return False
            raise PersistenceError(f"Failed to delete {key}: {exc}") from exc
        return True

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _list(self) -> Dict[str, Any]:
        if self._namespace:
            return self._api.list_namespaced_custom_object(
                API_GROUP, API_VERSION, self._namespace, PLURAL,
            )
        return self._api.list_cluster_custom_object(API_GROUP, API_VERSION, PLURAL)

    @staticmethod
    def _call(verb: str, key: ResourceKey, func: Any, *args: Any) -> Dict[str, Any]:
        try:
            return func(*args)
        except Exception as exc:
            code = _status_code(exc)
            if code == 409:
                raise ConflictError(f"Conflict on {verb} {key}: {exc}") from exc
            if code == 404:
                raise PersistenceError(f"{key} not found") from exc
            raise PersistenceError(f"Failed to {verb} {key}: {exc}") from exc
