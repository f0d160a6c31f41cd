"""
File-backed resource store.

One YAML manifest per object under ``<home>/resources/<namespace>/<name>.yaml``.
Useful for running the controller without a cluster: edit the files (or
use ``myresourcectl apply``) and the resync loop picks the changes up.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional

import yaml

from ..errors import PersistenceError
from ..models import MyResource, ResourceKey
from .base import LocalResourceStore

logger = logging.getLogger("myresource.store.file")


class FileResourceStore(LocalResourceStore):
    """Stores manifests as YAML files.

    Args:
        home: Controller home directory.
    """

    def __init__(self, home: Path) -> None:
        super().__init__()
        self._root = Path(home).expanduser() / "resources"
        self._root.mkdir(parents=True, exist_ok=True)

    @property
    def root(self) -> Path:
        return self._root

    def _path(self, key: ResourceKey) -> Path:
        return self._root / key.namespace / f"{key.name}.yaml"

    def _read(self, key: ResourceKey) -> Optional[MyResource]:
        path = self._path(key)
        if not path.exists():
            return None
        try:
            data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
            return MyResource.from_manifest(data)
        except (OSError, yaml.YAMLError, ValueError) as exc:
            raise PersistenceError(f"Failed to read {path}: {exc}") from exc

    def _write(self, resource: MyResource) -> None:
        path = self._path(resource.key)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp = path.with_suffix(".yaml.tmp")
            tmp.write_text(
                yaml.safe_dump(resource.to_manifest(), default_flow_style=False, sort_keys=False),
                encoding="utf-8",
            )
            tmp.replace(path)
        except OSError as exc:
            raise PersistenceError(f"Failed to write {path}: {exc}") from exc

    def _remove(self, key: ResourceKey) -> None:
        path = self._path(key)
        try:
            path.unlink(missing_ok=True)
        except OSError as exc:
            raise PersistenceError(f"Failed to remove {path}: {exc}") from exc

    def _keys(self) -> List[ResourceKey]:
        keys = []
        for ns_dir in sorted(p for p in self._root.iterdir() if p.is_dir()):
            for f in sorted(ns_dir.glob("*.yaml")):
                keys.append(ResourceKey(ns_dir.name, f.stem))
        return keys
