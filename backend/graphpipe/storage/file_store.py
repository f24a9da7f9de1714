"""File-based secret-reference storage using YAML files."""

from __future__ import annotations

import re
import threading
from pathlib import Path
from typing import Dict, Optional

import yaml

from graphpipe.connections.secrets import SecretReference
from graphpipe.storage.base import SecretReferenceStore

_SAFE_NAME = re.compile(r"^[A-Za-z0-9_.-]+$")


class FileSecretReferenceStore(SecretReferenceStore):
    """
    YAML file-based reference storage.

    Stores each workspace as a separate YAML file:
        {base_path}/{workspace_id}.yaml

    mapping data source identifiers to secret references. Only references
    are written; payloads stay in the secret store.
    """

    def __init__(self, base_path: Path) -> None:
        """
        Initialize the file store.

        Args:
            base_path: Directory to store YAML files
        """
        super().__init__()
        self.base_path = Path(base_path)
        self.base_path.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    def _get_path(self, workspace_id: str) -> Path:
        if not _SAFE_NAME.match(workspace_id):
            raise ValueError(f"Invalid workspace id: {workspace_id!r}")
        return self.base_path / f"{workspace_id}.yaml"

    def _load(self, workspace_id: str) -> Dict[str, dict]:
        path = self._get_path(workspace_id)
        if not path.exists():
            return {}

        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)

        return data.get("data_sources", {}) if data else {}

    def _write(self, workspace_id: str, entries: Dict[str, dict]) -> None:
        path = self._get_path(workspace_id)
        with open(path, "w", encoding="utf-8") as f:
            yaml.dump(
                {"workspace_id": workspace_id, "data_sources": entries},
                f,
                allow_unicode=True,
                default_flow_style=False,
                sort_keys=False,
            )

    def get(self, workspace_id: str, data_source_ref: str) -> Optional[SecretReference]:
        entry = self._load(workspace_id).get(data_source_ref)
        return SecretReference.from_dict(entry) if entry else None

    def list_all(self, workspace_id: str) -> Dict[str, SecretReference]:
        return {ref: SecretReference.from_dict(e) for ref, e in self._load(workspace_id).items()}

    def save(self, workspace_id: str, data_source_ref: str, reference: SecretReference) -> None:
        with self._lock:
            entries = self._load(workspace_id)
            entries[data_source_ref] = reference.to_dict()
            self._write(workspace_id, entries)
        self._notify(workspace_id, data_source_ref)

    def delete(self, workspace_id: str, data_source_ref: str) -> None:
        with self._lock:
            entries = self._load(workspace_id)
            if entries.pop(data_source_ref, None) is None:
                return
            self._write(workspace_id, entries)
        self._notify(workspace_id, data_source_ref)
