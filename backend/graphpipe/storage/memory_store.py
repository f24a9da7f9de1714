"""In-memory secret-reference storage."""

from __future__ import annotations

import threading
from typing import Dict, Optional, Tuple

from graphpipe.connections.secrets import SecretReference
from graphpipe.storage.base import SecretReferenceStore


class InMemorySecretReferenceStore(SecretReferenceStore):
    """Dict-backed store for tests and single-process deployments."""

    def __init__(self) -> None:
        super().__init__()
        self._entries: Dict[Tuple[str, str], SecretReference] = {}
        self._lock = threading.Lock()

    def get(self, workspace_id: str, data_source_ref: str) -> Optional[SecretReference]:
        return self._entries.get((workspace_id, data_source_ref))

    def list_all(self, workspace_id: str) -> Dict[str, SecretReference]:
        return {ref: r for (ws, ref), r in list(self._entries.items()) if ws == workspace_id}

    def save(self, workspace_id: str, data_source_ref: str, reference: SecretReference) -> None:
        with self._lock:
            self._entries[(workspace_id, data_source_ref)] = reference
        self._notify(workspace_id, data_source_ref)

    def delete(self, workspace_id: str, data_source_ref: str) -> None:
        with self._lock:
            removed = self._entries.pop((workspace_id, data_source_ref), None)
        if removed is not None:
            self._notify(workspace_id, data_source_ref)
