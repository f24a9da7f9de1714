"""Abstract base class for data source secret-reference storage."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Callable, Dict, List, Optional

from graphpipe.connections.secrets import SecretReference

logger = logging.getLogger(__name__)

ChangeListener = Callable[[str, str], None]


class SecretReferenceStore(ABC):
    """
    Maps (workspace, data source) to the secret holding its credentials.

    Implementations can store references in:
    - Memory (tests, single process)
    - File system (YAML files)
    - The control-plane database

    Listeners registered with ``add_listener`` are called with
    ``(workspace_id, data_source_ref)`` after every save or delete, which
    is how cached credentials are invalidated when a secret changes.
    """

    def __init__(self) -> None:
        self._listeners: List[ChangeListener] = []

    def add_listener(self, listener: ChangeListener) -> None:
        self._listeners.append(listener)

    def _notify(self, workspace_id: str, data_source_ref: str) -> None:
        for listener in self._listeners:
            try:
                listener(workspace_id, data_source_ref)
            except Exception:
                logger.exception(
                    "Secret change listener failed for %s/%s", workspace_id, data_source_ref
                )

    @abstractmethod
    def get(self, workspace_id: str, data_source_ref: str) -> Optional[SecretReference]:
        """
        Retrieve the secret reference of a data source.

        Args:
            workspace_id: Owning workspace
            data_source_ref: Data source identifier

        Returns:
            SecretReference if registered, None otherwise
        """
        pass

    @abstractmethod
    def list_all(self, workspace_id: str) -> Dict[str, SecretReference]:
        """
        List every data source of a workspace.

        Returns:
            Map of data source identifier to reference
        """
        pass

    @abstractmethod
    def save(self, workspace_id: str, data_source_ref: str, reference: SecretReference) -> None:
        """
        Save a reference (create or update) and notify listeners.
        """
        pass

    @abstractmethod
    def delete(self, workspace_id: str, data_source_ref: str) -> None:
        """
        Delete a reference and notify listeners.
        """
        pass

    def exists(self, workspace_id: str, data_source_ref: str) -> bool:
        return self.get(workspace_id, data_source_ref) is not None
