"""Storage backends for data source secret references."""

from graphpipe.storage.base import SecretReferenceStore
from graphpipe.storage.file_store import FileSecretReferenceStore
from graphpipe.storage.memory_store import InMemorySecretReferenceStore

__all__ = [
    "SecretReferenceStore",
    "FileSecretReferenceStore",
    "InMemorySecretReferenceStore",
]
