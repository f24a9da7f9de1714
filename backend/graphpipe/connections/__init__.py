"""Secret-backed connection resolution."""

from graphpipe.connections.cache import SecretCache
from graphpipe.connections.config import ConnectionConfig
from graphpipe.connections.resolver import ConnectionResolver, ConnectionTestResult, PoolOptions
from graphpipe.connections.secrets import EnvSecretStore, InMemorySecretStore, SecretReference, SecretStore

__all__ = [
    "SecretCache",
    "ConnectionConfig",
    "ConnectionResolver",
    "ConnectionTestResult",
    "PoolOptions",
    "EnvSecretStore",
    "InMemorySecretStore",
    "SecretReference",
    "SecretStore",
]
