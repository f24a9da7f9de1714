"""Data source service - connection tests and the explorer path."""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import Any, Dict, List, Mapping, Optional, Union

from graphpipe import (
    ConnectionConfig,
    ConnectionResolver,
    ConnectionTestResult,
    EnvSecretStore,
    Explorer,
    FileSecretReferenceStore,
    PageResult,
    SecretCache,
)
from graphpipe.errors import ConnectionFailedError

from graphable_backend.app.core.config import GraphableSettings, get_settings

logger = logging.getLogger(__name__)


class DataSourceService:
    """
    Data source operations used by the API.

    Wraps the shared ConnectionResolver (pools and secret cache) and an
    Explorer bound to it.
    """

    def __init__(self, resolver: ConnectionResolver, explorer: Explorer) -> None:
        self.resolver = resolver
        self.explorer = explorer

    # ─────────────────────────────────────────────────
    # Connection tests
    # ─────────────────────────────────────────────────

    def test_connection(
        self,
        connection: Union[str, Mapping[str, Any]],
        timeout_seconds: Optional[float] = None,
    ) -> ConnectionTestResult:
        """Validate user-entered credentials without touching pools or cache."""
        if isinstance(connection, Mapping):
            try:
                connection = ConnectionConfig.from_payload(connection)
            except ConnectionFailedError as e:
                return ConnectionTestResult(success=False, error=e.reason)
        return self.resolver.test_connection(connection, timeout_seconds)

    def test_data_source(self, data_source_ref: str, workspace_id: str) -> ConnectionTestResult:
        result = self.resolver.test_data_source(data_source_ref, workspace_id)
        logger.info("Connection test for %s/%s: success=%s", workspace_id, data_source_ref, result.success)
        return result

    # ─────────────────────────────────────────────────
    # Explorer
    # ─────────────────────────────────────────────────

    def explore(
        self,
        data_source_ref: str,
        workspace_id: str,
        query: str,
        page: int = 1,
        page_size: Optional[int] = None,
    ) -> PageResult:
        return self.explorer.execute_query(data_source_ref, workspace_id, query, page, page_size)

    def list_tables(self, data_source_ref: str, workspace_id: str) -> List[Dict[str, Any]]:
        return self.explorer.list_tables(data_source_ref, workspace_id)

    def describe_table(self, data_source_ref: str, workspace_id: str, table: str) -> Dict[str, Any]:
        return self.explorer.describe_table(data_source_ref, workspace_id, table)

    def sample_rows(self, data_source_ref: str, workspace_id: str, table: str, limit: int = 10) -> Dict[str, Any]:
        return self.explorer.sample_rows(data_source_ref, workspace_id, table, limit)


def build_connection_resolver(settings: GraphableSettings) -> ConnectionResolver:
    """Resolver over file-stored secret references and environment secrets."""
    return ConnectionResolver(
        FileSecretReferenceStore(settings.data_dir.data_sources),
        EnvSecretStore(),
        cache=SecretCache(ttl_seconds=settings.connections.secret_cache_ttl_seconds),
        options=settings.connections.to_options(),
    )


@lru_cache(maxsize=1)
def get_connection_resolver() -> ConnectionResolver:
    """Get the process-wide connection resolver."""
    return build_connection_resolver(get_settings())


@lru_cache(maxsize=1)
def get_data_source_service() -> DataSourceService:
    """Get singleton data source service instance."""
    settings = get_settings()
    resolver = get_connection_resolver()
    explorer = Explorer(
        resolver,
        statement_timeout_seconds=settings.engine.statement_timeout_seconds,
        default_page_size=settings.explorer.default_page_size,
        max_page_size=settings.explorer.max_page_size,
        max_sample_rows=settings.explorer.max_sample_rows,
        max_query_length=settings.explorer.max_query_length,
    )
    return DataSourceService(resolver, explorer)
