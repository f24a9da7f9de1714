"""Secret-backed connection resolution and workspace-partitioned pooling."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Tuple, Union

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.pool import NullPool, QueuePool

from graphpipe.connections.cache import SecretCache
from graphpipe.connections.config import ConnectionConfig, redact_credentials
from graphpipe.connections.secrets import SecretStore
from graphpipe.errors import (
    ConnectionFailedError,
    GraphpipeError,
    PoolExhaustedError,
    SecretNotFoundError,
)
from graphpipe.storage.base import SecretReferenceStore

logger = logging.getLogger(__name__)


@dataclass
class PoolOptions:
    """Pool sizing and timeouts applied to every engine."""

    pool_size: int = 5
    max_overflow: int = 5
    pool_timeout_seconds: float = 10.0
    connect_timeout_seconds: float = 5.0
    pool_recycle_seconds: int = 1800
    pool_pre_ping: bool = True


EngineFactory = Callable[[ConnectionConfig, PoolOptions], Engine]
TestEngineFactory = Callable[[ConnectionConfig, float], Engine]


def create_pooled_engine(config: ConnectionConfig, options: PoolOptions) -> Engine:
    """Create a QueuePool engine for one (workspace, signature) pair."""
    return create_engine(
        config.to_url(),
        poolclass=QueuePool,
        pool_size=options.pool_size,
        max_overflow=options.max_overflow,
        pool_timeout=options.pool_timeout_seconds,
        pool_recycle=options.pool_recycle_seconds,
        pool_pre_ping=options.pool_pre_ping,
        connect_args={"connect_timeout": max(1, int(options.connect_timeout_seconds))},
    )


def create_test_engine(config: ConnectionConfig, connect_timeout: float) -> Engine:
    """Create an unpooled engine for one-off connection tests."""
    return create_engine(
        config.to_url(),
        poolclass=NullPool,
        connect_args={"connect_timeout": max(1, int(connect_timeout))},
    )


@dataclass
class ConnectionTestResult:
    success: bool
    error: Optional[str] = None
    response_time_ms: Optional[int] = None

    def to_dict(self) -> dict:
        result: Dict[str, Any] = {"success": self.success}
        if self.error:
            result["error"] = self.error
        if self.response_time_ms is not None:
            result["responseTimeMs"] = self.response_time_ms
        return result


@dataclass
class ResolvedConnection:
    """
    A data source ready to use: its settings plus the pooled engine.

    ``connect()`` checks a connection out of the pool, translating pool
    and driver failures into engine errors with credentials redacted.
    """

    workspace_id: str
    data_source_ref: str
    config: ConnectionConfig
    engine: Engine
    pool_timeout: float = 10.0

    def connect(self) -> Connection:
        try:
            return self.engine.connect()
        except PoolTimeoutError:
            logger.warning(
                "Pool exhausted for %s/%s (%s)",
                self.workspace_id,
                self.data_source_ref,
                self.config.signature(),
            )
            raise PoolExhaustedError(self.data_source_ref, self.pool_timeout) from None
        except SQLAlchemyError as e:
            message = self.config.redact(getattr(e, "orig", None) or e)
            logger.warning(
                "Connection to %s/%s failed: %s", self.workspace_id, self.data_source_ref, message
            )
            raise ConnectionFailedError(self.data_source_ref, message) from None


class ConnectionResolver:
    """
    Turns a data source reference into a pooled connection.

    - Secrets are cached per (workspace, data source) for the cache TTL.
    - Engines are keyed by (workspace, host+port+database+user), so two
      workspaces never share a pool even when their settings coincide.
    - ``invalidate`` drops the cached secret and disposes its pool; it is
      registered as a listener on the reference store.
    """

    def __init__(
        self,
        reference_store: SecretReferenceStore,
        secret_store: SecretStore,
        *,
        cache: Optional[SecretCache[ConnectionConfig]] = None,
        options: Optional[PoolOptions] = None,
        engine_factory: Optional[EngineFactory] = None,
        test_engine_factory: Optional[TestEngineFactory] = None,
    ) -> None:
        self.references = reference_store
        self.secrets = secret_store
        self.cache: SecretCache[ConnectionConfig] = cache if cache is not None else SecretCache()
        self.options = options or PoolOptions()
        self._engine_factory = engine_factory or create_pooled_engine
        self._test_engine_factory = test_engine_factory or create_test_engine
        self._engines: Dict[Tuple[str, str], Engine] = {}
        self._sources: Dict[Tuple[str, str], Tuple[str, str]] = {}
        self._lock = threading.Lock()

        self.references.add_listener(self.invalidate)

    # ─────────────────────────────────────────────────
    # Resolution
    # ─────────────────────────────────────────────────

    def resolve(self, data_source_ref: str, workspace_id: str) -> ResolvedConnection:
        """
        Resolve a data source to a pooled connection handle.

        Raises:
            SecretNotFoundError: No reference or no payload for the data source
            ConnectionFailedError: The payload cannot be parsed or the engine cannot be built
        """
        config = self.load_config(data_source_ref, workspace_id)
        pool_key = (workspace_id, config.signature())

        with self._lock:
            engine = self._engines.get(pool_key)
            if engine is None:
                try:
                    engine = self._engine_factory(config, self.options)
                except (SQLAlchemyError, ImportError) as e:
                    message = config.redact(e)
                    logger.error("Could not create engine for %s/%s: %s", workspace_id, data_source_ref, message)
                    raise ConnectionFailedError(data_source_ref, message) from None
                self._engines[pool_key] = engine
                logger.info("Created pool for %s (%s)", workspace_id, config.signature())
            self._sources[(workspace_id, data_source_ref)] = pool_key

        return ResolvedConnection(
            workspace_id=workspace_id,
            data_source_ref=data_source_ref,
            config=config,
            engine=engine,
            pool_timeout=self.options.pool_timeout_seconds,
        )

    def load_config(self, data_source_ref: str, workspace_id: str) -> ConnectionConfig:
        """Connection settings for a data source, served from the cache when fresh."""
        return self.cache.get_or_load(
            (workspace_id, data_source_ref),
            lambda: self._fetch_config(data_source_ref, workspace_id),
        )

    def _fetch_config(self, data_source_ref: str, workspace_id: str) -> ConnectionConfig:
        reference = self.references.get(workspace_id, data_source_ref)
        if reference is None:
            logger.warning("No secret reference for %s/%s", workspace_id, data_source_ref)
            raise SecretNotFoundError(data_source_ref, workspace_id)

        payload = self.secrets.get_secret(reference)
        if payload is None:
            logger.warning(
                "Secret %s (provider=%s) missing for %s/%s",
                reference.name,
                reference.provider,
                workspace_id,
                data_source_ref,
            )
            raise SecretNotFoundError(data_source_ref, workspace_id)

        try:
            return ConnectionConfig.from_payload(payload)
        except ConnectionFailedError as e:
            logger.error("Invalid secret payload for %s/%s: %s", workspace_id, data_source_ref, e)
            raise ConnectionFailedError(data_source_ref, e.reason) from None

    # ─────────────────────────────────────────────────
    # Invalidation
    # ─────────────────────────────────────────────────

    def invalidate(self, workspace_id: str, data_source_ref: str) -> None:
        """Forget cached credentials and dispose the pool built from them."""
        self.cache.invalidate((workspace_id, data_source_ref))

        with self._lock:
            pool_key = self._sources.pop((workspace_id, data_source_ref), None)
            if pool_key is None or pool_key in self._sources.values():
                return
            engine = self._engines.pop(pool_key, None)

        if engine is not None:
            engine.dispose()
            logger.info("Disposed pool for %s/%s", workspace_id, data_source_ref)

    def dispose_all(self) -> None:
        with self._lock:
            engines = list(self._engines.values())
            self._engines.clear()
            self._sources.clear()
        for engine in engines:
            engine.dispose()

    def pool_keys(self) -> list:
        with self._lock:
            return sorted(self._engines)

    # ─────────────────────────────────────────────────
    # Connection tests (never touch pools or cache)
    # ─────────────────────────────────────────────────

    def test_connection(
        self,
        connection: Union[str, ConnectionConfig],
        timeout_seconds: Optional[float] = None,
    ) -> ConnectionTestResult:
        """
        Open a connection, run ``SELECT 1`` and close it.

        Args:
            connection: Connection string / JSON payload or parsed settings
            timeout_seconds: Connect timeout, defaults to the pool setting

        Returns:
            ConnectionTestResult; failures are reported, not raised
        """
        timeout = timeout_seconds or self.options.connect_timeout_seconds
        started = time.monotonic()

        try:
            config = connection if isinstance(connection, ConnectionConfig) else ConnectionConfig.from_payload(connection)
        except GraphpipeError as e:
            return ConnectionTestResult(success=False, error=redact_credentials(str(e)))

        engine = None
        try:
            engine = self._test_engine_factory(config, timeout)
            with engine.connect() as conn:
                conn.execute(text("SELECT 1")).scalar()
        except (SQLAlchemyError, ImportError) as e:
            message = config.redact(getattr(e, "orig", None) or e)
            logger.info("Connection test to %s failed: %s", config.signature(), message)
            return ConnectionTestResult(
                success=False,
                error=message.strip(),
                response_time_ms=int((time.monotonic() - started) * 1000),
            )
        finally:
            if engine is not None:
                engine.dispose()

        return ConnectionTestResult(success=True, response_time_ms=int((time.monotonic() - started) * 1000))

    def test_data_source(self, data_source_ref: str, workspace_id: str) -> ConnectionTestResult:
        """Run the connection test with a stored data source's credentials."""
        try:
            config = self._fetch_config(data_source_ref, workspace_id)
        except GraphpipeError as e:
            return ConnectionTestResult(success=False, error=e.public_message or str(e))
        return self.test_connection(config)
