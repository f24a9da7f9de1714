"""Shared fixtures: a seeded SQLite warehouse behind a ConnectionResolver."""

import json
from pathlib import Path
from typing import List

import pytest
from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine

from graphpipe.connections.config import ConnectionConfig
from graphpipe.connections.resolver import ConnectionResolver, PoolOptions
from graphpipe.connections.secrets import InMemorySecretStore, SecretReference
from graphpipe.storage.memory_store import InMemorySecretReferenceStore

WORKSPACE = "ws-1"
DATA_SOURCE = "warehouse"


def sqlite_engine(path: Path) -> Engine:
    return create_engine(f"sqlite:///{path}", connect_args={"check_same_thread": False})


@pytest.fixture
def warehouse(tmp_path: Path) -> Path:
    """Create the warehouse database with sales, orders and 105 events."""
    path = tmp_path / "warehouse.db"
    engine = sqlite_engine(path)
    with engine.begin() as conn:
        conn.execute(text("CREATE TABLE sales (day TEXT, region TEXT, amount INTEGER)"))
        conn.execute(text("CREATE TABLE orders (day TEXT, orders INTEGER)"))
        conn.execute(text("CREATE TABLE events (id INTEGER PRIMARY KEY, name TEXT NOT NULL)"))
        conn.execute(text("CREATE VIEW eu_sales AS SELECT * FROM sales WHERE region = 'eu'"))
        conn.execute(
            text("INSERT INTO sales VALUES (:day, :region, :amount)"),
            [
                {"day": "2024-01-01", "region": "eu", "amount": 100},
                {"day": "2024-01-01", "region": "us", "amount": 20},
                {"day": "2024-01-02", "region": "eu", "amount": 60},
                {"day": "2024-01-03", "region": "us", "amount": 30},
            ],
        )
        conn.execute(
            text("INSERT INTO orders VALUES (:day, :orders)"),
            [{"day": "2024-01-01", "orders": 4}, {"day": "2024-01-02", "orders": 0}],
        )
        conn.execute(
            text("INSERT INTO events (id, name) VALUES (:id, :name)"),
            [{"id": i, "name": f"event-{i}"} for i in range(1, 106)],
        )
    engine.dispose()
    return path


@pytest.fixture
def engines_built() -> List[str]:
    """Signatures of every pool the resolver created."""
    return []


@pytest.fixture
def resolver(warehouse: Path, engines_built: List[str]) -> ConnectionResolver:
    """Resolver whose pools all point at the SQLite warehouse."""
    references = InMemorySecretReferenceStore()
    secrets = InMemorySecretStore()
    stored = secrets.set_secret(
        SecretReference("ws-1-warehouse"),
        json.dumps({"host": "localhost", "database": "warehouse", "user": "analyst", "password": "s3cret"}),
    )
    references.save(WORKSPACE, DATA_SOURCE, stored)

    def factory(config: ConnectionConfig, options: PoolOptions) -> Engine:
        engines_built.append(config.signature())
        return sqlite_engine(warehouse)

    resolver = ConnectionResolver(
        references,
        secrets,
        engine_factory=factory,
        test_engine_factory=lambda config, timeout: sqlite_engine(warehouse),
    )
    yield resolver
    resolver.dispose_all()
