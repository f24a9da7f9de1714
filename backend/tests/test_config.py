from pathlib import Path

from fastapi.testclient import TestClient

from graphable_backend.app.core.config import DEFAULT_DATA_ROOT, GraphableSettings, get_settings
from graphable_backend.app.main import create_app


def test_settings_singleton(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.setenv("GRAPHABLE_DATA_DIR__ROOT", str(tmp_path / "root"))
    get_settings.cache_clear()

    first = get_settings()
    second = get_settings()

    assert first is second
    assert first.data_dir.root == tmp_path / "root"
    assert first.data_dir.graphs == tmp_path / "root" / "graphs"
    assert first.data_dir.data_sources.exists()


def test_nested_env_overrides(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.setenv("GRAPHABLE_DATA_DIR__ROOT", str(tmp_path / "root"))
    monkeypatch.setenv("GRAPHABLE_ENGINE__MAX_ROWS", "50")
    monkeypatch.setenv("GRAPHABLE_ENGINE__STATEMENT_TIMEOUT_SECONDS", "2.5")
    monkeypatch.setenv("GRAPHABLE_CONNECTIONS__POOL_SIZE", "2")
    settings = GraphableSettings()
    settings.prepare_environment()

    options = settings.engine.to_options(settings.explorer.max_query_length)
    assert options.max_rows == 50
    assert options.statement_timeout_seconds == 2.5
    assert settings.connections.to_options().pool_size == 2


def test_default_paths_under_home(monkeypatch) -> None:
    monkeypatch.delenv("GRAPHABLE_DATA_DIR__ROOT", raising=False)
    settings = GraphableSettings()

    assert settings.data_dir.root == DEFAULT_DATA_ROOT
    assert settings.explorer.max_page_size == 1000


def test_health(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.setenv("GRAPHABLE_DATA_DIR__ROOT", str(tmp_path / "root"))
    settings = GraphableSettings()
    settings.prepare_environment()
    client = TestClient(create_app(settings))

    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "ok"
