"""Pytest fixtures and configuration for mailgate tests.

Provides common fixtures for configuration, database, and services.
"""

import os
from pathlib import Path
from typing import Any, Generator

import pytest

from mailgate.cache.list_cache import ScopedResultCache
from mailgate.cache.sweeper import CacheSweeper
from mailgate.config import ENV_OVERRIDES, reset_config
from mailgate.config_schema import AppConfig
from mailgate.db.store import DatabaseStore
from mailgate.safety.gate import ConfirmationGate
from mailgate.safety.ledger import ExecutionLedger


@pytest.fixture(autouse=True)
def reset_config_singleton() -> Generator[None, None, None]:
    """Reset the config singleton before each test."""
    reset_config()
    yield
    reset_config()


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep the developer's environment from leaking into config tests."""
    for var in [*ENV_OVERRIDES, "MAILGATE_CONFIG_PATH"]:
        monkeypatch.delenv(var, raising=False)


@pytest.fixture
def temp_config_dir(tmp_path: Path) -> Path:
    """Create a temporary config directory."""
    config_dir = tmp_path / "config"
    config_dir.mkdir()
    return config_dir


@pytest.fixture
def sample_config_yaml() -> str:
    """Return a minimal valid config.yaml content."""
    return """
schema_version: 1

database:
  path: data/test.db

safety:
  enforce: true
  execution_ttl_minutes: 10
  expiry_sweep_seconds: 30

cache:
  list_ttl_minutes: 5
  sweep_grace_seconds: 60
  max_delete_per_sweep: 1000
"""


@pytest.fixture
def sample_config_dict(data_dir: Path) -> dict[str, Any]:
    """Return a minimal valid config as a dictionary."""
    return {
        "schema_version": 1,
        "database": {"path": str(data_dir / "test.db")},
        "safety": {
            "enforce": True,
            "execution_ttl_minutes": 10,
            "expiry_sweep_seconds": 30,
            "hash_salt": "test-salt",
        },
        "cache": {
            "list_ttl_minutes": 5,
            "sweep_seconds": 30,
            "sweep_grace_seconds": 60,
            "sweep_jitter_seconds": 15,
            "max_delete_per_sweep": 1000,
        },
    }


@pytest.fixture
def sample_config(sample_config_dict: dict[str, Any]) -> AppConfig:
    """Return a minimal valid AppConfig instance."""
    return AppConfig(**sample_config_dict)


@pytest.fixture
def config_file(temp_config_dir: Path, sample_config_yaml: str) -> Path:
    """Create a temporary config file with valid content."""
    config_path = temp_config_dir / "config.yaml"
    config_path.write_text(sample_config_yaml)
    return config_path


@pytest.fixture
def set_config_env(config_file: Path) -> Generator[None, None, None]:
    """Set the MAILGATE_CONFIG_PATH environment variable."""
    old_value = os.environ.get("MAILGATE_CONFIG_PATH")
    os.environ["MAILGATE_CONFIG_PATH"] = str(config_file)
    yield
    if old_value is None:
        del os.environ["MAILGATE_CONFIG_PATH"]
    else:
        os.environ["MAILGATE_CONFIG_PATH"] = old_value


@pytest.fixture
def data_dir(tmp_path: Path) -> Path:
    """Create a temporary data directory."""
    data = tmp_path / "data"
    data.mkdir()
    return data


@pytest.fixture
def db_path(data_dir: Path) -> Path:
    """Create a test database path."""
    return data_dir / "test.db"


@pytest.fixture
async def store(db_path: Path) -> DatabaseStore:
    """Create and initialize a DatabaseStore."""
    store = DatabaseStore(db_path)
    await store.initialize()
    return store


@pytest.fixture
def ledger(store: DatabaseStore, sample_config: AppConfig) -> ExecutionLedger:
    return ExecutionLedger(store, sample_config)


@pytest.fixture
def gate(store: DatabaseStore, sample_config: AppConfig) -> ConfirmationGate:
    return ConfirmationGate(store, sample_config)


@pytest.fixture
def list_cache(store: DatabaseStore, sample_config: AppConfig) -> ScopedResultCache:
    return ScopedResultCache(store, sample_config)


@pytest.fixture
def sweeper(store: DatabaseStore, sample_config: AppConfig) -> CacheSweeper:
    return CacheSweeper(store, sample_config)


@pytest.fixture
def send_mail_params() -> dict[str, Any]:
    """Params for a typical send-mail proposal."""
    return {
        "to": "alice@example.com",
        "subject": "Quarterly report",
        "body": "Hi Alice, attached is the quarterly report you asked for last week.",
    }
