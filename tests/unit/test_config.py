"""Tests for configuration loading and factories."""

from repoflow.config import load_config
from repoflow.hosts import GitHubHost, InMemoryHost, get_host
from repoflow.notify import LoggingNotifier, WebhookNotifier, get_notifier
from repoflow.persistence import (
    InMemoryCheckpointRepository,
    SQLiteCheckpointRepository,
    get_repository,
)
from repoflow.sessions import InMemorySessionFactory, LocalGitSessionFactory, get_session_factory
from repoflow.status import HttpStatusClient, RunStatusStore, get_status_sink


def test_load_config_from_env(tmp_path, monkeypatch):
    config_path = tmp_path / "config.yaml"
    config_path.write_text(
        """
retry:
  max_attempts: 6
  unknown_policy: fatal
watchdog:
  step_bounds:
    executeChanges: 120
session:
  backend: inmemory
"""
    )
    monkeypatch.setenv("REPOFLOW_CONFIG", str(config_path))

    config = load_config()
    assert config.retry.max_attempts == 6
    assert config.retry.unknown_policy == "fatal"
    assert config.watchdog.step_bounds == {"executeChanges": 120.0}
    assert config.session.backend == "inmemory"
    assert config.host.backend == "github"


def test_defaults_when_no_file(tmp_path, monkeypatch):
    monkeypatch.delenv("REPOFLOW_DATABASE_URL", raising=False)
    monkeypatch.delenv("DATABASE_URL", raising=False)
    config = load_config(str(tmp_path / "missing.yaml"))
    assert config.retry.max_attempts == 4
    assert config.watchdog.step_bounds["initializeSandbox"] == 10.0
    assert config.database_url is None


def test_database_url_env_override(tmp_path, monkeypatch):
    monkeypatch.setenv("REPOFLOW_DATABASE_URL", f"sqlite://{tmp_path / 'runs.db'}")
    config = load_config(str(tmp_path / "missing.yaml"))
    assert isinstance(get_repository(config=config), SQLiteCheckpointRepository)


def test_factories_select_backends(tmp_path, monkeypatch):
    monkeypatch.delenv("REPOFLOW_DATABASE_URL", raising=False)
    monkeypatch.delenv("DATABASE_URL", raising=False)
    config = load_config(str(tmp_path / "missing.yaml"))

    assert isinstance(get_repository(config=config), InMemoryCheckpointRepository)
    assert isinstance(get_session_factory(config=config), LocalGitSessionFactory)
    assert isinstance(get_session_factory("inmemory", config=config), InMemorySessionFactory)
    assert isinstance(get_host(config=config), GitHubHost)
    assert isinstance(get_host("inmemory", config=config), InMemoryHost)
    assert isinstance(get_notifier(config), LoggingNotifier)
    assert isinstance(get_status_sink(config), RunStatusStore)

    config.notify.webhook_url = "https://hooks.example.com/notify"
    assert isinstance(get_notifier(config), WebhookNotifier)
    config.status.backend = "http"
    config.status.url = "http://localhost:8000"
    assert isinstance(get_status_sink(config), HttpStatusClient)
