"""Shared pytest fixtures."""

import sys
from pathlib import Path

import pytest
import yaml
from fastapi.testclient import TestClient

import app as app_module
import config
from features.locks import ExecutionSerializer
from features.procedures import parse_registry

SECRET = "s3cret-token"


def py(code: str) -> list[str]:
    """Command running a Python snippet with the test interpreter."""
    return [sys.executable, "-c", code]


def infra_update(workdir: Path, fetch_exit: int = 0, timeout: float = 30) -> dict:
    """The infra-update procedure, with stand-ins for git pull and docker restart."""
    return {
        "id": "infra-update",
        "cwd": str(workdir),
        "timeout": timeout,
        "steps": [
            {
                "name": "fetch-config",
                "command": py(
                    "import sys; open('fetched', 'w').close(); "
                    f"print('pulling latest code'); sys.exit({fetch_exit})"
                ),
            },
            {
                "name": "restart-service",
                "command": py("open('restarted', 'w').close(); print('caddy restarted')"),
            },
        ],
    }


@pytest.fixture
def workdir(tmp_path):
    d = tmp_path / "repo"
    d.mkdir()
    return d


@pytest.fixture
def write_procedures(tmp_path):
    def write(*procedures: dict) -> Path:
        path = tmp_path / "procedures.yaml"
        path.write_text(yaml.safe_dump({"procedures": list(procedures)}))
        return path
    return write


@pytest.fixture
def settings(monkeypatch):
    monkeypatch.setattr(config, "DEPLOY_SECRET", SECRET)
    monkeypatch.setattr(config, "CONCURRENCY_POLICY", "reject")
    monkeypatch.setattr(config, "KILL_GRACE_SECONDS", 1.0)
    monkeypatch.setattr(app_module, "serializer", ExecutionSerializer())
    return config


@pytest.fixture
def make_client(settings, monkeypatch, write_procedures):
    """Start the app (lifespan included) against the given procedures."""
    monkeypatch.setattr(app_module, "registry", None)
    clients = []

    def make(*procedures: dict) -> TestClient:
        monkeypatch.setattr(config, "PROCEDURES_FILE", write_procedures(*procedures))
        client = TestClient(app_module.app)
        client.__enter__()
        clients.append(client)
        return client

    yield make
    for client in clients:
        client.__exit__(None, None, None)


@pytest.fixture
def use_registry(settings, monkeypatch):
    """Install a registry directly, for driving dispatch() without HTTP."""
    def install(*procedures: dict):
        registry = parse_registry({"procedures": list(procedures)})
        monkeypatch.setattr(app_module, "registry", registry)
        return registry
    return install
