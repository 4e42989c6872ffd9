"""Tests for the server entry point's eager configuration check."""

import config
import server
from conftest import infra_update


def test_check_passes_with_valid_configuration(settings, monkeypatch, write_procedures, workdir):
    monkeypatch.setattr(config, "PROCEDURES_FILE", write_procedures(infra_update(workdir)))

    assert server.main(["--check"]) == 0


def test_check_fails_without_secret(settings, monkeypatch, write_procedures, workdir):
    monkeypatch.setattr(config, "DEPLOY_SECRET", "")
    monkeypatch.setattr(config, "PROCEDURES_FILE", write_procedures(infra_update(workdir)))

    assert server.main(["--check"]) == 1


def test_check_fails_on_unknown_policy(settings, monkeypatch, write_procedures, workdir):
    monkeypatch.setattr(config, "CONCURRENCY_POLICY", "parallel")
    monkeypatch.setattr(config, "PROCEDURES_FILE", write_procedures(infra_update(workdir)))

    assert server.main(["--check"]) == 1


def test_check_fails_on_broken_registry(settings, monkeypatch, tmp_path):
    path = tmp_path / "procedures.yaml"
    path.write_text("procedures:\n  - id: infra-update\n    steps:\n      - command: ''\n")
    monkeypatch.setattr(config, "PROCEDURES_FILE", path)

    assert server.main(["--check"]) == 1


def test_server_does_not_start_uvicorn_on_bad_config(settings, monkeypatch, tmp_path):
    started = []
    monkeypatch.setattr(server.uvicorn, "run", lambda *a, **kw: started.append(a))
    monkeypatch.setattr(config, "PROCEDURES_FILE", tmp_path / "missing.yaml")

    assert server.main([]) == 1
    assert started == []
