"""Tests for loading and validating the procedure registry."""

from pathlib import Path

import pytest

from features.procedures import ProcedureRegistry, RegistryError, load_registry, parse_registry
from features.procedures.models import ProcedureDefinition


def _proc(pid="infra-update", **overrides):
    data = {
        "id": pid,
        "cwd": "/repos/infra",
        "timeout": 30,
        "steps": [
            {"name": "fetch-config", "command": "git pull origin main"},
            {"name": "restart-service", "command": ["docker", "restart", "caddy"], "abort_on_failure": False},
        ],
    }
    data.update(overrides)
    return data


def test_load_registry_from_yaml(write_procedures):
    path = write_procedures(_proc(), _proc("app-update"))

    registry = load_registry(path)

    assert len(registry) == 2
    assert registry.ids() == ["infra-update", "app-update"]
    proc = registry.lookup("infra-update")
    assert proc.timeout == 30
    assert [s.name for s in proc.steps] == ["fetch-config", "restart-service"]
    assert proc.steps[0].command == ("git", "pull", "origin", "main")
    assert proc.steps[0].abort_on_failure is True
    assert proc.steps[1].abort_on_failure is False


def test_lookup_unknown_returns_none():
    registry = parse_registry({"procedures": [_proc()]})
    assert registry.lookup("nope") is None
    assert registry.lookup("infra-update").id == "infra-update"


def test_step_inherits_procedure_cwd_unless_overridden():
    registry = parse_registry({"procedures": [_proc(steps=[
        {"command": "git pull"},
        {"command": "make", "cwd": "/srv/build"},
    ])]})
    proc = registry.lookup("infra-update")

    assert proc.step_cwd(proc.steps[0]) == Path("/repos/infra")
    assert proc.step_cwd(proc.steps[1]) == Path("/srv/build")


def test_step_name_defaults_to_program():
    registry = parse_registry({"procedures": [_proc(steps=[{"command": "/usr/bin/docker restart caddy"}])]})
    assert registry.lookup("infra-update").steps[0].name == "docker"


def test_step_env_values_become_strings():
    registry = parse_registry({"procedures": [_proc(steps=[{"command": "true", "env": {"RETRIES": 3}}])]})
    assert registry.lookup("infra-update").steps[0].env == {"RETRIES": "3"}


def test_definitions_are_immutable():
    proc = parse_registry({"procedures": [_proc()]}).lookup("infra-update")
    with pytest.raises(Exception):
        proc.timeout = 1


def test_duplicate_ids_are_fatal():
    with pytest.raises(RegistryError, match="Duplicate procedure id"):
        parse_registry({"procedures": [_proc(), _proc()]})


@pytest.mark.parametrize("command", ["", "   ", []])
def test_empty_command_is_fatal(command):
    with pytest.raises(RegistryError, match="invalid procedure #1"):
        parse_registry({"procedures": [_proc(steps=[{"command": command}])]})


def test_procedure_without_steps_is_fatal():
    with pytest.raises(RegistryError):
        parse_registry({"procedures": [_proc(steps=[])]})


@pytest.mark.parametrize("timeout", [0, -5])
def test_non_positive_timeout_is_fatal(timeout):
    with pytest.raises(RegistryError):
        parse_registry({"procedures": [_proc(timeout=timeout)]})


def test_unknown_keys_are_fatal():
    with pytest.raises(RegistryError, match="'infra-update'"):
        parse_registry({"procedures": [_proc(retries=3)]})


@pytest.mark.parametrize("data", [None, [], {"procedures": "x"}, {"procedures": []}])
def test_malformed_top_level_is_fatal(data):
    with pytest.raises(RegistryError):
        parse_registry(data)


def test_missing_file_is_fatal(tmp_path):
    with pytest.raises(RegistryError, match="Cannot read"):
        load_registry(tmp_path / "missing.yaml")


def test_invalid_yaml_is_fatal(tmp_path):
    path = tmp_path / "procedures.yaml"
    path.write_text("procedures: [\n  - id: x\n")
    with pytest.raises(RegistryError, match="Malformed"):
        load_registry(path)


def test_registry_rejects_duplicates_when_built_directly():
    proc = ProcedureDefinition.model_validate(_proc())
    with pytest.raises(RegistryError):
        ProcedureRegistry([proc, proc])
