"""
Procedure Registry — the static mapping from trigger id to procedure.

Loaded once at startup from a YAML file and validated eagerly. Any problem
with the file is a RegistryError, which stops the server from starting;
nothing here is mutated at request time.
"""

from __future__ import annotations

import logging
from pathlib import Path
from types import MappingProxyType
from typing import Iterable, Iterator

import yaml
from pydantic import ValidationError

from features.procedures.models import ProcedureDefinition

log = logging.getLogger(__name__)


class RegistryError(Exception):
    """The procedures file is missing, malformed, or inconsistent."""


class ProcedureRegistry:
    """Read-only lookup of procedure definitions by id."""

    def __init__(self, procedures: Iterable[ProcedureDefinition]):
        by_id: dict[str, ProcedureDefinition] = {}
        for proc in procedures:
            if proc.id in by_id:
                raise RegistryError(f"Duplicate procedure id: {proc.id!r}")
            by_id[proc.id] = proc
        self._procedures = MappingProxyType(by_id)

    def lookup(self, identifier: str) -> ProcedureDefinition | None:
        return self._procedures.get(identifier)

    def ids(self) -> list[str]:
        return list(self._procedures)

    def __iter__(self) -> Iterator[ProcedureDefinition]:
        return iter(self._procedures.values())

    def __len__(self) -> int:
        return len(self._procedures)


def parse_registry(data: object, source: str = "<config>") -> ProcedureRegistry:
    """Build a registry from already-parsed YAML data."""
    if not isinstance(data, dict) or not isinstance(data.get("procedures"), list):
        raise RegistryError(f"{source}: expected a top-level 'procedures' list")
    entries = data["procedures"]
    if not entries:
        raise RegistryError(f"{source}: no procedures defined")

    procedures = []
    for position, entry in enumerate(entries, start=1):
        try:
            procedures.append(ProcedureDefinition.model_validate(entry))
        except ValidationError as e:
            label = entry.get("id") if isinstance(entry, dict) else None
            raise RegistryError(
                f"{source}: invalid procedure #{position}"
                f"{f' ({label!r})' if label else ''}: {e}"
            ) from e
    return ProcedureRegistry(procedures)


def load_registry(path: Path | str) -> ProcedureRegistry:
    """Read and validate the procedures file."""
    path = Path(path)
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except OSError as e:
        raise RegistryError(f"Cannot read procedures file {path}: {e}") from e
    except yaml.YAMLError as e:
        raise RegistryError(f"Malformed procedures file {path}: {e}") from e

    registry = parse_registry(data, source=str(path))
    log.info("Loaded %d procedure(s) from %s: %s", len(registry), path, ", ".join(registry.ids()))
    return registry
