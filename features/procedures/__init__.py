"""
Procedures feature — the registry of deployment procedures a trigger can run.

Public API:
    from features.procedures import ProcedureRegistry, ProcedureDefinition, load_registry
"""

from features.procedures.models import ProcedureDefinition, StepDefinition
from features.procedures.registry import ProcedureRegistry, RegistryError, load_registry, parse_registry

__all__ = [
    "ProcedureDefinition",
    "ProcedureRegistry",
    "RegistryError",
    "StepDefinition",
    "load_registry",
    "parse_registry",
]
