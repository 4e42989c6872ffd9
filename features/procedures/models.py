"""
Data models for the procedures feature.

ProcedureDefinition and StepDefinition are validated once when the registry
file is loaded and frozen afterwards.
"""

from __future__ import annotations

import shlex
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class StepDefinition(BaseModel):
    """A single external command within a procedure."""
    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str = ""
    command: tuple[str, ...]
    cwd: Path | None = None
    abort_on_failure: bool = True
    env: dict[str, str] = Field(default_factory=dict)

    @field_validator("command", mode="before")
    @classmethod
    def _split_command(cls, value):
        # Strings use shell-word splitting but are never run through a shell
        if isinstance(value, str):
            value = shlex.split(value)
        return value

    @field_validator("command")
    @classmethod
    def _non_empty_command(cls, value: tuple[str, ...]) -> tuple[str, ...]:
        if not value or not value[0].strip():
            raise ValueError("step command must not be empty")
        return value

    @field_validator("env", mode="before")
    @classmethod
    def _stringify_env(cls, value):
        if isinstance(value, dict):
            return {str(k): str(v) for k, v in value.items()}
        return value

    @model_validator(mode="before")
    @classmethod
    def _default_name(cls, data):
        if isinstance(data, dict) and not data.get("name"):
            command = data.get("command")
            if isinstance(command, str):
                command = shlex.split(command)
            if command:
                data = {**data, "name": Path(str(command[0])).name}
        return data


class ProcedureDefinition(BaseModel):
    """A named, ordered sequence of steps constituting one deployment action."""
    model_config = ConfigDict(frozen=True, extra="forbid")

    id: str = Field(min_length=1)
    description: str = ""
    steps: tuple[StepDefinition, ...] = Field(min_length=1)
    timeout: float = Field(default=300.0, gt=0)  # seconds, whole run
    cwd: Path | None = None
    inherit_env: bool = True

    def step_cwd(self, step: StepDefinition) -> Path | None:
        """Working directory for a step: its own, else the procedure's."""
        return step.cwd or self.cwd
