"""
Configuration loader for DOCBATCH.
Merges defaults with per-project .docbatch/config.yaml overrides.
"""

from __future__ import annotations

import os
from enum import Enum
from pathlib import Path
from typing import Any

import pydantic
import yaml
from pydantic import BaseModel, Field, model_validator

from docbatch.errors import ConfigError


# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

class ValidationStrictness(str, Enum):
    NONE = "none"
    EXISTENCE = "existence"
    MIN_SIZE = "min_size"


class PlanningConfig(BaseModel):
    small_file_threshold: int = 15_000
    large_file_threshold: int = 20_000
    batch_target_size: int = 18_000
    max_batch_size: int = 22_000
    max_files_per_batch: int = 12
    max_chunks_per_file: int = 10
    token_workers: int = 4

    @model_validator(mode="after")
    def check_budgets(self) -> "PlanningConfig":
        for name in (
            "small_file_threshold", "large_file_threshold",
            "batch_target_size", "max_batch_size",
            "max_files_per_batch", "max_chunks_per_file", "token_workers",
        ):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive")
        if self.small_file_threshold >= self.large_file_threshold:
            raise ValueError("small_file_threshold must be below large_file_threshold")
        if self.batch_target_size > self.max_batch_size:
            raise ValueError("batch_target_size must not exceed max_batch_size")
        if self.large_file_threshold > self.max_batch_size:
            raise ValueError("large_file_threshold must not exceed max_batch_size")
        return self


class ScanConfig(BaseModel):
    exclude_dirs: list[str] = Field(default_factory=list)
    extensions: list[str] = Field(default_factory=list)


class OutputConfig(BaseModel):
    docs_root: str = "docs/generated"


class StateConfig(BaseModel):
    state_dir: str = ".docbatch/state"
    backup_retention: int = 10
    history_limit: int = 10
    flush_every: int = 20
    audit_log: str = ".docbatch/logs/audit.jsonl"


class StepConfig(BaseModel):
    """One row of the static per-step table."""
    name: str
    subdir: str = ""
    auto_complete: bool = True
    max_retries: int = 3
    strictness: ValidationStrictness = ValidationStrictness.EXISTENCE
    min_size_bytes: int = 0
    fixed_outputs: list[str] = Field(default_factory=list)


def _default_steps() -> dict[str, StepConfig]:
    return {
        "files": StepConfig(name="File Processing", subdir="files", max_retries=3),
        "modules": StepConfig(name="Module Integration", subdir="modules", max_retries=2),
        "relations": StepConfig(
            name="Module Relations", subdir="relations", max_retries=2,
            strictness=ValidationStrictness.MIN_SIZE, min_size_bytes=50,
            fixed_outputs=["relations.md"],
        ),
        "architecture": StepConfig(
            name="Architecture Documentation", subdir="", max_retries=2,
            strictness=ValidationStrictness.MIN_SIZE, min_size_bytes=100,
            fixed_outputs=["README.md", "architecture.md"],
        ),
    }


class DocBatchConfig(BaseModel):
    planning: PlanningConfig = Field(default_factory=PlanningConfig)
    scan: ScanConfig = Field(default_factory=ScanConfig)
    output: OutputConfig = Field(default_factory=OutputConfig)
    state: StateConfig = Field(default_factory=StateConfig)
    steps: dict[str, StepConfig] = Field(default_factory=_default_steps)

    def step(self, step_type: str) -> StepConfig:
        """Look up a step row, raising ConfigError for unsupported steps."""
        try:
            return self.steps[step_type]
        except KeyError:
            raise ConfigError(
                f"Unsupported step type: {step_type}. Known: {sorted(self.steps)}"
            ) from None


# ---------------------------------------------------------------------------
# Loader
# ---------------------------------------------------------------------------

_DEFAULT_CONFIG_PATH = Path(__file__).parent / "config.yaml"

_ENV_OVERRIDES = {
    "DOCBATCH_STATE_DIR": ("state", "state_dir", str),
    "DOCBATCH_DOCS_ROOT": ("output", "docs_root", str),
    "DOCBATCH_TOKEN_WORKERS": ("planning", "token_workers", int),
}


def _deep_merge(base: dict, override: dict) -> dict:
    """Recursively merge override into base."""
    merged = base.copy()
    for key, value in override.items():
        if key in merged and isinstance(merged[key], dict) and isinstance(value, dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _env_overrides() -> dict[str, Any]:
    overrides: dict[str, Any] = {}
    for var, (section, key, cast) in _ENV_OVERRIDES.items():
        raw = os.environ.get(var)
        if raw is None or raw == "":
            continue
        try:
            value = cast(raw)
        except ValueError as e:
            raise ConfigError(f"{var}={raw!r} is not a valid {cast.__name__}") from e
        overrides.setdefault(section, {})[key] = value
    return overrides


def load_config(project_path: Path | None = None) -> DocBatchConfig:
    """
    Load config by merging:
      1. Built-in defaults (docbatch/config.yaml)
      2. Project-level overrides (<project>/.docbatch/config.yaml)
      3. Environment variable overrides (DOCBATCH_*)
    """
    # 1. Built-in defaults
    with open(_DEFAULT_CONFIG_PATH, "r") as f:
        base: dict[str, Any] = yaml.safe_load(f) or {}

    # 2. Project overrides
    if project_path:
        project_config = project_path / ".docbatch" / "config.yaml"
        if project_config.exists():
            with open(project_config, "r") as f:
                overrides: dict[str, Any] = yaml.safe_load(f) or {}
            base = _deep_merge(base, overrides)

    # 3. Environment
    base = _deep_merge(base, _env_overrides())

    try:
        return DocBatchConfig(**base)
    except pydantic.ValidationError as e:
        raise ConfigError(f"Invalid docbatch configuration: {e}") from e
