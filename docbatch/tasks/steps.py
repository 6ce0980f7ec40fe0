"""
DOCBATCH Tasks — Step Table & Output Layout

Artifacts land at <project>/<docs_root>/<step subdir>/<name>.
Both the definition builder (to name outputs) and the completion
validator (to find them) go through OutputLayout, so the convention
lives in exactly one place.
"""

from __future__ import annotations

from pathlib import Path, PurePosixPath

from docbatch.config_loader import DocBatchConfig, StepConfig
from docbatch.errors import ValidationError


def safe_artifact_name(name: str) -> str:
    """Reject names that would escape the step directory."""
    if not name or not name.strip():
        raise ValidationError("artifact name must not be empty")
    pure = PurePosixPath(name.replace("\\", "/"))
    if pure.is_absolute() or ".." in pure.parts or (pure.parts and ":" in pure.parts[0]):
        raise ValidationError(f"artifact name escapes the output directory: {name!r}")
    return pure.as_posix()


class OutputLayout:
    def __init__(self, config: DocBatchConfig):
        self.config = config

    @property
    def docs_root(self) -> str:
        return self.config.output.docs_root

    def step(self, step_type: str) -> StepConfig:
        return self.config.step(step_type)

    def step_dir(self, project_path: Path, step_type: str) -> Path:
        subdir = self.step(step_type).subdir
        base = Path(project_path) / self.docs_root
        return base / subdir if subdir else base

    def resolve(self, project_path: Path, step_type: str, name: str) -> Path:
        return self.step_dir(project_path, step_type) / safe_artifact_name(name)
