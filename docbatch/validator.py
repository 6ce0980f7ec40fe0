"""
DOCBATCH Validator — Artifact Completion Check

A task is complete when its expected artifacts exist on disk (and,
for stricter steps, are at least N bytes). Content is never read or
judged here.
"""

from __future__ import annotations

from pathlib import Path

from loguru import logger
from pydantic import BaseModel, Field

from docbatch.config_loader import DocBatchConfig, ValidationStrictness
from docbatch.errors import ValidationError
from docbatch.tasks.definitions import TaskDefinition
from docbatch.tasks.steps import OutputLayout


class ArtifactStatus(BaseModel):
    name: str
    path: str | None = None
    size: int | None = None
    reason: str | None = None


class ValidationReport(BaseModel):
    task_id: str
    success: bool
    strictness: ValidationStrictness
    checked: bool = True
    existing_files: list[ArtifactStatus] = Field(default_factory=list)
    missing_files: list[ArtifactStatus] = Field(default_factory=list)

    @property
    def missing_names(self) -> list[str]:
        return [a.name for a in self.missing_files]


def _strictness(value: ValidationStrictness | str) -> ValidationStrictness:
    try:
        return ValidationStrictness(value)
    except ValueError:
        known = ", ".join(s.value for s in ValidationStrictness)
        raise ValidationError(f"Unknown validation strictness {value!r} (expected one of: {known})") from None


class CompletionValidator:
    def __init__(self, config: DocBatchConfig | None = None):
        self.config = config or DocBatchConfig()
        self.layout = OutputLayout(self.config)

    def validate(
        self,
        definition: TaskDefinition,
        project_path: Path,
        step_type: str | None = None,
        strictness: ValidationStrictness | str | None = None,
    ) -> ValidationReport:
        step_type = step_type or definition.step_type
        step = self.config.step(step_type)
        level = _strictness(strictness) if strictness is not None else step.strictness

        if level is ValidationStrictness.NONE:
            logger.debug(f"[VALIDATOR] {definition.id}: strictness 'none', skipping disk check")
            return ValidationReport(task_id=definition.id, success=True, strictness=level, checked=False)

        min_size = step.min_size_bytes if level is ValidationStrictness.MIN_SIZE else 0
        report = ValidationReport(task_id=definition.id, success=False, strictness=level)

        for name in definition.expected_outputs:
            try:
                path = self.layout.resolve(project_path, step_type, name)
            except ValidationError as e:
                report.missing_files.append(ArtifactStatus(name=name, reason=str(e)))
                continue

            if not path.is_file():
                report.missing_files.append(ArtifactStatus(name=name, path=str(path), reason="not found"))
                continue

            size = path.stat().st_size
            if size < min_size:
                report.missing_files.append(ArtifactStatus(
                    name=name, path=str(path), size=size,
                    reason=f"{size} bytes, below minimum {min_size}",
                ))
                continue

            report.existing_files.append(ArtifactStatus(name=name, path=str(path), size=size))

        report.success = not report.missing_files and bool(definition.expected_outputs)
        if not definition.expected_outputs:
            logger.warning(f"[VALIDATOR] {definition.id} declares no expected outputs; cannot complete.")

        logger.debug(
            f"[VALIDATOR] {definition.id}: {len(report.existing_files)} present, "
            f"{len(report.missing_files)} missing ({level.value})"
        )
        return report

    def validate_many(
        self,
        definitions: list[TaskDefinition],
        project_path: Path,
        step_type: str | None = None,
    ) -> dict[str, ValidationReport]:
        return {d.id: self.validate(d, project_path, step_type) for d in definitions}
