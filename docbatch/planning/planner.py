"""
DOCBATCH Planning — Batch Planner

Runs the classifier and the three strategies over one inventory and
assembles the plan: ordered BatchResults plus a summary for operators
(distribution, errors, rejections, recommendations).

Batch order is fixed: combined, then single, then large chunks, each
in scan order. Same inputs, same plan.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from loguru import logger
from pydantic import BaseModel, Field

from docbatch.boundaries import StructuralBoundaryDetector
from docbatch.config_loader import PlanningConfig
from docbatch.planning.classifier import ClassifiedFiles, FileClassifier
from docbatch.planning.models import BATCH_TYPES, BatchResult, FileRecord
from docbatch.planning.strategies import (
    CombinedBatchStrategy,
    ContentLoader,
    LargeFileMultiBatchStrategy,
    RejectedFile,
    SingleFileBatchStrategy,
)

STAGED_PROCESSING_THRESHOLD = 20


class FileIssue(BaseModel):
    path: str
    reason: str
    tokens: int | None = None


class PlanSummary(BaseModel):
    file_distribution: dict[str, int] = Field(default_factory=dict)
    batch_distribution: dict[str, int] = Field(default_factory=dict)
    total_files: int = 0
    total_batches: int = 0
    total_tokens: int = 0
    batched_tokens: int = 0
    average_files_per_batch: float = 0.0
    error_files: list[FileIssue] = Field(default_factory=list)
    rejected_files: list[FileIssue] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)


@dataclass
class PlanningResult:
    classified: ClassifiedFiles
    batches: list[BatchResult] = field(default_factory=list)
    rejected: list[RejectedFile] = field(default_factory=list)
    summary: PlanSummary = field(default_factory=PlanSummary)

    @property
    def is_empty(self) -> bool:
        return not self.batches


def file_content_loader(root: Path) -> ContentLoader:
    """Loader that reads files relative to `root`; unreadable files yield None."""
    base = root.resolve()

    def load(record: FileRecord) -> str | None:
        try:
            return (base / record.path).read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            logger.debug(f"[PLANNER] No content for {record.path}: {e}")
            return None

    return load


class BatchPlanner:
    def __init__(
        self,
        config: PlanningConfig | None = None,
        content_loader: ContentLoader | None = None,
        boundary_detector: StructuralBoundaryDetector | None = None,
    ):
        self.config = config or PlanningConfig()
        self.classifier = FileClassifier(self.config)
        self.combined = CombinedBatchStrategy(self.config)
        self.single = SingleFileBatchStrategy(self.config)
        self.large = LargeFileMultiBatchStrategy(self.config, content_loader, boundary_detector)

    def plan(self, records: list[FileRecord]) -> PlanningResult:
        """Classify and batch. Per-file failures are reported, never raised."""
        classified = self.classifier.classify(records)
        result = PlanningResult(classified=classified)

        # Strategies only ever see non-empty, error-free buckets
        for bucket, strategy in (
            (classified.small, self.combined),
            (classified.medium, self.single),
            (classified.large, self.large),
        ):
            if not bucket:
                continue
            outcome = strategy.create_batches(bucket)
            result.batches.extend(outcome.batches)
            result.rejected.extend(outcome.rejected)

        for batch in result.batches:
            if batch.estimated_tokens > self.config.max_batch_size:
                # Strategies guarantee this; a breach is a bug, not bad input
                raise AssertionError(
                    f"{batch.batch_id} estimates {batch.estimated_tokens} tokens "
                    f"> max_batch_size {self.config.max_batch_size}"
                )

        result.summary = self.summarize(classified, result.batches, result.rejected)
        logger.info(
            f"[PLANNER] {result.summary.total_files} files → {result.summary.total_batches} batches "
            f"({len(classified.error)} errors, {len(result.rejected)} rejected)"
        )
        return result

    def summarize(
        self,
        classified: ClassifiedFiles,
        batches: list[BatchResult],
        rejected: list[RejectedFile],
    ) -> PlanSummary:
        batch_distribution = {t: 0 for t in BATCH_TYPES}
        for batch in batches:
            batch_distribution[batch.type] += 1

        counted = classified.small + classified.medium + classified.large
        total_files = classified.total
        total_batches = len(batches)
        planned_files = sum(b.file_count for b in batches)

        summary = PlanSummary(
            file_distribution=classified.counts(),
            batch_distribution=batch_distribution,
            total_files=total_files,
            total_batches=total_batches,
            total_tokens=sum(r.token_count or 0 for r in counted),
            batched_tokens=sum(b.estimated_tokens for b in batches),
            average_files_per_batch=round(planned_files / total_batches, 2) if total_batches else 0.0,
            error_files=[
                FileIssue(path=r.path, reason=r.analysis_error or "unknown error")
                for r in classified.error
            ],
            rejected_files=[
                FileIssue(path=r.path, reason=r.reason, tokens=r.tokens) for r in rejected
            ],
        )

        if classified.large:
            summary.recommendations.append(
                f"{len(classified.large)} large file(s) were split into chunks; "
                "review chunk results together when documenting them."
            )
        if classified.error:
            summary.recommendations.append(
                f"{len(classified.error)} file(s) could not be analyzed and need manual review."
            )
        if rejected:
            summary.recommendations.append(
                f"{len(rejected)} file(s) exceed max_batch_size and were left out; "
                "adjust the planning thresholds or handle them manually."
            )
        if total_batches > STAGED_PROCESSING_THRESHOLD:
            summary.recommendations.append(
                f"{total_batches} batches planned; consider processing in stages."
            )
        return summary
