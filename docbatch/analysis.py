"""
DOCBATCH Analysis — Planning Pipeline

inventory → token counts → classification → batches → task definitions

Everything here is a pure planning pass; nothing is persisted. Feed
the definitions to a TaskOrchestrator to start tracking them.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath

from loguru import logger

from docbatch.boundaries import RegexBoundaryDetector, StructuralBoundaryDetector
from docbatch.config_loader import DocBatchConfig
from docbatch.inventory import Inventory, scan_project
from docbatch.planning.models import FileRecord
from docbatch.planning.planner import BatchPlanner, PlanningResult, file_content_loader
from docbatch.tasks.definitions import TaskDefinition, TaskDefinitionBuilder
from docbatch.tokens import HeuristicTokenCounter, TokenCounter, count_tokens


@dataclass
class AnalysisResult:
    inventory: Inventory
    records: list[FileRecord]
    planning: PlanningResult
    definitions: list[TaskDefinition] = field(default_factory=list)


def group_modules(records: list[FileRecord]) -> dict[str, list[str]]:
    """Group files by top-level directory; files at the root form the `root` module."""
    modules: dict[str, list[str]] = {}
    for record in records:
        parts = PurePosixPath(record.path).parts
        module = parts[0] if len(parts) > 1 else "root"
        modules.setdefault(module, []).append(record.path)
    return modules


def _with_line_counts(records: list[FileRecord], root: Path) -> list[FileRecord]:
    # Only large files are chunked, but line counts are cheap to keep for all of them
    for record in records:
        if record.line_count is None and not record.is_error:
            try:
                with open(root / record.path, "rb") as f:
                    record.line_count = sum(1 for _ in f)
            except OSError:
                continue
    return records


def analyze_project(
    project_path: Path,
    config: DocBatchConfig | None = None,
    counter: TokenCounter | None = None,
    boundary_detector: StructuralBoundaryDetector | None = None,
) -> AnalysisResult:
    config = config or DocBatchConfig()
    root = Path(project_path).resolve()

    inventory = scan_project(root, config.scan.exclude_dirs, config.scan.extensions)
    records = count_tokens(
        inventory.files,
        counter or HeuristicTokenCounter(root),
        max_workers=config.planning.token_workers,
    )
    records = _with_line_counts(records, root)

    planner = BatchPlanner(
        config.planning,
        content_loader=file_content_loader(root),
        boundary_detector=boundary_detector or RegexBoundaryDetector(),
    )
    planning = planner.plan(records)
    definitions = TaskDefinitionBuilder(config).build(planning.batches, step_type="files")

    logger.info(f"[ANALYSIS] {root.name}: {len(definitions)} file tasks planned")
    return AnalysisResult(
        inventory=inventory,
        records=records,
        planning=planning,
        definitions=definitions,
    )
