"""
DOCBATCH Tasks — Task Definitions

A TaskDefinition is the durable instruction handed to the external
content generator: which files, how many tokens, and which artifact
names must exist afterwards. Definitions are immutable once built.

IDs are sequential per build (`task_1`, `task_2`, ...), so the same
plan always yields the same IDs.
"""

from __future__ import annotations

from enum import Enum
from pathlib import PurePosixPath
from typing import Any, Iterable, Union

import pydantic
from loguru import logger
from pydantic import BaseModel, ConfigDict, Field

from docbatch.config_loader import DocBatchConfig
from docbatch.errors import ValidationError
from docbatch.planning.models import (
    BATCH_TYPES,
    BatchFile,
    BatchResult,
    ChunkInfo,
    CombinedBatch,
    LargeFileChunk,
    SingleBatch,
    batch_adapter,
)
from docbatch.tasks.steps import safe_artifact_name


class TaskType(str, Enum):
    FILE_BATCH = "file_batch"
    SINGLE_FILE = "single_file"
    LARGE_FILE_CHUNK = "large_file_chunk"
    MODULE_INTEGRATION = "module_integration"
    MODULE_RELATIONS = "module_relations"
    ARCHITECTURE_DOCS = "architecture_docs"


STEP_TASK_TYPES = {
    "modules": TaskType.MODULE_INTEGRATION,
    "relations": TaskType.MODULE_RELATIONS,
    "architecture": TaskType.ARCHITECTURE_DOCS,
}


class TaskMetadata(BaseModel):
    model_config = ConfigDict(frozen=True)

    batch_id: str | None = None
    file_count: int = 0
    chunk: ChunkInfo | None = None
    details: dict[str, Any] = Field(default_factory=dict)


class TaskDefinition(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    type: TaskType
    strategy: str
    step_type: str = "files"
    files: tuple[str, ...] = ()
    estimated_tokens: int = 0
    expected_outputs: tuple[str, ...] = ()
    metadata: TaskMetadata = Field(default_factory=TaskMetadata)


def _stem(path: str) -> str:
    name = PurePosixPath(path).name
    return PurePosixPath(name).stem or name


def expected_outputs_for(task_id: str, batch: BatchResult) -> list[str]:
    """Artifact names the generator must write for one batch."""
    if isinstance(batch, LargeFileChunk):
        return [f"{task_id}_{batch.chunk_info.chunk_index}_{_stem(batch.files[0].path)}_analysis.md"]
    if isinstance(batch, SingleBatch):
        return [f"{task_id}_{_stem(batch.files[0].path)}_analysis.md"]
    if isinstance(batch, CombinedBatch):
        return [f"{task_id}_combined_analysis.md"]
    raise TypeError(f"Unhandled batch variant: {type(batch).__name__}")


def _task_type_for(batch: BatchResult) -> TaskType:
    if isinstance(batch, LargeFileChunk):
        return TaskType.LARGE_FILE_CHUNK
    if isinstance(batch, SingleBatch):
        return TaskType.SINGLE_FILE
    return TaskType.FILE_BATCH


class TaskDefinitionBuilder:
    def __init__(self, config: DocBatchConfig | None = None, id_prefix: str = "task"):
        self.config = config or DocBatchConfig()
        self.id_prefix = id_prefix

    # -- Batch-driven steps --------------------------------------------------

    def build(
        self,
        batches: Iterable[Union[BatchResult, dict[str, Any]]],
        step_type: str = "files",
        start_index: int = 1,
    ) -> list[TaskDefinition]:
        """
        One definition per non-empty batch. Empty batches are skipped
        with a warning and do not consume an id.
        """
        self.config.step(step_type)

        definitions: list[TaskDefinition] = []
        skipped = 0
        for raw in batches:
            batch = self._coerce(raw)
            if not batch.files:
                skipped += 1
                logger.warning(f"[DEFS] Batch {batch.batch_id or '?'} has no files; skipped.")
                continue
            task_id = f"{self.id_prefix}_{start_index + len(definitions)}"
            definitions.append(self._from_batch(task_id, batch, step_type))

        logger.info(f"[DEFS] Built {len(definitions)} task definitions for step '{step_type}' ({skipped} skipped)")
        return definitions

    def _from_batch(self, task_id: str, batch: BatchResult, step_type: str) -> TaskDefinition:
        details: dict[str, Any] = dict(batch.metadata)
        if isinstance(batch, SingleBatch):
            primary = batch.files[0]
            details.setdefault("primary_file", primary.path)
            details.setdefault("language", primary.language)

        return TaskDefinition(
            id=task_id,
            type=_task_type_for(batch),
            strategy=batch.strategy,
            step_type=step_type,
            files=tuple(f.path for f in batch.files),
            estimated_tokens=batch.estimated_tokens,
            expected_outputs=tuple(expected_outputs_for(task_id, batch)),
            metadata=TaskMetadata(
                batch_id=batch.batch_id,
                file_count=batch.file_count,
                chunk=batch.chunk_info if isinstance(batch, LargeFileChunk) else None,
                details=details,
            ),
        )

    def _coerce(self, raw: Union[BatchResult, dict[str, Any]]) -> BatchResult:
        if isinstance(raw, (CombinedBatch, SingleBatch, LargeFileChunk)):
            return raw
        if not isinstance(raw, dict):
            raise ValidationError(f"Expected a BatchResult or dict, got {type(raw).__name__}")

        batch_type = raw.get("type")
        if batch_type in BATCH_TYPES:
            try:
                return batch_adapter.validate_python(raw)
            except pydantic.ValidationError as e:
                raise ValidationError(f"Malformed batch {raw.get('batch_id', '?')}: {e}") from e

        logger.warning(f"[DEFS] Unknown batch type {batch_type!r}; treating as file_batch.")
        files = []
        for item in raw.get("files") or []:
            if isinstance(item, str):
                files.append(BatchFile(path=item, token_count=0))
            else:
                files.append(BatchFile(path=item["path"], token_count=item.get("token_count", 0)))
        return CombinedBatch(
            batch_id=str(raw.get("batch_id") or ""),
            files=files,
            estimated_tokens=int(raw.get("estimated_tokens") or 0),
            metadata={**(raw.get("metadata") or {}), "original_type": batch_type},
        )

    # -- Fixed-output steps --------------------------------------------------

    def build_step_definition(
        self,
        step_type: str,
        task_id: str | None = None,
        files: Iterable[str] = (),
    ) -> TaskDefinition:
        """Definition for a step whose artifacts are fixed names (relations, architecture)."""
        step = self.config.step(step_type)
        if not step.fixed_outputs:
            raise ValidationError(f"Step '{step_type}' has no fixed outputs; build it from batches or modules.")
        task_type = STEP_TASK_TYPES.get(step_type, TaskType.FILE_BATCH)
        file_list = tuple(files)
        return TaskDefinition(
            id=task_id or f"{self.id_prefix}_{step_type}",
            type=task_type,
            strategy=step_type,
            step_type=step_type,
            files=file_list,
            expected_outputs=tuple(safe_artifact_name(n) for n in step.fixed_outputs),
            metadata=TaskMetadata(file_count=len(file_list), details={"step_name": step.name}),
        )

    def build_module_definitions(
        self,
        modules: dict[str, list[str]],
        step_type: str = "modules",
        start_index: int = 1,
        id_prefix: str = "module",
    ) -> list[TaskDefinition]:
        """One definition per module (sorted by name), expecting `<module>.md`."""
        self.config.step(step_type)
        definitions = []
        for offset, (module, files) in enumerate(sorted(modules.items())):
            artifact = module.strip("/").replace("/", "_") or "root"
            definitions.append(TaskDefinition(
                id=f"{id_prefix}_{start_index + offset}",
                type=TaskType.MODULE_INTEGRATION,
                strategy="module",
                step_type=step_type,
                files=tuple(files),
                expected_outputs=(safe_artifact_name(f"{artifact}.md"),),
                metadata=TaskMetadata(file_count=len(files), details={"module": module}),
            ))
        logger.info(f"[DEFS] Built {len(definitions)} module definitions")
        return definitions
