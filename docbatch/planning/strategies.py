"""
DOCBATCH Planning — Batch Strategies

Three independent strategies, one per file tier:

  CombinedBatchStrategy       small files  → first-fit packed batches
  SingleFileBatchStrategy     medium files → one batch per file
  LargeFileMultiBatchStrategy large files  → contiguous chunks

Every BatchResult produced here satisfies
estimated_tokens <= max_batch_size. A file that cannot satisfy it is
rejected and reported, never silently packed.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from pathlib import PurePosixPath
from typing import Callable

from loguru import logger

from docbatch.boundaries import StructuralBoundaryDetector, safe_detect, source_lines
from docbatch.config_loader import PlanningConfig
from docbatch.planning.models import (
    BatchFile,
    BatchResult,
    ChunkInfo,
    CombinedBatch,
    FileRecord,
    LargeFileChunk,
    ParentFileInfo,
    SingleBatch,
)

ContentLoader = Callable[[FileRecord], "str | None"]


@dataclass
class RejectedFile:
    """A file no strategy could place within max_batch_size."""
    path: str
    tokens: int
    reason: str


@dataclass
class StrategyOutcome:
    batches: list[BatchResult] = field(default_factory=list)
    rejected: list[RejectedFile] = field(default_factory=list)


def _efficiency(tokens: int, target: int) -> int:
    """Fill ratio against the soft target, as a percentage capped at 100."""
    if target <= 0:
        return 0
    return min(round(tokens / target * 100), 100)


# ---------------------------------------------------------------------------
# Combined (small files)
# ---------------------------------------------------------------------------

class CombinedBatchStrategy:
    """
    Deterministic first-fit in scan order. A file joins the open batch
    while the sum stays within batch_target_size and the batch has room
    under max_files_per_batch; otherwise the batch closes. Never best-fit,
    never reordered, never split.
    """

    def __init__(self, config: PlanningConfig):
        self.config = config

    def create_batches(self, records: list[FileRecord]) -> StrategyOutcome:
        outcome = StrategyOutcome()
        if not records:
            return outcome

        target = self.config.batch_target_size
        current: list[FileRecord] = []
        current_sum = 0

        for record in records:
            tokens = record.token_count or 0
            if tokens > self.config.max_batch_size:
                outcome.rejected.append(RejectedFile(
                    record.path, tokens,
                    f"{tokens} tokens exceeds max_batch_size {self.config.max_batch_size}",
                ))
                logger.warning(f"[PLANNER] Small file {record.path} exceeds max batch size; not packed.")
                continue

            if current and (
                current_sum + tokens > target
                or len(current) >= self.config.max_files_per_batch
            ):
                outcome.batches.append(self._build(current, len(outcome.batches) + 1))
                current, current_sum = [], 0

            current.append(record)
            current_sum += tokens

        if current:
            outcome.batches.append(self._build(current, len(outcome.batches) + 1))

        logger.debug(f"[PLANNER] Combined: {len(records)} files → {len(outcome.batches)} batches")
        return outcome

    def _build(self, records: list[FileRecord], index: int) -> CombinedBatch:
        total = sum(r.token_count or 0 for r in records)
        directories = sorted({str(PurePosixPath(r.path).parent) if "/" in r.path else "root" for r in records})
        extensions = sorted({PurePosixPath(r.path).suffix or "(none)" for r in records})
        return CombinedBatch(
            batch_id=f"combined_batch_{index}",
            files=[BatchFile.from_record(r) for r in records],
            estimated_tokens=total,
            metadata={
                "file_count": len(records),
                "avg_tokens_per_file": round(total / len(records)),
                "directories": directories,
                "extensions": extensions,
                "efficiency": _efficiency(total, self.config.batch_target_size),
            },
        )


# ---------------------------------------------------------------------------
# Single (medium files)
# ---------------------------------------------------------------------------

class SingleFileBatchStrategy:
    def __init__(self, config: PlanningConfig):
        self.config = config

    def create_batches(self, records: list[FileRecord]) -> StrategyOutcome:
        outcome = StrategyOutcome()
        for record in records:
            tokens = record.token_count or 0
            if tokens > self.config.max_batch_size:
                outcome.rejected.append(RejectedFile(
                    record.path, tokens,
                    f"{tokens} tokens exceeds max_batch_size {self.config.max_batch_size}",
                ))
                logger.warning(f"[PLANNER] Medium file {record.path} exceeds max batch size; not planned.")
                continue
            outcome.batches.append(SingleBatch(
                batch_id=f"single_batch_{len(outcome.batches) + 1}",
                files=[BatchFile.from_record(record)],
                estimated_tokens=tokens,
                metadata={
                    "language": record.language,
                    "efficiency": _efficiency(tokens, self.config.batch_target_size),
                },
            ))
        return outcome


# ---------------------------------------------------------------------------
# Large (chunked files)
# ---------------------------------------------------------------------------

@dataclass
class _Span:
    start: int       # 1-based line, inclusive (0 when unknown)
    end: int
    tokens: int
    mode: str


class LargeFileMultiBatchStrategy:
    """
    Splits each large file into contiguous chunks of at most
    batch_target_size tokens.

    Token estimates are spread evenly over lines with cumulative
    rounding, so chunk estimates always sum to the file total.
    Boundary hints (when content and a detector are available) are
    packed greedily; a structural segment larger than the target is cut
    into line windows. Without line information the file is cut into
    equal token windows.
    """

    def __init__(
        self,
        config: PlanningConfig,
        content_loader: ContentLoader | None = None,
        boundary_detector: StructuralBoundaryDetector | None = None,
    ):
        self.config = config
        self.content_loader = content_loader
        self.boundary_detector = boundary_detector

    def create_batches(self, records: list[FileRecord]) -> StrategyOutcome:
        outcome = StrategyOutcome()
        for file_index, record in enumerate(records, start=1):
            spans = self.split(record)
            if len(spans) > self.config.max_chunks_per_file:
                logger.warning(
                    f"[PLANNER] {record.path} needs {len(spans)} chunks "
                    f"(max_chunks_per_file={self.config.max_chunks_per_file}); keeping all."
                )
            outcome.batches.extend(self._build(record, file_index, spans))
        return outcome

    # -- Splitting -----------------------------------------------------------

    def split(self, record: FileRecord) -> list[_Span]:
        total = record.token_count or 0
        target = self.config.batch_target_size

        content = self._load(record)
        line_count = len(source_lines(content)) if content is not None else record.line_count

        if total <= 0:
            end = line_count or 0
            return [_Span(1 if end else 0, end, 0, "line_window")]

        if not line_count or math.ceil(total / line_count) > target:
            return self._token_windows(total, target)

        def cum(k: int) -> int:
            return round(total * k / line_count)

        hints: list[int] = []
        if content is not None:
            hints = safe_detect(self.boundary_detector, content, record.language, record.path)

        if hints:
            return self._pack_segments(hints, line_count, cum, target)
        return self._line_windows(1, line_count, cum, target)

    def _load(self, record: FileRecord) -> str | None:
        if self.content_loader is None:
            return None
        try:
            return self.content_loader(record)
        except Exception as e:
            logger.warning(f"[PLANNER] Could not load {record.path} for chunking: {e}")
            return None

    @staticmethod
    def _token_windows(total: int, target: int) -> list[_Span]:
        n = math.ceil(total / target)
        spans = []
        for i in range(n):
            tokens = round(total * (i + 1) / n) - round(total * i / n)
            spans.append(_Span(0, 0, tokens, "token_window"))
        return spans

    @staticmethod
    def _line_windows(first: int, last: int, cum: Callable[[int], int], target: int) -> list[_Span]:
        """Smallest number of equal line windows over [first, last] that all fit the target."""
        length = last - first + 1
        n = max(1, math.ceil((cum(last) - cum(first - 1)) / target))
        while True:
            size = math.ceil(length / n)
            spans = []
            start = first
            while start <= last:
                end = min(start + size - 1, last)
                spans.append(_Span(start, end, cum(end) - cum(start - 1), "line_window"))
                start = end + 1
            if all(s.tokens <= target for s in spans) or size == 1:
                return spans
            n += 1

    def _pack_segments(
        self, hints: list[int], line_count: int, cum: Callable[[int], int], target: int
    ) -> list[_Span]:
        starts = [1] + hints
        segments = [
            (start, (starts[i + 1] - 1) if i + 1 < len(starts) else line_count)
            for i, start in enumerate(starts)
        ]

        spans: list[_Span] = []
        open_start: int | None = None
        open_end = 0

        def close() -> None:
            if open_start is not None:
                spans.append(_Span(open_start, open_end, cum(open_end) - cum(open_start - 1), "boundary"))

        for seg_start, seg_end in segments:
            seg_tokens = cum(seg_end) - cum(seg_start - 1)
            if seg_tokens > target:
                close()
                open_start = None
                spans.extend(self._line_windows(seg_start, seg_end, cum, target))
                continue
            if open_start is not None and cum(seg_end) - cum(open_start - 1) > target:
                close()
                open_start = None
            if open_start is None:
                open_start = seg_start
            open_end = seg_end
        close()
        return spans

    # -- Building ------------------------------------------------------------

    def _build(self, record: FileRecord, file_index: int, spans: list[_Span]) -> list[LargeFileChunk]:
        parent = ParentFileInfo(
            path=record.path,
            total_tokens=record.token_count or 0,
            original_index=record.original_index,
        )
        chunks = []
        for chunk_index, span in enumerate(spans, start=1):
            info = ChunkInfo(
                chunk_index=chunk_index,
                total_chunks=len(spans),
                start_line=span.start,
                end_line=span.end,
                split_mode=span.mode,
                parent_file_info=parent,
            )
            chunks.append(LargeFileChunk(
                batch_id=f"large_file_{file_index}_{chunk_index}",
                files=[BatchFile(
                    path=record.path,
                    token_count=span.tokens,
                    size=record.size,
                    language=record.language,
                    original_index=record.original_index,
                )],
                estimated_tokens=span.tokens,
                chunk_info=info,
                metadata={
                    "is_first_chunk": info.is_first,
                    "is_last_chunk": info.is_last,
                    "split_mode": span.mode,
                    "line_range": [span.start, span.end],
                },
            ))
        logger.debug(f"[PLANNER] {record.path}: {len(chunks)} chunks ({spans[0].mode if spans else 'none'})")
        return chunks
