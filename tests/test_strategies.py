import pytest

from docbatch.boundaries import RegexBoundaryDetector
from docbatch.config_loader import PlanningConfig
from docbatch.planning.models import CombinedBatch, LargeFileChunk, SingleBatch
from docbatch.planning.strategies import (
    CombinedBatchStrategy,
    LargeFileMultiBatchStrategy,
    SingleFileBatchStrategy,
)


# ---------------------------------------------------------------------------
# Combined
# ---------------------------------------------------------------------------

def test_combined_first_fit_in_scan_order(make_record):
    records = [make_record(f"f{i}.py", t, i) for i, t in enumerate([10_000, 9_000, 5_000, 3_000])]
    outcome = CombinedBatchStrategy(PlanningConfig()).create_batches(records)

    assert [[f.path for f in b.files] for b in outcome.batches] == [
        ["f0.py"],
        ["f1.py", "f2.py", "f3.py"],
    ]
    assert [b.estimated_tokens for b in outcome.batches] == [10_000, 17_000]
    assert [b.batch_id for b in outcome.batches] == ["combined_batch_1", "combined_batch_2"]
    assert all(isinstance(b, CombinedBatch) for b in outcome.batches)


def test_combined_does_not_backfill_earlier_batches(make_record):
    # Best-fit would put the 1000-token file into the first batch; first-fit must not
    records = [make_record(f"f{i}.py", t, i) for i, t in enumerate([17_000, 2_000, 1_000])]
    outcome = CombinedBatchStrategy(PlanningConfig()).create_batches(records)
    assert [[f.path for f in b.files] for b in outcome.batches] == [["f0.py"], ["f1.py", "f2.py"]]


def test_combined_respects_max_files_per_batch(make_record):
    config = PlanningConfig(max_files_per_batch=2)
    records = [make_record(f"f{i}.py", 100, i) for i in range(5)]
    outcome = CombinedBatchStrategy(config).create_batches(records)
    assert [b.file_count for b in outcome.batches] == [2, 2, 1]


def test_combined_file_above_target_travels_alone(make_record):
    config = PlanningConfig(small_file_threshold=19_000, large_file_threshold=20_000)
    records = [make_record(f"f{i}.py", t, i) for i, t in enumerate([1_000, 18_500, 1_000])]
    outcome = CombinedBatchStrategy(config).create_batches(records)
    assert [b.estimated_tokens for b in outcome.batches] == [1_000, 18_500, 1_000]


def test_combined_rejects_file_over_max_batch_size(make_record):
    records = [make_record("ok.py", 500, 0), make_record("huge.py", 23_000, 1)]
    outcome = CombinedBatchStrategy(PlanningConfig()).create_batches(records)

    assert [b.estimated_tokens for b in outcome.batches] == [500]
    assert [r.path for r in outcome.rejected] == ["huge.py"]
    assert "max_batch_size" in outcome.rejected[0].reason


def test_combined_metadata(make_record):
    records = [make_record("src/a.py", 3_000, 0), make_record("lib/b.ts", 6_000, 1)]
    batch = CombinedBatchStrategy(PlanningConfig()).create_batches(records).batches[0]

    assert batch.metadata["avg_tokens_per_file"] == 4_500
    assert batch.metadata["directories"] == ["lib", "src"]
    assert batch.metadata["extensions"] == [".py", ".ts"]
    assert batch.metadata["efficiency"] == 50


def test_combined_empty_input():
    outcome = CombinedBatchStrategy(PlanningConfig()).create_batches([])
    assert outcome.batches == [] and outcome.rejected == []


# ---------------------------------------------------------------------------
# Single
# ---------------------------------------------------------------------------

def test_single_one_batch_per_file(make_record):
    records = [make_record("a.py", 16_000, 0), make_record("b.py", 17_500, 1)]
    outcome = SingleFileBatchStrategy(PlanningConfig()).create_batches(records)

    assert [b.batch_id for b in outcome.batches] == ["single_batch_1", "single_batch_2"]
    assert [b.estimated_tokens for b in outcome.batches] == [16_000, 17_500]
    assert all(isinstance(b, SingleBatch) and b.file_count == 1 for b in outcome.batches)


# ---------------------------------------------------------------------------
# Large
# ---------------------------------------------------------------------------

def test_large_without_line_info_uses_token_windows(make_record):
    record = make_record("big.py", 25_000, 2)
    chunks = LargeFileMultiBatchStrategy(PlanningConfig()).create_batches([record]).batches

    assert len(chunks) == 2
    assert [c.estimated_tokens for c in chunks] == [12_500, 12_500]
    assert [c.batch_id for c in chunks] == ["large_file_1_1", "large_file_1_2"]
    assert all(c.chunk_info.split_mode == "token_window" for c in chunks)
    assert chunks[0].chunk_info.parent_file_info.path == "big.py"
    assert chunks[0].chunk_info.parent_file_info.total_tokens == 25_000
    assert chunks[0].metadata["is_first_chunk"] and chunks[1].metadata["is_last_chunk"]


def test_large_line_windows_are_contiguous_and_sum_to_total(make_record):
    record = make_record("big.py", 40_000, 0, line_count=1_000)
    chunks = LargeFileMultiBatchStrategy(PlanningConfig()).create_batches([record]).batches

    assert len(chunks) == 3
    ranges = [(c.chunk_info.start_line, c.chunk_info.end_line) for c in chunks]
    assert ranges == [(1, 334), (335, 668), (669, 1_000)]
    assert sum(c.estimated_tokens for c in chunks) == 40_000
    assert all(c.estimated_tokens <= 18_000 for c in chunks)
    assert all(c.chunk_info.split_mode == "line_window" for c in chunks)
    assert all(c.chunk_info.total_chunks == 3 for c in chunks)


def _functions(*sizes: int) -> str:
    parts = []
    for i, size in enumerate(sizes):
        parts.append(f"def f{i}():\n" + "    x = 1\n" * (size - 1))
    return "".join(parts)


def test_large_prefers_structural_boundaries(make_record):
    content = _functions(50, 50, 50, 50)
    record = make_record("big.py", 40_000, 0, language="python")
    strategy = LargeFileMultiBatchStrategy(
        PlanningConfig(), content_loader=lambda r: content, boundary_detector=RegexBoundaryDetector()
    )
    chunks = strategy.create_batches([record]).batches

    assert [c.chunk_info.start_line for c in chunks] == [1, 51, 101, 151]
    assert [c.estimated_tokens for c in chunks] == [10_000] * 4
    assert all(c.chunk_info.split_mode == "boundary" for c in chunks)


def test_large_splits_oversized_segment_into_windows(make_record):
    content = _functions(20, 180)
    record = make_record("big.py", 40_000, 0, language="python")
    strategy = LargeFileMultiBatchStrategy(
        PlanningConfig(), content_loader=lambda r: content, boundary_detector=RegexBoundaryDetector()
    )
    chunks = strategy.create_batches([record]).batches

    spans = [(c.chunk_info.start_line, c.chunk_info.end_line, c.chunk_info.split_mode) for c in chunks]
    assert spans == [(1, 20, "boundary"), (21, 110, "line_window"), (111, 200, "line_window")]
    assert sum(c.estimated_tokens for c in chunks) == 40_000


class _BrokenDetector:
    def detect(self, content, language):
        raise RuntimeError("regex engine on fire")


def test_large_detector_failure_falls_back_to_windows(make_record):
    content = _functions(100, 100)
    record = make_record("big.py", 40_000, 0, language="python")
    strategy = LargeFileMultiBatchStrategy(
        PlanningConfig(), content_loader=lambda r: content, boundary_detector=_BrokenDetector()
    )
    chunks = strategy.create_batches([record]).batches

    assert chunks
    assert all(c.chunk_info.split_mode == "line_window" for c in chunks)
    assert all(c.estimated_tokens <= 18_000 for c in chunks)


def test_large_loader_failure_falls_back(make_record):
    def loader(record):
        raise OSError("gone")

    record = make_record("big.py", 30_000, 0)
    chunks = LargeFileMultiBatchStrategy(PlanningConfig(), content_loader=loader).create_batches([record]).batches
    assert len(chunks) == 2


def test_large_ids_number_files_and_chunks(make_record):
    records = [make_record("a.py", 25_000, 0), make_record("b.py", 25_000, 1)]
    chunks = LargeFileMultiBatchStrategy(PlanningConfig()).create_batches(records).batches
    assert [c.batch_id for c in chunks] == [
        "large_file_1_1", "large_file_1_2", "large_file_2_1", "large_file_2_2",
    ]
    assert all(isinstance(c, LargeFileChunk) for c in chunks)


# ---------------------------------------------------------------------------
# Budget ceiling across strategies
# ---------------------------------------------------------------------------

@pytest.mark.parametrize("tokens", [1, 999, 14_999, 18_000, 18_001, 21_999, 22_000, 54_321, 180_000])
def test_every_batch_respects_max_batch_size(make_record, tokens):
    config = PlanningConfig()
    record = make_record("f.py", tokens, 0, line_count=max(1, tokens // 40))
    for strategy in (
        CombinedBatchStrategy(config),
        SingleFileBatchStrategy(config),
        LargeFileMultiBatchStrategy(config),
    ):
        for batch in strategy.create_batches([record]).batches:
            assert batch.estimated_tokens <= config.max_batch_size


def test_large_chunks_count_lines_by_newline_only(make_record):
    content = "".join("\f\n" if i == 3 else f"x = {i}\n" for i in range(1, 11))
    record = make_record("feed.py", 100, 0, language="python")
    strategy = LargeFileMultiBatchStrategy(
        PlanningConfig(small_file_threshold=10, large_file_threshold=20, batch_target_size=20, max_batch_size=30),
        content_loader=lambda r: content,
    )
    chunks = strategy.create_batches([record]).batches

    assert chunks[0].chunk_info.start_line == 1
    assert chunks[-1].chunk_info.end_line == 10
    assert sum(c.estimated_tokens for c in chunks) == 100
