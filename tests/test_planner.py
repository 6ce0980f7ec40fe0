from docbatch.config_loader import PlanningConfig
from docbatch.planning.models import COMBINED_BATCH, LARGE_FILE_CHUNK, SINGLE_BATCH, FileRecord
from docbatch.planning.planner import BatchPlanner, file_content_loader


def test_small_and_large_files_are_planned_separately(make_record):
    records = [
        make_record("a.py", 2_000, 0),
        make_record("b.py", 3_000, 1),
        make_record("c.py", 25_000, 2),
    ]
    result = BatchPlanner(PlanningConfig()).plan(records)

    combined = [b for b in result.batches if b.type == COMBINED_BATCH]
    chunks = [b for b in result.batches if b.type == LARGE_FILE_CHUNK]
    assert len(combined) == 1
    assert combined[0].estimated_tokens == 5_000
    assert [f.path for f in combined[0].files] == ["a.py", "b.py"]
    assert len(chunks) >= 2
    assert sum(c.estimated_tokens for c in chunks) == 25_000
    assert all(b.estimated_tokens <= 22_000 for b in result.batches)

    summary = result.summary
    assert summary.file_distribution == {"small": 2, "medium": 0, "large": 1, "error": 0}
    assert summary.batch_distribution[COMBINED_BATCH] == 1
    assert summary.total_tokens == 30_000
    assert summary.batched_tokens == 30_000
    assert any("large file" in r for r in summary.recommendations)


def test_batch_order_is_combined_single_large(make_record):
    records = [
        make_record("large.py", 30_000, 0),
        make_record("medium.py", 16_000, 1),
        make_record("small.py", 100, 2),
    ]
    types = [b.type for b in BatchPlanner().plan(records).batches]
    assert types == [COMBINED_BATCH, SINGLE_BATCH, LARGE_FILE_CHUNK, LARGE_FILE_CHUNK]


def test_error_files_are_surfaced_not_planned(make_record):
    records = [make_record("ok.py", 100, 0), make_record("broken.py", "unreadable: Permission denied", 1)]
    result = BatchPlanner().plan(records)

    planned = {f.path for b in result.batches for f in b.files}
    assert planned == {"ok.py"}
    assert [(e.path, e.reason) for e in result.summary.error_files] == [
        ("broken.py", "unreadable: Permission denied"),
    ]
    assert any("manual review" in r for r in result.summary.recommendations)


def test_empty_inventory_gives_empty_plan():
    result = BatchPlanner().plan([])
    assert result.is_empty
    assert result.summary.total_batches == 0
    assert result.summary.recommendations == []


def test_many_batches_recommend_staged_processing(make_record):
    records = [make_record(f"m{i}.py", 16_000, i) for i in range(21)]
    summary = BatchPlanner().plan(records).summary
    assert summary.total_batches == 21
    assert any("stages" in r for r in summary.recommendations)


def test_plan_is_deterministic(make_record):
    records = [make_record(f"f{i}.py", (i * 7_919) % 30_000, i) for i in range(40)]
    planner = BatchPlanner()
    first = [(b.batch_id, [f.path for f in b.files], b.estimated_tokens) for b in planner.plan(records).batches]
    second = [(b.batch_id, [f.path for f in b.files], b.estimated_tokens) for b in planner.plan(records).batches]
    assert first == second


def test_file_content_loader(tmp_path):
    (tmp_path / "a.py").write_text("print('hi')\n")
    load = file_content_loader(tmp_path)
    assert load(FileRecord(path="a.py")) == "print('hi')\n"
    assert load(FileRecord(path="missing.py")) is None


def test_negative_token_count_does_not_abort_planning(make_record):
    records = [make_record("ok.py", 100, 0), make_record("weird.py", -1, 1)]
    result = BatchPlanner().plan(records)

    assert [f.path for b in result.batches for f in b.files] == ["ok.py"]
    assert [e.path for e in result.summary.error_files] == ["weird.py"]
    assert result.summary.total_tokens == 100
