import pytest

from docbatch.analysis import analyze_project, group_modules
from docbatch.tasks.definitions import TaskType


def _large_source(functions: int = 20, body: int = 99) -> str:
    line = "    value = 'padding padding padding padding'\n"
    return "".join(f"def f{i}():\n" + line * body for i in range(functions))


@pytest.fixture
def project(tmp_path):
    (tmp_path / "src").mkdir()
    (tmp_path / "src" / "app.py").write_text("def main():\n    return 1\n")
    (tmp_path / "src" / "big.py").write_text(_large_source())
    (tmp_path / "setup.py").write_text("from setuptools import setup\nsetup()\n")
    return tmp_path


def test_analyze_project_plans_combined_and_chunked_tasks(project):
    result = analyze_project(project)

    assert result.inventory.total_files == 3
    assert result.planning.classified.counts() == {"small": 2, "medium": 0, "large": 1, "error": 0}

    definitions = result.definitions
    assert [d.id for d in definitions] == [f"task_{i}" for i in range(1, len(definitions) + 1)]
    assert definitions[0].type is TaskType.FILE_BATCH
    assert set(definitions[0].files) == {"setup.py", "src/app.py"}

    chunks = [d for d in definitions if d.type is TaskType.LARGE_FILE_CHUNK]
    assert len(chunks) >= 2
    assert all(d.files == ("src/big.py",) for d in chunks)
    assert all(d.estimated_tokens <= 22_000 for d in chunks)

    # Chunks are cut on function boundaries and cover the file without gaps
    spans = [(d.metadata.chunk.start_line, d.metadata.chunk.end_line) for d in chunks]
    assert spans[0][0] == 1
    assert spans[-1][1] == 2_000
    assert all(prev[1] + 1 == nxt[0] for prev, nxt in zip(spans, spans[1:]))
    assert all((start - 1) % 100 == 0 for start, _ in spans)


def test_analyze_project_empty(tmp_path):
    result = analyze_project(tmp_path)
    assert result.definitions == []
    assert result.planning.is_empty


def test_group_modules(make_record):
    records = [
        make_record("src/a.py", 10, 0),
        make_record("src/sub/b.py", 10, 1),
        make_record("cli.py", 10, 2),
        make_record("lib/c.py", 10, 3),
    ]
    assert group_modules(records) == {
        "src": ["src/a.py", "src/sub/b.py"],
        "root": ["cli.py"],
        "lib": ["lib/c.py"],
    }
