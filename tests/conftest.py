import pytest

from docbatch.config_loader import DocBatchConfig, PlanningConfig
from docbatch.orchestrator import TaskOrchestrator
from docbatch.planning.models import FileRecord, TokenCount, TokenError
from docbatch.tasks.definitions import TaskDefinition, TaskType


@pytest.fixture
def config() -> DocBatchConfig:
    return DocBatchConfig()


@pytest.fixture
def planning_config() -> PlanningConfig:
    return PlanningConfig()


@pytest.fixture
def make_record():
    """Build a FileRecord; a str token value means the count failed with that reason."""

    def _make(path: str, tokens, index: int = 0, **kwargs) -> FileRecord:
        result = TokenError(tokens) if isinstance(tokens, str) else TokenCount(tokens)
        return FileRecord(path=path, tokens=result, original_index=index, **kwargs)

    return _make


@pytest.fixture
def make_definition():
    def _make(task_id: str, outputs=None, files=("src/app.py",), step_type: str = "files") -> TaskDefinition:
        return TaskDefinition(
            id=task_id,
            type=TaskType.SINGLE_FILE,
            strategy="single",
            step_type=step_type,
            files=tuple(files),
            estimated_tokens=1000,
            expected_outputs=tuple(outputs if outputs is not None else [f"{task_id}_app_analysis.md"]),
        )

    return _make


@pytest.fixture
def orchestrator(config) -> TaskOrchestrator:
    return TaskOrchestrator(config=config)


@pytest.fixture
def write_artifact():
    """Write an artifact under the default docs root for a step subdir."""

    def _write(project, subdir: str, name: str, content: str = "# analysis\n") -> None:
        base = project / "docs" / "generated"
        target = base / subdir / name if subdir else base / name
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content)

    return _write
