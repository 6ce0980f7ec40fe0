"""
DOCBATCH Orchestrator — Task Lifecycle

Creates tasks from definitions, hands them out FIFO per
(project, step), decides completion from artifacts on disk, and
bounds retries.

Two views of status exist:
  Task.status         what operators and the generator see
  TaskStateStore      the audited state machine underneath

They agree except after a retry, where the task reads `pending`
again while the state machine holds `retry_pending` (which may be
dispatched straight to `in_progress`). Every store change goes
through the transition table; multi-step changes take the shortest
legal route.
"""

from __future__ import annotations

import threading
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Iterable

from loguru import logger
from pydantic import BaseModel, Field

from docbatch.audit_logger import AuditLogger
from docbatch.config_loader import DocBatchConfig
from docbatch.errors import (
    CompletionError,
    ConfigError,
    DocBatchError,
    InvalidTransitionError,
    TaskNotFoundError,
    ValidationError,
)
from docbatch.event_bus import EventBus
from docbatch.state.machine import TERMINAL_STATES, TaskStateStore, TaskStatus, parse_status
from docbatch.state.records import InMemoryRecordStore, JsonFileRecordStore, RecordStore
from docbatch.tasks.definitions import TaskDefinition
from docbatch.validator import ArtifactStatus, CompletionValidator


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _project_key(project_path: Path | str) -> str:
    return str(Path(project_path).resolve())


# ---------------------------------------------------------------------------
# Models
# ---------------------------------------------------------------------------

class Task(BaseModel):
    id: str
    step_type: str
    project_path: str
    status: TaskStatus = TaskStatus.PENDING
    retry_count: int = 0
    max_retries: int = 3
    exhausted: bool = False
    sequence: int = 0                      # creation order, drives FIFO dispatch
    created_at: str = Field(default_factory=_now)
    updated_at: str = Field(default_factory=_now)
    completion_data: dict[str, Any] | None = None
    last_error: str | None = None
    definition: TaskDefinition

    @property
    def is_terminal(self) -> bool:
        return self.status in (TaskStatus.COMPLETED, TaskStatus.CANCELLED) or self.exhausted


class CompletionCheck(BaseModel):
    task_id: str
    success: bool
    status: TaskStatus
    already_completed: bool = False
    auto_completed: bool = False
    existing_files: list[ArtifactStatus] = Field(default_factory=list)
    missing_files: list[ArtifactStatus] = Field(default_factory=list)
    message: str = ""


class RetryOutcome(BaseModel):
    task_id: str
    retried: bool
    status: TaskStatus
    retry_count: int
    max_retries: int
    exhausted: bool = False


class BatchCheckResult(BaseModel):
    task_id: str
    success: bool
    check: CompletionCheck | None = None
    error: str | None = None


class OrchestratorCounters(BaseModel):
    total_created: int = 0
    auto_completed: int = 0
    retry_attempts: int = 0
    failed: int = 0


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------

class TaskOrchestrator:
    def __init__(
        self,
        config: DocBatchConfig | None = None,
        state_store: TaskStateStore | None = None,
        task_store: RecordStore | None = None,
        validator: CompletionValidator | None = None,
        bus: EventBus | None = None,
    ):
        self.config = config or DocBatchConfig()
        self.states = state_store or TaskStateStore(history_limit=self.config.state.history_limit)
        self.tasks: RecordStore = task_store if task_store is not None else InMemoryRecordStore()
        self.validator: CompletionValidator | None = validator or CompletionValidator(self.config)
        self.bus = bus or EventBus()
        self.counters = OrchestratorCounters()
        self._lock = threading.RLock()

    # -- Persistence helpers -------------------------------------------------

    def _load(self, task_id: str) -> Task | None:
        raw = self.tasks.get(task_id)
        return Task.model_validate(raw) if raw is not None else None

    def _require(self, task_id: str) -> Task:
        task = self._load(task_id)
        if task is None:
            raise TaskNotFoundError(task_id)
        return task

    def _save(self, task: Task) -> None:
        task.updated_at = _now()
        self.tasks.set(task.id, task.model_dump(mode="json"))

    def _emit(self, event_type: str, task: Task, **extra: Any) -> None:
        self.bus.emit(
            event_type=event_type,
            source="orchestrator",
            payload={
                "task_id": task.id,
                "step_type": task.step_type,
                "project_path": task.project_path,
                "status": task.status.value,
                "retry_count": task.retry_count,
                **extra,
            },
        )

    def _after_mutation(self) -> None:
        if self.states.pending_mutations >= self.config.state.flush_every:
            self.flush()

    def flush(self) -> None:
        """Persist task records and states."""
        with self._lock:
            self.states.flush()
            self.tasks.flush()

    # -- Creation ------------------------------------------------------------

    def create_task(
        self,
        definition: TaskDefinition,
        project_path: Path | str,
        step_type: str | None = None,
    ) -> Task:
        step_type = step_type or definition.step_type
        step = self.config.step(step_type)

        with self._lock:
            if self.tasks.get(definition.id) is not None:
                raise ValidationError(f"Task {definition.id} already exists")

            if self.states.get_state(definition.id) is not None:
                logger.warning(f"[ORCH] Dropping orphaned state for {definition.id}")
                self.states.delete_state(definition.id)

            task = Task(
                id=definition.id,
                step_type=step_type,
                project_path=_project_key(project_path),
                max_retries=step.max_retries,
                sequence=self._next_sequence(),
                definition=definition,
            )
            self.states.set_state(task.id, TaskStatus.PENDING, {
                "step_type": step_type, "project_path": task.project_path,
            })
            self._save(task)
            self.counters.total_created += 1

        logger.debug(f"[ORCH] Created {task.id} ({step.name})")
        self._emit("task.created", task, files=list(definition.files))
        self._after_mutation()
        return task

    def create_batch_tasks(
        self,
        definitions: Iterable[TaskDefinition],
        project_path: Path | str,
        step_type: str | None = None,
    ) -> list[Task]:
        """Create many tasks. Duplicates are rejected before anything is written."""
        definitions = list(definitions)
        with self._lock:
            seen: set[str] = set()
            for d in definitions:
                if d.id in seen or self.tasks.get(d.id) is not None:
                    raise ValidationError(f"Task {d.id} already exists")
                seen.add(d.id)
            created = [self.create_task(d, project_path, step_type) for d in definitions]
            self.flush()
        logger.info(f"[ORCH] Created {len(created)} tasks")
        return created

    def _next_sequence(self) -> int:
        sequences = [raw.get("sequence", 0) for raw in self.tasks.list().values()]
        return max(sequences, default=0) + 1

    # -- Queries -------------------------------------------------------------

    def get_task(self, task_id: str) -> Task | None:
        return self._load(task_id)

    def list_tasks(
        self,
        project_path: Path | str | None = None,
        step_type: str | None = None,
        status: TaskStatus | str | None = None,
    ) -> list[Task]:
        project = _project_key(project_path) if project_path is not None else None
        wanted = parse_status(status) if status is not None else None
        tasks = [Task.model_validate(raw) for raw in self.tasks.list().values()]
        return sorted(
            (
                t for t in tasks
                if (project is None or t.project_path == project)
                and (step_type is None or t.step_type == step_type)
                and (wanted is None or t.status == wanted)
            ),
            key=lambda t: t.sequence,
        )

    def statistics(self) -> dict[str, Any]:
        by_status = {s.value: 0 for s in TaskStatus}
        by_step: dict[str, dict[str, int]] = {}
        tasks = self.list_tasks()
        for task in tasks:
            by_status[task.status.value] += 1
            step_counts = by_step.setdefault(task.step_type, {"total": 0})
            step_counts["total"] += 1
            step_counts[task.status.value] = step_counts.get(task.status.value, 0) + 1
        return {
            "total": len(tasks),
            "by_status": by_status,
            "by_step": by_step,
            "counters": self.counters.model_dump(),
        }

    # -- Dispatch ------------------------------------------------------------

    def get_next_task(self, project_path: Path | str, step_type: str) -> Task | None:
        """Oldest pending task for (project, step), moved to in_progress. None when idle."""
        self.config.step(step_type)
        with self._lock:
            pending = self.list_tasks(project_path, step_type, TaskStatus.PENDING)
            if not pending:
                logger.debug(f"[ORCH] No pending tasks for step '{step_type}'")
                return None

            task = pending[0]
            self.states.route_to(task.id, TaskStatus.IN_PROGRESS, {"dispatched_at": _now()})
            task.status = TaskStatus.IN_PROGRESS
            self._save(task)

        logger.info(f"[ORCH] Dispatched {task.id} ({len(pending) - 1} still pending)")
        self._emit("task.dispatched", task)
        self._after_mutation()
        return task

    # -- Completion ----------------------------------------------------------

    def check_task_completion(
        self,
        task_id: str,
        project_path: Path | str | None = None,
        step_type: str | None = None,
    ) -> CompletionCheck:
        """
        Validate artifacts for one task. Missing artifacts are a normal
        outcome (status validation_failed), not an exception.
        """
        with self._lock:
            task = self._require(task_id)
            if self.validator is None:
                raise ConfigError("No completion validator configured")

            if task.status == TaskStatus.COMPLETED:
                return CompletionCheck(
                    task_id=task_id, success=True, status=task.status,
                    already_completed=True, message="Task already completed",
                )

            state = self.states.get_state(task_id)
            if task.exhausted or (state is not None and state.status in TERMINAL_STATES):
                raise InvalidTransitionError(
                    task_id, state.status.value if state else task.status.value,
                    TaskStatus.COMPLETED.value,
                )

            step_type = step_type or task.step_type
            step = self.config.step(step_type)
            report = self.validator.validate(
                task.definition, Path(project_path or task.project_path), step_type
            )

            if report.success and not step.auto_complete:
                return CompletionCheck(
                    task_id=task_id, success=True, status=task.status,
                    existing_files=report.existing_files,
                    message="All artifacts present; auto-complete is disabled for this step",
                )

            if report.success:
                self.states.route_to(task_id, TaskStatus.COMPLETED, {
                    "auto_completed": True,
                    "existing_files": [a.name for a in report.existing_files],
                })
                task.status = TaskStatus.COMPLETED
                task.last_error = None
                task.completion_data = {
                    "auto_completed": True,
                    "completed_at": _now(),
                    "strictness": report.strictness.value,
                    "checked": report.checked,
                    "existing_files": [a.model_dump() for a in report.existing_files],
                }
                self._save(task)
                self.counters.auto_completed += 1
                check = CompletionCheck(
                    task_id=task_id, success=True, status=task.status, auto_completed=True,
                    existing_files=report.existing_files, message="All artifacts present",
                )
                event = "task.completed"
            else:
                missing = report.missing_names
                self.states.route_to(task_id, TaskStatus.VALIDATION_FAILED, {"missing_files": missing})
                task.status = TaskStatus.VALIDATION_FAILED
                task.last_error = f"Missing artifacts: {', '.join(missing) or 'none declared'}"
                self._save(task)
                check = CompletionCheck(
                    task_id=task_id, success=False, status=task.status,
                    existing_files=report.existing_files, missing_files=report.missing_files,
                    message=task.last_error,
                )
                event = "task.validation_failed"

        logger.info(f"[ORCH] {task_id}: {check.message}")
        self._emit(event, task, missing=[a.name for a in check.missing_files])
        self._after_mutation()
        return check

    def batch_check(
        self,
        task_ids: Iterable[str],
        project_path: Path | str | None = None,
    ) -> list[BatchCheckResult]:
        """Check many tasks; one failing task never aborts the rest."""
        results = []
        for task_id in task_ids:
            try:
                check = self.check_task_completion(task_id, project_path)
                results.append(BatchCheckResult(task_id=task_id, success=check.success, check=check))
            except DocBatchError as e:
                results.append(BatchCheckResult(task_id=task_id, success=False, error=str(e)))
        self.flush()
        return results

    # -- Retry / cancel ------------------------------------------------------

    def retry_task(
        self,
        task_id: str,
        max_retries: int | None = None,
        raise_on_exhausted: bool = False,
    ) -> RetryOutcome:
        """
        Re-queue a task. With retry_count >= max retries the task becomes
        terminally failed instead.
        """
        with self._lock:
            task = self._require(task_id)
            effective = max_retries if max_retries is not None else task.max_retries

            if task.status in (TaskStatus.COMPLETED, TaskStatus.CANCELLED):
                raise InvalidTransitionError(task_id, task.status.value, TaskStatus.RETRY_PENDING.value)

            if task.exhausted:
                outcome = RetryOutcome(
                    task_id=task_id, retried=False, status=task.status,
                    retry_count=task.retry_count, max_retries=effective, exhausted=True,
                )
            elif task.retry_count >= effective:
                self.states.route_to(task_id, TaskStatus.FAILED, {
                    "reason": "max retries exceeded", "retry_count": task.retry_count,
                })
                task.status = TaskStatus.FAILED
                task.exhausted = True
                task.last_error = f"Exceeded {effective} retries" + (
                    f"; {task.last_error}" if task.last_error else ""
                )
                self._save(task)
                self.counters.failed += 1
                outcome = RetryOutcome(
                    task_id=task_id, retried=False, status=task.status,
                    retry_count=task.retry_count, max_retries=effective, exhausted=True,
                )
                logger.warning(f"[ORCH] {task_id} failed after {task.retry_count} retries")
                self._emit("task.failed", task)
            else:
                state = self.states.get_state(task_id)
                task.retry_count += 1
                if state is None or state.status not in (TaskStatus.PENDING, TaskStatus.RETRY_PENDING):
                    self.states.route_to(task_id, TaskStatus.RETRY_PENDING, {"retry_count": task.retry_count})
                task.status = TaskStatus.PENDING
                self._save(task)
                self.counters.retry_attempts += 1
                outcome = RetryOutcome(
                    task_id=task_id, retried=True, status=task.status,
                    retry_count=task.retry_count, max_retries=effective,
                )
                logger.info(f"[ORCH] {task_id} re-queued (retry {task.retry_count}/{effective})")
                self._emit("task.retried", task)

        self._after_mutation()
        if outcome.exhausted and raise_on_exhausted:
            raise CompletionError(task_id, self._missing_from_state(task_id))
        return outcome

    def _missing_from_state(self, task_id: str) -> list[str]:
        for entry in reversed(self.states.get_task_history(task_id)):
            if "missing_files" in entry.metadata:
                return list(entry.metadata["missing_files"])
        return []

    def cancel_task(self, task_id: str, reason: str | None = None) -> Task:
        with self._lock:
            task = self._require(task_id)
            self.states.route_to(task_id, TaskStatus.CANCELLED, {"reason": reason or "cancelled"})
            task.status = TaskStatus.CANCELLED
            task.last_error = reason
            self._save(task)
        logger.info(f"[ORCH] Cancelled {task_id}")
        self._emit("task.cancelled", task, reason=reason)
        self._after_mutation()
        return task

    # -- Housekeeping --------------------------------------------------------

    def delete_task(self, task_id: str) -> bool:
        with self._lock:
            removed = self.tasks.delete(task_id)
            self.states.delete_state(task_id)
        if removed:
            logger.debug(f"[ORCH] Deleted {task_id}")
        return removed

    def clear_tasks(self, project_path: Path | str | None = None, step_type: str | None = None) -> int:
        """Delete every task (and its state) for a project/step, e.g. before re-planning."""
        with self._lock:
            doomed = self.list_tasks(project_path, step_type)
            for task in doomed:
                self.delete_task(task.id)
            self.flush()
        logger.info(f"[ORCH] Cleared {len(doomed)} tasks")
        return len(doomed)

    def cleanup_completed(self, older_than_hours: float = 24) -> int:
        cutoff = datetime.now(timezone.utc) - timedelta(hours=older_than_hours)
        with self._lock:
            doomed = [
                t for t in self.list_tasks(status=TaskStatus.COMPLETED)
                if datetime.fromisoformat(t.updated_at) <= cutoff
            ]
            for task in doomed:
                self.delete_task(task.id)
            self.flush()
        logger.info(f"[ORCH] Cleaned up {len(doomed)} completed tasks older than {older_than_hours}h")
        return len(doomed)


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------

def open_orchestrator(
    project_path: Path,
    config: DocBatchConfig | None = None,
    bus: EventBus | None = None,
    audit: bool = True,
) -> TaskOrchestrator:
    """File-backed orchestrator rooted at <project>/<state_dir>, with the audit journal attached."""
    config = config or DocBatchConfig()
    state_dir = Path(project_path) / config.state.state_dir
    retention = config.state.backup_retention

    states = TaskStateStore(
        JsonFileRecordStore(state_dir, collection="task_states", records_key="states", retention=retention),
        history_limit=config.state.history_limit,
    )
    tasks = JsonFileRecordStore(state_dir, collection="tasks", records_key="tasks", retention=retention)

    bus = bus or EventBus()
    if audit:
        journal = AuditLogger(Path(project_path) / config.state.audit_log, batch_size=1)
        journal.attach(bus)

    return TaskOrchestrator(config=config, state_store=states, task_store=tasks, bus=bus)
