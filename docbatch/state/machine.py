"""
DOCBATCH State — Task State Machine

Owns every TaskState. All mutation goes through set_state (or
route_to, which is a sequence of set_state hops), each validated
against TRANSITIONS:

  pending           -> in_progress, cancelled
  in_progress       -> completed, failed, validation_failed
  failed            -> retry_pending, cancelled
  validation_failed -> retry_pending, in_progress
  retry_pending     -> in_progress, failed, cancelled
  completed, cancelled: terminal

A rejected transition leaves the store untouched. Persistence is
explicit: callers flush(); `pending_mutations` tells them when.
"""

from __future__ import annotations

import threading
from collections import deque
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any

import pydantic
from loguru import logger
from pydantic import BaseModel, Field

from docbatch.errors import InvalidTransitionError, PersistenceError, ValidationError
from docbatch.state.records import InMemoryRecordStore, RecordStore


class TaskStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    VALIDATION_FAILED = "validation_failed"
    RETRY_PENDING = "retry_pending"
    CANCELLED = "cancelled"


TRANSITIONS: dict[TaskStatus, frozenset[TaskStatus]] = {
    TaskStatus.PENDING: frozenset({TaskStatus.IN_PROGRESS, TaskStatus.CANCELLED}),
    TaskStatus.IN_PROGRESS: frozenset({
        TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.VALIDATION_FAILED,
    }),
    TaskStatus.FAILED: frozenset({TaskStatus.RETRY_PENDING, TaskStatus.CANCELLED}),
    TaskStatus.VALIDATION_FAILED: frozenset({TaskStatus.RETRY_PENDING, TaskStatus.IN_PROGRESS}),
    TaskStatus.RETRY_PENDING: frozenset({
        TaskStatus.IN_PROGRESS, TaskStatus.FAILED, TaskStatus.CANCELLED,
    }),
    TaskStatus.COMPLETED: frozenset(),
    TaskStatus.CANCELLED: frozenset(),
}

TERMINAL_STATES = frozenset(s for s, targets in TRANSITIONS.items() if not targets)

# Tie-break for equally short routes: go through failure bookkeeping before re-activating
_HOP_PREFERENCE = [
    TaskStatus.RETRY_PENDING,
    TaskStatus.FAILED,
    TaskStatus.IN_PROGRESS,
    TaskStatus.VALIDATION_FAILED,
    TaskStatus.PENDING,
    TaskStatus.COMPLETED,
    TaskStatus.CANCELLED,
]


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def parse_status(value: TaskStatus | str) -> TaskStatus:
    try:
        return TaskStatus(value)
    except ValueError:
        raise ValidationError(
            f"Unknown task status: {value!r}. Valid: {[s.value for s in TaskStatus]}"
        ) from None


class HistoryEntry(BaseModel):
    status: TaskStatus
    previous_status: TaskStatus | None = None
    timestamp: str
    metadata: dict[str, Any] = Field(default_factory=dict)


class StateRecord(BaseModel):
    task_id: str
    status: TaskStatus
    previous_status: TaskStatus | None = None
    timestamp: str = Field(default_factory=_now)
    metadata: dict[str, Any] = Field(default_factory=dict)
    history: list[HistoryEntry] = Field(default_factory=list)


class BatchUpdateResult(BaseModel):
    task_id: str
    success: bool
    status: TaskStatus | None = None
    error: str | None = None


def is_valid_transition(from_status: TaskStatus | None, to_status: TaskStatus) -> bool:
    # A task with no state yet may start anywhere
    if from_status is None:
        return True
    return to_status in TRANSITIONS[from_status]


def transition_path(from_status: TaskStatus, to_status: TaskStatus) -> list[TaskStatus] | None:
    """
    Shortest sequence of statuses leading from `from_status` to
    `to_status` (excluding the start). [] when already there, None when
    unreachable.
    """
    if from_status == to_status:
        return []
    previous: dict[TaskStatus, TaskStatus] = {}
    queue = deque([from_status])
    seen = {from_status}
    while queue:
        current = queue.popleft()
        for nxt in sorted(TRANSITIONS[current], key=_HOP_PREFERENCE.index):
            if nxt in seen:
                continue
            seen.add(nxt)
            previous[nxt] = current
            if nxt == to_status:
                path = [nxt]
                while path[-1] in previous and previous[path[-1]] != from_status:
                    path.append(previous[path[-1]])
                return list(reversed(path))
            queue.append(nxt)
    return None


class TaskStateStore:
    def __init__(self, store: RecordStore | None = None, history_limit: int = 10):
        self.store: RecordStore = store if store is not None else InMemoryRecordStore()
        self.history_limit = history_limit
        self._lock = threading.RLock()
        self._mutations = 0

    # -- Queries -------------------------------------------------------------

    @property
    def pending_mutations(self) -> int:
        """Mutations since the last flush."""
        return self._mutations

    def get_state(self, task_id: str) -> StateRecord | None:
        raw = self.store.get(task_id)
        if raw is None:
            return None
        try:
            return StateRecord.model_validate(raw)
        except pydantic.ValidationError as e:
            raise PersistenceError(f"Stored state for {task_id} is malformed: {e}") from e

    def get_all_states(
        self, status_filter: TaskStatus | str | list[TaskStatus | str] | None = None
    ) -> dict[str, StateRecord]:
        wanted: set[TaskStatus] | None = None
        if status_filter is not None:
            items = status_filter if isinstance(status_filter, list) else [status_filter]
            wanted = {parse_status(s) for s in items}

        states = {}
        for task_id, raw in self.store.list().items():
            try:
                record = StateRecord.model_validate(raw)
            except pydantic.ValidationError as e:
                raise PersistenceError(f"Stored state for {task_id} is malformed: {e}") from e
            if wanted is None or record.status in wanted:
                states[task_id] = record
        return states

    def get_task_history(self, task_id: str) -> list[HistoryEntry]:
        record = self.get_state(task_id)
        return list(record.history) if record else []

    def statistics(self) -> dict[str, int]:
        counts = {s.value: 0 for s in TaskStatus}
        for record in self.get_all_states().values():
            counts[record.status.value] += 1
        counts["total"] = sum(counts.values())
        return counts

    # -- Mutations -----------------------------------------------------------

    def set_state(
        self,
        task_id: str,
        status: TaskStatus | str,
        metadata: dict[str, Any] | None = None,
    ) -> StateRecord:
        """Validate and apply one transition. Raises InvalidTransitionError with no mutation."""
        if not task_id:
            raise ValidationError("task_id must not be empty")
        new_status = parse_status(status)

        with self._lock:
            current = self.get_state(task_id)
            from_status = current.status if current else None
            if not is_valid_transition(from_status, new_status):
                logger.debug(f"[STATE] Rejected {task_id}: {from_status} -> {new_status.value}")
                raise InvalidTransitionError(
                    task_id, from_status.value if from_status else None, new_status.value
                )

            history: list[HistoryEntry] = []
            if current is not None:
                history = current.history + [HistoryEntry(
                    status=current.status,
                    previous_status=current.previous_status,
                    timestamp=current.timestamp,
                    metadata=current.metadata,
                )]
                history = history[-self.history_limit:] if self.history_limit > 0 else []

            record = StateRecord(
                task_id=task_id,
                status=new_status,
                previous_status=from_status,
                metadata=dict(metadata or {}),
                history=history,
            )
            self.store.set(task_id, record.model_dump(mode="json"))
            self._mutations += 1

        logger.debug(f"[STATE] {task_id}: {from_status.value if from_status else '∅'} -> {new_status.value}")
        return record

    def route_to(
        self,
        task_id: str,
        status: TaskStatus | str,
        metadata: dict[str, Any] | None = None,
    ) -> StateRecord:
        """
        Reach `status` through the shortest legal path, one set_state per
        hop. Unknown tasks start directly at `status`.
        """
        target = parse_status(status)
        with self._lock:
            current = self.get_state(task_id)
            if current is None:
                return self.set_state(task_id, target, metadata)
            path = transition_path(current.status, target)
            if path is None:
                raise InvalidTransitionError(task_id, current.status.value, target.value)
            if not path:
                return current
            record = current
            for hop in path:
                record = self.set_state(task_id, hop, metadata)
            return record

    def delete_state(self, task_id: str) -> bool:
        with self._lock:
            removed = self.store.delete(task_id)
            if removed:
                self._mutations += 1
        return removed

    def batch_update_states(self, updates: list[dict[str, Any]]) -> list[BatchUpdateResult]:
        """
        Apply many updates ({task_id, status, metadata?}). Each succeeds or
        fails on its own; the result list mirrors the input order.
        """
        results = []
        for update in updates:
            task_id = str(update.get("task_id", ""))
            try:
                record = self.set_state(task_id, update.get("status", ""), update.get("metadata"))
                results.append(BatchUpdateResult(task_id=task_id, success=True, status=record.status))
            except ValidationError as e:
                results.append(BatchUpdateResult(task_id=task_id, success=False, error=str(e)))
        ok = sum(1 for r in results if r.success)
        logger.info(f"[STATE] Batch update: {ok}/{len(results)} applied")
        return results

    def reset(self) -> Path | None:
        """Back up the persisted snapshot, then clear every state."""
        with self._lock:
            backup = self.store.backup()
            self.store.clear()
            # The snapshot was just backed up; do not spend a second slot on it
            self.store.flush(backup=False)
            self._mutations = 0
        logger.info(f"[STATE] Reset all task states (backup: {backup or 'none'})")
        return backup

    def flush(self) -> Path | None:
        with self._lock:
            path = self.store.flush()
            self._mutations = 0
        return path
