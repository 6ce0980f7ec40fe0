"""
DOCBATCH Audit Journal

Appends one JSON object per lifecycle event to a JSONL file.
Buffered; flushes every `batch_size` events and on close().
"""

from __future__ import annotations

import threading
from pathlib import Path

from loguru import logger

from docbatch.event_bus import DocBatchEvent, EventBus


class AuditLogger:
    def __init__(self, log_file: Path, batch_size: int = 10):
        self.log_file = Path(log_file)
        self.batch_size = batch_size
        self._buffer: list[str] = []
        self._lock = threading.Lock()

    def attach(self, bus: EventBus) -> "AuditLogger":
        bus.subscribe(self.record)
        return self

    def record(self, event: DocBatchEvent) -> None:
        with self._lock:
            self._buffer.append(event.model_dump_json())
            should_flush = len(self._buffer) >= self.batch_size
        if should_flush:
            self.flush()

    def flush(self) -> None:
        with self._lock:
            if not self._buffer:
                return
            lines, self._buffer = self._buffer, []
        try:
            self.log_file.parent.mkdir(parents=True, exist_ok=True)
            with open(self.log_file, "a", encoding="utf-8") as f:
                f.writelines(line + "\n" for line in lines)
        except OSError as e:
            logger.error(f"[AUDIT] Could not write {self.log_file}: {e}")
            raise

    def close(self) -> None:
        self.flush()
