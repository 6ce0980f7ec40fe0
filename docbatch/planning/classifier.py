"""
DOCBATCH Planning — File Classifier

Buckets counted files into small / medium / large by token count,
plus an error bucket for files whose count failed. Error files are
kept so the plan summary can surface them; they never reach a
strategy.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace

from loguru import logger

from docbatch.config_loader import PlanningConfig
from docbatch.errors import ValidationError
from docbatch.planning.models import FileCategory, FileRecord, TokenError


def classify_tokens(tokens: int, small_threshold: int, large_threshold: int) -> FileCategory:
    """
    small:  tokens <  small_threshold
    medium: small_threshold <= tokens < large_threshold
    large:  tokens >= large_threshold
    """
    if small_threshold >= large_threshold:
        raise ValidationError(
            f"small threshold ({small_threshold}) must be below large threshold ({large_threshold})"
        )
    if tokens < 0:
        raise ValidationError(f"token count cannot be negative: {tokens}")
    if tokens < small_threshold:
        return FileCategory.SMALL
    if tokens < large_threshold:
        return FileCategory.MEDIUM
    return FileCategory.LARGE


@dataclass
class ClassifiedFiles:
    small: list[FileRecord] = field(default_factory=list)
    medium: list[FileRecord] = field(default_factory=list)
    large: list[FileRecord] = field(default_factory=list)
    error: list[FileRecord] = field(default_factory=list)

    def bucket(self, category: FileCategory) -> list[FileRecord]:
        return getattr(self, category.value)

    def counts(self) -> dict[str, int]:
        return {c.value: len(self.bucket(c)) for c in FileCategory}

    @property
    def total(self) -> int:
        return sum(self.counts().values())


class FileClassifier:
    def __init__(self, config: PlanningConfig | None = None):
        self.config = config or PlanningConfig()

    def category_of(self, record: FileRecord) -> FileCategory:
        tokens = record.token_count
        if tokens is None or tokens < 0:
            return FileCategory.ERROR
        return classify_tokens(
            tokens,
            self.config.small_file_threshold,
            self.config.large_file_threshold,
        )

    def classify(self, records: list[FileRecord]) -> ClassifiedFiles:
        """Pure function of the records and thresholds; input order is kept per bucket."""
        result = ClassifiedFiles()
        for record in records:
            category = self.category_of(record)
            if category is FileCategory.ERROR and not record.is_error:
                # Counted but unusable; carry the reason so the summary can report it
                logger.warning(f"[CLASSIFIER] {record.path}: negative token count {record.token_count}")
                record = replace(record, tokens=TokenError(f"negative token count: {record.token_count}"))
            result.bucket(category).append(record)
            if category is FileCategory.ERROR:
                logger.debug(f"[CLASSIFIER] {record.path}: error ({record.analysis_error})")

        counts = result.counts()
        logger.info(
            f"[CLASSIFIER] {result.total} files: "
            + ", ".join(f"{k}={v}" for k, v in counts.items())
        )
        return result
