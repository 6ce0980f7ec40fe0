"""
DOCBATCH Tokens — Budget Measurement

The planner never looks at file content itself. It consumes a
TokenResult per file from a TokenCounter and nothing else.

Counting may run in a bounded thread pool; results always come back
in scan order so batch packing stays deterministic.
"""

from __future__ import annotations

import math
import re
from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace
from pathlib import Path
from typing import Any, Protocol

from loguru import logger

from docbatch.errors import AnalysisError
from docbatch.planning.models import FileRecord, TokenCount, TokenError, TokenResult


_CJK_RE = re.compile(r"[一-鿿]")

LATIN_TOKENS_PER_CHAR = 0.25
CJK_TOKENS_PER_CHAR = 0.6


class TokenCounter(Protocol):
    """External capability: estimate tokens for one file."""

    def calculate_tokens(
        self,
        path: str,
        content: str | None,
        language_profile: dict[str, Any] | None = None,
    ) -> TokenResult:
        ...


def estimate_tokens(text: str) -> int:
    """Character-ratio estimate; CJK text is denser per character."""
    if not text:
        return 0
    ratio = CJK_TOKENS_PER_CHAR if _CJK_RE.search(text) else LATIN_TOKENS_PER_CHAR
    return math.ceil(len(text) * ratio)


class HeuristicTokenCounter:
    """
    Default TokenCounter. Reads the file relative to `root` when no
    content is supplied and applies `estimate_tokens`.
    """

    def __init__(self, root: Path):
        self.root = root.resolve()

    def calculate_tokens(
        self,
        path: str,
        content: str | None,
        language_profile: dict[str, Any] | None = None,
    ) -> TokenResult:
        if content is None:
            full_path = self.root / path
            try:
                content = full_path.read_text(encoding="utf-8", errors="strict")
            except UnicodeDecodeError as e:
                return TokenError(f"not valid UTF-8 text: {e.reason}")
            except OSError as e:
                return TokenError(f"unreadable: {e.strerror or e}")
        return TokenCount(estimate_tokens(content))


def _count_one(
    record: FileRecord,
    counter: TokenCounter,
    language_profile: dict[str, Any] | None,
) -> FileRecord:
    try:
        result = counter.calculate_tokens(record.path, None, language_profile)
    except AnalysisError as e:
        result = TokenError(str(e))
    except Exception as e:
        logger.warning(f"[TOKENS] Counter crashed on {record.path}: {e}")
        result = TokenError(f"{type(e).__name__}: {e}")

    if isinstance(result, TokenCount) and result.tokens < 0:
        result = TokenError(f"negative token count {result.tokens}")
    elif not isinstance(result, (TokenCount, TokenError)):
        result = TokenError(f"counter returned {type(result).__name__}, not a TokenResult")

    if isinstance(result, TokenError):
        logger.debug(f"[TOKENS] {record.path}: error — {result.reason}")
    return replace(record, tokens=result)


def count_tokens(
    records: list[FileRecord],
    counter: TokenCounter,
    max_workers: int = 4,
    language_profile: dict[str, Any] | None = None,
) -> list[FileRecord]:
    """
    Attach a TokenResult to every record. Failures are captured per file,
    never raised. Output order equals input order.
    """
    if not records:
        return []

    workers = max(1, min(max_workers, len(records)))
    with ThreadPoolExecutor(max_workers=workers) as executor:
        counted = list(executor.map(
            lambda r: _count_one(r, counter, language_profile), records
        ))

    errors = sum(1 for r in counted if r.is_error)
    logger.info(f"[TOKENS] Counted {len(counted)} files ({errors} errors, {workers} workers)")
    return counted
