"""
DOCBATCH Boundaries — Structural Split Hints

Optional capability: given file content, return the 1-based line
numbers where a top-level unit (class, function, type) begins.
Large-file chunking prefers these lines as cut points; when a
detector is missing, fails, or finds nothing, chunking falls back to
fixed line windows.

Regex only, no AST. Good enough to avoid cutting through a function.
"""

from __future__ import annotations

import re
from typing import Protocol

from loguru import logger


def source_lines(content: str) -> list[str]:
    """Lines split on newline only; form feeds and other Unicode breaks stay inside a line."""
    lines = content.split("\n")
    if lines and lines[-1] == "":
        lines.pop()
    return lines


class StructuralBoundaryDetector(Protocol):
    def detect(self, content: str, language: str) -> list[int]:
        ...


# Patterns match declarations at column 0 only; nested members are not split points
BOUNDARY_PATTERNS: dict[str, list[re.Pattern[str]]] = {
    "python": [
        re.compile(r"^(?:async\s+)?def\s+\w+"),
        re.compile(r"^class\s+\w+"),
        re.compile(r"^@\w+"),
    ],
    "javascript": [
        re.compile(r"^(?:export\s+)?(?:default\s+)?(?:async\s+)?function\*?\s+\w+"),
        re.compile(r"^(?:export\s+)?(?:default\s+)?class\s+\w+"),
        re.compile(r"^(?:export\s+)?(?:const|let|var)\s+\w+\s*=\s*(?:async\s+)?(?:function|\(|\w+\s*=>)"),
    ],
    "typescript": [
        re.compile(r"^(?:export\s+)?(?:default\s+)?(?:async\s+)?function\*?\s+\w+"),
        re.compile(r"^(?:export\s+)?(?:default\s+)?(?:abstract\s+)?class\s+\w+"),
        re.compile(r"^(?:export\s+)?(?:interface|type|enum)\s+\w+"),
        re.compile(r"^(?:export\s+)?(?:const|let)\s+\w+\s*=\s*(?:async\s+)?(?:function|\()"),
    ],
    "go": [
        re.compile(r"^func\s+"),
        re.compile(r"^type\s+\w+"),
    ],
    "rust": [
        re.compile(r"^(?:pub(?:\([^)]*\))?\s+)?(?:async\s+)?(?:unsafe\s+)?fn\s+\w+"),
        re.compile(r"^(?:pub(?:\([^)]*\))?\s+)?(?:struct|enum|trait|union|impl|mod)\b"),
        re.compile(r"^impl\b"),
    ],
    "java": [
        re.compile(r"^(?:(?:public|protected|private|static|final|abstract|sealed)\s+)*(?:class|interface|enum|record)\s+\w+"),
        re.compile(r"^\s{4}(?:public|protected|private)\s[^;=]*\("),
    ],
}

BOUNDARY_PATTERNS["kotlin"] = [
    re.compile(r"^(?:(?:public|private|internal|open|data|sealed|abstract)\s+)*(?:class|object|interface|fun)\s+\w+"),
]
BOUNDARY_PATTERNS["csharp"] = BOUNDARY_PATTERNS["java"]


class RegexBoundaryDetector:
    """Default detector backed by BOUNDARY_PATTERNS."""

    def __init__(self, patterns: dict[str, list[re.Pattern[str]]] | None = None):
        self.patterns = patterns if patterns is not None else BOUNDARY_PATTERNS

    def detect(self, content: str, language: str) -> list[int]:
        patterns = self.patterns.get(language)
        if not patterns:
            return []

        lines: list[int] = []
        previous_was_decorator = False
        for number, line in enumerate(source_lines(content), start=1):
            matched = any(p.match(line) for p in patterns)
            # A decorated definition starts at its first decorator
            if matched and not previous_was_decorator:
                lines.append(number)
            previous_was_decorator = matched and line.startswith("@")

        # Line 1 is always a chunk start; it is not a cut point
        return [n for n in lines if n > 1]


def safe_detect(
    detector: StructuralBoundaryDetector | None,
    content: str,
    language: str,
    path: str = "",
) -> list[int]:
    """
    Run a detector, normalizing its output to sorted unique line numbers
    inside the file. Any failure degrades to "no hints" with a warning.
    """
    if detector is None:
        return []
    try:
        raw = detector.detect(content, language)
    except Exception as e:
        logger.warning(f"[BOUNDARIES] Detector failed on {path or language}: {e}. Using fixed windows.")
        return []

    total_lines = len(source_lines(content))
    cleaned = sorted({int(n) for n in raw if 1 < int(n) <= total_lines})
    logger.debug(f"[BOUNDARIES] {path or language}: {len(cleaned)} split hints")
    return cleaned
