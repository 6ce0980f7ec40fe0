"""
DOCBATCH Inventory — The Surveyor

Walks the project to build the file inventory the planner works from.
Paths, sizes and languages only; content is never kept.

Discovery prefers `git ls-files` (respects .gitignore, deterministic)
and falls back to a sorted filesystem walk.
"""

from __future__ import annotations

import subprocess
from dataclasses import dataclass, field
from pathlib import Path

from loguru import logger

from docbatch.planning.models import FileRecord

# ---------------------------------------------------------------------------
# Constants & Configuration
# ---------------------------------------------------------------------------

SKIP_DIRS = {
    ".git", ".docbatch", ".context", ".venv", "venv", "env",
    "node_modules", "target", "dist", "build", "__pycache__",
    ".tox", ".mypy_cache", ".pytest_cache", ".ruff_cache",
    ".next", ".nuxt", "coverage", ".cargo", "vendor",
}

LANGUAGE_MAP = {
    ".py": "python",
    ".js": "javascript",
    ".jsx": "javascript",
    ".mjs": "javascript",
    ".ts": "typescript",
    ".tsx": "typescript",
    ".go": "go",
    ".rs": "rust",
    ".java": "java",
    ".kt": "kotlin",
    ".cs": "csharp",
    ".rb": "ruby",
    ".php": "php",
    ".c": "c",
    ".h": "c",
    ".cpp": "cpp",
    ".hpp": "cpp",
    ".swift": "swift",
}


# ---------------------------------------------------------------------------
# Data Models
# ---------------------------------------------------------------------------

@dataclass
class Inventory:
    """Result of one project scan."""
    root: Path
    files: list[FileRecord] = field(default_factory=list)
    languages: dict[str, int] = field(default_factory=dict)
    skipped: int = 0

    @property
    def total_files(self) -> int:
        return len(self.files)

    @property
    def total_bytes(self) -> int:
        return sum(f.size for f in self.files)


# ---------------------------------------------------------------------------
# Discovery
# ---------------------------------------------------------------------------

def _git_files(root: Path) -> list[str] | None:
    # Only trust git at the checkout root; a nested dir of another repo lists nothing useful
    if not (root / ".git").exists():
        return None
    try:
        output = subprocess.check_output(
            ["git", "ls-files", "-z"], cwd=root, text=True, encoding="utf-8", stderr=subprocess.DEVNULL
        )
    except (subprocess.CalledProcessError, OSError):
        return None
    # NUL-separated output is never quoted, so non-ASCII paths come back verbatim
    return sorted(name for name in output.split("\0") if name)


def _walk_files(root: Path) -> list[str]:
    return sorted(
        p.relative_to(root).as_posix() for p in root.rglob("*") if p.is_file()
    )


def detect_language(path: str) -> str:
    return LANGUAGE_MAP.get(Path(path).suffix.lower(), "unknown")


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def scan_project(
    project_path: Path,
    exclude_dirs: list[str] | None = None,
    extensions: list[str] | None = None,
) -> Inventory:
    """
    Build the inventory for a project. Records are numbered in scan
    order (`original_index`), which later drives first-fit packing.
    """
    root = project_path.resolve()
    if not root.is_dir():
        raise FileNotFoundError(f"Project directory not found: {root}")

    skip = SKIP_DIRS | set(exclude_dirs or [])
    allowed = {e if e.startswith(".") else f".{e}" for e in extensions} if extensions else set(LANGUAGE_MAP)

    raw_files = _git_files(root)
    if raw_files is None:
        logger.debug("[INVENTORY] Not a git checkout, falling back to filesystem walk.")
        raw_files = _walk_files(root)

    inventory = Inventory(root=root)
    for rel_path in raw_files:
        parts = Path(rel_path).parts
        if any(part in skip for part in parts[:-1]):
            inventory.skipped += 1
            continue
        if Path(rel_path).suffix.lower() not in allowed:
            continue

        full_path = root / rel_path
        try:
            size = full_path.stat().st_size
        except OSError:
            # Listed by git but deleted from the working tree
            inventory.skipped += 1
            continue

        language = detect_language(rel_path)
        inventory.files.append(FileRecord(
            path=rel_path,
            size=size,
            language=language,
            original_index=len(inventory.files),
        ))
        inventory.languages[language] = inventory.languages.get(language, 0) + 1

    logger.info(f"[INVENTORY] {inventory.total_files} files mapped under {root.name} ({inventory.skipped} skipped)")
    return inventory
