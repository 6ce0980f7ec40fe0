"""
DOCBATCH Planning — Data Model

Transient analysis records (FileRecord, TokenResult) are plain
dataclasses: they live for one planning pass and are never persisted.
Batch results are pydantic models tagged by `type` so every consumer
can match on the concrete variant.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter


# ---------------------------------------------------------------------------
# Token Results
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class TokenCount:
    """Successful token computation."""
    tokens: int


@dataclass(frozen=True)
class TokenError:
    """Failed token computation; the file goes to the error bucket."""
    reason: str


TokenResult = Union[TokenCount, TokenError]


# ---------------------------------------------------------------------------
# File Records
# ---------------------------------------------------------------------------

@dataclass
class FileRecord:
    """One file of the inventory. Never carries file content."""
    path: str                        # relative path from project root
    size: int = 0                    # bytes
    language: str = "unknown"
    tokens: TokenResult | None = None
    line_count: int | None = None
    original_index: int = 0          # position in scan order

    @property
    def token_count(self) -> int | None:
        if isinstance(self.tokens, TokenCount):
            return self.tokens.tokens
        return None

    @property
    def analysis_error(self) -> str | None:
        if isinstance(self.tokens, TokenError):
            return self.tokens.reason
        if self.tokens is None:
            return "token count not computed"
        return None

    @property
    def is_error(self) -> bool:
        return self.analysis_error is not None


class FileCategory(str, Enum):
    SMALL = "small"
    MEDIUM = "medium"
    LARGE = "large"
    ERROR = "error"


# ---------------------------------------------------------------------------
# Batch Results
# ---------------------------------------------------------------------------

COMBINED_BATCH = "combined_batch"
SINGLE_BATCH = "single_batch"
LARGE_FILE_CHUNK = "large_file_chunk"

BATCH_TYPES = (COMBINED_BATCH, SINGLE_BATCH, LARGE_FILE_CHUNK)


class BatchFile(BaseModel):
    path: str
    token_count: int
    size: int = 0
    language: str = "unknown"
    original_index: int = 0

    @classmethod
    def from_record(cls, record: FileRecord) -> "BatchFile":
        return cls(
            path=record.path,
            token_count=record.token_count or 0,
            size=record.size,
            language=record.language,
            original_index=record.original_index,
        )


class ParentFileInfo(BaseModel):
    """Non-owning back-reference from a chunk to the file it was cut from."""
    path: str
    total_tokens: int
    original_index: int = 0


class ChunkInfo(BaseModel):
    chunk_index: int                 # 1-based
    total_chunks: int
    start_line: int                  # 1-based, inclusive; 0 when lines are unknown
    end_line: int                    # inclusive; 0 when lines are unknown
    split_mode: Literal["boundary", "line_window", "token_window"] = "line_window"
    parent_file_info: ParentFileInfo

    @property
    def is_first(self) -> bool:
        return self.chunk_index == 1

    @property
    def is_last(self) -> bool:
        return self.chunk_index == self.total_chunks


class _BatchBase(BaseModel):
    batch_id: str
    files: list[BatchFile] = Field(default_factory=list)
    estimated_tokens: int = 0
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def file_count(self) -> int:
        return len(self.files)


class CombinedBatch(_BatchBase):
    type: Literal["combined_batch"] = COMBINED_BATCH
    strategy: Literal["combined"] = "combined"


class SingleBatch(_BatchBase):
    type: Literal["single_batch"] = SINGLE_BATCH
    strategy: Literal["single"] = "single"


class LargeFileChunk(_BatchBase):
    type: Literal["large_file_chunk"] = LARGE_FILE_CHUNK
    strategy: Literal["large_multi"] = "large_multi"
    chunk_info: ChunkInfo


BatchResult = Annotated[
    Union[CombinedBatch, SingleBatch, LargeFileChunk],
    Field(discriminator="type"),
]

batch_adapter: TypeAdapter[BatchResult] = TypeAdapter(BatchResult)
