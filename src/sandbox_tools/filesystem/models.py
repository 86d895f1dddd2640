"""
Filesystem data models.

This module defines Pydantic models for the values returned by the
sandboxed filesystem operations.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal, Optional, Union

from pydantic import BaseModel, Field, model_validator


class EntryKind(str, Enum):
    """Kind of a directory entry."""

    FILE = "file"
    DIRECTORY = "directory"
    SYMLINK = "symlink"
    OTHER = "other"


class DirectoryEntry(BaseModel):
    """A single entry of a directory listing."""

    name: str = Field(description="Entry name")
    kind: EntryKind = Field(description="Entry kind")
    size: int = Field(default=0, description="Size in bytes")
    modified: datetime = Field(description="Last modification time (UTC)")


class FileContent(BaseModel):
    """A (possibly partial) text read of a file."""

    content: str = Field(description="Text of the selected line range")
    total_lines: int = Field(description="Number of lines in the whole file")
    start_line: int = Field(description="First returned line (1-based)")
    end_line: int = Field(description="Last returned line (1-based, inclusive)")


class FileStat(BaseModel):
    """File metadata."""

    path: str = Field(description="Path with forward slashes")
    kind: EntryKind = Field(description="Entry kind")
    size: int = Field(description="Size in bytes")
    created: datetime = Field(description="Creation (or metadata change) time")
    modified: datetime = Field(description="Last modification time")
    accessed: datetime = Field(description="Last access time")
    permissions: str = Field(description="Octal permission bits, e.g. '644'")


class NameMatch(BaseModel):
    """A glob/search hit on an entry name or path."""

    mode: Literal["name"] = "name"
    name: str = Field(description="Entry name")
    path: str = Field(description="Path relative to the sandbox root")
    kind: EntryKind = Field(description="Entry kind")
    modified: Optional[datetime] = Field(default=None, description="Last modification time")


class ContentMatch(BaseModel):
    """A grep hit inside a file."""

    mode: Literal["content"] = "content"
    file: str = Field(description="File path relative to the sandbox root")
    line_number: int = Field(description="1-based line number")
    line_text: str = Field(description="The full matching line")
    matched_text: str = Field(description="The text matched by the pattern")


MatchResult = Union[NameMatch, ContentMatch]


class SearchResults(BaseModel):
    """Capped search results with the uncapped match count."""

    results: list[MatchResult] = Field(default_factory=list)
    total_matches: int = Field(default=0, description="Matches found before capping")

    @model_validator(mode="after")
    def _check_counts(self) -> "SearchResults":
        if self.total_matches < len(self.results):
            self.total_matches = len(self.results)
        return self

    @property
    def returned(self) -> int:
        """Number of results actually returned."""
        return len(self.results)

    @property
    def truncated(self) -> bool:
        """Whether the cap dropped some matches."""
        return self.total_matches > self.returned

    def to_dict(self) -> dict[str, Any]:
        """Serialize for a tool response."""
        return {
            "results": [r.model_dump(mode="json") for r in self.results],
            "total_matches": self.total_matches,
            "returned": self.returned,
            "truncated": self.truncated,
        }


class EditOp(BaseModel):
    """A single exact-text replacement."""

    model_config = {"extra": "forbid"}

    old_text: str = Field(description="Exact text to find")
    new_text: str = Field(description="Replacement text")
    replace_all: bool = Field(default=False, description="Replace every occurrence")


class EditSummary(BaseModel):
    """Outcome of an edit transaction."""

    path: str = Field(description="Edited file, relative to the sandbox root")
    per_edit_counts: list[int] = Field(description="Occurrences replaced per edit")

    @property
    def replaced_count(self) -> int:
        """Total occurrences replaced across all edits."""
        return sum(self.per_edit_counts)


class TailSnapshot(BaseModel):
    """The trailing lines of a file."""

    lines: list[str] = Field(default_factory=list)
    total_lines: int = Field(default=0)


class StreamKind(str, Enum):
    """Kinds of stream subscriptions."""

    TAIL = "tail"
    WATCH = "watch"


class StreamEventType(str, Enum):
    """Types of events emitted by a stream session."""

    INITIAL = "initial"
    CHANGE = "change"
    APPEND = "append"
    DELETED = "deleted"
    ERROR = "error"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class StreamEvent(BaseModel):
    """One event of a tail or watch stream."""

    type: StreamEventType
    timestamp: datetime = Field(default_factory=utcnow)
    data: dict[str, Any] = Field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Flatten into a JSON-friendly dict (``type`` + payload)."""
        return {
            "type": self.type.value,
            "timestamp": self.timestamp.isoformat(),
            **self.data,
        }
