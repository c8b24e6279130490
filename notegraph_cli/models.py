"""Core data models shared by traversal, context assembly, and edit handling."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Any, Dict, List, Optional, Tuple


class NoteGraphError(Exception):
    """Base class for NoteGraph errors."""


class DocumentNotFoundError(NoteGraphError, FileNotFoundError):
    """Raised by a repository when a document path does not exist."""


# ===================================================================
# Documents and links
# ===================================================================

@dataclass(frozen=True)
class Document:
    path: str
    name: str
    basename: str
    folder: str

    @classmethod
    def from_path(cls, path: str) -> "Document":
        folder, _, name = path.rpartition("/")
        basename = name.rsplit(".", 1)[0] if "." in name else name
        return cls(path=path, name=name, basename=basename, folder=folder)


@dataclass(frozen=True)
class LinkEdge:
    source: str
    target: str


# ===================================================================
# Context assembly
# ===================================================================

MAX_LINK_DEPTH = 3


@dataclass
class ContextScopeConfig:
    """Which sources feed a context bundle, and how much of each."""
    link_depth: int = 2
    max_linked_notes: int = 20
    max_folder_notes: int = 0
    semantic_match_count: int = 0
    semantic_min_similarity: int = 50
    manually_added_paths: List[str] = field(default_factory=list)

    def __post_init__(self):
        if not 0 <= self.link_depth <= MAX_LINK_DEPTH:
            raise ValueError(f"link_depth must be between 0 and {MAX_LINK_DEPTH}, got {self.link_depth}")
        for name in ("max_linked_notes", "max_folder_notes", "semantic_match_count"):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must be >= 0, got {getattr(self, name)}")
        if not 0 <= self.semantic_min_similarity <= 100:
            raise ValueError(
                f"semantic_min_similarity must be between 0 and 100, got {self.semantic_min_similarity}"
            )

    @property
    def link_enabled(self) -> bool:
        """Link traversal needs both a positive depth and a positive cap."""
        return self.link_depth > 0 and self.max_linked_notes > 0

    @classmethod
    def from_legacy_scope(cls, scope: str) -> "ContextScopeConfig":
        """Convert one of the preset scopes ``current``/``linked``/``folder``."""
        if scope == "current":
            return cls(link_depth=0, max_linked_notes=20)
        if scope == "folder":
            return cls(link_depth=0, max_linked_notes=20, max_folder_notes=20)
        return cls(link_depth=1, max_linked_notes=20)


class Priority(IntEnum):
    """Eviction priority of a context entry. Higher survives longer."""
    CURRENT = 1000
    LINKED_DEPTH_1 = 100
    LINKED_DEPTH_2 = 90
    LINKED_DEPTH_3 = 80
    FOLDER = 50
    SEMANTIC = 30
    MANUAL = 10

    @classmethod
    def for_link_depth(cls, depth: int) -> "Priority":
        if depth <= 1:
            return cls.LINKED_DEPTH_1
        if depth == 2:
            return cls.LINKED_DEPTH_2
        return cls.LINKED_DEPTH_3


class SelectionReason(str, Enum):
    CURRENT = "current"
    LINKED = "linked"
    FOLDER = "folder"
    SEMANTIC = "semantic"
    MANUAL = "manual"

    @property
    def label(self) -> str:
        return _REASON_LABELS[self]


_REASON_LABELS = {
    SelectionReason.CURRENT: "Current Note",
    SelectionReason.LINKED: "Linked Note",
    SelectionReason.FOLDER: "Folder Note",
    SelectionReason.SEMANTIC: "Semantic Match",
    SelectionReason.MANUAL: "Manually Added",
}


@dataclass
class ContextEntry:
    path: str
    rendered_text: str
    token_estimate: int
    priority: Priority
    reason: SelectionReason


@dataclass
class BudgetedContext:
    """Result of a token-limited context build."""
    rendered_text: str
    evicted_paths: List[str]
    total_token_estimate: int
    included_paths: List[str] = field(default_factory=list)

    @property
    def over_budget(self) -> bool:
        """True when nothing but the current note is left and it still did not fit."""
        return bool(self.evicted_paths) and len(self.included_paths) <= 1


@dataclass(frozen=True)
class SemanticMatch:
    path: str
    score: float
    heading: str = ""


# ===================================================================
# Edit instructions
# ===================================================================

class EditableScope(str, Enum):
    CURRENT = "current"
    LINKED = "linked"
    CONTEXT = "context"


@dataclass(frozen=True)
class EditCapabilities:
    can_add: bool = True
    can_delete: bool = True
    can_create: bool = True


@dataclass
class EditInstruction:
    """A single model-proposed edit. Untrusted until validated."""
    file: str
    position: str
    content: str = ""

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "EditInstruction":
        return cls(
            file=str(payload.get("file", "") or ""),
            position=str(payload.get("position", "") or ""),
            content=str(payload.get("content", "") or ""),
        )


@dataclass
class EditResponse:
    edits: List[EditInstruction]
    summary: str = "No summary provided"


@dataclass
class ValidatedEdit:
    instruction: EditInstruction
    resolved_path: Optional[str] = None
    current_content: str = ""
    new_content: str = ""
    error: Optional[str] = None
    is_new_file: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def target_path(self) -> str:
        return self.resolved_path or self.instruction.file

    def reject(self, message: str) -> None:
        """Attach an error. The first error recorded wins."""
        if self.error is None:
            self.error = message


class EditKind(str, Enum):
    REPLACE = "replace"
    ADD = "add"
    DELETE = "delete"


class EditAction(str, Enum):
    ACCEPT = "accept"
    REJECT = "reject"


class EditState(str, Enum):
    PROPOSED = "proposed"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


@dataclass(frozen=True)
class InlineEditRecord:
    """Before/after snapshot written into a note, pending human review."""
    id: str
    kind: EditKind
    before: str = ""
    after: str = ""

    def to_dict(self) -> Dict[str, str]:
        return {"id": self.id, "type": self.kind.value, "before": self.before, "after": self.after}

    def to_json(self) -> str:
        """Single-line JSON with backticks escaped, so code fences in the
        snapshots cannot close the surrounding ``ai-edit`` block."""
        text = json.dumps(self.to_dict(), ensure_ascii=False, separators=(",", ":"))
        return text.replace("`", "\\u0060")

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "InlineEditRecord":
        return cls(
            id=str(payload["id"]),
            kind=EditKind(payload.get("type", EditKind.REPLACE.value)),
            before=payload.get("before") or "",
            after=payload.get("after") or "",
        )

    def resolve(self, action: EditAction) -> Tuple[EditState, str]:
        """Return the terminal state and the text that replaces the block."""
        if action is EditAction.ACCEPT:
            return EditState.ACCEPTED, self.after
        return EditState.REJECTED, self.before


@dataclass
class ApplyResult:
    """Outcome of inserting pending edit blocks."""
    success_count: int = 0
    failed_count: int = 0
    files_modified: List[str] = field(default_factory=list)
    files_created: List[str] = field(default_factory=list)

    def __str__(self) -> str:
        if self.failed_count:
            return f"Inserted {self.success_count} edit(s), {self.failed_count} failed"
        return f"Inserted {self.success_count} edit(s)"


# ===================================================================
# Diff
# ===================================================================

class DiffKind(str, Enum):
    UNCHANGED = "unchanged"
    ADDED = "added"
    REMOVED = "removed"


@dataclass(frozen=True)
class DiffLine:
    kind: DiffKind
    text: str
    old_line_number: Optional[int] = None
    new_line_number: Optional[int] = None
