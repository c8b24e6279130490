"""Pending edit blocks: insertion into notes and accept/reject resolution.

Validated edits are never written straight into a note. Each one becomes an
``ai-edit`` fenced block holding a before/after snapshot, followed by the
pending-edit tag, and a human later accepts or rejects it::

    ```ai-edit
    {"id":"k3j9x0qa","type":"replace","before":"old line","after":"new line"}
    ```
    #ai_edit

New notes start with an ``ai-new-note`` banner instead.
"""

from __future__ import annotations

import json
import logging
import re
import secrets
import string
from typing import Dict, List, Optional, Tuple

from . import config
from .graph import BacklinkIndex
from .models import (
    ApplyResult,
    DocumentNotFoundError,
    EditAction,
    EditState,
    InlineEditRecord,
    NoteGraphError,
    ValidatedEdit,
)
from .positions import (
    After,
    Delete,
    End,
    Insert,
    Open,
    Position,
    Replace,
    Start,
    edit_kind,
    edit_sort_key,
    parse_position,
)
from .storage import DocumentRepository
from .validation import find_heading_end

logger = logging.getLogger(__name__)

EDIT_FENCE = "ai-edit"
NEW_NOTE_FENCE = "ai-new-note"
NEW_NOTE_SEPARATOR = "\n\n---\n\n"

_ID_ALPHABET = string.digits + string.ascii_lowercase
_EDIT_BLOCK_RE = re.compile(r"```ai-edit\n(.*?)```", re.DOTALL)
_NEW_NOTE_BLOCK_RE = re.compile(r"```ai-new-note\n(.*?)```", re.DOTALL)


def generate_edit_id() -> str:
    """Random 8-character base-36 id."""
    return "".join(secrets.choice(_ID_ALPHABET) for _ in range(8))


def extract_edits(content: str) -> List[InlineEditRecord]:
    """Pending edit records found in *content*, in document order."""
    records: List[InlineEditRecord] = []
    for match in _EDIT_BLOCK_RE.finditer(content):
        try:
            records.append(InlineEditRecord.from_dict(json.loads(match.group(1))))
        except (json.JSONDecodeError, KeyError, TypeError, ValueError) as exc:
            logger.warning("Skipping malformed ai-edit block: %s", exc)
    return records


def extract_new_note_ids(content: str) -> List[str]:
    ids: List[str] = []
    for match in _NEW_NOTE_BLOCK_RE.finditer(content):
        try:
            payload = json.loads(match.group(1))
        except json.JSONDecodeError as exc:
            logger.warning("Skipping malformed ai-new-note block: %s", exc)
            continue
        if isinstance(payload, dict) and payload.get("id"):
            ids.append(str(payload["id"]))
    return ids


def _cleanup(content: str) -> str:
    content = re.sub(r"\n{3,}", "\n\n", content)
    content = re.sub(r"\n+\Z", "\n", content).lstrip("\n")
    return "" if not content.strip() else content


class EditManager:
    """Turns validated edits into pending blocks and resolves them later."""

    def __init__(
        self,
        repository: DocumentRepository,
        pending_edit_tag: str = config.DEFAULT_PENDING_EDIT_TAG,
        backlinks: Optional[BacklinkIndex] = None,
    ) -> None:
        self.repository = repository
        self.pending_edit_tag = pending_edit_tag
        self.backlinks = backlinks

    # ------------------------------------------------------------------
    # Block rendering
    # ------------------------------------------------------------------

    def create_edit_block(self, record: InlineEditRecord) -> str:
        return f"```{EDIT_FENCE}\n{record.to_json()}\n```\n{self.pending_edit_tag}"

    def create_new_note_block(self, note_id: str) -> str:
        payload = json.dumps({"id": note_id}, separators=(",", ":"))
        return f"```{NEW_NOTE_FENCE}\n{payload}\n```\n{self.pending_edit_tag}"

    # ------------------------------------------------------------------
    # Insertion
    # ------------------------------------------------------------------

    @staticmethod
    def _before_text(content: str, position: Position) -> str:
        """Original text an edit would remove, for the audit snapshot."""
        if isinstance(position, (Replace, Delete)) and position.range is not None:
            lines = content.split("\n")
            start = max(0, min(position.range.start - 1, len(lines)))
            end = max(start, min(position.range.end, len(lines)))
            return "\n".join(lines[start:end])
        if isinstance(position, Replace):
            return position.raw.replace("\r\n", "\n")
        return ""

    @staticmethod
    def splice(content: str, position: Position, block: str) -> Optional[str]:
        """Place *block* at *position*; ``None`` when the position no longer exists."""
        if isinstance(position, Start):
            return block + "\n\n" + content
        if isinstance(position, End):
            return content + "\n\n" + block
        if isinstance(position, After):
            end = find_heading_end(content, position.heading.strip())
            if end is None:
                return None
            return content[:end] + "\n\n" + block + content[end:]
        if isinstance(position, Insert) and position.line is not None:
            lines = content.split("\n")
            if not 1 <= position.line <= len(lines) + 1:
                return None
            lines.insert(position.line - 1, block)
            return "\n".join(lines)
        if isinstance(position, (Replace, Delete)) and position.range is not None:
            lines = content.split("\n")
            if position.range.start < 1 or position.range.end > len(lines):
                return None
            lines[position.range.start - 1:position.range.end] = [block]
            return "\n".join(lines)
        if isinstance(position, Replace):
            normalized = content.replace("\r\n", "\n")
            search = position.raw.replace("\r\n", "\n")
            if not search or search not in normalized:
                return None
            return normalized.replace(search, block, 1)
        return None

    def _create_new_notes(self, edits: List[ValidatedEdit], result: ApplyResult) -> None:
        for edit in edits:
            path = edit.instruction.file
            try:
                folder = path.rpartition("/")[0]
                if folder and not self.repository.exists(folder):
                    self.repository.create_folder(folder)
                banner = self.create_new_note_block(generate_edit_id()) + NEW_NOTE_SEPARATOR
                self.repository.create(path, banner + edit.new_content)
            except (OSError, ValueError) as exc:
                logger.warning("Failed to create %s: %s", path, exc)
                result.failed_count += 1
                continue
            result.success_count += 1
            result.files_created.append(path)

    def _apply_group(self, path: str, edits: List[ValidatedEdit], result: ApplyResult) -> None:
        try:
            content = self.repository.read(path)
        except OSError as exc:
            logger.warning("Failed to read %s, skipping %d edit(s): %s", path, len(edits), exc)
            result.failed_count += len(edits)
            return

        parsed = [(edit, parse_position(edit.instruction.position)) for edit in edits]
        parsed.sort(key=lambda pair: edit_sort_key(pair[1]), reverse=True)

        inserted = 0
        for edit, position in parsed:
            if isinstance(position, Open):
                continue
            record = InlineEditRecord(
                id=generate_edit_id(),
                kind=edit_kind(position),
                before=self._before_text(content, position),
                after=edit.instruction.content if edit.new_content != edit.current_content else "",
            )
            spliced = self.splice(content, position, self.create_edit_block(record))
            if spliced is None:
                logger.warning(
                    "Position %r no longer valid in %s; edit skipped", edit.instruction.position, path
                )
                result.failed_count += 1
                continue
            content = spliced
            inserted += 1

        if not inserted:
            return
        try:
            self.repository.write(path, content)
        except OSError as exc:
            logger.warning("Failed to write %s, dropping %d edit(s): %s", path, inserted, exc)
            result.failed_count += inserted
            return
        result.success_count += inserted
        result.files_modified.append(path)

    def apply(self, validated: List[ValidatedEdit]) -> ApplyResult:
        """Insert pending blocks for every valid edit.

        Edits carrying an error count as failures. Edits to one note are
        applied bottom-to-top against a single read and written back once.
        """
        result = ApplyResult()
        new_notes: List[ValidatedEdit] = []
        groups: Dict[str, List[ValidatedEdit]] = {}

        for edit in validated:
            if not edit.ok:
                result.failed_count += 1
            elif edit.is_new_file:
                new_notes.append(edit)
            elif edit.resolved_path:
                groups.setdefault(edit.resolved_path, []).append(edit)

        self._create_new_notes(new_notes, result)
        for path, edits in groups.items():
            self._apply_group(path, edits, result)

        if self.backlinks is not None and (result.files_created or result.files_modified):
            self.backlinks.invalidate()

        logger.debug(
            "Edit insertion: %d ok, %d failed, %d notes modified, %d created",
            result.success_count, result.failed_count,
            len(result.files_modified), len(result.files_created),
        )
        return result

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    def _read_existing(self, path: str) -> str:
        if self.repository.get_document(path) is None:
            raise DocumentNotFoundError(f"Document not found: {path}")
        return self.repository.read(path)

    def resolve_edit(self, path: str, record: InlineEditRecord, action: EditAction) -> EditState:
        """Replace one pending block with its ``after`` (accept) or ``before`` (reject) text."""
        content = self._read_existing(path)
        tag = re.escape(self.pending_edit_tag)
        exact = re.compile(
            r"```ai-edit\n" + re.escape(record.to_json()) + r"\n```\n?" + tag + r"\n?"
        )
        by_id = re.compile(
            r'```ai-edit\n[^`]*?"id"\s*:\s*"' + re.escape(record.id) + r'"[^`]*?```\n?' + tag + r"\n?"
        )

        state, text = record.resolve(action)
        replacement = text + "\n" if text else ""

        updated, count = exact.subn(lambda _: replacement, content)
        if not count:
            updated, count = by_id.subn(lambda _: replacement, content)
        if not count:
            raise NoteGraphError(f"Pending edit {record.id} not found in {path}")

        self.repository.write(path, _cleanup(updated))
        if self.backlinks is not None:
            self.backlinks.invalidate()
        logger.debug("Edit %s in %s %s", record.id, path, state.value)
        return state

    def resolve_new_note(self, path: str, note_id: str, action: EditAction) -> EditState:
        """Accept keeps the note without its banner; reject deletes the note."""
        content = self._read_existing(path)
        if action is EditAction.REJECT:
            self.repository.delete(path)
            state = EditState.REJECTED
        else:
            banner = re.compile(
                r'```ai-new-note\n[^`]*?"id"\s*:\s*"' + re.escape(note_id) + r'"[^`]*?```\n?'
                + re.escape(self.pending_edit_tag) + r"\n*---\n*"
            )
            self.repository.write(path, banner.sub("", content))
            state = EditState.ACCEPTED
        if self.backlinks is not None:
            self.backlinks.invalidate()
        return state

    def resolve_next(self, path: str, action: EditAction) -> Optional[EditState]:
        """Resolve the first pending edit in *path*; ``None`` if it has none."""
        records = extract_edits(self._read_existing(path))
        if not records:
            return None
        return self.resolve_edit(path, records[0], action)

    def pending_edits(self) -> List[Tuple[str, InlineEditRecord]]:
        """``(path, record)`` for every pending edit block in the vault."""
        pending: List[Tuple[str, InlineEditRecord]] = []
        for doc in self.repository.list_documents():
            content = self.repository.read(doc.path)
            if f"```{EDIT_FENCE}" in content:
                pending.extend((doc.path, record) for record in extract_edits(content))
        return pending

    def pending_new_notes(self) -> List[Tuple[str, str]]:
        pending: List[Tuple[str, str]] = []
        for doc in self.repository.list_documents():
            content = self.repository.read(doc.path)
            if f"```{NEW_NOTE_FENCE}" in content:
                pending.extend((doc.path, note_id) for note_id in extract_new_note_ids(content))
        return pending

    def batch_resolve(self, action: EditAction) -> int:
        """Resolve every pending edit and new-note banner. Returns how many were resolved."""
        processed = 0
        for doc in self.repository.list_documents():
            content = self.repository.read(doc.path)
            if f"```{EDIT_FENCE}" in content:
                for record in extract_edits(content):
                    self.resolve_edit(doc.path, record, action)
                    processed += 1
            if f"```{NEW_NOTE_FENCE}" in content:
                for note_id in extract_new_note_ids(content):
                    if self.repository.get_document(doc.path) is None:
                        break
                    self.resolve_new_note(doc.path, note_id, action)
                    processed += 1
        logger.info("%s %d pending edit(s)", "Accepted" if action is EditAction.ACCEPT else "Rejected", processed)
        return processed
