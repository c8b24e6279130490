"""Validation of model-proposed edit instructions.

Instructions arrive as untrusted JSON. Every failure here is recorded on the
:class:`ValidatedEdit` it belongs to instead of being raised, so one bad
instruction never blocks the rest of the batch.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Iterable, List, Optional, Set, Tuple

from . import config
from .models import (
    EditCapabilities,
    EditInstruction,
    EditResponse,
    EditableScope,
    ValidatedEdit,
)
from .positions import (
    After,
    Create,
    Delete,
    End,
    Insert,
    LineRange,
    Open,
    Replace,
    Start,
    parse_position,
)
from .storage import DocumentRepository

logger = logging.getLogger(__name__)

_MARKDOWN_HEADING_RE = re.compile(r"^#{1,6}\s+.+$", re.MULTILINE)
_FENCED_JSON_RE = re.compile(r"^```(?:json)?\s*(.*?)```$", re.DOTALL)
_MAX_HEADING_HINTS = 5


# ===================================================================
# Position interpretation
# ===================================================================

def list_headings(content: str) -> List[str]:
    return [m.group(0).strip() for m in _MARKDOWN_HEADING_RE.finditer(content)]


def find_heading_end(content: str, heading: str) -> Optional[int]:
    """Offset just past the line holding *heading*, or ``None``.

    The heading must fill a whole line (trailing spaces allowed). An exact
    match is tried first, then a case-insensitive one.
    """
    pattern = r"^" + re.escape(heading) + r"[ \t]*$"
    for flags in (re.MULTILINE, re.MULTILINE | re.IGNORECASE):
        match = re.search(pattern, content, flags)
        if match:
            return match.end()
    return None


def _check_range(line_range: LineRange, line_count: int) -> Optional[str]:
    if line_range.start < 1 or line_range.start > line_count:
        return f"Line {line_range.start} out of range (file has {line_count} lines)"
    if line_range.end < line_range.start or line_range.end > line_count:
        return f"Line range {line_range} invalid (file has {line_count} lines)"
    return None


def compute_new_content(current: str, instruction: EditInstruction) -> Tuple[str, Optional[str]]:
    """Apply *instruction* to *current* and return ``(new_content, error)``.

    Pure function. On error the returned content is empty.
    """
    position = parse_position(instruction.position)
    text = instruction.content

    if isinstance(position, Start):
        return text + "\n\n" + current, None

    if isinstance(position, End):
        return current + "\n\n" + text, None

    if isinstance(position, Open):
        return current, None

    if isinstance(position, Create):
        return text, None

    if isinstance(position, After):
        heading = position.heading.strip()
        if not heading:
            return "", "Heading is empty; use \"after:## Heading text\""
        end = find_heading_end(current, heading)
        if end is None:
            hints = list_headings(current)[:_MAX_HEADING_HINTS]
            message = f'Heading not found: "{heading}"'
            if hints:
                message += ". Available headings: " + ", ".join(f'"{h}"' for h in hints)
            return "", message
        return current[:end] + "\n\n" + text + current[end:], None

    if isinstance(position, Insert):
        if position.line is None:
            return "", f'Invalid line number for insert: "{position.raw}"'
        lines = current.split("\n")
        if position.line < 1:
            return "", f"Line number must be at least 1, got: {position.line}"
        if position.line > len(lines) + 1:
            return "", (
                f"Line {position.line} out of range (file has {len(lines)} lines, "
                f"can insert up to line {len(lines) + 1})"
            )
        lines.insert(position.line - 1, text)
        return "\n".join(lines), None

    if isinstance(position, Delete):
        if position.range is None:
            return "", f'Invalid delete format: "{position.raw}". Use "delete:5" or "delete:5-7"'
        lines = current.split("\n")
        error = _check_range(position.range, len(lines))
        if error:
            return "", error
        del lines[position.range.start - 1:position.range.end]
        return "\n".join(lines), None

    if isinstance(position, Replace):
        if position.range is not None:
            lines = current.split("\n")
            error = _check_range(position.range, len(lines))
            if error:
                return "", error
            lines[position.range.start - 1:position.range.end] = [text]
            return "\n".join(lines), None

        # Literal text fallback: first occurrence only
        normalized = current.replace("\r\n", "\n")
        search = position.raw.replace("\r\n", "\n")
        if not search or search not in normalized:
            return "", (
                'Text to replace not found. Use "replace:LINE_NUMBER" format '
                '(e.g., "replace:5" or "replace:5-7")'
            )
        return normalized.replace(search, text, 1), None

    return "", f'Unknown position type: "{instruction.position}"'


# ===================================================================
# Validator
# ===================================================================

class EditValidator:
    """Resolve instructions against a repository and compute their results."""

    def __init__(self, repository: DocumentRepository, new_file_extension: str = config.NOTE_EXTENSION):
        self.repository = repository
        self.new_file_extension = new_file_extension

    def _resolve(self, file: str) -> Optional[str]:
        """Exact path first, then a path suffix, then a bare file name."""
        docs = self.repository.list_documents()
        matchers = (
            lambda doc: doc.path == file,
            lambda doc: doc.path.endswith("/" + file),
            lambda doc: doc.name == file,
        )
        for matches in matchers:
            for doc in docs:
                if matches(doc):
                    return doc.path
        return None

    def _validate_create(self, edit: ValidatedEdit) -> None:
        file = edit.instruction.file
        if not file.endswith(self.new_file_extension):
            edit.reject(f"New file must have {self.new_file_extension} extension: {file}")
        elif self.repository.is_excluded(file):
            edit.reject(f"Cannot create file in excluded folder: {file}")
        elif self.repository.exists(file):
            edit.reject(f"File already exists: {file}")
        else:
            edit.is_new_file = True
            edit.current_content = ""
            edit.new_content = edit.instruction.content

    def validate_one(self, instruction: EditInstruction) -> ValidatedEdit:
        edit = ValidatedEdit(instruction)

        if isinstance(parse_position(instruction.position), Create):
            self._validate_create(edit)
            return edit

        path = self._resolve(instruction.file)
        if path is None:
            edit.reject(f"File not found: {instruction.file}")
            return edit
        edit.resolved_path = path

        if self.repository.is_excluded(path):
            edit.reject(f"Cannot edit file in excluded folder: {path}")
            return edit

        try:
            edit.current_content = self.repository.read(path)
        except OSError as exc:
            edit.reject(f"Could not read file: {exc}")
            return edit

        new_content, error = compute_new_content(edit.current_content, instruction)
        if error:
            edit.reject(error)
        else:
            edit.new_content = new_content
        return edit

    def validate(self, instructions: Iterable[EditInstruction]) -> List[ValidatedEdit]:
        """One :class:`ValidatedEdit` per instruction, in input order."""
        validated = [self.validate_one(instruction) for instruction in instructions]
        failed = [e for e in validated if not e.ok]
        logger.debug(
            "Validated %d edits: %d ok, %d with errors",
            len(validated), len(validated) - len(failed), len(failed),
        )
        for edit in failed:
            logger.debug("  %s (%s): %s", edit.instruction.file, edit.instruction.position, edit.error)
        return validated

    def filter_by_rules(
        self,
        validated: List[ValidatedEdit],
        editable_scope: EditableScope,
        capabilities: EditCapabilities,
        allowed_paths: Set[str],
    ) -> List[ValidatedEdit]:
        """Reject still-valid edits outside *allowed_paths* or the capabilities.

        Edits are modified in place and the same list is returned.
        """
        rejected = 0
        for edit in validated:
            if not edit.ok:
                continue
            position = parse_position(edit.instruction.position)

            if not edit.is_new_file and edit.target_path not in allowed_paths:
                edit.reject(
                    f'File "{edit.instruction.file}" is outside editable scope ({editable_scope.value})'
                )
            elif edit.is_new_file and not capabilities.can_create:
                edit.reject("Creating new files is not allowed (capability disabled)")
            elif isinstance(position, (Delete, Replace)) and not capabilities.can_delete:
                edit.reject("Deleting/replacing content is not allowed (capability disabled)")
            elif isinstance(position, (Start, End, After, Insert)) and not capabilities.can_add:
                edit.reject("Adding content is not allowed (capability disabled)")
            else:
                continue
            rejected += 1

        logger.debug("Rule filter: %d of %d edits rejected", rejected, len(validated))
        return validated


# ===================================================================
# Model response parsing
# ===================================================================

def parse_edit_response(text: str) -> Optional[EditResponse]:
    """Parse a model reply of the form ``{"edits": [...], "summary": "..."}``.

    The reply may be wrapped in a single fenced block. Returns ``None`` when
    the JSON is malformed or has no ``edits`` array.
    """
    payload = text.strip()
    if payload.startswith("```"):
        match = _FENCED_JSON_RE.match(payload)
        if match:
            payload = match.group(1).strip()

    try:
        parsed = json.loads(payload)
    except json.JSONDecodeError as exc:
        logger.warning("Could not parse edit response: %s (preview: %r)", exc, text[:200])
        return None

    if not isinstance(parsed, dict) or not isinstance(parsed.get("edits"), list):
        logger.warning("Edit response has no 'edits' array")
        return None

    edits = [EditInstruction.from_dict(item) for item in parsed["edits"] if isinstance(item, dict)]
    return EditResponse(edits=edits, summary=parsed.get("summary") or "No summary provided")
