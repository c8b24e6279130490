"""Link extraction and resolution for markdown notes.

Two link syntaxes are recognised:

- wiki links: ``[[Target]]``, ``[[Target|alias]]``, ``[[Target#Heading]]``
  and embeds ``![[Target]]``;
- markdown links to local files: ``[text](folder/Target.md)``.

Resolution follows the "nearest match" rule: a short link text such as
``Target`` may match several notes, and the one closest to the linking note
(longest shared folder prefix, then shortest path) wins.
"""

from __future__ import annotations

import posixpath
import re
from typing import Iterable, List, Optional
from urllib.parse import unquote

_WIKI_LINK_RE = re.compile(r"!?\[\[([^\[\]]+?)\]\]")
_MD_LINK_RE = re.compile(r"\[[^\]]*\]\(([^)\s]+)(?:\s+\"[^\"]*\")?\)")
_URL_SCHEME_RE = re.compile(r"^[a-zA-Z][a-zA-Z0-9+.-]*:")
_FENCE_RE = re.compile(r"^```.*?^```", re.MULTILINE | re.DOTALL)


def _strip_target(raw: str) -> str:
    """Drop alias, heading and block suffixes from a link target."""
    target = raw.split("|", 1)[0]
    target = target.split("#", 1)[0]
    target = target.split("^", 1)[0]
    return target.strip()


def extract_links(content: str) -> List[str]:
    """Return link targets in order of appearance, without duplicates.

    Links inside fenced code blocks are ignored, which also keeps pending
    ``ai-edit`` blocks from contributing edges.
    """
    text = _FENCE_RE.sub("", content)
    seen = set()
    targets: List[str] = []

    for match in _WIKI_LINK_RE.finditer(text):
        target = _strip_target(match.group(1))
        if target and target not in seen:
            seen.add(target)
            targets.append(target)

    for match in _MD_LINK_RE.finditer(text):
        raw = match.group(1)
        if _URL_SCHEME_RE.match(raw):
            continue
        target = _strip_target(unquote(raw))
        if target and target not in seen:
            seen.add(target)
            targets.append(target)

    return targets


def _folder_of(path: str) -> str:
    return path.rpartition("/")[0]


def _shared_prefix_depth(a: str, b: str) -> int:
    parts_a = [p for p in a.split("/") if p]
    parts_b = [p for p in b.split("/") if p]
    depth = 0
    for x, y in zip(parts_a, parts_b):
        if x != y:
            break
        depth += 1
    return depth


def resolve_link(
    link_text: str,
    source_path: str,
    all_paths: Iterable[str],
    extension: str = ".md",
) -> Optional[str]:
    """Resolve *link_text* written in *source_path* to an existing note path.

    Args:
        link_text:   Target as written in the note (already stripped of alias/heading).
        source_path: Path of the linking note.
        all_paths:   Every note path in the vault.
        extension:   Extension implied when the link omits it.

    Returns:
        The resolved path, or ``None`` when nothing matches.
    """
    link = link_text.strip().lstrip("/")
    if not link:
        return None
    paths = list(all_paths)
    path_set = set(paths)

    candidates = [link]
    if not link.endswith(extension):
        candidates.append(link + extension)

    # 1. Exact vault-relative path
    for candidate in candidates:
        if candidate in path_set:
            return candidate

    # 2. Relative to the source note's folder
    source_folder = _folder_of(source_path)
    if source_folder:
        for candidate in candidates:
            joined = posixpath.normpath(posixpath.join(source_folder, candidate))
            if joined in path_set:
                return joined

    # 3. Suffix / file-name match, nearest to the source wins
    suffix_matches = [
        p for p in paths
        if any(p == c or p.endswith("/" + c) for c in candidates)
    ]
    if not suffix_matches:
        return None

    suffix_matches.sort(
        key=lambda p: (-_shared_prefix_depth(_folder_of(p), source_folder), len(p), p)
    )
    return suffix_matches[0]
