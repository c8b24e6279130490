"""DiffEngine for previewing proposed note changes.

Preview only: nothing here writes to the vault.
"""

from __future__ import annotations

from typing import Dict, List

from .models import DiffKind, DiffLine, ValidatedEdit


def longest_common_subsequence(a: List[str], b: List[str]) -> List[str]:
    """Longest common subsequence of two line lists (classic O(n*m) table)."""
    m, n = len(a), len(b)
    dp = [[0] * (n + 1) for _ in range(m + 1)]
    for i in range(1, m + 1):
        for j in range(1, n + 1):
            if a[i - 1] == b[j - 1]:
                dp[i][j] = dp[i - 1][j - 1] + 1
            else:
                dp[i][j] = max(dp[i - 1][j], dp[i][j - 1])

    lcs: List[str] = []
    i, j = m, n
    while i > 0 and j > 0:
        if a[i - 1] == b[j - 1]:
            lcs.append(a[i - 1])
            i -= 1
            j -= 1
        elif dp[i - 1][j] > dp[i][j - 1]:
            i -= 1
        else:
            j -= 1
    lcs.reverse()
    return lcs


def compute_diff(old: str, new: str) -> List[DiffLine]:
    """Line diff of *old* against *new*.

    Changed lines come out as a ``removed`` line followed by an ``added`` one.
    """
    old_lines = old.split("\n")
    new_lines = new.split("\n")
    lcs = longest_common_subsequence(old_lines, new_lines)

    diff: List[DiffLine] = []
    old_idx = new_idx = lcs_idx = 0

    while old_idx < len(old_lines) or new_idx < len(new_lines):
        common = lcs[lcs_idx] if lcs_idx < len(lcs) else None
        old_line = old_lines[old_idx] if old_idx < len(old_lines) else None
        new_line = new_lines[new_idx] if new_idx < len(new_lines) else None

        if common is not None and old_line == common:
            if new_line == common:
                diff.append(DiffLine(DiffKind.UNCHANGED, old_line, old_idx + 1, new_idx + 1))
                old_idx += 1
                new_idx += 1
                lcs_idx += 1
            else:
                diff.append(DiffLine(DiffKind.ADDED, new_line, new_line_number=new_idx + 1))
                new_idx += 1
        elif old_line is not None:
            diff.append(DiffLine(DiffKind.REMOVED, old_line, old_line_number=old_idx + 1))
            old_idx += 1
        else:
            diff.append(DiffLine(DiffKind.ADDED, new_line, new_line_number=new_idx + 1))
            new_idx += 1

    return diff


class DiffEngine:
    """Renders diffs of validated edits for review."""

    _PREFIX = {DiffKind.UNCHANGED: " ", DiffKind.ADDED: "+", DiffKind.REMOVED: "-"}

    def diff(self, old: str, new: str) -> List[DiffLine]:
        return compute_diff(old, new)

    def render(self, lines: List[DiffLine]) -> str:
        return "\n".join(f"{self._PREFIX[line.kind]} {line.text}" for line in lines)

    def preview(self, edit: ValidatedEdit) -> str:
        """Diff of an edit's current content against its result.

        Edits with an error render as an empty string.
        """
        if not edit.ok:
            return ""
        return self.render(self.diff(edit.current_content, edit.new_content))

    @staticmethod
    def summarize(lines: List[DiffLine]) -> Dict[str, int]:
        """Count of ``added`` and ``removed`` lines."""
        return {
            "added": sum(1 for line in lines if line.kind is DiffKind.ADDED),
            "removed": sum(1 for line in lines if line.kind is DiffKind.REMOVED),
        }
