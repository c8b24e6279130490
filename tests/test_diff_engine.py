"""Tests for line diffs of proposed edits."""

from notegraph_cli.diff_engine import DiffEngine, compute_diff, longest_common_subsequence
from notegraph_cli.models import DiffKind, DiffLine, EditInstruction, ValidatedEdit


class TestLongestCommonSubsequence:
    def test_basic(self):
        assert longest_common_subsequence(["a", "b", "c", "d"], ["a", "x", "c", "y"]) == ["a", "c"]

    def test_empty(self):
        assert longest_common_subsequence([], ["a"]) == []

    def test_identical(self):
        assert longest_common_subsequence(["a", "b"], ["a", "b"]) == ["a", "b"]


class TestComputeDiff:
    """Tests for compute_diff."""

    def test_identical_text_is_unchanged(self):
        diff = compute_diff("a\nb", "a\nb")
        assert [line.kind for line in diff] == [DiffKind.UNCHANGED, DiffKind.UNCHANGED]
        assert diff[1] == DiffLine(DiffKind.UNCHANGED, "b", 2, 2)

    def test_changed_lines(self):
        """A changed line shows as removed then added, with line numbers on both sides."""
        diff = compute_diff("a\nb\nc\nd", "a\nx\nc\ny")
        assert diff == [
            DiffLine(DiffKind.UNCHANGED, "a", 1, 1),
            DiffLine(DiffKind.REMOVED, "b", old_line_number=2),
            DiffLine(DiffKind.ADDED, "x", new_line_number=2),
            DiffLine(DiffKind.UNCHANGED, "c", 3, 3),
            DiffLine(DiffKind.REMOVED, "d", old_line_number=4),
            DiffLine(DiffKind.ADDED, "y", new_line_number=4),
        ]

    def test_pure_insertion(self):
        diff = compute_diff("a\nc", "a\nb\nc")
        assert [(line.kind, line.text) for line in diff] == [
            (DiffKind.UNCHANGED, "a"),
            (DiffKind.ADDED, "b"),
            (DiffKind.UNCHANGED, "c"),
        ]

    def test_pure_deletion(self):
        diff = compute_diff("a\nb\nc", "a\nc")
        assert [(line.kind, line.text) for line in diff] == [
            (DiffKind.UNCHANGED, "a"),
            (DiffKind.REMOVED, "b"),
            (DiffKind.UNCHANGED, "c"),
        ]

    def test_every_line_accounted_for(self):
        old, new = "one\ntwo\nthree", "zero\ntwo\nfour\nfive"
        diff = compute_diff(old, new)
        kept_old = [l.text for l in diff if l.kind is not DiffKind.ADDED]
        kept_new = [l.text for l in diff if l.kind is not DiffKind.REMOVED]
        assert kept_old == old.split("\n")
        assert kept_new == new.split("\n")


class TestDiffEngine:
    """Tests for DiffEngine rendering."""

    def test_render(self):
        engine = DiffEngine()
        assert engine.render(engine.diff("a\nb", "a\nc")) == "  a\n- b\n+ c"

    def test_summarize(self):
        engine = DiffEngine()
        assert engine.summarize(engine.diff("a\nb\nc\nd", "a\nx\nc\ny")) == {"added": 2, "removed": 2}

    def test_preview(self):
        edit = ValidatedEdit(
            EditInstruction("A.md", "replace:2", "X"),
            resolved_path="A.md",
            current_content="L1\nL2\nL3",
            new_content="L1\nX\nL3",
        )
        assert DiffEngine().preview(edit) == "  L1\n- L2\n+ X\n  L3"

    def test_preview_of_failed_edit_is_empty(self):
        edit = ValidatedEdit(EditInstruction("A.md", "insert:9", "X"), error="Line 9 out of range")
        assert DiffEngine().preview(edit) == ""
