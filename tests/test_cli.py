"""Integration tests for CLI commands."""

import json
from pathlib import Path

import pytest
from typer.testing import CliRunner

from notegraph_cli.cli import app
from notegraph_cli.context_builder import TASK_HEADER_OPEN
from notegraph_cli.edit_manager import extract_edits, extract_new_note_ids


runner = CliRunner()


def write_response(path: Path, edits, summary="Test edits") -> Path:
    path.write_text(json.dumps({"edits": edits, "summary": summary}), encoding="utf-8")
    return path


@pytest.fixture
def cli_vault(temp_home: Path, vault: Path) -> Path:
    """Sample vault registered as 'notes', with Private excluded and indexes built."""
    assert runner.invoke(app, ["vault", "add", str(vault), "--name", "notes"]).exit_code == 0
    assert runner.invoke(app, ["config", "exclude", "Private"]).exit_code == 0
    assert runner.invoke(app, ["index"]).exit_code == 0
    return vault


class TestTopLevel:
    def test_version(self):
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert "NoteGraph CLI v" in result.output

    def test_no_vault_selected(self, temp_home: Path):
        """Commands needing a vault fail cleanly without one."""
        result = runner.invoke(app, ["index"])
        assert result.exit_code != 0


class TestVaultCommands:
    """Tests for 'ng vault' commands."""

    def test_list_empty(self, temp_home: Path):
        result = runner.invoke(app, ["vault", "list"])
        assert result.exit_code == 0
        assert "No vaults registered yet." in result.output

    def test_add_and_list(self, temp_home: Path, vault: Path):
        result = runner.invoke(app, ["vault", "add", str(vault), "--name", "notes"])
        assert result.exit_code == 0
        assert "Registered vault 'notes'" in result.output

        result = runner.invoke(app, ["vault", "list"])
        assert "* notes" in result.output

    def test_add_missing_folder(self, temp_home: Path, temp_dir: Path):
        result = runner.invoke(app, ["vault", "add", str(temp_dir / "nope")])
        assert result.exit_code != 0

    def test_use_unknown(self, temp_home: Path):
        result = runner.invoke(app, ["vault", "use", "ghost"])
        assert result.exit_code != 0

    def test_use_and_remove(self, temp_home: Path, vault: Path):
        runner.invoke(app, ["vault", "add", str(vault), "--name", "notes", "--no-use"])
        result = runner.invoke(app, ["vault", "use", "notes"])
        assert "Using vault 'notes'." in result.output

        result = runner.invoke(app, ["vault", "remove", "notes"])
        assert result.exit_code == 0
        assert runner.invoke(app, ["vault", "list"]).output.strip() == "No vaults registered yet."
        assert (vault / "Home.md").exists()


class TestIndexAndLinks:
    """Tests for 'ng index' and 'ng links'."""

    def test_index(self, temp_home: Path, vault: Path):
        runner.invoke(app, ["vault", "add", str(vault), "--name", "notes"])
        runner.invoke(app, ["config", "exclude", "Private"])
        result = runner.invoke(app, ["index"])
        assert result.exit_code == 0
        assert "Notes: 8 | Links: 7" in result.output
        assert "Semantic chunks: 8 embedded, 0 unchanged" in result.output

        result = runner.invoke(app, ["index"])
        assert "Semantic chunks: 0 embedded, 8 unchanged" in result.output

    def test_index_links_only(self, temp_home: Path, vault: Path):
        runner.invoke(app, ["vault", "add", str(vault), "--name", "notes"])
        result = runner.invoke(app, ["index", "--no-semantic"])
        assert result.exit_code == 0
        assert "Semantic" not in result.output

    def test_links(self, cli_vault: Path):
        result = runner.invoke(app, ["links", "Home", "--depth", "2"])
        assert result.exit_code == 0
        assert "Projects/Beta.md" in result.output
        assert "Reading.md" in result.output

    def test_links_none(self, cli_vault: Path):
        result = runner.invoke(app, ["links", "Orphan"])
        assert "No linked notes within 1 hop(s) of Orphan.md." in result.output

    def test_links_unknown_note(self, cli_vault: Path):
        assert runner.invoke(app, ["links", "Nowhere"]).exit_code != 0


class TestContextCommand:
    """Tests for 'ng context'."""

    def test_context(self, cli_vault: Path):
        result = runner.invoke(app, ["context", "Home", "--task", "Summarize", "--depth", "1"])
        assert result.exit_code == 0
        assert TASK_HEADER_OPEN in result.output
        assert '--- FILE: "Home.md" (Current Note: "Home") ---' in result.output
        assert '--- FILE: "Alpha.md" (Linked Note: "Alpha") ---' in result.output
        assert "Beta.md" not in result.output

    def test_count(self, cli_vault: Path):
        result = runner.invoke(app, ["context", "Home", "--depth", "2", "--count"])
        assert result.output.strip() == "5 note(s) included, 0 excluded"

    def test_count_with_excluded_pin(self, cli_vault: Path):
        result = runner.invoke(app, ["context", "Home", "--depth", "2", "--add", "Private/secret.md", "--count"])
        assert result.output.strip() == "5 note(s) included, 1 excluded"

    def test_budget_drops_notes(self, cli_vault: Path):
        result = runner.invoke(app, ["context", "Home", "--depth", "1", "--budget", "100", "--overhead", "0"])
        assert result.exit_code == 0
        assert "Dropped" in result.output

    def test_invalid_depth(self, cli_vault: Path):
        assert runner.invoke(app, ["context", "Home", "--depth", "7"]).exit_code != 0

    def test_invalid_budget(self, cli_vault: Path):
        assert runner.invoke(app, ["context", "Home", "--budget", "0"]).exit_code != 0

    def test_semantic_matches(self, cli_vault: Path):
        result = runner.invoke(
            app, ["context", "Orphan", "--depth", "0", "--semantic", "2", "--min-similarity", "0", "--task", "books"]
        )
        assert result.exit_code == 0
        assert "Semantic Match" in result.output
        assert "secret.md" not in result.output


class TestEditCommands:
    """Tests for validate, apply, pending, accept and reject."""

    def test_validate(self, cli_vault: Path, temp_dir: Path):
        response = write_response(temp_dir / "edits.json", [
            {"file": "Reading.md", "position": "end", "content": "Dune"},
            {"file": "Missing.md", "position": "end", "content": "x"},
        ])
        result = runner.invoke(app, ["validate", str(response)])
        assert result.exit_code == 0
        assert "Test edits" in result.output
        assert "+ Dune" in result.output
        assert (cli_vault / "Reading.md").read_text(encoding="utf-8") == "# Reading\n\nBooks list."

    def test_validate_bad_json(self, cli_vault: Path, temp_dir: Path):
        bad = temp_dir / "bad.json"
        bad.write_text("not json", encoding="utf-8")
        assert runner.invoke(app, ["validate", str(bad)]).exit_code == 1

    def test_apply_then_accept_all(self, cli_vault: Path, temp_dir: Path):
        response = write_response(temp_dir / "edits.json", [
            {"file": "Reading.md", "position": "end", "content": "Dune"},
        ])
        result = runner.invoke(app, ["apply", str(response), "--yes"])
        assert result.exit_code == 0
        assert "Inserted 1 edit(s)" in result.output
        assert len(extract_edits((cli_vault / "Reading.md").read_text(encoding="utf-8"))) == 1

        result = runner.invoke(app, ["pending"])
        assert "Reading.md" in result.output

        result = runner.invoke(app, ["accept", "--all"])
        assert "Accepted 1 pending edit(s)." in result.output
        assert (cli_vault / "Reading.md").read_text(encoding="utf-8") == "# Reading\n\nBooks list.\n\nDune\n"
        assert "No pending edits." in runner.invoke(app, ["pending"]).output

    def test_apply_declined(self, cli_vault: Path, temp_dir: Path):
        response = write_response(temp_dir / "edits.json", [
            {"file": "Reading.md", "position": "end", "content": "Dune"},
        ])
        result = runner.invoke(app, ["apply", str(response)], input="n\n")
        assert "No changes made." in result.output
        assert (cli_vault / "Reading.md").read_text(encoding="utf-8") == "# Reading\n\nBooks list."

    def test_apply_outside_scope(self, cli_vault: Path, temp_dir: Path):
        """Edits to notes outside the editable scope are refused."""
        response = write_response(temp_dir / "edits.json", [
            {"file": "Orphan.md", "position": "end", "content": "x"},
        ])
        result = runner.invoke(app, ["apply", str(response), "--yes", "--current", "Home"])
        assert result.exit_code == 1
        assert (cli_vault / "Orphan.md").read_text(encoding="utf-8") == "# Orphan\n\nNo links here."

    def test_apply_capability_disabled(self, cli_vault: Path, temp_dir: Path):
        response = write_response(temp_dir / "edits.json", [
            {"file": "Home.md", "position": "end", "content": "x"},
        ])
        result = runner.invoke(
            app, ["apply", str(response), "--yes", "--current", "Home", "--scope", "current", "--no-add"]
        )
        assert result.exit_code == 1

    def test_apply_new_note_and_reject(self, cli_vault: Path, temp_dir: Path):
        response = write_response(temp_dir / "edits.json", [
            {"file": "Inbox/Idea.md", "position": "create", "content": "Hello"},
        ])
        assert runner.invoke(app, ["apply", str(response), "--yes"]).exit_code == 0
        note = cli_vault / "Inbox" / "Idea.md"
        [note_id] = extract_new_note_ids(note.read_text(encoding="utf-8"))

        result = runner.invoke(app, ["reject", "Inbox/Idea.md", note_id])
        assert result.exit_code == 0
        assert not note.exists()

    def test_accept_by_id_and_reject_next(self, cli_vault: Path, temp_dir: Path):
        response = write_response(temp_dir / "edits.json", [
            {"file": "Ideas.md", "position": "start", "content": "Top"},
            {"file": "Ideas.md", "position": "replace:3", "content": "Tomatoes."},
        ])
        runner.invoke(app, ["apply", str(response), "--yes"])
        records = extract_edits((cli_vault / "Ideas.md").read_text(encoding="utf-8"))
        replace_id = next(r.id for r in records if r.kind.value == "replace")

        result = runner.invoke(app, ["accept", "Ideas.md", replace_id])
        assert f"Accepted edit {replace_id} in Ideas.md." in result.output

        result = runner.invoke(app, ["reject", "Ideas"])
        assert "Rejected next edit in Ideas.md." in result.output
        assert (cli_vault / "Ideas.md").read_text(encoding="utf-8") == (
            "# Ideas\n\nTomatoes.\nLink to [[Reading]]"
        )

    def test_unknown_edit_id(self, cli_vault: Path):
        assert runner.invoke(app, ["accept", "Home.md", "nosuchid"]).exit_code == 1

    def test_accept_needs_target(self, cli_vault: Path):
        assert runner.invoke(app, ["accept"]).exit_code != 0

    def test_custom_tag(self, cli_vault: Path, temp_dir: Path):
        assert runner.invoke(app, ["config", "set-tag", "#review"]).exit_code == 0
        response = write_response(temp_dir / "edits.json", [
            {"file": "Reading.md", "position": "end", "content": "Dune"},
        ])
        runner.invoke(app, ["apply", str(response), "--yes"])
        assert (cli_vault / "Reading.md").read_text(encoding="utf-8").endswith("```\n#review")


class TestDiffCommand:
    def test_diff(self, temp_dir: Path):
        old = temp_dir / "old.md"
        new = temp_dir / "new.md"
        old.write_text("a\nb", encoding="utf-8")
        new.write_text("a\nc", encoding="utf-8")
        result = runner.invoke(app, ["diff", str(old), str(new)])
        assert result.exit_code == 0
        assert "- b" in result.output
        assert "+ c" in result.output


class TestConfigCommands:
    """Tests for 'ng config' commands."""

    def test_show(self, temp_home: Path):
        result = runner.invoke(app, ["config", "show"])
        assert result.exit_code == 0
        assert "pending_edit_tag" in result.output

    def test_exclude_and_include(self, temp_home: Path):
        assert "Excluded 'Archive'." in runner.invoke(app, ["config", "exclude", "Archive"]).output
        assert "'Archive' is already excluded." in runner.invoke(app, ["config", "exclude", "Archive"]).output
        assert "no longer excluded" in runner.invoke(app, ["config", "include", "Archive"]).output
        assert "was not excluded" in runner.invoke(app, ["config", "include", "Archive"]).output

    def test_empty_tag_rejected(self, temp_home: Path):
        assert runner.invoke(app, ["config", "set-tag", "   "]).exit_code != 0
