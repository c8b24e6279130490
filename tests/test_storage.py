"""Tests for storage layer (VaultManager and VaultStore)."""

import json
from pathlib import Path

import pytest

from notegraph_cli import config
from notegraph_cli.models import DocumentNotFoundError, LinkEdge
from notegraph_cli.storage import VaultManager, VaultStore, is_path_excluded


class TestIsPathExcluded:
    """Tests for folder exclusion matching."""

    def test_direct_child(self):
        assert is_path_excluded("Private/a.md", ["Private"])

    def test_nested_child(self):
        assert is_path_excluded("Private/sub/deep/a.md", ["Private"])

    def test_trailing_slash_in_config(self):
        assert is_path_excluded("Private/a.md", ["Private/"])

    def test_similar_prefix_not_excluded(self):
        """A folder whose name merely starts with the excluded name is not excluded."""
        assert not is_path_excluded("Private2/a.md", ["Private"])

    def test_same_name_deeper_not_excluded(self):
        """Exclusion is anchored at the vault root."""
        assert not is_path_excluded("Work/Private/a.md", ["Private"])

    def test_empty_entries_ignored(self):
        assert not is_path_excluded("a.md", ["", "Other"])


class TestVaultStore:
    """Tests for VaultStore."""

    def test_list_documents_sorted(self, store: VaultStore):
        """Documents are listed in path order, including excluded ones."""
        paths = store.list_paths()
        assert paths == sorted(paths)
        assert "Private/secret.md" in paths
        assert len(paths) == 8

    def test_hidden_dirs_skipped(self, vault: Path):
        """Notes inside app folders such as .obsidian are not part of the vault."""
        (vault / ".obsidian").mkdir()
        (vault / ".obsidian" / "workspace.md").write_text("x", encoding="utf-8")
        s = VaultStore(vault)
        assert ".obsidian/workspace.md" not in s.list_paths()
        s.close()

    def test_get_document(self, store: VaultStore):
        doc = store.get_document("Projects/Alpha.md")
        assert doc is not None
        assert doc.name == "Alpha.md"
        assert doc.basename == "Alpha"
        assert doc.folder == "Projects"
        assert store.get_document("Nope.md") is None
        assert store.get_document("../outside.md") is None

    def test_read_write(self, store: VaultStore):
        store.write("Reading.md", "changed")
        assert store.read("Reading.md") == "changed"

    def test_read_missing_raises(self, store: VaultStore):
        with pytest.raises(DocumentNotFoundError):
            store.read("Missing.md")

    def test_write_missing_raises(self, store: VaultStore):
        """write() only updates existing notes."""
        with pytest.raises(DocumentNotFoundError):
            store.write("Missing.md", "x")

    def test_path_escape_rejected(self, store: VaultStore):
        with pytest.raises(ValueError):
            store.read("../secret.md")

    def test_create_and_delete(self, store: VaultStore):
        doc = store.create("New.md", "hello")
        assert doc.path == "New.md"
        assert store.read("New.md") == "hello"
        store.delete("New.md")
        assert not store.exists("New.md")

    def test_create_existing_raises(self, store: VaultStore):
        with pytest.raises(FileExistsError):
            store.create("Home.md", "x")

    def test_create_without_folder_raises(self, store: VaultStore):
        with pytest.raises(DocumentNotFoundError):
            store.create("Nowhere/New.md", "x")

    def test_create_folder(self, store: VaultStore):
        store.create_folder("A/B")
        assert store.exists("A/B")
        store.create("A/B/Note.md", "x")
        assert store.get_document("A/B/Note.md") is not None

    def test_forward_links(self, store: VaultStore):
        """Forward links are resolved to vault paths."""
        assert store.forward_links("Home.md") == ["Projects/Alpha.md", "Ideas.md"]
        assert store.forward_links("Projects/Alpha.md") == ["Projects/Beta.md"]
        assert store.forward_links("Orphan.md") == []
        assert store.forward_links("Missing.md") == []

    def test_resolved_links_requires_index(self, vault: Path):
        """The link table reads as unavailable until it has been built."""
        s = VaultStore(vault)
        assert s.resolved_links() is None
        stats = s.reindex_links()
        assert stats == {"documents": 8, "links": 7}
        table = s.resolved_links()
        assert table["Home.md"] == {"Ideas.md": 1, "Projects/Alpha.md": 1}
        assert table["Private/secret.md"] == {"Hidden.md": 1, "Reading.md": 1}
        s.close()

    def test_get_edges(self, store: VaultStore):
        edges = store.get_edges()
        assert LinkEdge("Projects/Alpha.md", "Projects/Beta.md") in edges
        assert len(edges) == 7

    def test_link_table_persists(self, vault: Path, temp_dir: Path):
        """A file-backed link table survives reopening."""
        db = temp_dir / "links.db"
        s = VaultStore(vault, db_path=db)
        s.reindex_links()
        s.close()
        reopened = VaultStore(vault, db_path=db)
        assert reopened.resolved_links() is not None
        reopened.close()

    def test_not_a_directory(self, temp_dir: Path):
        with pytest.raises(NotADirectoryError):
            VaultStore(temp_dir / "missing")


class TestVaultManager:
    """Tests for VaultManager."""

    def test_register_and_list(self, temp_home: Path, vault: Path):
        vm = VaultManager()
        assert vm.list_vaults() == []
        vm.register("notes", vault)
        assert vm.list_vaults() == ["notes"]
        assert vm.vault_root("notes") == vault.resolve()
        meta = json.loads((config.VAULTS_DIR / "notes" / "vault.json").read_text(encoding="utf-8"))
        assert meta["name"] == "notes"

    def test_register_missing_folder(self, temp_home: Path, temp_dir: Path):
        with pytest.raises(NotADirectoryError):
            VaultManager().register("bad", temp_dir / "nope")

    def test_set_and_get_current(self, temp_home: Path, vault: Path):
        vm = VaultManager()
        assert vm.get_current() is None
        vm.register("notes", vault)
        vm.set_current("notes")
        assert vm.get_current() == "notes"

    def test_unregister_clears_current(self, temp_home: Path, vault: Path):
        vm = VaultManager()
        vm.register("notes", vault)
        vm.set_current("notes")
        assert vm.unregister("notes") is True
        assert vm.list_vaults() == []
        assert vm.get_current() is None
        assert vault.exists()

    def test_unregister_unknown(self, temp_home: Path):
        assert VaultManager().unregister("nope") is False

    def test_open_store(self, temp_home: Path, vault: Path):
        vm = VaultManager()
        vm.register("notes", vault)
        s = vm.open_store("notes", ["Private"])
        assert s.is_excluded("Private/secret.md")
        assert s.db_path == config.VAULTS_DIR / "notes" / "links.db"
        s.close()

    def test_open_unknown_store(self, temp_home: Path):
        with pytest.raises(DocumentNotFoundError):
            VaultManager().open_store("nope")
