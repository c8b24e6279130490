"""Pytest configuration and fixtures for NoteGraph CLI tests."""

import shutil
import tempfile
from pathlib import Path
from typing import Dict, Generator

import pytest

from notegraph_cli.storage import VaultStore

# Vault layout used across the suite:
#
#   Home -> Projects/Alpha -> Projects/Beta -> Private/secret (excluded) -> Hidden
#   Home -> Ideas -> Reading <- Private/secret
#   Orphan (no links)
SAMPLE_NOTES: Dict[str, str] = {
    "Home.md": "# Home\n\nSee [[Projects/Alpha]] and [[Ideas]].",
    "Ideas.md": "# Ideas\n\nRandom thoughts about gardening.\nLink to [[Reading]]",
    "Reading.md": "# Reading\n\nBooks list.",
    "Orphan.md": "# Orphan\n\nNo links here.",
    "Hidden.md": "# Hidden\n\nOnly reachable via the secret note.",
    "Projects/Alpha.md": "# Alpha\n\nProject alpha plan, see [[Beta]].\n\n## Tasks\n- one\n- two",
    "Projects/Beta.md": "# Beta\n\nBeta notes. Mentions [[Private/secret]].",
    "Private/secret.md": "# Secret\n\nDo not share. See [[Reading]] and [[Hidden]].",
}


def write_notes(root: Path, notes: Dict[str, str]) -> None:
    for rel, content in notes.items():
        path = root / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    tmp = Path(tempfile.mkdtemp())
    yield tmp
    shutil.rmtree(tmp, ignore_errors=True)


@pytest.fixture
def temp_home(temp_dir: Path, monkeypatch) -> Path:
    """Point NoteGraph's home directory (vault registry, config) at a temp dir."""
    home = temp_dir / "home"
    monkeypatch.setattr("notegraph_cli.config.BASE_DIR", home)
    monkeypatch.setattr("notegraph_cli.config.VAULTS_DIR", home / "vaults")
    monkeypatch.setattr("notegraph_cli.config.STATE_FILE", home / "state.json")
    monkeypatch.setattr("notegraph_cli.config.CONFIG_FILE", home / "config.toml")
    return home


@pytest.fixture
def vault(temp_dir: Path) -> Path:
    """A small vault of interlinked notes on disk."""
    root = temp_dir / "vault"
    root.mkdir()
    write_notes(root, SAMPLE_NOTES)
    return root


@pytest.fixture
def store(vault: Path) -> Generator[VaultStore, None, None]:
    """VaultStore over the sample vault with ``Private`` excluded and links indexed."""
    s = VaultStore(vault, excluded_folders=["Private"])
    s.reindex_links()
    yield s
    s.close()
