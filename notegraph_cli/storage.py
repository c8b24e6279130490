"""Persistence layer for markdown vaults.

Architecture:
- **Filesystem** holds the notes themselves (``*.md`` under the vault root).
- **SQLite** holds the resolved link table (source → target, count), rebuilt
  by :meth:`VaultStore.reindex_links` and used for backlink lookups.

Everything above this module talks to the abstract
:class:`DocumentRepository`, so alternative hosts can plug in their own
storage and link index.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from abc import ABC, abstractmethod
from pathlib import Path, PurePosixPath
from typing import Dict, Iterable, List, Optional

from . import config
from .links import extract_links, resolve_link
from .models import Document, DocumentNotFoundError, LinkEdge

logger = logging.getLogger(__name__)

# Directories never treated as part of the vault
_SKIP_DIRS = {".git", ".obsidian", ".notegraph", ".trash", "node_modules", "__pycache__"}


def is_path_excluded(path: str, excluded_folders: Iterable[str]) -> bool:
    """True if *path* lies inside one of *excluded_folders* (at any depth)."""
    for folder in excluded_folders:
        if not folder:
            continue
        normalized = folder if folder.endswith("/") else folder + "/"
        if path.startswith(normalized):
            return True
        parent = path.rpartition("/")[0]
        if parent == folder.rstrip("/"):
            return True
    return False


# ===================================================================
# DocumentRepository  (abstract collaborator)
# ===================================================================

class DocumentRepository(ABC):
    """What traversal, context assembly, and edit handling need from storage."""

    def __init__(self, excluded_folders: Optional[Iterable[str]] = None) -> None:
        self.excluded_folders: List[str] = [f for f in (excluded_folders or []) if f]

    def is_excluded(self, path: str) -> bool:
        return is_path_excluded(path, self.excluded_folders)

    @abstractmethod
    def list_documents(self) -> List[Document]:
        """All documents, in a stable order."""

    @abstractmethod
    def get_document(self, path: str) -> Optional[Document]:
        ...

    @abstractmethod
    def exists(self, path: str) -> bool:
        """True for an existing document *or* folder."""

    @abstractmethod
    def read(self, path: str) -> str:
        ...

    @abstractmethod
    def write(self, path: str, content: str) -> None:
        ...

    @abstractmethod
    def create(self, path: str, content: str) -> Document:
        ...

    @abstractmethod
    def create_folder(self, folder: str) -> None:
        ...

    @abstractmethod
    def delete(self, path: str) -> None:
        ...

    @abstractmethod
    def forward_links(self, path: str, all_paths: Optional[List[str]] = None) -> List[str]:
        """Resolved outgoing link targets of a document.

        *all_paths* is the vault listing to resolve against, listed on
        demand when omitted.
        """

    @abstractmethod
    def resolved_links(self) -> Optional[Dict[str, Dict[str, int]]]:
        """``{source: {target: count}}``, or ``None`` when not indexed yet."""

    def list_paths(self) -> List[str]:
        return [doc.path for doc in self.list_documents()]


# ===================================================================
# VaultStore  (filesystem + SQLite link table)
# ===================================================================

class VaultStore(DocumentRepository):
    """A vault of markdown notes on disk with a SQLite link table."""

    def __init__(
        self,
        vault_root: Path,
        excluded_folders: Optional[Iterable[str]] = None,
        db_path: Optional[Path] = None,
    ) -> None:
        super().__init__(excluded_folders)
        self.vault_root = Path(vault_root).resolve()
        if not self.vault_root.is_dir():
            raise NotADirectoryError(f"Vault root is not a directory: {self.vault_root}")
        self.db_path = db_path
        self.conn = sqlite3.connect(str(db_path) if db_path else ":memory:")
        self.conn.row_factory = sqlite3.Row
        self._init_schema()

    def close(self) -> None:
        self.conn.close()

    # ------------------------------------------------------------------
    # Schema
    # ------------------------------------------------------------------

    def _init_schema(self) -> None:
        cur = self.conn.cursor()
        cur.execute("""
            CREATE TABLE IF NOT EXISTS links (
                source TEXT NOT NULL,
                target TEXT NOT NULL,
                count  INTEGER NOT NULL DEFAULT 1,
                PRIMARY KEY (source, target)
            )
        """)
        cur.execute("""
            CREATE TABLE IF NOT EXISTS meta (
                key   TEXT PRIMARY KEY,
                value TEXT NOT NULL
            )
        """)
        cur.execute("CREATE INDEX IF NOT EXISTS idx_links_target ON links(target)")
        self.conn.commit()

    # ------------------------------------------------------------------
    # Paths
    # ------------------------------------------------------------------

    def _abs(self, path: str) -> Path:
        rel = PurePosixPath(path.strip().lstrip("/"))
        if not rel.parts or ".." in rel.parts:
            raise ValueError(f"Invalid vault path: {path!r}")
        return self.vault_root.joinpath(*rel.parts)

    def _rel(self, abs_path: Path) -> str:
        return abs_path.relative_to(self.vault_root).as_posix()

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    def list_documents(self) -> List[Document]:
        docs: List[Document] = []
        for file_path in self.vault_root.rglob(f"*{config.NOTE_EXTENSION}"):
            rel_parts = file_path.relative_to(self.vault_root).parts
            if any(part in _SKIP_DIRS for part in rel_parts):
                continue
            if file_path.is_file():
                docs.append(Document.from_path(self._rel(file_path)))
        return sorted(docs, key=lambda d: d.path)

    def get_document(self, path: str) -> Optional[Document]:
        try:
            abs_path = self._abs(path)
        except ValueError:
            return None
        if abs_path.is_file():
            return Document.from_path(self._rel(abs_path))
        return None

    def exists(self, path: str) -> bool:
        try:
            return self._abs(path).exists()
        except ValueError:
            return False

    def read(self, path: str) -> str:
        abs_path = self._abs(path)
        if not abs_path.is_file():
            raise DocumentNotFoundError(f"Document not found: {path}")
        return abs_path.read_text(encoding="utf-8")

    def write(self, path: str, content: str) -> None:
        abs_path = self._abs(path)
        if not abs_path.is_file():
            raise DocumentNotFoundError(f"Document not found: {path}")
        abs_path.write_text(content, encoding="utf-8")

    def create(self, path: str, content: str) -> Document:
        abs_path = self._abs(path)
        if abs_path.exists():
            raise FileExistsError(f"Document already exists: {path}")
        if not abs_path.parent.is_dir():
            raise DocumentNotFoundError(f"Folder not found: {abs_path.parent}")
        abs_path.write_text(content, encoding="utf-8")
        return Document.from_path(self._rel(abs_path))

    def create_folder(self, folder: str) -> None:
        self._abs(folder).mkdir(parents=True, exist_ok=True)

    def delete(self, path: str) -> None:
        abs_path = self._abs(path)
        if not abs_path.is_file():
            raise DocumentNotFoundError(f"Document not found: {path}")
        abs_path.unlink()

    # ------------------------------------------------------------------
    # Links
    # ------------------------------------------------------------------

    def forward_links(self, path: str, all_paths: Optional[List[str]] = None) -> List[str]:
        try:
            content = self.read(path)
        except (OSError, ValueError) as exc:
            logger.debug("No forward links for %s: %s", path, exc)
            return []
        if all_paths is None:
            all_paths = self.list_paths()
        resolved: List[str] = []
        for link_text in extract_links(content):
            target = resolve_link(link_text, path, all_paths, config.NOTE_EXTENSION)
            if target and target not in resolved:
                resolved.append(target)
        return resolved

    def reindex_links(self) -> Dict[str, int]:
        """Rebuild the link table by scanning every document.

        Returns:
            Stats dict with ``documents`` and ``links`` counts.
        """
        all_paths = self.list_paths()
        rows: List[tuple] = []
        for source in all_paths:
            try:
                content = self.read(source)
            except OSError as exc:
                logger.warning("Skipping unreadable document %s: %s", source, exc)
                continue
            counts: Dict[str, int] = {}
            for link_text in extract_links(content):
                target = resolve_link(link_text, source, all_paths, config.NOTE_EXTENSION)
                if target:
                    counts[target] = counts.get(target, 0) + 1
            rows.extend((source, target, count) for target, count in counts.items())

        cur = self.conn.cursor()
        cur.execute("DELETE FROM links")
        cur.executemany("INSERT INTO links (source, target, count) VALUES (?, ?, ?)", rows)
        cur.execute(
            "INSERT OR REPLACE INTO meta (key, value) VALUES ('links_indexed', '1')"
        )
        self.conn.commit()

        logger.info("Indexed %d links across %d documents", len(rows), len(all_paths))
        return {"documents": len(all_paths), "links": len(rows)}

    def resolved_links(self) -> Optional[Dict[str, Dict[str, int]]]:
        indexed = self.conn.execute(
            "SELECT value FROM meta WHERE key = 'links_indexed'"
        ).fetchone()
        if indexed is None:
            return None
        table: Dict[str, Dict[str, int]] = {}
        for row in self.conn.execute("SELECT source, target, count FROM links ORDER BY source, target"):
            table.setdefault(row["source"], {})[row["target"]] = row["count"]
        return table

    def get_edges(self) -> List[LinkEdge]:
        return [
            LinkEdge(row["source"], row["target"])
            for row in self.conn.execute("SELECT source, target FROM links ORDER BY source, target")
        ]


# ===================================================================
# VaultManager  (registry of named vaults / active vault)
# ===================================================================

class VaultManager:
    """Manage registered vaults and the active vault."""

    def __init__(self) -> None:
        config.ensure_base_dirs()

    def list_vaults(self) -> List[str]:
        if not config.VAULTS_DIR.exists():
            return []
        return sorted(p.name for p in config.VAULTS_DIR.iterdir() if p.is_dir())

    def vault_dir(self, name: str) -> Path:
        return config.VAULTS_DIR / name

    def register(self, name: str, root: Path) -> Path:
        root = Path(root).expanduser().resolve()
        if not root.is_dir():
            raise NotADirectoryError(f"Not a directory: {root}")
        path = self.vault_dir(name)
        path.mkdir(parents=True, exist_ok=True)
        (path / "vault.json").write_text(
            json.dumps({"name": name, "root": str(root)}, indent=2),
            encoding="utf-8",
        )
        return path

    def vault_root(self, name: str) -> Optional[Path]:
        meta = self.vault_dir(name) / "vault.json"
        if not meta.exists():
            return None
        try:
            payload = json.loads(meta.read_text(encoding="utf-8"))
        except json.JSONDecodeError:
            return None
        root = payload.get("root")
        return Path(root) if root else None

    def set_current(self, name: str) -> None:
        config.ensure_base_dirs()
        config.STATE_FILE.write_text(
            json.dumps({"current_vault": name}, indent=2),
            encoding="utf-8",
        )

    def get_current(self) -> Optional[str]:
        if not config.STATE_FILE.exists():
            return None
        try:
            payload = json.loads(config.STATE_FILE.read_text(encoding="utf-8"))
        except json.JSONDecodeError:
            return None
        return payload.get("current_vault")

    def unregister(self, name: str) -> bool:
        path = self.vault_dir(name)
        if not path.exists():
            return False
        for child in sorted(path.glob("**/*"), reverse=True):
            if child.is_file():
                child.unlink()
            elif child.is_dir():
                child.rmdir()
        path.rmdir()
        if self.get_current() == name:
            config.STATE_FILE.write_text(
                json.dumps({"current_vault": None}, indent=2),
                encoding="utf-8",
            )
        return True

    def open_store(self, name: str, excluded_folders: Optional[Iterable[str]] = None) -> VaultStore:
        root = self.vault_root(name)
        if root is None:
            raise DocumentNotFoundError(f"Vault '{name}' is not registered")
        return VaultStore(root, excluded_folders, db_path=self.vault_dir(name) / "links.db")
