"""Heading-chunked embedding index for semantic note matches.

Notes are split at markdown headings, each chunk is embedded, and the
vectors are kept in SQLite next to the link table. Re-indexing reuses
stored vectors for chunks whose content hash did not change.
"""

from __future__ import annotations

import hashlib
import json
import logging
import re
import sqlite3
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from .embeddings import HashEmbeddingModel, cosine_similarity
from .models import SemanticMatch
from .storage import DocumentRepository

logger = logging.getLogger(__name__)

_HEADING_RE = re.compile(r"^(#{1,6})\s+(.+)$", re.MULTILINE)


@dataclass
class Chunk:
    heading: str
    content: str

    @property
    def hash(self) -> str:
        return hashlib.sha256(f"{self.heading}\n{self.content}".encode("utf-8")).hexdigest()

    @property
    def embedding_text(self) -> str:
        return f"{self.heading}\n\n{self.content}" if self.heading else self.content


def chunk_by_headings(content: str) -> List[Chunk]:
    """Split note content into chunks, one per heading section.

    Text before the first heading becomes a chunk with an empty heading;
    a note without headings is a single chunk. Blank chunks are dropped.
    """
    matches = list(_HEADING_RE.finditer(content))
    if not matches:
        trimmed = content.strip()
        return [Chunk("", trimmed)] if trimmed else []

    chunks: List[Chunk] = []
    preamble = content[: matches[0].start()].strip()
    if preamble:
        chunks.append(Chunk("", preamble))

    for i, match in enumerate(matches):
        end = matches[i + 1].start() if i + 1 < len(matches) else len(content)
        section = content[match.start():end].strip()
        if section:
            chunks.append(Chunk(match.group(0).strip(), section))
    return chunks


class SemanticIndex:
    """Embedding vectors for every chunk of every non-excluded note."""

    def __init__(self, db_path: Optional[Path] = None, embedder: Optional[Any] = None) -> None:
        self.db_path = db_path
        self.embedder = embedder or HashEmbeddingModel()
        self.conn = sqlite3.connect(str(db_path) if db_path else ":memory:")
        self.conn.row_factory = sqlite3.Row
        self._init_schema()

    def close(self) -> None:
        self.conn.close()

    def _init_schema(self) -> None:
        self.conn.execute("""
            CREATE TABLE IF NOT EXISTS chunks (
                path      TEXT NOT NULL,
                heading   TEXT NOT NULL,
                content   TEXT NOT NULL,
                hash      TEXT NOT NULL,
                embedding TEXT NOT NULL
            )
        """)
        self.conn.execute("CREATE INDEX IF NOT EXISTS idx_chunks_path ON chunks(path)")
        self.conn.commit()

    def count(self) -> int:
        return self.conn.execute("SELECT COUNT(*) FROM chunks").fetchone()[0]

    def is_empty(self) -> bool:
        return self.count() == 0

    def reindex(self, repository: DocumentRepository) -> Dict[str, int]:
        """Rebuild the index from *repository*, reusing unchanged vectors.

        Returns:
            Stats dict with ``documents``, ``updated`` and ``reused`` counts.
        """
        existing: Dict[tuple, str] = {
            (row["path"], row["hash"]): row["embedding"]
            for row in self.conn.execute("SELECT path, hash, embedding FROM chunks")
        }

        rows: List[tuple] = []
        updated = reused = documents = 0
        for doc in repository.list_documents():
            if repository.is_excluded(doc.path):
                continue
            try:
                content = repository.read(doc.path)
            except OSError as exc:
                logger.warning("Skipping unreadable note %s: %s", doc.path, exc)
                continue
            documents += 1
            for chunk in chunk_by_headings(content):
                digest = chunk.hash
                stored = existing.get((doc.path, digest))
                if stored is not None:
                    rows.append((doc.path, chunk.heading, chunk.content, digest, stored))
                    reused += 1
                    continue
                vector = self.embedder.embed_text(chunk.embedding_text)
                rows.append((doc.path, chunk.heading, chunk.content, digest, json.dumps(vector)))
                updated += 1

        cur = self.conn.cursor()
        cur.execute("DELETE FROM chunks")
        cur.executemany(
            "INSERT INTO chunks (path, heading, content, hash, embedding) VALUES (?, ?, ?, ?, ?)",
            rows,
        )
        self.conn.commit()
        logger.info(
            "Semantic index: %d notes, %d chunks embedded, %d reused",
            documents, updated, reused,
        )
        return {"documents": documents, "updated": updated, "reused": reused}

    def embed_query(self, text: str) -> List[float]:
        return self.embedder.embed_text(text)

    def search(
        self,
        query_vector: List[float],
        exclude_paths: Iterable[str] = (),
        top_k: int = 5,
        min_similarity: Optional[float] = None,
    ) -> List[SemanticMatch]:
        """Top-*k* notes by best chunk similarity.

        Args:
            query_vector:   Embedding of the query text.
            exclude_paths:  Notes that must not be returned (already in context).
            top_k:          Maximum number of distinct notes.
            min_similarity: Optional threshold in ``[0, 1]``.

        Returns:
            Matches ordered by descending score (ties by path), one per note.
        """
        excluded = set(exclude_paths)
        scored: List[SemanticMatch] = []
        for row in self.conn.execute("SELECT path, heading, embedding FROM chunks"):
            if row["path"] in excluded:
                continue
            score = cosine_similarity(query_vector, json.loads(row["embedding"]))
            if min_similarity is not None and score < min_similarity:
                continue
            scored.append(SemanticMatch(row["path"], score, row["heading"]))

        scored.sort(key=lambda m: (-m.score, m.path))

        seen = set()
        results: List[SemanticMatch] = []
        for match in scored:
            if match.path in seen:
                continue
            seen.add(match.path)
            results.append(match)
            if len(results) >= top_k:
                break
        return results
