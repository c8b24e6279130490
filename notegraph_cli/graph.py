"""Link graph traversal over forward links and backlinks.

Excluded folders act as *walls*: a note inside one is neither returned nor
expanded, so links that only pass through it are not followed either.
"""

from __future__ import annotations

import logging
import sqlite3
import time
from collections import deque
from typing import Callable, Deque, Dict, List, Optional, Tuple

from . import config
from .storage import DocumentRepository

logger = logging.getLogger(__name__)


class BacklinkIndex:
    """Time-bounded cache mapping target path → source paths.

    Built from the repository's resolved-link table on first use and
    rebuilt once older than ``ttl_seconds``. Call :meth:`invalidate` after
    writing to the repository to force a rebuild on the next lookup.
    """

    def __init__(
        self,
        repository: DocumentRepository,
        ttl_seconds: float = config.BACKLINK_CACHE_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.repository = repository
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._index: Optional[Dict[str, List[str]]] = None
        self.built_at: float = 0.0
        self.rebuild_count = 0

    @property
    def is_stale(self) -> bool:
        return self._index is None or (self._clock() - self.built_at) >= self.ttl_seconds

    def invalidate(self) -> None:
        self._index = None

    def _rebuild(self) -> Dict[str, List[str]]:
        try:
            table = self.repository.resolved_links()
        except (OSError, sqlite3.Error) as exc:
            logger.warning("Link table unavailable, treating as empty: %s", exc)
            table = None

        if table is None:
            # Not cached, so the next lookup retries
            logger.warning("Resolved links unavailable; link index may not be built yet")
            return {}

        index: Dict[str, List[str]] = {}
        for source, targets in table.items():
            for target in targets:
                index.setdefault(target, []).append(source)

        self._index = index
        self.built_at = self._clock()
        self.rebuild_count += 1
        logger.debug(
            "Built backlink index: %d targets, %d links",
            len(index), sum(len(v) for v in index.values()),
        )
        return index

    def get(self, path: str) -> List[str]:
        index = self._rebuild() if self.is_stale else self._index
        return list(index.get(path, []))


class LinkGraphWalker:
    """Breadth-first traversal of the link graph with exclusion walls."""

    def __init__(self, repository: DocumentRepository, backlinks: Optional[BacklinkIndex] = None) -> None:
        self.repository = repository
        self.backlinks = backlinks or BacklinkIndex(repository)

    def traverse_with_depth(self, start_path: str, max_depth: int) -> Dict[str, int]:
        """Return ``{path: depth}`` for every note reachable within *max_depth*.

        The start note is never part of the result. Paths appear in the
        order they were discovered, each at its minimum hop count.
        """
        result: Dict[str, int] = {}
        if self.repository.is_excluded(start_path):
            logger.debug("Start note %s is excluded; nothing to traverse", start_path)
            return result

        all_paths = self.repository.list_paths()
        known = set(all_paths)
        visited = {start_path}
        queue: Deque[Tuple[str, int]] = deque([(start_path, 0)])
        walls_hit = 0

        while queue:
            path, depth = queue.popleft()

            if self.repository.is_excluded(path):
                walls_hit += 1
                continue

            if depth > 0:
                result[path] = depth

            if depth >= max_depth:
                continue

            for target in self.repository.forward_links(path, all_paths):
                if target not in visited:
                    visited.add(target)
                    queue.append((target, depth + 1))

            for source in self.backlinks.get(path):
                if source not in visited and source in known:
                    visited.add(source)
                    queue.append((source, depth + 1))

        logger.debug(
            "BFS from %s (max depth %d): %d results, %d visited, %d walls hit",
            start_path, max_depth, len(result), len(visited), walls_hit,
        )
        return result

    def traverse(self, start_path: str, max_depth: int) -> List[str]:
        """Linked note paths within *max_depth* hops, in discovery order."""
        return list(self.traverse_with_depth(start_path, max_depth))

    def same_folder(self, path: str) -> List[str]:
        """Non-excluded notes sharing *path*'s folder, excluding *path* itself."""
        folder = path.rpartition("/")[0]
        return [
            doc.path
            for doc in self.repository.list_documents()
            if doc.folder == folder and doc.path != path and not self.repository.is_excluded(doc.path)
        ]
