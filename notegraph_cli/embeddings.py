"""Offline embeddings for note chunks.

The hash embedder needs no model download. Any object with
``embed_text(str) -> List[float]`` can stand in for it (for example a client
for a hosted embedding API), since the semantic index only relies on that
method.

Note markup is reduced to plain words before hashing: pending ``ai-edit``
and ``ai-new-note`` blocks are dropped with their marker tag, wiki links keep
their target and alias, and markdown links keep their text but not the URL.
"""

from __future__ import annotations

import math
import re
from collections import Counter
from hashlib import blake2b
from typing import Iterable, List

from . import config

_PENDING_BLOCK_RE = re.compile(r"```ai-(?:edit|new-note)\n.*?```(?:\n#[^\s#]+)?", re.DOTALL)
_WIKI_LINK_RE = re.compile(r"!?\[\[([^\[\]|]+?)(?:\|([^\[\]]*))?\]\]")
_MD_LINK_RE = re.compile(r"!?\[([^\]]*)\]\([^)]*\)")
_TOKEN_RE = re.compile(r"[^\W_]+", re.UNICODE)

STOPWORDS = frozenset(
    "a an and are as at be but by for from has have i if in into is it its "
    "of on or so that the their then there this to was were will with".split()
)


def _wiki_words(match: "re.Match[str]") -> str:
    target = match.group(1).split("#", 1)[0]
    if target.lower().endswith(config.NOTE_EXTENSION):
        target = target[: -len(config.NOTE_EXTENSION)]
    return " ".join(part for part in (target, match.group(2)) if part)


def note_text(content: str) -> str:
    """Strip pending-edit blocks and link syntax from *content*."""
    text = _PENDING_BLOCK_RE.sub(" ", content)
    text = _WIKI_LINK_RE.sub(_wiki_words, text)
    return _MD_LINK_RE.sub(r"\1", text)


def tokenize(content: str) -> List[str]:
    """Lower-cased words of *content*, without stopwords."""
    return [t for t in _TOKEN_RE.findall(note_text(content).lower()) if t not in STOPWORDS]


class HashEmbeddingModel:
    """Token-hashing embedder for note text.

    Each distinct word lands in one bucket, weighted ``1 + log(count)`` so a
    word repeated through a long note does not drown out the rest. Weights
    are never negative, which keeps similarity scores in ``[0, 1]``.
    """

    def __init__(self, dim: int = config.DEFAULT_EMBEDDING_DIM) -> None:
        if dim <= 0:
            raise ValueError(f"dim must be positive, got {dim}")
        self.dim = dim

    def _bucket(self, token: str) -> int:
        digest = blake2b(token.encode("utf-8"), digest_size=8).digest()
        return int.from_bytes(digest, "big") % self.dim

    def embed_text(self, text: str) -> List[float]:
        vec = [0.0] * self.dim
        for token, count in Counter(tokenize(text)).items():
            vec[self._bucket(token)] += 1.0 + math.log(count)
        length = _norm(vec)
        if length < 1e-12:
            return vec
        return [v / length for v in vec]

    def embed_many(self, texts: Iterable[str]) -> List[List[float]]:
        return [self.embed_text(text) for text in texts]


def _norm(vec: List[float]) -> float:
    return math.sqrt(sum(v * v for v in vec))


def cosine_similarity(vec_a: List[float], vec_b: List[float]) -> float:
    """Cosine of the angle between two vectors; ``0.0`` when undefined."""
    if not vec_a or len(vec_a) != len(vec_b):
        return 0.0
    lengths = _norm(vec_a) * _norm(vec_b)
    if lengths < 1e-12:
        return 0.0
    return sum(a * b for a, b in zip(vec_a, vec_b)) / lengths
