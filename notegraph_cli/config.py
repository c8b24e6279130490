"""Configuration paths and defaults for NoteGraph."""

from __future__ import annotations

import os
from pathlib import Path

BASE_DIR = Path(os.environ.get("NOTEGRAPH_HOME", str(Path.home() / ".notegraph"))).expanduser()
VAULTS_DIR = BASE_DIR / "vaults"
STATE_FILE = BASE_DIR / "state.json"
CONFIG_FILE = BASE_DIR / "config.toml"

NOTE_EXTENSION = ".md"
DEFAULT_PENDING_EDIT_TAG = "#ai_edit"

# Backlink index is rebuilt when older than this
BACKLINK_CACHE_TTL_SECONDS = 5.0

# Token estimation: 1 token ~ 4 characters
CHARS_PER_TOKEN = 4
SEMANTIC_QUERY_CHARS = 8000
RESPONSE_TOKEN_RESERVE = 500
DEFAULT_TOKEN_LIMIT = 10000
DEFAULT_EMBEDDING_DIM = 256

# Default context scope (matches the values shown in `ng config show`)
DEFAULT_LINK_DEPTH = 2
DEFAULT_MAX_LINKED_NOTES = 20
DEFAULT_MAX_FOLDER_NOTES = 0
DEFAULT_SEMANTIC_MATCH_COUNT = 0
DEFAULT_SEMANTIC_MIN_SIMILARITY = 50


def ensure_base_dirs() -> None:
    """Create base directories for local storage if needed."""
    BASE_DIR.mkdir(parents=True, exist_ok=True)
    VAULTS_DIR.mkdir(parents=True, exist_ok=True)
