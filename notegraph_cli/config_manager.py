"""Configuration manager for NoteGraph using a TOML file.

Sections:

- ``[vault]``: ``excluded_folders`` and ``pending_edit_tag``.
- ``[context]``: default scope sliders and ``token_limit``.
- ``[embeddings]``: ``dim`` of the hash embedder.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List

import toml

from . import config
from .models import ContextScopeConfig

logger = logging.getLogger(__name__)


DEFAULT_VAULT_CONFIG: Dict[str, Any] = {
    "excluded_folders": [],
    "pending_edit_tag": config.DEFAULT_PENDING_EDIT_TAG,
}

DEFAULT_CONTEXT_CONFIG: Dict[str, Any] = {
    "link_depth": config.DEFAULT_LINK_DEPTH,
    "max_linked_notes": config.DEFAULT_MAX_LINKED_NOTES,
    "max_folder_notes": config.DEFAULT_MAX_FOLDER_NOTES,
    "semantic_match_count": config.DEFAULT_SEMANTIC_MATCH_COUNT,
    "semantic_min_similarity": config.DEFAULT_SEMANTIC_MIN_SIMILARITY,
    "token_limit": config.DEFAULT_TOKEN_LIMIT,
}


def load_full_config() -> Dict[str, Any]:
    """Load the entire TOML config (all sections).

    Returns an empty dict when the file is missing or cannot be parsed.
    """
    if not config.CONFIG_FILE.exists():
        return {}
    try:
        with open(config.CONFIG_FILE, "r", encoding="utf-8") as f:
            return toml.load(f)
    except (OSError, toml.TomlDecodeError) as exc:
        logger.warning("Ignoring unreadable config %s: %s", config.CONFIG_FILE, exc)
        return {}


def _save_full_config(data: Dict[str, Any]) -> bool:
    """Write entire config dict to TOML file, preserving all sections."""
    config.BASE_DIR.mkdir(parents=True, exist_ok=True)
    try:
        with open(config.CONFIG_FILE, "w", encoding="utf-8") as f:
            toml.dump(data, f)
        return True
    except OSError as exc:
        logger.warning("Could not write config %s: %s", config.CONFIG_FILE, exc)
        return False


# ------------------------------------------------------------------
# Vault section
# ------------------------------------------------------------------

def load_vault_config() -> Dict[str, Any]:
    """Return the ``[vault]`` section merged over the defaults."""
    merged = dict(DEFAULT_VAULT_CONFIG)
    merged["excluded_folders"] = list(DEFAULT_VAULT_CONFIG["excluded_folders"])
    merged.update(load_full_config().get("vault", {}))
    return merged


def save_vault_config(excluded_folders: List[str], pending_edit_tag: str) -> bool:
    """Save the ``[vault]`` section. Other sections are preserved."""
    data = load_full_config()
    data["vault"] = {
        "excluded_folders": list(excluded_folders),
        "pending_edit_tag": pending_edit_tag,
    }
    return _save_full_config(data)


def add_excluded_folder(folder: str) -> bool:
    """Add *folder* to the excluded list. Returns False if already present."""
    folder = folder.strip().rstrip("/")
    if not folder:
        raise ValueError("Folder name must not be empty")
    vault_cfg = load_vault_config()
    folders = vault_cfg["excluded_folders"]
    if folder in folders:
        return False
    folders.append(folder)
    return save_vault_config(folders, vault_cfg["pending_edit_tag"])


def remove_excluded_folder(folder: str) -> bool:
    """Remove *folder* from the excluded list. Returns False if it was not there."""
    folder = folder.strip().rstrip("/")
    vault_cfg = load_vault_config()
    folders = vault_cfg["excluded_folders"]
    if folder not in folders:
        return False
    folders.remove(folder)
    return save_vault_config(folders, vault_cfg["pending_edit_tag"])


def set_pending_edit_tag(tag: str) -> bool:
    tag = tag.strip()
    if not tag:
        raise ValueError("Pending edit tag must not be empty")
    vault_cfg = load_vault_config()
    return save_vault_config(vault_cfg["excluded_folders"], tag)


# ------------------------------------------------------------------
# Context section
# ------------------------------------------------------------------

def load_context_defaults() -> Dict[str, Any]:
    """Return the ``[context]`` section merged over the defaults."""
    merged = dict(DEFAULT_CONTEXT_CONFIG)
    merged.update(load_full_config().get("context", {}))
    return merged


def default_scope_config() -> ContextScopeConfig:
    """Build a :class:`ContextScopeConfig` from the configured defaults."""
    ctx = load_context_defaults()
    return ContextScopeConfig(
        link_depth=int(ctx["link_depth"]),
        max_linked_notes=int(ctx["max_linked_notes"]),
        max_folder_notes=int(ctx["max_folder_notes"]),
        semantic_match_count=int(ctx["semantic_match_count"]),
        semantic_min_similarity=int(ctx["semantic_min_similarity"]),
    )


def load_embedding_config() -> Dict[str, Any]:
    """Load the ``[embeddings]`` section, or an empty dict."""
    return load_full_config().get("embeddings", {})
