"""NoteGraph CLI: link-aware context assembly and reviewable edits for markdown vaults."""

__version__ = "0.1.0"
