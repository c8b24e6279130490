"""Typer-based CLI for NoteGraph: context bundles and reviewable note edits."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from . import __version__, config, config_manager
from .context_builder import ContextAssembler, estimate_tokens
from .diff_engine import DiffEngine
from .edit_manager import EditManager, extract_edits, extract_new_note_ids
from .embeddings import HashEmbeddingModel
from .graph import BacklinkIndex, LinkGraphWalker
from .models import (
    ContextScopeConfig,
    DiffKind,
    EditAction,
    EditCapabilities,
    EditableScope,
    NoteGraphError,
)
from .semantic import SemanticIndex
from .storage import VaultManager, VaultStore
from .validation import EditValidator, parse_edit_response

app = typer.Typer(
    help="NoteGraph CLI: link-aware context for AI note edits, with human review.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)
vault_app = typer.Typer(help="Register and switch between note vaults.", no_args_is_help=True)
config_app = typer.Typer(help="Show and change NoteGraph settings.", no_args_is_help=True)
app.add_typer(vault_app, name="vault")
app.add_typer(config_app, name="config")

console = Console()
err_console = Console(stderr=True)


def version_callback(value: bool):
    """Print version and exit."""
    if value:
        typer.echo(f"NoteGraph CLI v{__version__}")
        raise typer.Exit()


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=err_console, show_path=False)],
        force=True,
    )


@app.callback()
def main(
    version: Optional[bool] = typer.Option(
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=version_callback,
        is_eager=True,
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug logging."),
):
    """NoteGraph CLI: assemble note context and review AI-proposed edits."""
    _configure_logging(verbose)


# ===================================================================
# Helpers
# ===================================================================

def _fail(message: str) -> None:
    err_console.print(f"[red]❌ {escape(message)}[/red]")
    raise typer.Exit(code=1)


def _current_vault(vm: VaultManager) -> str:
    name = vm.get_current()
    if not name:
        raise typer.BadParameter("No vault selected. Use 'ng vault add <path>' or 'ng vault use <name>'.")
    if name not in vm.list_vaults():
        raise typer.BadParameter(f"Selected vault '{name}' is not registered.")
    return name


def _open_current_store(vm: VaultManager) -> VaultStore:
    name = _current_vault(vm)
    excluded = config_manager.load_vault_config()["excluded_folders"]
    try:
        return vm.open_store(name, excluded)
    except (NoteGraphError, NotADirectoryError) as exc:
        raise typer.BadParameter(str(exc))


def _open_semantic_index(vm: VaultManager) -> SemanticIndex:
    name = _current_vault(vm)
    dim = int(config_manager.load_embedding_config().get("dim", config.DEFAULT_EMBEDDING_DIM))
    return SemanticIndex(vm.vault_dir(name) / "semantic.db", HashEmbeddingModel(dim))


def _resolve_note(store: VaultStore, note: str) -> str:
    """Accept a vault path, a path without extension, or a bare note name."""
    for candidate in (note, note + config.NOTE_EXTENSION):
        if store.get_document(candidate) is not None:
            return candidate
    for doc in store.list_documents():
        if doc.name == note or doc.basename == note or doc.path.endswith("/" + note):
            return doc.path
    raise typer.BadParameter(f"Note '{note}' not found in vault.")


def _scope_from_options(
    depth: Optional[int],
    max_linked: Optional[int],
    max_folder: Optional[int],
    semantic: Optional[int],
    min_similarity: Optional[int],
    added: Optional[List[str]],
) -> ContextScopeConfig:
    defaults = config_manager.default_scope_config()
    try:
        return ContextScopeConfig(
            link_depth=defaults.link_depth if depth is None else depth,
            max_linked_notes=defaults.max_linked_notes if max_linked is None else max_linked,
            max_folder_notes=defaults.max_folder_notes if max_folder is None else max_folder,
            semantic_match_count=defaults.semantic_match_count if semantic is None else semantic,
            semantic_min_similarity=(
                defaults.semantic_min_similarity if min_similarity is None else min_similarity
            ),
            manually_added_paths=list(added or []),
        )
    except ValueError as exc:
        raise typer.BadParameter(str(exc))


def _print_diff(lines) -> None:
    styles = {DiffKind.ADDED: ("+", "green"), DiffKind.REMOVED: ("-", "red"), DiffKind.UNCHANGED: (" ", "dim")}
    for line in lines:
        prefix, style = styles[line.kind]
        console.print(Text(f"{prefix} {line.text}", style=style))


def _load_response(edits_json: Path):
    try:
        text = edits_json.read_text(encoding="utf-8")
    except OSError as exc:
        _fail(f"Could not read {edits_json}: {exc}")
    response = parse_edit_response(text)
    if response is None:
        _fail(f"{edits_json} is not a valid edit response (expected {{\"edits\": [...]}})")
    return response


def _print_validation(validated) -> None:
    table = Table(title="Proposed edits", show_header=True)
    table.add_column("#", justify="right")
    table.add_column("File")
    table.add_column("Position")
    table.add_column("Status")
    for i, edit in enumerate(validated, start=1):
        status = "[green]ok[/green]" if edit.ok else f"[red]{escape(edit.error)}[/red]"
        if edit.ok and edit.is_new_file:
            status = "[green]new note[/green]"
        table.add_row(str(i), escape(edit.target_path), escape(edit.instruction.position), status)
    console.print(table)


# ===================================================================
# Vaults
# ===================================================================

@vault_app.command("add")
def vault_add(
    vault_path: Path = typer.Argument(..., exists=True, file_okay=False, help="Folder holding the notes."),
    name: Optional[str] = typer.Option(None, "--name", "-n", help="Vault name (defaults to folder name)."),
    use: bool = typer.Option(True, "--use/--no-use", help="Make it the active vault."),
):
    """Register a folder of markdown notes as a vault."""
    vm = VaultManager()
    vault_name = name or vault_path.resolve().name.replace(" ", "_")
    vm.register(vault_name, vault_path)
    if use:
        vm.set_current(vault_name)
    typer.echo(f"Registered vault '{vault_name}' at {vault_path.resolve()}.")
    typer.echo("Run 'ng index' to build the link and semantic indexes.")


@vault_app.command("list")
def vault_list():
    """List registered vaults. The active one is marked with '*'."""
    vm = VaultManager()
    vaults = vm.list_vaults()
    if not vaults:
        typer.echo("No vaults registered yet.")
        raise typer.Exit(code=0)
    current = vm.get_current()
    for name in vaults:
        marker = "*" if name == current else " "
        typer.echo(f"{marker} {name}  {vm.vault_root(name)}")


@vault_app.command("use")
def vault_use(name: str = typer.Argument(..., help="Vault to activate.")):
    """Switch the active vault."""
    vm = VaultManager()
    if name not in vm.list_vaults():
        raise typer.BadParameter(f"Vault '{name}' not found.")
    vm.set_current(name)
    typer.echo(f"Using vault '{name}'.")


@vault_app.command("remove")
def vault_remove(name: str = typer.Argument(..., help="Vault to forget. Notes on disk are kept.")):
    """Forget a vault and its indexes."""
    vm = VaultManager()
    if not vm.unregister(name):
        raise typer.BadParameter(f"Vault '{name}' not found.")
    typer.echo(f"Removed vault '{name}'.")


# ===================================================================
# Indexing and graph
# ===================================================================

@app.command("index")
def index_vault(
    semantic: bool = typer.Option(True, "--semantic/--no-semantic", help="Also rebuild the semantic index."),
):
    """Rebuild the link table (and semantic index) of the active vault."""
    vm = VaultManager()
    store = _open_current_store(vm)
    try:
        stats = store.reindex_links()
        typer.echo(f"Notes: {stats['documents']} | Links: {stats['links']}")
        if semantic:
            index = _open_semantic_index(vm)
            try:
                sem = index.reindex(store)
            finally:
                index.close()
            typer.echo(f"Semantic chunks: {sem['updated']} embedded, {sem['reused']} unchanged")
    finally:
        store.close()


@app.command("links")
def show_links(
    note: str = typer.Argument(..., help="Note path or name."),
    depth: int = typer.Option(1, "--depth", "-d", min=1, max=3, help="Link hops to follow."),
):
    """Show notes reachable from NOTE through links and backlinks."""
    vm = VaultManager()
    store = _open_current_store(vm)
    try:
        path = _resolve_note(store, note)
        walker = LinkGraphWalker(store)
        reached = walker.traverse_with_depth(path, depth)
        if not reached:
            typer.echo(f"No linked notes within {depth} hop(s) of {path}.")
            return
        table = Table(title=f"Links from {escape(path)}", show_header=True)
        table.add_column("Note")
        table.add_column("Depth", justify="right")
        for linked, hops in reached.items():
            table.add_row(escape(linked), str(hops))
        console.print(table)
    finally:
        store.close()


# ===================================================================
# Context
# ===================================================================

@app.command("context")
def build_context(
    note: str = typer.Argument(..., help="Current note (path or name)."),
    task: str = typer.Option("", "--task", "-t", help="User task placed in the header."),
    depth: Optional[int] = typer.Option(None, "--depth", "-d", help="Link depth 0-3."),
    max_linked: Optional[int] = typer.Option(None, "--max-linked", help="Cap on linked notes."),
    max_folder: Optional[int] = typer.Option(None, "--max-folder", help="Cap on same-folder notes."),
    semantic: Optional[int] = typer.Option(None, "--semantic", help="Number of semantic matches."),
    min_similarity: Optional[int] = typer.Option(None, "--min-similarity", help="Semantic threshold in percent."),
    add: Optional[List[str]] = typer.Option(None, "--add", "-a", help="Pin an extra note (repeatable)."),
    budget: Optional[int] = typer.Option(None, "--budget", "-b", help="Token limit; drops low-priority notes."),
    overhead: int = typer.Option(
        config.RESPONSE_TOKEN_RESERVE, "--overhead", help="Tokens reserved outside the note data."
    ),
    count: bool = typer.Option(False, "--count", help="Only print how many notes would be included."),
):
    """Print the context bundle for NOTE."""
    scope = _scope_from_options(depth, max_linked, max_folder, semantic, min_similarity, add)
    vm = VaultManager()
    store = _open_current_store(vm)
    index = _open_semantic_index(vm) if scope.semantic_match_count > 0 else None
    try:
        path = _resolve_note(store, note)
        scope.manually_added_paths = [_resolve_note(store, p) for p in scope.manually_added_paths]
        assembler = ContextAssembler(store, LinkGraphWalker(store), index)

        if count:
            included, excluded = assembler.count_context_notes(path, scope)
            typer.echo(f"{included} note(s) included, {excluded} excluded")
            return

        if budget is None:
            text = assembler.assemble(path, task, scope)
            typer.echo(text)
            err_console.print(f"[dim]~{estimate_tokens(text)} tokens[/dim]")
            return

        try:
            result = assembler.assemble_with_budget(path, task, scope, budget, overhead)
        except ValueError as exc:
            raise typer.BadParameter(str(exc))
        typer.echo(result.rendered_text)
        err_console.print(f"[dim]~{result.total_token_estimate} of {budget} tokens[/dim]")
        if result.evicted_paths:
            err_console.print(
                f"[yellow]Dropped {len(result.evicted_paths)} note(s) to fit the budget: "
                f"{escape(', '.join(result.evicted_paths))}[/yellow]"
            )
        if result.total_token_estimate > budget:
            err_console.print("[red]Current note alone exceeds the token budget.[/red]")
    finally:
        store.close()
        if index is not None:
            index.close()


# ===================================================================
# Edits
# ===================================================================

@app.command("validate")
def validate_edits(
    edits_json: Path = typer.Argument(..., exists=True, dir_okay=False, help="Model response with edits."),
    show_diff: bool = typer.Option(True, "--diff/--no-diff", help="Show a diff for each valid edit."),
):
    """Check a model edit response against the active vault without writing."""
    vm = VaultManager()
    store = _open_current_store(vm)
    try:
        response = _load_response(edits_json)
        validated = EditValidator(store).validate(response.edits)
        console.print(Panel(escape(response.summary), title="Summary", style="cyan"))
        _print_validation(validated)
        if show_diff:
            engine = DiffEngine()
            for edit in validated:
                if edit.ok:
                    console.print(f"\n[bold]{escape(edit.target_path)}[/bold] ({escape(edit.instruction.position)})")
                    _print_diff(engine.diff(edit.current_content, edit.new_content))
    finally:
        store.close()


@app.command("apply")
def apply_edits(
    edits_json: Path = typer.Argument(..., exists=True, dir_okay=False, help="Model response with edits."),
    yes: bool = typer.Option(False, "--yes", "-y", help="Insert without confirmation."),
    current: Optional[str] = typer.Option(None, "--current", "-c", help="Note the task was about."),
    scope: EditableScope = typer.Option(EditableScope.CONTEXT, "--scope", help="Which notes may be edited."),
    task: str = typer.Option("", "--task", "-t", help="Task used for semantic matches in 'context' scope."),
    can_add: bool = typer.Option(True, "--add/--no-add", help="Allow adding content."),
    can_delete: bool = typer.Option(True, "--delete/--no-delete", help="Allow deleting or replacing content."),
    can_create: bool = typer.Option(True, "--create/--no-create", help="Allow creating notes."),
):
    """Insert pending edit blocks for a model edit response.

    Nothing is changed for good until the blocks are accepted with 'ng accept'.
    """
    vm = VaultManager()
    store = _open_current_store(vm)
    index = None
    try:
        response = _load_response(edits_json)
        validated = EditValidator(store).validate(response.edits)
        backlinks = BacklinkIndex(store)

        if current:
            current_path = _resolve_note(store, current)
            scope_config = config_manager.default_scope_config()
            if scope_config.semantic_match_count > 0:
                index = _open_semantic_index(vm)
            assembler = ContextAssembler(store, LinkGraphWalker(store, backlinks), index)
            if scope is EditableScope.CONTEXT and index is not None:
                assembler.assemble(current_path, task, scope_config)
            allowed = assembler.editable_paths(current_path, scope, scope_config)
            EditValidator(store).filter_by_rules(
                validated, scope, EditCapabilities(can_add, can_delete, can_create), allowed
            )

        console.print(Panel(escape(response.summary), title="Summary", style="cyan"))
        _print_validation(validated)

        if not any(edit.ok for edit in validated):
            _fail("No valid edits to insert.")
        if not yes and not typer.confirm("Insert pending edit blocks?", default=False):
            typer.echo("No changes made.")
            return

        tag = config_manager.load_vault_config()["pending_edit_tag"]
        result = EditManager(store, tag, backlinks).apply(validated)
        color = "yellow" if result.failed_count else "green"
        console.print(f"[{color}]{result}[/{color}]")
        typer.echo("Review with 'ng pending', then 'ng accept' or 'ng reject'.")
    finally:
        store.close()
        if index is not None:
            index.close()


@app.command("diff")
def diff_files(
    old: Path = typer.Argument(..., exists=True, dir_okay=False, help="Original file."),
    new: Path = typer.Argument(..., exists=True, dir_okay=False, help="Changed file."),
):
    """Line diff of two files."""
    engine = DiffEngine()
    lines = engine.diff(old.read_text(encoding="utf-8"), new.read_text(encoding="utf-8"))
    _print_diff(lines)
    counts = engine.summarize(lines)
    err_console.print(f"[dim]+{counts['added']} -{counts['removed']}[/dim]")


@app.command("pending")
def list_pending():
    """List pending edit blocks and new-note banners in the active vault."""
    vm = VaultManager()
    store = _open_current_store(vm)
    try:
        manager = EditManager(store, config_manager.load_vault_config()["pending_edit_tag"])
        edits = manager.pending_edits()
        notes = manager.pending_new_notes()
        if not edits and not notes:
            typer.echo("No pending edits.")
            return
        table = Table(title="Pending edits", show_header=True)
        table.add_column("Note")
        table.add_column("ID")
        table.add_column("Type")
        table.add_column("After")
        for path, record in edits:
            preview = record.after.splitlines()[0][:60] if record.after else ""
            table.add_row(escape(path), record.id, record.kind.value, escape(preview))
        for path, note_id in notes:
            table.add_row(escape(path), note_id, "new note", "")
        console.print(table)
    finally:
        store.close()


def _resolve_command(action: EditAction, note: Optional[str], edit_id: Optional[str], resolve_all: bool) -> None:
    vm = VaultManager()
    store = _open_current_store(vm)
    verb = "Accepted" if action is EditAction.ACCEPT else "Rejected"
    try:
        manager = EditManager(
            store, config_manager.load_vault_config()["pending_edit_tag"], BacklinkIndex(store)
        )
        if resolve_all:
            count = manager.batch_resolve(action)
            typer.echo(f"{verb} {count} pending edit(s).")
            return
        if not note:
            raise typer.BadParameter("Give a NOTE (and optionally an EDIT_ID), or use --all.")

        path = _resolve_note(store, note)
        if edit_id is None:
            state = manager.resolve_next(path, action)
            if state is None:
                typer.echo(f"No pending edits in {path}.")
                return
            typer.echo(f"{verb} next edit in {path}.")
            return

        content = store.read(path)
        record = next((r for r in extract_edits(content) if r.id == edit_id), None)
        if record is not None:
            manager.resolve_edit(path, record, action)
        elif edit_id in extract_new_note_ids(content):
            manager.resolve_new_note(path, edit_id, action)
        else:
            _fail(f"No pending edit '{edit_id}' in {path}")
        typer.echo(f"{verb} edit {edit_id} in {path}.")
    except NoteGraphError as exc:
        _fail(str(exc))
    finally:
        store.close()


@app.command("accept")
def accept_edits(
    note: Optional[str] = typer.Argument(None, help="Note holding the edit."),
    edit_id: Optional[str] = typer.Argument(None, help="Edit id (defaults to the first in the note)."),
    resolve_all: bool = typer.Option(False, "--all", help="Accept every pending edit in the vault."),
):
    """Accept pending edits: keep the proposed text."""
    _resolve_command(EditAction.ACCEPT, note, edit_id, resolve_all)


@app.command("reject")
def reject_edits(
    note: Optional[str] = typer.Argument(None, help="Note holding the edit."),
    edit_id: Optional[str] = typer.Argument(None, help="Edit id (defaults to the first in the note)."),
    resolve_all: bool = typer.Option(False, "--all", help="Reject every pending edit in the vault."),
):
    """Reject pending edits: restore the original text, delete proposed notes."""
    _resolve_command(EditAction.REJECT, note, edit_id, resolve_all)


# ===================================================================
# Config
# ===================================================================

@config_app.command("show")
def config_show():
    """Show the effective settings."""
    vault_cfg = config_manager.load_vault_config()
    ctx = config_manager.load_context_defaults()
    table = Table(title=f"Settings ({config.CONFIG_FILE})", show_header=True)
    table.add_column("Key")
    table.add_column("Value")
    table.add_row("excluded_folders", escape(", ".join(vault_cfg["excluded_folders"]) or "(none)"))
    table.add_row("pending_edit_tag", escape(str(vault_cfg["pending_edit_tag"])))
    for key, value in ctx.items():
        table.add_row(key, str(value))
    console.print(table)


@config_app.command("exclude")
def config_exclude(folder: str = typer.Argument(..., help="Vault folder to hide from the AI.")):
    """Exclude a folder from context and edits."""
    try:
        added = config_manager.add_excluded_folder(folder)
    except ValueError as exc:
        raise typer.BadParameter(str(exc))
    typer.echo(f"Excluded '{folder}'." if added else f"'{folder}' is already excluded.")


@config_app.command("include")
def config_include(folder: str = typer.Argument(..., help="Previously excluded folder.")):
    """Stop excluding a folder."""
    if config_manager.remove_excluded_folder(folder):
        typer.echo(f"'{folder}' is no longer excluded.")
    else:
        typer.echo(f"'{folder}' was not excluded.")


@config_app.command("set-tag")
def config_set_tag(tag: str = typer.Argument(..., help="Tag written under each pending edit block.")):
    """Change the pending edit tag."""
    try:
        config_manager.set_pending_edit_tag(tag)
    except ValueError as exc:
        raise typer.BadParameter(str(exc))
    typer.echo(f"Pending edit tag set to '{tag}'.")


if __name__ == "__main__":
    app()
