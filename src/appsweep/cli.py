"""CLI interface for appsweep."""

import logging
from typing import Optional

import typer
from rich.logging import RichHandler

from appsweep import __version__
from appsweep.bundles import find_app, find_installed_apps
from appsweep.cleaner import find_protected, move_to_trash
from appsweep.config import (
    Settings,
    add_exclusion,
    add_user_condition,
    build_rule_table,
    load_settings,
    remove_exclusion,
    remove_user_condition,
    residue_roots_for,
    search_roots_for,
    sync_remote_conditions,
)
from appsweep.containers import ContainerLocator
from appsweep.display import (
    confirm_action,
    console,
    print_plain_paths,
    show_app_files,
    show_app_header,
    show_conditions,
    show_exclusions,
    show_orphans,
    show_scanning_progress,
    show_trash_result,
)
from appsweep.forward import AppPathFinder, seed_bundle_path
from appsweep.models import AppDescriptor, Condition, ResolutionResult
from appsweep.reverse import OrphanFinder
from appsweep.scanner import path_details

# Create Typer app
app = typer.Typer(
    name="appsweep",
    help="Find and remove the files macOS apps leave behind",
    add_completion=False,
)
conditions_app = typer.Typer(help="Manage ownership conditions")
exclusions_app = typer.Typer(help="Manage paths never reported as orphaned")
app.add_typer(conditions_app, name="conditions")
app.add_typer(exclusions_app, name="exclusions")


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"appsweep version {__version__}")
        raise typer.Exit()


def setup_logging(verbose: bool) -> None:
    if not verbose:
        return
    logging.basicConfig(
        level=logging.DEBUG,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True)],
    )


@app.callback()
def main(
    version: bool = typer.Option(
        None,
        "--version",
        "-v",
        help="Show version and exit.",
        callback=version_callback,
        is_eager=True,
    ),
    verbose: bool = typer.Option(False, "--verbose", help="Log skipped paths and rule decisions"),
) -> None:
    """appsweep - find and remove macOS app leftovers."""
    setup_logging(verbose)


# =============================================================================
# Helpers
# =============================================================================


def _resolve_app(query: str, settings: Settings) -> AppDescriptor:
    """Turn a path, bundle id or app name into a descriptor, or exit."""
    descriptor = find_app(query, [])
    if descriptor is None:
        descriptor = find_app(query, find_installed_apps(settings.app_folders, max_workers=settings.max_workers))
    if descriptor is None:
        console.print(f"[red]Error: No app found for {query}[/red]")
        raise typer.Exit(1)
    return descriptor


def _find_app_files(
    descriptor: AppDescriptor,
    settings: Settings,
    sizes: bool = True,
    show_progress: bool = True,
) -> ResolutionResult:
    finder = AppPathFinder(
        descriptor,
        build_rule_table(settings),
        search_roots_for(settings),
        locator=ContainerLocator(),
        strict_names=settings.strict_name_match,
        max_workers=settings.max_workers,
        size_lookup=path_details if sizes else None,
    )
    if not show_progress:
        return finder.find_paths()

    with show_scanning_progress() as progress:
        task = progress.add_task(f"Searching for {descriptor.display_name}...", total=len(finder.search_roots))

        def update_progress(name: str, current: int, total: int):
            progress.update(task, completed=current, total=total)

        return finder.find_paths(progress_callback=update_progress)


def _find_orphans(settings: Settings, sizes: bool = False, show_progress: bool = True) -> ResolutionResult:
    installed = find_installed_apps(
        settings.app_folders, with_entitlements=True, max_workers=settings.max_workers
    )
    finder = OrphanFinder(
        installed,
        build_rule_table(settings),
        residue_roots_for(settings),
        locator=ContainerLocator(),
        exclusions=settings.orphan_exclusions,
        max_workers=settings.max_workers,
        batch_size=settings.batch_size,
        size_lookup=path_details if sizes else None,
    )
    if not show_progress:
        return finder.find_orphans()

    with show_scanning_progress() as progress:
        task = progress.add_task("Searching for orphaned files...", total=None)
        found = 0

        def on_batch(paths: list[str]):
            nonlocal found
            found += len(paths)
            progress.update(task, description=f"Searching for orphaned files... {found} found")

        return finder.find_orphans(on_batch=on_batch)


def _trash(paths: list[str], dry_run: bool, yes: bool, prompt: str) -> None:
    if not paths:
        console.print("[green]Nothing to remove[/green]")
        return

    protected = find_protected(paths)
    if protected:
        console.print("[yellow]Some paths need administrator rights and may fail:[/yellow]")
        for path in protected:
            console.print(f"  {path}")

    if not dry_run and not yes:
        if not confirm_action(prompt):
            console.print("[yellow]Cancelled[/yellow]")
            raise typer.Exit(0)

    result = move_to_trash(paths, dry_run=dry_run)
    show_trash_result(result)
    if not result.success:
        raise typer.Exit(1)


# =============================================================================
# Resolution commands
# =============================================================================


@app.command("list")
def list_files(
    target: str = typer.Argument(..., help="App path, bundle identifier or name"),
    plain: bool = typer.Option(False, "--plain", help="Print one path per line"),
    no_sizes: bool = typer.Option(False, "--no-sizes", help="Skip size calculation"),
) -> None:
    """List application files available for uninstall."""
    settings = load_settings()
    descriptor = _resolve_app(target, settings)

    if plain:
        result = _find_app_files(descriptor, settings, sizes=False, show_progress=False)
        print_plain_paths(result)
        return

    show_app_header(descriptor)
    result = _find_app_files(descriptor, settings, sizes=not no_sizes)
    show_app_files(result)


@app.command("list-orphaned")
def list_orphaned(
    plain: bool = typer.Option(False, "--plain", help="Print one path per line"),
    sizes: bool = typer.Option(False, "--sizes", help="Calculate sizes (slower)"),
) -> None:
    """List orphaned files left behind by apps that are no longer installed."""
    settings = load_settings()

    if plain:
        print_plain_paths(_find_orphans(settings, show_progress=False))
        return

    show_orphans(_find_orphans(settings, sizes=sizes))


@app.command()
def uninstall(
    target: str = typer.Argument(..., help="App path, bundle identifier or name"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Show what would be moved"),
    yes: bool = typer.Option(False, "-y", "--yes", help="Skip confirmation prompts"),
) -> None:
    """Move only the application bundle to the Trash."""
    settings = load_settings()
    descriptor = _resolve_app(target, settings)

    bundle = seed_bundle_path(descriptor.bundle_path)
    if bundle is None:
        console.print(f"[yellow]{descriptor.display_name} is already in the Trash[/yellow]")
        return

    _trash([str(bundle)], dry_run, yes, f"Move {descriptor.display_name} to the Trash?")


@app.command("uninstall-all")
def uninstall_all(
    target: str = typer.Argument(..., help="App path, bundle identifier or name"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Show what would be moved"),
    yes: bool = typer.Option(False, "-y", "--yes", help="Skip confirmation prompts"),
) -> None:
    """Move the application bundle and ALL related files to the Trash."""
    settings = load_settings()
    descriptor = _resolve_app(target, settings)

    result = _find_app_files(descriptor, settings)
    show_app_files(result)
    _trash(
        result.paths,
        dry_run,
        yes,
        f"Move {result.count} items for {descriptor.display_name} to the Trash?",
    )


@app.command("remove-orphaned")
def remove_orphaned(
    dry_run: bool = typer.Option(False, "--dry-run", help="Show what would be moved"),
    yes: bool = typer.Option(False, "-y", "--yes", help="Skip confirmation prompts"),
) -> None:
    """Move all orphaned files to the Trash."""
    settings = load_settings()
    result = _find_orphans(settings)
    show_orphans(result)
    _trash(result.paths, dry_run, yes, f"Move {result.count} orphaned items to the Trash?")


# =============================================================================
# Conditions
# =============================================================================


@conditions_app.command("list")
def conditions_list() -> None:
    """Show built-in and user conditions."""
    settings = load_settings()
    table = build_rule_table(settings)
    show_conditions(list(table.conditions), {c.key for c in settings.conditions})


@conditions_app.command("add")
def conditions_add(
    key: str = typer.Argument(..., help="Bundle identifier (or fragment) the condition applies to"),
    include: Optional[list[str]] = typer.Option(None, "--include", "-i", help="Keyword confirming ownership"),
    exclude: Optional[list[str]] = typer.Option(None, "--exclude", "-e", help="Keyword vetoing ownership"),
    include_force: Optional[list[str]] = typer.Option(None, "--include-force", help="Path always owned"),
    exclude_force: Optional[list[str]] = typer.Option(None, "--exclude-force", help="Path never owned"),
) -> None:
    """Add or replace a user condition."""
    condition = Condition(
        key=key,
        include=include or [],
        exclude=exclude or [],
        include_force=include_force or [],
        exclude_force=exclude_force or [],
    )
    result = add_user_condition(condition)
    if not result["success"]:
        console.print(f"[red]Error: {result['error']}[/red]")
        raise typer.Exit(1)
    console.print(f"[green]✓[/green] Condition saved for {result['key']}")


@conditions_app.command("remove")
def conditions_remove(key: str = typer.Argument(..., help="Condition key")) -> None:
    """Remove a user condition (built-ins cannot be removed)."""
    result = remove_user_condition(key)
    if not result["success"]:
        console.print(f"[red]Error: {result['error']}[/red]")
        raise typer.Exit(1)
    console.print(f"[green]✓[/green] Removed condition {key}")


@conditions_app.command("sync")
def conditions_sync(
    url: Optional[str] = typer.Option(None, "--url", help="JSON list of conditions to merge"),
) -> None:
    """Fetch conditions from a URL and merge them into the user conditions."""
    result = sync_remote_conditions(url)
    if not result["success"]:
        console.print(f"[red]Error: {result['error']}[/red]")
        raise typer.Exit(1)
    console.print(f"[green]✓[/green] Fetched {result['fetched']} conditions")


# =============================================================================
# Exclusions
# =============================================================================


@exclusions_app.command("list")
def exclusions_list() -> None:
    """Show paths never reported as orphaned."""
    show_exclusions(load_settings().orphan_exclusions)


@exclusions_app.command("add")
def exclusions_add(path: str = typer.Argument(..., help="Path to exclude (can contain ~)")) -> None:
    """Never report a path as orphaned."""
    result = add_exclusion(path)
    if not result["success"]:
        console.print(f"[red]Error: {result['error']}[/red]")
        raise typer.Exit(1)
    console.print(f"[green]✓[/green] Excluded {path}")


@exclusions_app.command("remove")
def exclusions_remove(path: str = typer.Argument(..., help="Excluded path")) -> None:
    """Stop excluding a path."""
    result = remove_exclusion(path)
    if not result["success"]:
        console.print(f"[red]Error: {result['error']}[/red]")
        raise typer.Exit(1)
    console.print(f"[green]✓[/green] Removed exclusion {path}")


if __name__ == "__main__":
    app()
