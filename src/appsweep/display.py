"""Rich terminal display for appsweep."""

from rich.console import Console
from rich.panel import Panel
from rich.progress import BarColumn, Progress, SpinnerColumn, TextColumn, TimeElapsedColumn
from rich.table import Table

from appsweep.cleaner import TrashResult
from appsweep.models import AppDescriptor, Condition, ResolutionResult

console = Console()


def print_plain_paths(result: ResolutionResult) -> None:
    """One path per line, nothing else (for piping)."""
    for path in result.paths:
        console.print(path, markup=False, highlight=False, soft_wrap=True)


def _candidates_table(result: ResolutionResult, title: str, style: str) -> Table:
    table = Table(title=title, show_header=True, header_style=f"bold {style}")
    table.add_column("Name", style=style)
    table.add_column("Size", justify="right")
    table.add_column("Kind", justify="center")
    table.add_column("Path", overflow="fold")

    for candidate in sorted(
        result.candidates, key=lambda c: c.real_size or 0, reverse=True
    ):
        table.add_row(
            candidate.name,
            candidate.size_human,
            "dir" if candidate.is_dir else "file",
            candidate.path,
        )
    return table


def show_app_files(result: ResolutionResult) -> None:
    """Display everything found for one app."""
    app = result.app
    title = f"{app.display_name} ({app.bundle_identifier or 'no bundle id'})" if app else "Files"

    if result.is_empty:
        console.print(f"[yellow]No files found for {title}[/yellow]")
        return

    console.print(_candidates_table(result, title, "cyan"))
    console.print(
        f"\n[bold]{result.count} items, {result.total_size_human}[/bold]"
    )
    if result.cancelled:
        console.print("[yellow]Scan was cancelled; results may be incomplete[/yellow]")


def show_orphans(result: ResolutionResult) -> None:
    """Display leftovers of apps that are no longer installed."""
    if result.is_empty:
        console.print("[green]No orphaned files found[/green]")
        return

    console.print(_candidates_table(result, "Orphaned Files", "yellow"))
    total = f", {result.total_size_human}" if result.total_real_bytes else ""
    console.print(f"\n[bold]{result.count} orphaned items{total}[/bold]")
    if result.cancelled:
        console.print("[yellow]Scan was cancelled; results may be incomplete[/yellow]")


def show_app_header(app: AppDescriptor) -> None:
    lines = [f"[bold]{app.display_name}[/bold]"]
    if app.bundle_identifier:
        lines.append(f"Bundle ID: {app.bundle_identifier}")
    if app.version:
        lines.append(f"Version: {app.version}")
    lines.append(f"Path: {app.bundle_path}")
    if app.is_web_app:
        lines.append("[dim]Web app[/dim]")
    if app.is_wrapped:
        lines.append("[dim]Wrapped iOS app[/dim]")
    console.print(Panel("\n".join(lines), border_style="blue"))


def show_conditions(conditions: list[Condition], user_keys: set[str] | None = None) -> None:
    """Display the condition table; user overlay entries are marked."""
    user_keys = user_keys or set()
    table = Table(title="Conditions", show_header=True, header_style="bold")
    table.add_column("Key", style="cyan")
    table.add_column("Include")
    table.add_column("Exclude")
    table.add_column("Forced paths", overflow="fold")
    table.add_column("Source", justify="center")

    for condition in conditions:
        forced = [f"+ {p}" for p in condition.include_force]
        forced += [f"- {p}" for p in condition.exclude_force]
        table.add_row(
            condition.key,
            ", ".join(condition.include),
            ", ".join(condition.exclude),
            "\n".join(forced),
            "[green]user[/green]" if condition.key in user_keys else "built-in",
        )

    console.print(table)


def show_exclusions(exclusions: list[str]) -> None:
    if not exclusions:
        console.print("[dim]No orphan exclusions configured[/dim]")
        return
    console.print("[bold]Orphan exclusions[/bold]")
    for path in exclusions:
        console.print(f"  {path}")


def show_trash_result(result: TrashResult) -> None:
    """Display result of moving files to the Trash."""
    if result.dry_run:
        console.print("[yellow]DRY RUN - Nothing was moved[/yellow]")
        for path in result.moved:
            console.print(f"  [dim]would move[/dim] {path}")
    else:
        for path in result.moved:
            console.print(f"  [green]✓[/green] {path}")

    for error in result.errors:
        console.print(f"  [red]✗[/red] {error}")

    verb = "Would move" if result.dry_run else "Moved"
    console.print(f"\n[bold]{verb} {len(result.moved)} items to the Trash[/bold]")


def show_scanning_progress() -> Progress:
    """Create progress bar for scanning."""
    return Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TextColumn("{task.completed}/{task.total}"),
        TimeElapsedColumn(),
        console=console,
    )


def confirm_action(message: str) -> bool:
    """Ask for confirmation."""
    from rich.prompt import Confirm

    return Confirm.ask(message)
