"""Command-line interface for tasktrail."""

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import structlog
import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from tasktrail.analytics import Analytics
from tasktrail.errors import TaskTrailError
from tasktrail.history import HistoryWalker
from tasktrail.models import Task, TaskTrailSettings
from tasktrail.store import IntegrityChecker, SprintRegistry, TaskFilter, TaskStore
from tasktrail.window import Scope, TimeWindow

DEFAULT_WINDOW_DAYS = 30

app = typer.Typer(
    name="tasktrail",
    help="Tasks stored in your git repository, with history rebuilt from the git log",
    add_completion=False,
)
sprints_app = typer.Typer(help="Manage sprints and dangling sprint references")
stats_app = typer.Typer(help="History analytics")
app.add_typer(sprints_app, name="sprints")
app.add_typer(stats_app, name="stats")
console = Console()

_state: Dict[str, Any] = {}


@app.callback()
def main(
    tasks_dir: Optional[Path] = typer.Option(None, "--tasks-dir", help="Tasks directory (default: .tasks)"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
) -> None:
    """Configure settings and logging for every command."""
    overrides = {"tasks_dir": tasks_dir} if tasks_dir else {}
    settings = TaskTrailSettings(**overrides)
    level = logging.DEBUG if verbose else logging.getLevelName(settings.log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO
    structlog.configure(wrapper_class=structlog.make_filtering_bound_logger(level))
    _state["settings"] = settings


def _settings() -> TaskTrailSettings:
    return _state.get("settings") or TaskTrailSettings()


def _store() -> TaskStore:
    return TaskStore(_settings())


def _analytics() -> Analytics:
    settings = _settings()
    return Analytics(HistoryWalker(settings), TaskStore(settings))


def _fail(e: Exception) -> None:
    console.print(f"[bold red]Error:[/bold red] {e}")
    raise typer.Exit(1)


def _window(since: Optional[str], until: Optional[str], default_days: Optional[int] = DEFAULT_WINDOW_DAYS) -> TimeWindow:
    if since is None and default_days is not None:
        since = f"{default_days}d"
    return TimeWindow.parse(since=since, until=until)


def _scope(task_ids: Optional[List[str]], project: Optional[str]) -> Scope:
    return Scope(task_ids=task_ids or [], project=project)


def _parse_assignments(pairs: List[str]) -> Tuple[Dict[str, Any], Dict[str, Optional[str]]]:
    """Turn ``key=value`` arguments into update attributes.

    Returns:
        Tuple of (attributes, custom field values); a custom value of None
        removes that field
    """
    values: Dict[str, Any] = {}
    custom: Dict[str, Optional[str]] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep:
            raise typer.BadParameter(f"expected key=value, got '{pair}'")
        key = key.strip()
        if key in ("tags", "acceptance_criteria"):
            values[key] = [item.strip() for item in value.split(",") if item.strip()]
        elif key == "sprints":
            try:
                values[key] = [int(item) for item in value.split(",") if item.strip()]
            except ValueError:
                raise typer.BadParameter(f"sprint ids must be integers, got '{value}'")
        elif key.startswith("custom."):
            custom[key[len("custom."):]] = value or None
        else:
            values[key] = value or None
    return values, custom


def _merge_custom(custom: Dict[str, Optional[str]], current: Dict[str, Any]) -> Dict[str, Any]:
    merged = dict(current)
    for name, value in custom.items():
        if value is None:
            merged.pop(name, None)
        else:
            merged[name] = value
    return merged


@app.command()
def add(
    title: str = typer.Argument(..., help="Task title"),
    project: Optional[str] = typer.Option(None, "--project", "-p", help="Project prefix or name"),
    status: Optional[str] = typer.Option(None, "--status", "-s"),
    priority: Optional[str] = typer.Option(None, "--priority"),
    task_type: Optional[str] = typer.Option(None, "--type", "-t"),
    assignee: Optional[str] = typer.Option(None, "--assignee", "-a", help="Assignee (@me expands)"),
    tags: Optional[List[str]] = typer.Option(None, "--tag", help="Tag (repeatable)"),
    effort: Optional[str] = typer.Option(None, "--effort", "-e", help="Effort, e.g. 3d or 5pt"),
    description: Optional[str] = typer.Option(None, "--description", "-d"),
) -> None:
    """Create a task."""
    try:
        attributes = {
            "title": title,
            "status": status,
            "priority": priority,
            "type": task_type,
            "assignee": assignee,
            "tags": tags or [],
            "effort": effort,
            "description": description,
        }
        task_id = _store().create(project, {k: v for k, v in attributes.items() if v is not None})
        console.print(f"[bold green]✓[/bold green] Created {task_id}")
    except TaskTrailError as e:
        _fail(e)


@app.command()
def show(
    task_id: str = typer.Argument(..., help="Task identifier, e.g. BACK-1"),
    as_json: bool = typer.Option(False, "--json", help="Print the record as JSON"),
) -> None:
    """Show a task."""
    try:
        task = _store().get(task_id)
        if as_json:
            console.print_json(json.dumps(task.to_record()))
            return
        console.print(f"\n[bold]{task_id}[/bold] {task.title}")
        for field in ("status", "priority", "type", "assignee", "reporter", "effort", "due_date", "created", "modified"):
            value = getattr(task, field)
            if value:
                console.print(f"[cyan]{field}:[/cyan] {value}")
        if task.tags:
            console.print(f"[cyan]tags:[/cyan] {', '.join(task.tags)}")
        if task.sprints:
            console.print(f"[cyan]sprints:[/cyan] {', '.join(str(s) for s in task.sprints)}")
        if task.description:
            console.print(f"\n{task.description}")
        for comment in task.comments:
            console.print(f"\n[dim]{comment.timestamp} {comment.author or ''}[/dim]\n  {comment.body}")
    except TaskTrailError as e:
        _fail(e)


@app.command()
def edit(
    task_id: str = typer.Argument(..., help="Task identifier"),
    assignments: List[str] = typer.Argument(..., help="key=value pairs; an empty value clears the field"),
    strict: bool = typer.Option(False, "--strict", help="Fail if another writer changed the task meanwhile"),
) -> None:
    """Update fields of a task. ``custom.<name>=value`` sets one custom field and keeps the others."""
    values, custom = _parse_assignments(assignments)

    def _changes(current: Task) -> Dict[str, Any]:
        if not custom:
            return values
        return {**values, "custom_fields": _merge_custom(custom, current.custom_fields)}

    try:
        _store().modify(task_id, _changes, on_conflict="raise" if strict else "warn")
        console.print(f"[bold green]✓[/bold green] Updated {task_id}")
    except TaskTrailError as e:
        _fail(e)


@app.command()
def comment(
    task_id: str = typer.Argument(..., help="Task identifier"),
    body: str = typer.Argument(..., help="Comment text"),
    author: Optional[str] = typer.Option("@me", "--author", help="Comment author"),
) -> None:
    """Append a comment to a task."""
    try:
        _store().add_comment(task_id, body, author)
        console.print(f"[bold green]✓[/bold green] Commented on {task_id}")
    except TaskTrailError as e:
        _fail(e)


@app.command()
def rm(task_id: str = typer.Argument(..., help="Task identifier")) -> None:
    """Delete a task. Tasks that reference it are left unchanged."""
    try:
        _store().delete(task_id)
        console.print(f"[bold green]✓[/bold green] Deleted {task_id}")
    except TaskTrailError as e:
        _fail(e)


@app.command("list")
def list_tasks(
    project: Optional[str] = typer.Option(None, "--project", "-p"),
    status: Optional[List[str]] = typer.Option(None, "--status", "-s"),
    priority: Optional[List[str]] = typer.Option(None, "--priority"),
    assignee: Optional[str] = typer.Option(None, "--assignee", "-a"),
    tag: Optional[List[str]] = typer.Option(None, "--tag"),
    sprint: Optional[int] = typer.Option(None, "--sprint"),
    text: Optional[str] = typer.Option(None, "--search", "-q"),
    sort_by: str = typer.Option("id", "--sort"),
    reverse: bool = typer.Option(False, "--reverse"),
    limit: Optional[int] = typer.Option(None, "--limit", "-n"),
) -> None:
    """List tasks."""
    try:
        task_filter = TaskFilter(
            project=project,
            statuses=status or [],
            priorities=priority or [],
            assignee=assignee,
            tags=tag or [],
            sprint=sprint,
            text=text,
            sort_by=sort_by,
            reverse=reverse,
            limit=limit,
        )
        entries = _store().list(task_filter)

        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("ID", style="cyan")
        table.add_column("Status")
        table.add_column("Priority")
        table.add_column("Assignee", style="green")
        table.add_column("Title")
        for entry in entries:
            table.add_row(entry.id, entry.status or "", entry.priority or "", entry.assignee or "", entry.title)
        console.print(table)
        console.print(f"[dim]{len(entries)} task(s)[/dim]")
    except TaskTrailError as e:
        _fail(e)
    except ValueError as e:
        _fail(e)


@app.command()
def reindex() -> None:
    """Rebuild the task index from the record files."""
    try:
        count = _store().reindex()
        console.print(f"[bold green]✓[/bold green] Indexed {count} task(s)")
    except TaskTrailError as e:
        _fail(e)


@app.command()
def history(
    task_id: str = typer.Argument(..., help="Task identifier"),
    since: Optional[str] = typer.Option(None, "--since", help="e.g. 14d, 2024-01-01"),
    until: Optional[str] = typer.Option(None, "--until"),
    limit: Optional[int] = typer.Option(None, "--limit", "-n"),
    committed_only: bool = typer.Option(False, "--committed", help="Hide uncommitted changes"),
    as_json: bool = typer.Option(False, "--json"),
) -> None:
    """Show the change history of a task, newest first."""
    try:
        walker = HistoryWalker(_settings())
        window = _window(since, until, default_days=None)
        result = walker.get_history(
            task_id, window, limit, include_working_tree=False if committed_only else None
        ).to_result()
        if as_json:
            console.print_json(result.model_dump_json())
            return
        for event in result.events:
            label = "[yellow]working tree[/yellow]" if event.is_working_tree else f"[cyan]{event.short_commit}[/cyan]"
            console.print(f"\n{label} {event.timestamp:%Y-%m-%d %H:%M} [dim]{event.author}[/dim] {event.message}")
            for change in event.changes:
                if change.operation == "set":
                    console.print(escape(f"  [{change.kind}] {change.field}: {change.old!r} → {change.new!r}"))
                else:
                    item = change.new if change.operation == "add" else change.old
                    console.print(escape(f"  [{change.kind}] {change.field} {change.operation} {item!r}"))
        if result.skipped_revisions:
            console.print(f"\n[yellow]{result.skipped_revisions} unparsable revision(s) skipped[/yellow]")
    except TaskTrailError as e:
        _fail(e)


@app.command()
def snapshot(
    task_id: str = typer.Argument(..., help="Task identifier"),
    commit: str = typer.Argument(..., help="Commit hash, branch or tag"),
) -> None:
    """Print a task as it was at a commit."""
    try:
        result = HistoryWalker(_settings()).get_snapshot_at(task_id, commit)
        console.print(f"[cyan]{result.commit[:7]}[/cyan] {result.timestamp:%Y-%m-%d %H:%M} {result.path}")
        console.print_json(json.dumps(result.task.to_record()))
    except TaskTrailError as e:
        _fail(e)


@sprints_app.command("check")
def sprints_check(project: Optional[str] = typer.Option(None, "--project", "-p")) -> None:
    """Report tasks that reference unregistered sprints or missing tasks."""
    try:
        checker = IntegrityChecker(_store())
        report = checker.report(project)
        console.print(f"Scanned {report.scanned_tasks} task(s)")
        if report.is_clean():
            console.print("[bold green]✓[/bold green] No missing sprint references")
        for sprint_id, count in report.reference_counts.items():
            console.print(f"  [red]sprint {sprint_id}[/red] missing, referenced by {count} task(s)")
        for dangling in checker.dangling_relationships(project):
            console.print(f"  [yellow]{dangling.task_id}[/yellow] {dangling.field} → {dangling.target} (missing)")
    except TaskTrailError as e:
        _fail(e)


@sprints_app.command("cleanup")
def sprints_cleanup(
    sprint_id: Optional[int] = typer.Argument(None, help="Only remove references to this sprint"),
    project: Optional[str] = typer.Option(None, "--project", "-p"),
) -> None:
    """Remove dangling sprint references from tasks."""
    try:
        outcome = IntegrityChecker(_store()).cleanup(target=sprint_id, project=project)
        console.print(
            f"[bold green]✓[/bold green] Removed {outcome.removed_references} reference(s) "
            f"from {len(outcome.updated_tasks)} task(s)"
        )
        if outcome.remaining_missing:
            console.print(f"[yellow]Still missing:[/yellow] {', '.join(str(s) for s in outcome.remaining_missing)}")
    except TaskTrailError as e:
        _fail(e)


@sprints_app.command("add")
def sprints_add(
    name: Optional[str] = typer.Argument(None, help="Sprint name"),
    sprint_id: Optional[int] = typer.Option(None, "--id", help="Explicit sprint id"),
) -> None:
    """Register a sprint."""
    try:
        created = SprintRegistry(_settings().sprints_path()).create(sprint_id, name)
        console.print(f"[bold green]✓[/bold green] Created sprint {created}")
    except TaskTrailError as e:
        _fail(e)


@sprints_app.command("remove")
def sprints_remove(
    sprint_id: int = typer.Argument(..., help="Sprint id"),
    keep_references: bool = typer.Option(False, "--keep-references", help="Do not detach tasks"),
) -> None:
    """Remove a sprint, detaching it from tasks."""
    try:
        outcome = IntegrityChecker(_store()).remove_sprint(sprint_id, cleanup=not keep_references)
        message = f"[bold green]✓[/bold green] Removed sprint {sprint_id}"
        if outcome is not None:
            message += f", detached from {len(outcome.updated_tasks)} task(s)"
        console.print(message)
    except TaskTrailError as e:
        _fail(e)


@stats_app.command("status")
def stats_status(
    task_ids: Optional[List[str]] = typer.Argument(None, help="Tasks (default: all)"),
    project: Optional[str] = typer.Option(None, "--project", "-p"),
    since: Optional[str] = typer.Option(None, "--since"),
    until: Optional[str] = typer.Option(None, "--until"),
) -> None:
    """Time spent in each status."""
    try:
        result = _analytics().time_in_status(_scope(task_ids, project), _window(since, until))
        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("Status", style="cyan")
        table.add_column("Hours", justify="right")
        table.add_column("Share", justify="right")
        for item in result.items:
            table.add_row(item.status, f"{item.hours:.2f}", f"{item.percent:.0%}")
        console.print(table)
    except TaskTrailError as e:
        _fail(e)


@stats_app.command("churn")
def stats_churn(
    project: Optional[str] = typer.Option(None, "--project", "-p"),
    since: Optional[str] = typer.Option(None, "--since"),
    until: Optional[str] = typer.Option(None, "--until"),
    limit: int = typer.Option(20, "--limit", "-n"),
) -> None:
    """Most frequently changed tasks."""
    try:
        items = _analytics().churn(_scope(None, project), _window(since, until))[:limit]
        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("Task", style="cyan")
        table.add_column("Commits", justify="right")
        table.add_column("Last change")
        table.add_column("By", style="green")
        for item in items:
            table.add_row(item.task_id, str(item.commits), f"{item.last_date:%Y-%m-%d}", item.last_author)
        console.print(table)
    except TaskTrailError as e:
        _fail(e)


@stats_app.command("authors")
def stats_authors(
    project: Optional[str] = typer.Option(None, "--project", "-p"),
    since: Optional[str] = typer.Option(None, "--since"),
    until: Optional[str] = typer.Option(None, "--until"),
) -> None:
    """Commit authors by number of task commits."""
    try:
        items = _analytics().authors(_scope(None, project), _window(since, until))
        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("Author", style="green")
        table.add_column("Email")
        table.add_column("Commits", justify="right")
        table.add_column("Last commit")
        for item in items:
            table.add_row(item.author, item.email, str(item.commits), f"{item.last_date:%Y-%m-%d}")
        console.print(table)
    except TaskTrailError as e:
        _fail(e)


@stats_app.command("activity")
def stats_activity(
    group_by: str = typer.Option("day", "--by", help="day, week, author or project"),
    project: Optional[str] = typer.Option(None, "--project", "-p"),
    since: Optional[str] = typer.Option(None, "--since"),
    until: Optional[str] = typer.Option(None, "--until"),
) -> None:
    """Task commits per day, week, author or project."""
    try:
        items = _analytics().activity(_scope(None, project), _window(since, until), group_by)
        table = Table(show_header=True, header_style="bold magenta")
        table.add_column(group_by.capitalize(), style="cyan")
        table.add_column("Commits", justify="right")
        for item in items:
            table.add_row(item.key, str(item.count))
        console.print(table)
    except TaskTrailError as e:
        _fail(e)


@stats_app.command("stale")
def stats_stale(
    threshold: str = typer.Argument("21d", help="Minimum age of the last commit, e.g. 21d or 8w"),
    project: Optional[str] = typer.Option(None, "--project", "-p"),
    limit: Optional[int] = typer.Option(None, "--limit", "-n"),
) -> None:
    """Tasks not committed for a while, oldest first."""
    try:
        items = _analytics().stale(threshold, _scope(None, project), limit=limit)
        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("Task", style="cyan")
        table.add_column("Age (days)", justify="right")
        table.add_column("Last change")
        table.add_column("By", style="green")
        for item in items:
            table.add_row(item.task_id, str(item.age_days), f"{item.last_date:%Y-%m-%d}", item.last_author)
        console.print(table)
        console.print(f"[dim]{len(items)} stale task(s)[/dim]")
    except TaskTrailError as e:
        _fail(e)


@stats_app.command("effort")
def stats_effort(
    project: Optional[str] = typer.Option(None, "--project", "-p"),
    group_by: Optional[str] = typer.Option(None, "--by", help="assignee, status, project, type or priority"),
    transitions: Optional[str] = typer.Option(
        None, "--transitions", help="Only tasks that moved into this status in the window"
    ),
    since: Optional[str] = typer.Option(None, "--since"),
    until: Optional[str] = typer.Option(None, "--until"),
) -> None:
    """Total and average effort of current tasks."""
    try:
        summary = _analytics().effort(
            _scope(None, project), group_by, transitions=transitions, window=_window(since, until, default_days=None)
        )
        console.print(f"[cyan]Total hours:[/cyan] {summary.total_hours:.2f}")
        if summary.average_hours is not None:
            console.print(f"[cyan]Average hours:[/cyan] {summary.average_hours:.2f}")
        console.print(f"[cyan]Total points:[/cyan] {summary.total_points:g}")
        console.print(f"[dim]{summary.counted} counted, {summary.missing} without effort[/dim]")
        if summary.unparsable:
            console.print(f"[yellow]Unparsable:[/yellow] {', '.join(summary.unparsable)}")
        if summary.groups:
            table = Table(show_header=True, header_style="bold magenta")
            table.add_column(group_by.capitalize(), style="cyan")
            table.add_column("Tasks", justify="right")
            table.add_column("Hours", justify="right")
            table.add_column("Points", justify="right")
            for group in summary.groups:
                table.add_row(group.key, str(group.tasks), f"{group.total_hours:.2f}", f"{group.total_points:g}")
            console.print(table)
    except TaskTrailError as e:
        _fail(e)


if __name__ == "__main__":
    app()
