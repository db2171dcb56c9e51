"""brainctl - admin CLI for brain stores.

A thin consumer of BrainRepository: every command maps to one repository
call and renders its result with rich (or as JSON with --json).
"""

import json
import sys
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path

import click
from rich.console import Console
from rich.table import Table

from .canonical import decode
from .config import Settings, configure_logging
from .constants import DEFAULT_COMMIT_LIMIT, MOVE_MODES
from .errors import BrainError, StorageException
from .runtime import Runtime
from .timeutil import format_relative_time

console = Console()


@contextmanager
def reporting():
    """Print store errors and exit non-zero instead of dumping a traceback."""
    try:
        yield
    except StorageException as e:
        console.print(f"[red]Storage failure:[/red] {e.message}")
        sys.exit(2)
    except BrainError as e:
        console.print(f"[red]Error ({e.code}):[/red] {e.message}")
        sys.exit(1)


def _repo(ctx):
    return ctx.obj["runtime"].repository


def _print_json(value) -> None:
    click.echo(json.dumps(value, indent=2, ensure_ascii=False, default=str))


def _ago(ts: str | None) -> str:
    if not ts:
        return "-"
    return format_relative_time(datetime.fromisoformat(ts))


def _read_payload(data: str | None, file: str | None):
    if data is not None and file is not None:
        raise click.UsageError("Use either --data or --file, not both")
    if file == "-":
        return decode(sys.stdin.read())
    if file is not None:
        return decode(Path(file).read_bytes())
    if data is not None:
        return decode(data)
    return None


@click.group()
@click.option(
    "--root",
    envvar="BRAIN_PATH",
    type=click.Path(path_type=Path),
    help="Brain store root directory (default: ./.brain)",
)
@click.option("--brain", "brain", default=None, help="Target brain (default: the active one)")
@click.option("--log-level", envvar="BRAIN_LOG_LEVEL", default=None, help="Logging level")
@click.pass_context
def cli(ctx, root, brain, log_level):
    """Brainstore - versioned flat-file JSON document store."""
    ctx.ensure_object(dict)
    with reporting():
        try:
            settings = Settings.from_env(root=root, log_level=log_level)
        except ValueError as e:
            raise click.BadParameter(str(e)) from e
        configure_logging(settings)
        ctx.obj["runtime"] = Runtime.boot(settings)
    ctx.obj["brain"] = brain


# --- Brains ---


@cli.command("brains")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def brains(ctx, as_json):
    """List user brains."""
    with reporting():
        items = _repo(ctx).list_brains()
    if as_json:
        _print_json(items)
        return

    table = Table(title="Brains")
    table.add_column("", width=1)
    table.add_column("Slug", style="cyan")
    table.add_column("Projects", justify="right")
    table.add_column("Size", justify="right")
    table.add_column("Updated")
    for item in items:
        if "error" in item:
            table.add_row("", item["slug"], "-", "-", f"[red]{item['error']}[/red]")
            continue
        marker = "[green]*[/green]" if item["active"] else ""
        table.add_row(marker, item["slug"], str(item["project_count"]), f"{item['bytes']} B", _ago(item["updated_at"]))
    console.print(table)


@cli.group()
def brain():
    """Manage brains, integrity and backups."""


@brain.command("init")
@click.argument("slug")
@click.option("--activate", is_flag=True, help="Make it the active brain")
@click.pass_context
def brain_init(ctx, slug, activate):
    """Create a new brain."""
    with reporting():
        info = _repo(ctx).create_brain(slug, activate=activate)
    suffix = " (active)" if activate else ""
    console.print(f"[green]✓[/green] Created brain [cyan]{info['slug']}[/cyan]{suffix}")


@brain.command("switch")
@click.argument("slug")
@click.pass_context
def brain_switch(ctx, slug):
    """Set the active brain."""
    with reporting():
        result = _repo(ctx).set_active_brain(slug)
    console.print(f"[green]✓[/green] Active brain: [cyan]{result['active']}[/cyan]")


@brain.command("info")
@click.argument("slug", required=False)
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def brain_info(ctx, slug, as_json):
    """Show brain statistics."""
    with reporting():
        report = _repo(ctx).brain_report(slug or ctx.obj["brain"])
    if as_json:
        _print_json(report)
        return
    console.print(f"[bold]{report['slug']}[/bold] [dim]{report['uuid']}[/dim]")
    console.print(f"  Path:     {report['path']} ({report['bytes']} B)")
    console.print(f"  Projects: {report['project_count']}, entities: {report['entity_count']}, "
                  f"versions: {report['version_count']}, commits: {report['commit_count']}")
    console.print(f"  Updated:  {_ago(report['updated_at'])}")


@brain.command("validate")
@click.argument("slug", required=False)
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def brain_validate(ctx, slug, as_json):
    """Re-verify hashes, ledgers and the commit index."""
    with reporting():
        report = _repo(ctx).integrity_report(slug or ctx.obj["brain"])
    if as_json:
        _print_json(report)
    elif report["ok"]:
        console.print(f"[green]✓[/green] {report['brain']}: {report['versions']} versions verified, "
                      f"sha256 {report['file_hash'][:12]}")
    else:
        console.print(f"[red]✗[/red] {report['brain']}: {len(report['issues'])} issues")
        for issue in report["issues"]:
            console.print(f"  - {issue}")
    if not report["ok"]:
        sys.exit(1)


@brain.command("delete")
@click.argument("slug")
@click.confirmation_option(prompt="Delete this brain permanently?")
@click.pass_context
def brain_delete(ctx, slug):
    """Delete a (non-active) brain."""
    with reporting():
        _repo(ctx).delete_brain(slug)
    console.print(f"[green]✓[/green] Deleted brain {slug}")


@brain.command("backup")
@click.argument("slug", required=False)
@click.option("--label", default=None, help="Label appended to the file name")
@click.option("--compress", is_flag=True, help="gzip the snapshot")
@click.pass_context
def brain_backup(ctx, slug, label, compress):
    """Snapshot a brain file."""
    with reporting():
        info = _repo(ctx).backup(slug or ctx.obj["brain"], label=label, compress=compress)
    console.print(f"[green]✓[/green] Backup written: {info['file']} ({info['bytes']} B)")


@brain.command("backups")
@click.argument("slug", required=False)
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def brain_backups(ctx, slug, as_json):
    """List backups."""
    with reporting():
        items = _repo(ctx).list_backups(slug)
    if as_json:
        _print_json(items)
        return
    if not items:
        console.print("[dim]No backups[/dim]")
        return
    table = Table(title="Backups")
    table.add_column("File", style="cyan")
    table.add_column("Brain")
    table.add_column("Size", justify="right")
    table.add_column("Created")
    for item in items:
        table.add_row(item["file"], item["slug"], f"{item['bytes']} B", _ago(item["created_at"]))
    console.print(table)


@brain.command("prune")
@click.argument("slug", required=False)
@click.option("--keep", type=int, default=None, help="Keep the N newest backups per brain")
@click.option("--older-than", default=None, help="Days, or a time reference like '2 weeks ago'")
@click.option("--dry-run", is_flag=True, help="Only report what would be removed")
@click.pass_context
def brain_prune(ctx, slug, keep, older_than, dry_run):
    """Delete old backups."""
    with reporting():
        result = _repo(ctx).prune_backups(slug, keep=keep, older_than=older_than, dry_run=dry_run)
    if result["skipped"]:
        console.print("[yellow]![/yellow] Nothing to do: pass --keep or --older-than")
        return
    verb = "Would remove" if dry_run else "Removed"
    console.print(f"{verb} {result['count']} backups")
    for item in result["removed"]:
        console.print(f"  [dim]{item['file']}[/dim]")


@brain.command("restore")
@click.argument("file")
@click.option("--target", default=None, help="Restore under this slug")
@click.option("--overwrite", is_flag=True, help="Replace an existing brain")
@click.option("--activate", is_flag=True, help="Make the restored brain active")
@click.pass_context
def brain_restore(ctx, file, target, overwrite, activate):
    """Restore a brain from a backup file."""
    with reporting():
        result = _repo(ctx).restore_from_backup(file, target=target, overwrite=overwrite, activate=activate)
    console.print(f"[green]✓[/green] Restored [cyan]{result['brain']}[/cyan] "
                  f"({result['projects']} projects) from {Path(result['source']).name}")


# --- Projects ---


@cli.group()
def project():
    """Manage projects."""


@project.command("list")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def project_list(ctx, as_json):
    """List projects."""
    with reporting():
        items = _repo(ctx).list_projects(brain=ctx.obj["brain"])
    if as_json:
        _print_json(items)
        return
    if not items:
        console.print("[dim]No projects[/dim]")
        return
    table = Table(title="Projects")
    table.add_column("Slug", style="cyan")
    table.add_column("Title")
    table.add_column("Status")
    table.add_column("Entities", justify="right")
    table.add_column("Updated")
    for item in items:
        table.add_row(item["slug"], item["title"], item["status"], str(item["entity_count"]), _ago(item["updated_at"]))
    console.print(table)


@project.command("create")
@click.argument("slug")
@click.option("--title", default=None)
@click.option("--description", default=None)
@click.pass_context
def project_create(ctx, slug, title, description):
    """Create a project."""
    with reporting():
        info = _repo(ctx).create_project(slug, title=title, description=description, brain=ctx.obj["brain"])
    console.print(f"[green]✓[/green] Created project [cyan]{info['slug']}[/cyan]")


@project.command("update")
@click.argument("slug")
@click.option("--title", default=None)
@click.option("--description", default=None)
@click.pass_context
def project_update(ctx, slug, title, description):
    """Update project title or description."""
    with reporting():
        info = _repo(ctx).update_project(slug, title=title, description=description, brain=ctx.obj["brain"])
    console.print(f"[green]✓[/green] Updated project [cyan]{info['slug']}[/cyan]")


@project.command("archive")
@click.argument("slug")
@click.pass_context
def project_archive(ctx, slug):
    """Archive a project (deactivates its entities)."""
    with reporting():
        info = _repo(ctx).archive_project(slug, brain=ctx.obj["brain"])
    console.print(f"[green]✓[/green] Archived [cyan]{slug}[/cyan] ({info['entities_archived']} entities)")


@project.command("restore")
@click.argument("slug")
@click.option("--no-reactivate", is_flag=True, help="Leave entities archived")
@click.pass_context
def project_restore(ctx, slug, no_reactivate):
    """Restore an archived project."""
    with reporting():
        info = _repo(ctx).restore_project(slug, reactivate=not no_reactivate, brain=ctx.obj["brain"])
    console.print(f"[green]✓[/green] Restored [cyan]{slug}[/cyan] ({info['entities_reactivated']} entities reactivated)")


@project.command("delete")
@click.argument("slug")
@click.option("--keep-commits", is_flag=True, help="Keep commit index entries")
@click.confirmation_option(prompt="Delete this project permanently?")
@click.pass_context
def project_delete(ctx, slug, keep_commits):
    """Permanently delete a project."""
    with reporting():
        info = _repo(ctx).delete_project(slug, purge_commits=not keep_commits, brain=ctx.obj["brain"])
    console.print(f"[green]✓[/green] Deleted [cyan]{slug}[/cyan] ({info['entities_removed']} entities, "
                  f"{info['commits_removed']} commits)")


@project.command("info")
@click.argument("slug")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def project_info(ctx, slug, as_json):
    """Show project statistics."""
    with reporting():
        report = _repo(ctx).project_report(slug, brain=ctx.obj["brain"])
    if as_json:
        _print_json(report)
        return
    console.print(f"[bold]{report['title']}[/bold] [dim]({report['slug']}, {report['status']})[/dim]")
    if report["description"]:
        console.print(f"  {report['description']}")
    console.print(f"  Entities: {report['entity_count']} ({report['active_entities']} active), "
                  f"versions: {report['version_count']}, commits: {report['commit_count']}")


# --- Entities ---


@cli.group()
def entity():
    """Manage entities and their versions."""


@entity.command("list")
@click.argument("project_slug")
@click.option("--parent", default=None, help="Only direct children of this path ('' for root)")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def entity_list(ctx, project_slug, parent, as_json):
    """List entities of a project."""
    with reporting():
        items = _repo(ctx).list_entities(project_slug, parent=parent, brain=ctx.obj["brain"])
    if as_json:
        _print_json(items)
        return
    if not items:
        console.print("[dim]No entities[/dim]")
        return
    table = Table(title=f"Entities in {project_slug}")
    table.add_column("Path", style="cyan")
    table.add_column("Active", justify="right")
    table.add_column("Versions", justify="right")
    table.add_column("Updated")
    for item in items:
        active = str(item["active_version"]) if item["active_version"] is not None else "[dim]-[/dim]"
        table.add_row(item["slug"], active, str(item["version_count"]), _ago(item["updated_at"]))
    console.print(table)


@entity.command("show")
@click.argument("project_slug")
@click.argument("selector")
@click.pass_context
def entity_show(ctx, project_slug, selector):
    """Show an entity version: PATH, PATH@7 or PATH#commit."""
    from .ledger import parse_selector

    with reporting():
        path, ref = parse_selector(selector)
        result = _repo(ctx).get_entity(project_slug, path, ref, brain=ctx.obj["brain"])
    _print_json(result)


@entity.command("save")
@click.argument("project_slug")
@click.argument("path")
@click.option("--data", default=None, help="JSON payload")
@click.option(
    "--file",
    "file",
    type=click.Path(exists=True, dir_okay=False, allow_dash=True),
    default=None,
    help="Read JSON payload from file ('-' for stdin)",
)
@click.option("--parent", default=None, help="Reposition under this path ('' for root)")
@click.option("--schema", default=None, help="Bind a schema selector, e.g. schemas/article@2")
@click.pass_context
def entity_save(ctx, project_slug, path, data, file, parent, schema):
    """Save a new version of an entity."""
    with reporting():
        payload = _read_payload(data, file)
        result = _repo(ctx).save_entity(
            project_slug, path, payload, parent=parent, schema=schema, brain=ctx.obj["brain"]
        )
    if "version" in result:
        console.print(f"[green]✓[/green] {result['project']}/{result['entity']} "
                      f"v{result['version']} [yellow]{result['commit'][:12]}[/yellow]")
    else:
        console.print(f"[green]✓[/green] Updated {result['project']}/{result['entity']}")


@entity.command("move")
@click.argument("project_slug")
@click.argument("source")
@click.argument("target", required=False, default="")
@click.option("--mode", type=click.Choice(MOVE_MODES), default=MOVE_MODES[0], show_default=True)
@click.pass_context
def entity_move(ctx, project_slug, source, target, mode):
    """Move SOURCE (with its subtree) under TARGET (root if omitted)."""
    with reporting():
        result = _repo(ctx).move_entity(project_slug, source, target, mode=mode, brain=ctx.obj["brain"])
    if not result["moved"]:
        console.print("[yellow]![/yellow] Nothing moved")
    for old, new in result["moved"].items():
        console.print(f"  {old} -> [cyan]{new}[/cyan]")


@entity.command("remove")
@click.argument("project_slug")
@click.argument("paths", nargs=-1, required=True)
@click.option("--recursive", is_flag=True, help="Deactivate the whole subtree")
@click.pass_context
def entity_remove(ctx, project_slug, paths, recursive):
    """Deactivate entities (versions are kept)."""
    with reporting():
        result = _repo(ctx).remove_entity(project_slug, list(paths), recursive=recursive, brain=ctx.obj["brain"])
    console.print(f"[green]✓[/green] Deactivated {len(result['removed'])} entities")
    for old, new in result["promoted"].items():
        console.print(f"  promoted {old} -> [cyan]{new}[/cyan]")


@entity.command("delete")
@click.argument("project_slug")
@click.argument("paths", nargs=-1, required=True)
@click.option("--recursive", is_flag=True, help="Delete the whole subtree")
@click.confirmation_option(prompt="Delete permanently, with all versions?")
@click.pass_context
def entity_delete(ctx, project_slug, paths, recursive):
    """Permanently delete entities and their versions."""
    with reporting():
        result = _repo(ctx).delete_entity(project_slug, list(paths), recursive=recursive, brain=ctx.obj["brain"])
    console.print(f"[green]✓[/green] Deleted {len(result['deleted'])} entities, "
                  f"{result['commits_removed']} commits")
    for old, new in result["promoted"].items():
        console.print(f"  promoted {old} -> [cyan]{new}[/cyan]")


@entity.command("restore")
@click.argument("project_slug")
@click.argument("path")
@click.argument("ref", required=False)
@click.pass_context
def entity_restore(ctx, project_slug, path, ref):
    """Reactivate a version (newest archived/inactive if REF is omitted)."""
    with reporting():
        result = _repo(ctx).restore_version(project_slug, path, ref, brain=ctx.obj["brain"])
    console.print(f"[green]✓[/green] {result['project']}/{result['entity']} now at v{result['version']}")


@entity.command("versions")
@click.argument("project_slug")
@click.argument("path")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def entity_versions(ctx, project_slug, path, as_json):
    """List the versions of an entity."""
    with reporting():
        items = _repo(ctx).list_versions(project_slug, path, brain=ctx.obj["brain"])
    if as_json:
        _print_json(items)
        return
    table = Table(title=f"{project_slug}/{path}")
    table.add_column("Version", justify="right")
    table.add_column("Status")
    table.add_column("Commit", style="yellow")
    table.add_column("Committed")
    for item in items:
        status = f"[green]{item['status']}[/green]" if item["status"] == "active" else item["status"]
        table.add_row(str(item["version"]), status, (item["commit"] or "")[:12], _ago(item["committed_at"]))
    console.print(table)


# --- Commits and maintenance ---


@cli.command()
@click.argument("project_slug")
@click.option("--entity", "entity_path", default=None, help="Only this entity")
@click.option("-n", "--limit", default=DEFAULT_COMMIT_LIMIT, show_default=True, help="Number of commits")
@click.option("--since", default=None, help="ISO date or reference like '2 days ago'")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def commits(ctx, project_slug, entity_path, limit, since, as_json):
    """Show commits of a project, newest first."""
    with reporting():
        items = _repo(ctx).list_commits(
            project_slug, entity_path, limit=limit, since=since, brain=ctx.obj["brain"]
        )
    if as_json:
        _print_json(items)
        return
    if not items:
        console.print("[dim]No commits[/dim]")
        return
    for item in items:
        console.print(f"[yellow]{item['commit'][:12]}[/yellow] {item['entity']}@{item['version']} "
                      f"[dim]{item['status']}, {_ago(item['committed_at'])}[/dim]")


@cli.command()
@click.argument("project_slug")
@click.option("--entity", "entity_path", default=None, help="Only this entity")
@click.option("--keep", type=int, default=0, show_default=True, help="Newest non-active versions to keep")
@click.option("--dry-run", is_flag=True, help="Only report what would be removed")
@click.pass_context
def cleanup(ctx, project_slug, entity_path, keep, dry_run):
    """Purge inactive versions."""
    with reporting():
        result = _repo(ctx).purge_inactive_versions(
            project_slug, entity_path, keep_newest=keep, dry_run=dry_run, brain=ctx.obj["brain"]
        )
    verb = "Would remove" if dry_run else "Removed"
    console.print(f"{verb} {result['count']} versions")
    for item in result["removed"]:
        console.print(f"  [dim]{item['entity']}@{item['version']} ({item['status']})[/dim]")


@cli.command()
@click.argument("project_slug", required=False)
@click.pass_context
def compact(ctx, project_slug):
    """Rebuild the commit index and re-sort version ledgers."""
    with reporting():
        result = _repo(ctx).compact(project_slug, brain=ctx.obj["brain"])
    console.print(f"[green]✓[/green] Compacted: {result['commits_added']} commits added, "
                  f"{result['commits_removed']} removed, {result['commits_relocated']} relocated")


@cli.command()
@click.argument("project_slug", required=False)
@click.option("--dry-run", is_flag=True, help="Only report findings")
@click.pass_context
def repair(ctx, project_slug, dry_run):
    """Fix inconsistent entity metadata."""
    with reporting():
        result = _repo(ctx).repair(project_slug, dry_run=dry_run, brain=ctx.obj["brain"])
    if not result["changed"]:
        console.print("[green]✓[/green] Nothing to repair")
        return
    verb = "Would repair" if dry_run else "Repaired"
    console.print(f"{verb} {result['entities_repaired']} entities in {result['projects_updated']} projects")
    for line in result["fixes"]:
        console.print(f"  - {line}")


# --- Config ---


@cli.group()
def config():
    """Brain-level configuration entries."""


@config.command("get")
@click.argument("key")
@click.pass_context
def config_get(ctx, key):
    with reporting():
        value = _repo(ctx).get_config(key, brain=ctx.obj["brain"])
    _print_json(value)


@config.command("set")
@click.argument("key")
@click.argument("value")
@click.pass_context
def config_set(ctx, key, value):
    """Set KEY to VALUE (parsed as JSON, else kept as a string)."""
    try:
        parsed = json.loads(value)
    except json.JSONDecodeError:
        parsed = value
    with reporting():
        result = _repo(ctx).set_config(key, parsed, brain=ctx.obj["brain"])
    console.print(f"[green]✓[/green] {result['key']} = {json.dumps(result['value'], ensure_ascii=False)}")


@config.command("unset")
@click.argument("key")
@click.pass_context
def config_unset(ctx, key):
    with reporting():
        _repo(ctx).delete_config(key, brain=ctx.obj["brain"])
    console.print(f"[green]✓[/green] Removed {key}")


@config.command("list")
@click.pass_context
def config_list(ctx):
    with reporting():
        _print_json(_repo(ctx).list_config(brain=ctx.obj["brain"]))


if __name__ == "__main__":
    cli()
