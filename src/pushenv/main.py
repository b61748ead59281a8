"""
pushenv CLI - encrypted, versioned .env sync

Main entry point for the pushenv command-line tool.
"""

import functools
import logging
import os
import subprocess
import sys
from pathlib import Path
from typing import List

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table
from rich import box

from .core.crypto import generate_salt
from .core.errors import NotInitialized, PushEnvError
from .core.keystore import KeyEntry, KeyStore
from .core.loader import apply_env
from .core.project import ProjectConfig, get_config_path, new_project_id, DEFAULT_STAGES
from .core.storage import DEFAULT_STAGE, S3BlobStore, load_credentials
from .core.syncer import Confirmation, SyncEngine
from .core.envdiff import DiffResult


console = Console()
logger = logging.getLogger("pushenv.cli")

RULE = "═" * 60


def setup_logging(verbose: bool):
    """Route pushenv's loggers through rich; DEBUG with --verbose, else WARNING."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(name)s: %(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


def handle_errors(func):
    """Print PushEnvError as a categorized message and exit non-zero."""
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except PushEnvError as exc:
            console.print(f"[red]✗ {exc.message}[/red]")
            if exc.hint:
                console.print(f"[dim]  {exc.hint}[/dim]")
            sys.exit(1)
    return wrapper


def ask_passphrase() -> str:
    return click.prompt("Enter the passphrase", hide_input=True)


def get_keystore(ctx: click.Context) -> KeyStore:
    keystore = ctx.obj.get("keystore")
    if keystore is None:
        keystore = KeyStore()
        ctx.obj["keystore"] = keystore
    return keystore


def build_engine(ctx: click.Context, project_root: str) -> SyncEngine:
    """
    Wire a SyncEngine from the project config, the local key cache and the
    configured object store. Tests pre-seed ctx.obj with "store" and
    "keystore".
    """
    config = ProjectConfig.load(project_root)
    store = ctx.obj.get("store")
    if store is None:
        store = S3BlobStore.from_credentials(load_credentials())
        ctx.obj["store"] = store

    return SyncEngine(config, store, get_keystore(ctx), ask_passphrase=ask_passphrase)


def confirm_gates(gates: List[Confirmation], action: str) -> bool:
    """Ask every confirmation in order; False (and a notice) on the first 'no'."""
    for gate in gates:
        if gate.danger:
            console.print(f"\n[bold red]⚠️  WARNING: {gate.reason}[/bold red]\n")
        else:
            console.print(f"\n[yellow]⚠️  {gate.reason}[/yellow]\n")

        if not click.confirm(gate.prompt, default=False):
            console.print(f"[dim]{action} cancelled.[/dim]")
            return False
    return True


def print_context(engine: SyncEngine, stage: str, **extra):
    console.print(f"[dim]Project: {engine.project_id}[/dim]")
    console.print(f"[dim]Stage: {stage}[/dim]")
    for label, value in extra.items():
        console.print(f"[dim]{label}: {value}[/dim]")
    console.print()


def render_diff(result: DiffResult):
    """Print added/removed/changed/unchanged sections."""
    if result.added:
        console.print(f"[bold green]Added (in remote, not in local): {len(result.added)}[/bold green]")
        for item in result.added:
            console.print(f"[green]  + {item.key}={escape(item.value)}[/green]", highlight=False)
        console.print()

    if result.removed:
        console.print(f"[bold red]Removed (in local, not in remote): {len(result.removed)}[/bold red]")
        for item in result.removed:
            console.print(f"[red]  - {item.key}={escape(item.value)}[/red]", highlight=False)
        console.print()

    if result.changed:
        console.print(f"[bold yellow]Changed: {len(result.changed)}[/bold yellow]")
        for item in result.changed:
            console.print(f"[yellow]  ~ {item.key}:[/yellow]")
            console.print(f"[red]    - {escape(item.local_value)}  (local)[/red]", highlight=False)
            console.print(f"[green]    + {escape(item.remote_value)}  (remote)[/green]", highlight=False)
        console.print()

    if result.unchanged:
        console.print(f"[dim]Unchanged: {result.unchanged} variables[/dim]")
        console.print()


def stage_option(func):
    return click.option('--stage', '-s', default=DEFAULT_STAGE, show_default=True,
                        help='Stage (environment) to operate on')(func)


def project_root_option(func):
    return click.option('--project-root', default=".", help='Project root directory')(func)


@click.group()
@click.option('--verbose', '-v', is_flag=True, help='Show debug logging')
@click.version_option(package_name="pushenv")
@click.pass_context
def cli(ctx, verbose):
    """
    pushenv - Encrypted, versioned .env sync for teams
    """
    ctx.ensure_object(dict)
    setup_logging(verbose)


@cli.command()
@click.option('--project-id', default=None, help='Project id (generated when omitted)')
@click.option('--stage', 'stages', multiple=True, metavar='NAME=PATH',
              help='Stage and its local env file, repeatable (default: development=.env)')
@click.option('--new-key', is_flag=True, help='Set a new passphrase for this project')
@project_root_option
@click.pass_context
@handle_errors
def init(ctx, project_id, stages, new_key, project_root):
    """
    Initialize pushenv in this project.

    Writes .pushenv/config.json and, for a new project, derives and caches
    the encryption key from a passphrase you choose.
    """
    console.print("[cyan]Initializing pushenv...[/cyan]")

    existing = None
    if ProjectConfig.exists(project_root):
        try:
            existing = ProjectConfig.load(project_root)
        except NotInitialized:
            logger.warning("Unreadable %s, rewriting it", get_config_path(project_root))
            console.print("[yellow]⚠ Existing .pushenv/config.json is unreadable; starting fresh.[/yellow]")
    stage_map = _parse_stage_options(stages) or (dict(existing.stages) if existing else dict(DEFAULT_STAGES))
    config = ProjectConfig(
        project_id=project_id or (existing.project_id if existing else new_project_id()),
        stages=stage_map,
        root=Path(project_root),
    )
    config.save()
    console.print(f"[green]✓ Wrote .pushenv/config.json (project {config.project_id})[/green]")

    keystore = get_keystore(ctx)
    if existing is None or new_key:
        passphrase = click.prompt("Choose a passphrase", hide_input=True, confirmation_prompt=True)
        keystore.put(config.project_id, KeyEntry.derive(passphrase, generate_salt()))
        console.print("[green]✓ Derived and cached encryption key[/green]")
    elif keystore.get(config.project_id) is None:
        console.print("[yellow]⚠ No key cached on this machine.[/yellow]")
        console.print("[dim]  Run 'pushenv pull' once with the shared passphrase.[/dim]")

    _ignore_env_files(Path(project_root), config.stages.values())

    console.print("\n[bold green]✓ pushenv initialized successfully![/bold green]")
    console.print("\nNext steps:")
    console.print("  1. Commit [yellow].pushenv/config.json[/yellow]")
    console.print("  2. Run [cyan]pushenv push --stage <stage>[/cyan] to upload")


def _parse_stage_options(stages) -> dict:
    parsed = {}
    for item in stages:
        if '=' not in item:
            raise click.BadParameter(f"expected NAME=PATH, got '{item}'", param_hint="--stage")
        name, path = item.split('=', 1)
        parsed[name.strip()] = path.strip()
    return parsed


def _ignore_env_files(root: Path, paths):
    """Add stage env files to .gitignore."""
    gitignore = root / ".gitignore"
    content = gitignore.read_text() if gitignore.exists() else ""
    existing = {line.strip() for line in content.splitlines()}
    missing = [p for p in paths if p not in existing]
    if not missing:
        return

    block = "\n# Environment variables (pushenv)\n" + "".join(f"{p}\n" for p in missing)
    if content and not content.endswith("\n"):
        block = "\n" + block
    with open(gitignore, 'a') as f:
        f.write(block)
    console.print(f"[green]✓ Added {', '.join(missing)} to .gitignore[/green]")


@cli.command()
@stage_option
@click.option('--message', '-m', default=None, help='Version message')
@click.option('--force', is_flag=True, help='Push even if remote is identical')
@project_root_option
@click.pass_context
@handle_errors
def push(ctx, stage, message, force, project_root):
    """Encrypt and upload the stage's .env as a new version."""
    console.print(f"[cyan]🔐 pushenv push - Encrypt and upload .env ({stage})[/cyan]\n")
    engine = build_engine(ctx, project_root)
    gates = engine.push_gates(stage)
    print_context(engine, stage, **{"Env file": engine.config.env_path(stage)})

    if not confirm_gates(gates, "Push"):
        return

    outcome = engine.push(stage, message=message, force=force)
    if not outcome.pushed:
        console.print("[yellow]✓ Local and remote are identical[/yellow]")
        console.print("[dim]No changes detected. Skipping push. (Use --force to push anyway)[/dim]")
        return

    for warning in outcome.warnings:
        console.print(f"[yellow]⚠ Warning: {warning}[/yellow]")

    console.print(f"[green]{RULE}[/green]")
    console.print(f"[bold green]🎉 Push successful! ({stage})[/bold green]\n")
    console.print(f"Version: [bold]v{outcome.version}[/bold]")
    console.print(f"Message: [dim]{outcome.message}[/dim]")
    console.print(f"Variables: {outcome.variable_count}")
    console.print(f"\n[cyan]Teammates run[/cyan] [yellow]pushenv pull --stage {stage}[/yellow]")
    console.print(f"[green]{RULE}[/green]")


@cli.command()
@stage_option
@click.option('--version', 'version', type=int, default=None, help='Pull a specific version')
@project_root_option
@click.pass_context
@handle_errors
def pull(ctx, stage, version, project_root):
    """Download and decrypt the stage's .env."""
    console.print(f"[cyan]🔐 pushenv pull - Download and decrypt .env ({stage})[/cyan]\n")
    engine = build_engine(ctx, project_root)
    print_context(engine, stage)

    if not confirm_gates(engine.pull_gates(stage), "Pull"):
        return

    outcome = engine.pull(stage, version=version)
    label = f"v{outcome.version}" if outcome.version else "legacy (unversioned)"
    console.print(f"[green]✓ Wrote {outcome.variable_count} variables to {outcome.path}[/green]")
    console.print(f"[dim]Version: {label}[/dim]")


@cli.command()
@stage_option
@click.option('--version', 'version', type=int, default=None, help='Compare with a specific version')
@project_root_option
@click.pass_context
@handle_errors
def diff(ctx, stage, version, project_root):
    """Compare the local .env with the remote version."""
    version_label = f" (version {version})" if version else " (latest)"
    console.print(f"[cyan]🔐 pushenv diff - Compare local vs remote{version_label} ({stage})[/cyan]\n")
    engine = build_engine(ctx, project_root)
    print_context(engine, stage, **{"Local file": engine.config.env_path(stage)})

    if not confirm_gates(engine.diff_gates(stage), "Diff"):
        return

    outcome = engine.diff(stage, version=version)
    if outcome.local_stage is None:
        console.print("[yellow]⚠️  No PushEnv header found in local file.[/yellow]")
        console.print(f"[dim]  Assuming this is for '{stage}' stage (from --stage parameter).[/dim]\n")

    console.print(f"[cyan]{RULE}[/cyan]")
    console.print("[bold cyan]  Diff Results[/bold cyan]")
    if version:
        console.print(f"[dim]  Comparing with version {version} ({outcome.version_message})[/dim]")
    console.print(f"[cyan]{RULE}[/cyan]\n")

    render_diff(outcome.result)

    if not outcome.result.has_changes:
        console.print("[bold green]✓ Local and remote are identical![/bold green]")
    else:
        console.print("[dim]To sync with remote, run:[/dim]")
        console.print(f"  pushenv pull --stage {stage}")


@cli.command()
@stage_option
@project_root_option
@click.pass_context
@handle_errors
def history(ctx, stage, project_root):
    """Show the version history of a stage."""
    engine = build_engine(ctx, project_root)
    print_context(engine, stage)

    outcome = engine.history(stage)
    if outcome.legacy:
        console.print("[yellow]⚠️  No version history found.[/yellow]")
        console.print("[dim]  This stage has a legacy version (created before versioning was added).[/dim]")
        console.print("[dim]  Next push will create version 1 with history.[/dim]")
        return

    table = Table(title=f"Version History ({stage})", box=box.ROUNDED)
    table.add_column("Version", style="cyan", no_wrap=True)
    table.add_column("Created", style="blue")
    table.add_column("Message", style="white")

    for entry in outcome.versions:
        label = f"v{entry.version}"
        if entry.version == outcome.latest:
            label = f"[bold green]{label} (latest)[/bold green]"
        table.add_row(label, entry.created_at.strftime("%Y-%m-%d %H:%M:%S UTC"), entry.message)

    console.print(table)
    console.print("\n[dim]Commands:[/dim]")
    console.print(f"  pushenv diff --stage {stage} --version <N>      Compare with specific version")
    console.print(f"  pushenv rollback --stage {stage} --version <N>  Restore a previous version")


@cli.command()
@stage_option
@click.option('--version', 'version', type=int, required=True, help='Version to restore')
@project_root_option
@click.pass_context
@handle_errors
def rollback(ctx, stage, version, project_root):
    """Restore a previous version as the new latest."""
    console.print(f"[cyan]🔐 pushenv rollback - Restore previous version ({stage})[/cyan]\n")
    engine = build_engine(ctx, project_root)
    print_context(engine, stage, **{"Target version": version})

    plan = engine.plan_rollback(stage, version)
    if plan.noop:
        console.print(f"[yellow]⚠️  Version {version} is already the latest version.[/yellow]")
        console.print("[dim]  No rollback needed.[/dim]")
        return

    if not confirm_gates(plan.gates, "Rollback"):
        return

    outcome = engine.rollback(stage, version)
    for warning in outcome.warnings:
        console.print(f"[yellow]⚠ Warning: {warning}[/yellow]")

    console.print(f"[green]{RULE}[/green]")
    console.print(f"[bold green]🎉 Rollback successful! ({stage})[/bold green]\n")
    console.print(f"Version {version} has been restored as version {outcome.version}.")
    console.print(f"Latest version is now: [bold]v{outcome.version}[/bold]")
    console.print(f"\n[dim]To apply locally, run:[/dim] pushenv pull --stage {stage}")
    console.print(f"[green]{RULE}[/green]")


@cli.command()
@stage_option
@click.option('--output', '-o', default=None, help='Output path (default: .env.<stage>.example)')
@project_root_option
@click.pass_context
@handle_errors
def example(ctx, stage, output, project_root):
    """Generate an example .env with placeholder values."""
    console.print(f"[cyan]🔐 pushenv example - Generate example .env file ({stage})[/cyan]\n")
    engine = build_engine(ctx, project_root)
    print_context(engine, stage)

    if not confirm_gates(engine.example_gates(stage, output), "Example file generation"):
        return

    outcome = engine.example(stage, output)
    console.print(f"[green]✓ Generated example file with {outcome.variable_count} variables[/green]")
    console.print(f"[green]  File: {outcome.path}[/green]")
    console.print("[dim]This file is safe to commit to version control.[/dim]")


@cli.command(context_settings={"ignore_unknown_options": True})
@stage_option
@project_root_option
@click.argument('command', nargs=-1, required=True, type=click.UNPROCESSED)
@click.pass_context
@handle_errors
def run(ctx, stage, project_root, command):
    """
    Run COMMAND with the stage's variables in its environment.

    Nothing is written to disk.
    """
    engine = build_engine(ctx, project_root)
    remote = engine.fetch(stage)

    env = os.environ.copy()
    apply_env(remote.variables, override=True, environ=env)
    logger.debug("Running %s with %d variables from %s", command[0], len(remote.variables), stage)

    try:
        result = subprocess.run(list(command), env=env)
    except FileNotFoundError:
        console.print(f"[red]✗ Command not found: {command[0]}[/red]")
        sys.exit(127)
    sys.exit(result.returncode)


@cli.command(name="forget-key")
@project_root_option
@click.pass_context
@handle_errors
def forget_key(ctx, project_root):
    """Remove this project's cached key from this machine."""
    config = ProjectConfig.load(project_root)
    if get_keystore(ctx).remove(config.project_id):
        console.print("[green]✓ Removed cached key[/green]")
        console.print("[dim]The next pull will ask for the passphrase.[/dim]")
    else:
        console.print("[yellow]No cached key for this project[/yellow]")


def main():
    """Main entry point."""
    cli(obj={})


if __name__ == '__main__':
    main()
