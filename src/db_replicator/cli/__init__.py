"""CLI module for dumping and loading record graphs between databases.

Provides commands for profile listing, dumping a record graph from one
profile to a JSON Lines file, validating a dump file, and loading it into
another profile.

Usage:
    db-replicator profiles
    db-replicator dump --from prod --type User --id 42 -o user-42.jsonl
    db-replicator validate user-42.jsonl
    db-replicator load user-42.jsonl --to dev --dry-run
    db-replicator load user-42.jsonl --to dev --yes

Commands:
    profiles  - List available profiles
    dump      - Dump records and their dependencies to a file
    validate  - Check a dump file without touching a database
    load      - Load a dump file into a profile
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import Any

from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from db_replicator.config.loader import load_replicator_config
from db_replicator.factory import ProfileNotFoundError, get_adapter, get_registry
from db_replicator.replication import (
    Dumper,
    Loader,
    ReplicationError,
    TupleWriter,
    fetch_record,
    validate_stream,
)

console = Console(stderr=True)


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, show_path=False)],
    )


def _parse_id(raw: str) -> Any:
    """Command-line ids are integers when they look like one."""
    return int(raw) if raw.isdigit() else raw


def _config_path(args: argparse.Namespace) -> Path | None:
    config = getattr(args, "config", None)
    return Path(config) if config else None


# ============================================================================
# Async command implementations
# ============================================================================


async def _async_dump(args: argparse.Namespace) -> int:
    """Async implementation for dump command.

    Args:
        args: Parsed arguments with source, type_name, ids, output and config.

    Returns:
        0 on success, 1 on failure.
    """
    try:
        config = load_replicator_config(_config_path(args))
        registry = get_registry(config, args.source)
        adapter = await get_adapter(args.source, config)
    except (FileNotFoundError, ProfileNotFoundError, ReplicationError, ValueError) as e:
        console.print(f"[red]Error: {e}[/red]")
        return 1
    except Exception as e:
        console.print(f"\n[bold red]Error:[/bold red] Connection failed: {e}")
        return 1

    if args.type_name not in registry:
        console.print(f"[red]Error: Unknown record type '{args.type_name}'[/red]")
        console.print(f"[dim]Known types: {', '.join(sorted(registry))}[/dim]")
        await adapter.close()
        return 1

    try:
        out = open(args.output, "w") if args.output else sys.stdout
    except OSError as e:
        console.print(f"[red]Error: {e}[/red]")
        await adapter.close()
        return 1

    try:
        with TupleWriter(out, metadata={"source": args.source}) as writer:
            dumper = Dumper(adapter, registry, write=writer)
            for raw_id in args.ids:
                record = await fetch_record(adapter, registry, args.type_name, _parse_id(raw_id))
                if record is None:
                    console.print(
                        f"[yellow]{args.type_name}[{raw_id}] not found, skipping[/yellow]"
                    )
                    continue
                await dumper.dump(record)
    except Exception as e:
        console.print(f"\n[bold red]x[/bold red] Dump failed: {e}")
        if out is not sys.stdout:
            out.close()
            Path(args.output).unlink(missing_ok=True)
        return 1
    finally:
        if out is not sys.stdout and not out.closed:
            out.close()
        await adapter.close()

    console.print(
        f"[bold green]v[/bold green] Dumped {writer.count} records"
        + (f" to [cyan]{args.output}[/cyan]" if args.output else "")
    )
    return 0


async def _async_load(args: argparse.Namespace) -> int:
    """Async implementation for load command.

    Without ``--dry-run`` or ``--yes`` nothing is loaded and a hint is
    printed.

    Args:
        args: Parsed arguments with file, dest, dry_run, yes and config.

    Returns:
        0 on success, 1 on failure.
    """
    stream_path = Path(args.file)
    if not stream_path.exists():
        console.print(f"[red]Error: Dump file not found: {stream_path}[/red]")
        return 1

    if not args.dry_run and not args.yes:
        console.print(
            f"Would load [cyan]{stream_path}[/cyan] into [bold cyan]{args.dest}[/bold cyan]."
        )
        console.print(
            "[dim]To actually load, add[/dim] [cyan]--yes[/cyan] "
            "[dim]flag (or preview with[/dim] [cyan]--dry-run[/cyan][dim]).[/dim]"
        )
        return 0

    try:
        config = load_replicator_config(_config_path(args))
        registry = get_registry(config, args.dest)
        adapter = await get_adapter(args.dest, config)
    except (FileNotFoundError, ProfileNotFoundError, ReplicationError, ValueError) as e:
        console.print(f"[red]Error: {e}[/red]")
        return 1
    except Exception as e:
        console.print(f"\n[bold red]Error:[/bold red] Connection failed: {e}")
        return 1

    console.print("Loading records...", style="dim")
    loader = Loader(adapter, registry)
    try:
        with open(stream_path, "r") as f:
            summary = await loader.read(f, dry_run=args.dry_run)
    except Exception as e:
        console.print(f"\n[bold red]x[/bold red] Load failed, rolled back: {e}")
        return 1
    finally:
        await adapter.close()

    console.print()
    table = Table(title="Load Summary", show_header=True, header_style="bold")
    table.add_column("Type", style="dim")
    table.add_column("Inserted", justify="right", style="green")
    table.add_column("Updated", justify="right", style="yellow")
    for type_name, counts in summary.counts.items():
        table.add_row(
            type_name,
            str(counts.inserted) if counts.inserted > 0 else "-",
            str(counts.updated) if counts.updated > 0 else "-",
        )
    if summary.relations:
        table.add_row("(many-to-many)", str(summary.relations), "-")
    console.print(table)

    if summary.warnings:
        console.print(f"[yellow]{summary.warnings} warning(s), see log above[/yellow]")

    if args.dry_run:
        console.print()
        console.print("[bold yellow]DRY RUN[/bold yellow] - No changes made.")
    else:
        console.print("[bold green]v[/bold green] Load complete.")
    return 0


# ============================================================================
# Sync command wrappers
# ============================================================================


def cmd_dump(args: argparse.Namespace) -> int:
    """Dump records and everything they depend on.

    Wraps the async implementation with ``asyncio.run()``.

    Args:
        args: Parsed CLI arguments.

    Returns:
        0 on success, 1 on failure.
    """
    return asyncio.run(_async_dump(args))


def cmd_load(args: argparse.Namespace) -> int:
    """Load a dump file into a profile.

    Wraps the async implementation with ``asyncio.run()``.

    Args:
        args: Parsed CLI arguments.

    Returns:
        0 on success, 1 on failure.
    """
    return asyncio.run(_async_load(args))


def cmd_validate(args: argparse.Namespace) -> int:
    """Check a dump file without touching a database.

    Args:
        args: Parsed CLI arguments.

    Returns:
        0 if the file is valid, 1 otherwise.
    """
    result = validate_stream(args.file)

    for error in result["errors"]:
        console.print(f"  [red]x[/red] {error}")
    for warning in result["warnings"]:
        console.print(f"  [yellow]![/yellow] {warning}")

    if result["valid"]:
        console.print(
            f"[bold green]v[/bold green] {args.file}: {result['count']} records"
        )
        return 0
    console.print(f"[bold red]x[/bold red] {args.file} is not a valid dump")
    return 1


def cmd_profiles(args: argparse.Namespace) -> int:
    """List available profiles from replicator.toml.

    Reads only local TOML config -- no database calls.

    Args:
        args: Parsed CLI arguments.

    Returns:
        0 on success, 1 if replicator.toml not found.
    """
    try:
        config = load_replicator_config(_config_path(args))
    except FileNotFoundError as e:
        console.print(f"[red]Error: {e}[/red]")
        return 1

    table = Table(
        title="Database Profiles", show_header=True, header_style="bold"
    )
    table.add_column("Profile")
    table.add_column("Provider")
    table.add_column("Description")

    for name, profile in config.profiles.items():
        table.add_row(name, profile.provider, profile.description or "")

    console.print(table)
    if config.replication.types:
        console.print(f"[dim]{len(config.replication.types)} record types declared[/dim]")
    else:
        console.print("[dim]No record types declared; types are reflected on use[/dim]")
    return 0


# ============================================================================
# Main entry point
# ============================================================================


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point.

    Parses command line arguments and dispatches to appropriate handler.

    Returns:
        Exit code (0 for success, non-zero for errors).
    """
    parser = argparse.ArgumentParser(
        prog="db-replicator",
        description="Dump a record graph from one database and load it into another",
    )

    parser.add_argument(
        "--config",
        "-c",
        default=None,
        help="Path to replicator.toml (default: ./replicator.toml)",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Log every dumped and loaded record",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    # profiles command
    p_profiles = subparsers.add_parser(
        "profiles",
        help="List available profiles",
    )
    p_profiles.set_defaults(func=cmd_profiles)

    # dump command
    p_dump = subparsers.add_parser(
        "dump",
        help="Dump records and their dependencies to a file",
    )
    p_dump.add_argument(
        "--from",
        "-f",
        dest="source",
        required=True,
        help="Source profile to dump from",
    )
    p_dump.add_argument(
        "--type",
        "-t",
        dest="type_name",
        required=True,
        help="Record type of the root records",
    )
    p_dump.add_argument(
        "--id",
        dest="ids",
        action="append",
        required=True,
        help="Primary key of a root record (repeatable)",
    )
    p_dump.add_argument(
        "--output",
        "-o",
        default=None,
        help="Output file (default: stdout)",
    )
    p_dump.set_defaults(func=cmd_dump)

    # validate command
    p_validate = subparsers.add_parser(
        "validate",
        help="Check a dump file without touching a database",
    )
    p_validate.add_argument("file", help="Dump file to check")
    p_validate.set_defaults(func=cmd_validate)

    # load command
    p_load = subparsers.add_parser(
        "load",
        help="Load a dump file into a profile",
    )
    p_load.add_argument("file", help="Dump file to load")
    p_load.add_argument(
        "--to",
        dest="dest",
        required=True,
        help="Destination profile to load into",
    )
    p_load.add_argument(
        "--dry-run",
        action="store_true",
        help="Load everything, then roll back",
    )
    p_load.add_argument(
        "--yes",
        "-y",
        action="store_true",
        help="Actually perform the load (required for non-dry-run)",
    )
    p_load.set_defaults(func=cmd_load)

    args = parser.parse_args(argv)
    _setup_logging(args.verbose)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
