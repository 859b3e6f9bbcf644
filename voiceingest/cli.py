from __future__ import annotations

import argparse
import asyncio
import shutil
import sys
from pathlib import Path
from typing import List, Optional, Tuple

import uvicorn
from rich.console import Console
from rich.table import Table

from .core.config import Settings, get_settings
from .core.logging import configure_logging, level_from_name
from .core.storage import LocalStorage
from .ingest.errors import EmptyBatch, PersistFailure
from .ingest.ffprobe_parser import binary_version
from .ingest.models import BatchState, OutputRecord, SelectionDescriptor
from .ingest.pickers import LocalFilePicker
from .services.batch_service import BatchService

console = Console()


def main(argv: Optional[list[str]] = None) -> None:
    """The main entry point for the CLI.

    Args:
        argv: The command-line arguments.
    """
    parser = _build_parser()
    args = parser.parse_args(argv)
    settings = get_settings()
    configure_logging(level=level_from_name(args.log_level or settings.log_level))

    if getattr(args, "check", False):
        _run_environment_check(settings)
        return

    if not hasattr(args, "func"):
        parser.print_help()
        sys.exit(1)

    args.func(args, settings)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Voice avatar ingestion CLI")
    parser.add_argument("--check", action="store_true", help="Validate presence of the ffprobe dependency")
    parser.add_argument("--log-level", default=None, help="Override VOICEINGEST_LOG_LEVEL for this run")

    subparsers = parser.add_subparsers(dest="command")

    probe_parser = subparsers.add_parser("probe", help="Probe one clip and print its duration")
    probe_parser.add_argument("--file", required=True, help="Path to the audio clip")
    probe_parser.set_defaults(func=_cmd_probe)

    ingest_parser = subparsers.add_parser("ingest", help="Run a batch over local clips")
    ingest_parser.add_argument("files", nargs="+", help="Audio clips to add to the batch")
    ingest_parser.add_argument(
        "--rename",
        action="append",
        default=[],
        metavar="N=NAME",
        help="Rename the N-th accepted clip (1-based) before committing. Repeatable.",
    )
    ingest_parser.add_argument("--commit", action="store_true", help="Save the accepted clips to storage")
    ingest_parser.add_argument("--storage-dir", default=None, help="Override the storage directory")
    ingest_parser.set_defaults(func=_cmd_ingest)

    serve_parser = subparsers.add_parser("serve", help="Serve the HTTP control API")
    serve_parser.add_argument("--host", default="127.0.0.1")
    serve_parser.add_argument("--port", type=int, default=8787)
    serve_parser.set_defaults(func=_cmd_serve)
    return parser


def _cmd_probe(args: argparse.Namespace, settings: Settings) -> None:
    media_path = Path(args.file).expanduser().resolve()
    if not media_path.is_file():
        console.print(f"[red]File not found: {media_path}[/]")
        sys.exit(2)

    state = asyncio.run(_probe_single(media_path, settings))
    if state.entries:
        entry = state.entries[0]
        console.print_json(
            data={"file": str(media_path), "display_name": entry.display_name, "duration_s": entry.duration_s}
        )
        return
    reason = state.rejections[0].reason.value if state.rejections else "unknown"
    console.print_json(data={"file": str(media_path), "rejected": reason})
    sys.exit(3)


async def _probe_single(media_path: Path, settings: Settings) -> BatchState:
    service = BatchService.from_settings(settings, storage=LocalStorage(settings.resolved_staging_dir / "probe"))
    try:
        await service.select_descriptors([SelectionDescriptor.from_path(media_path)])
        return service.state
    finally:
        await service.dispose()


def _cmd_ingest(args: argparse.Namespace, settings: Settings) -> None:
    try:
        renames = [_parse_rename(item) for item in args.rename]
    except ValueError as exc:
        console.print(f"[red]{exc}[/]")
        sys.exit(2)
    if args.storage_dir:
        settings = settings.model_copy(update={"storage_base_path": Path(args.storage_dir).expanduser()})

    committed = asyncio.run(_ingest(args.files, renames, args.commit, settings))
    if committed is None:
        sys.exit(1)


async def _ingest(
    files: List[str],
    renames: List[Tuple[int, str]],
    commit: bool,
    settings: Settings,
) -> Optional[List[OutputRecord]]:
    service = BatchService.from_settings(settings)
    picker = LocalFilePicker([Path(item) for item in files], is_allowed=settings.is_allowed_name)
    try:
        with console.status("Processing clips..."):
            state = await service.select(picker)
        for path in picker.skipped:
            console.print(f"[yellow]Skipped {path}: missing or unsupported extension[/]")

        for position, name in renames:
            if 1 <= position <= len(state.entries):
                service.rename(state.entries[position - 1].id, name)
            else:
                console.print(f"[yellow]No accepted clip #{position} to rename[/]")

        _print_batch(service.state)
        if not commit:
            return []
        try:
            records = await service.commit()
        except (EmptyBatch, PersistFailure) as exc:
            console.print(f"[red]{exc}[/]")
            return None
        for record in records:
            console.print(f"[green]Saved[/] {record.display_name} -> {record.uri}")
        return records
    finally:
        await service.dispose()


def _parse_rename(raw: str) -> Tuple[int, str]:
    position, sep, name = raw.partition("=")
    if not sep or not name.strip():
        raise ValueError(f"Invalid --rename value {raw!r}, expected N=NAME")
    try:
        return int(position), name.strip()
    except ValueError as exc:
        raise ValueError(f"Invalid --rename position {position!r}") from exc


def _print_batch(state: BatchState) -> None:
    table = Table(title=f"Processed {state.processed} of {state.total} files")
    table.add_column("#", justify="right")
    table.add_column("Name")
    table.add_column("Source")
    table.add_column("Size", justify="right")
    table.add_column("Duration", justify="right")
    for index, entry in enumerate(state.entries, start=1):
        table.add_row(
            str(index),
            entry.display_name,
            entry.descriptor.name,
            f"{entry.descriptor.size_bytes / 1024:.1f} KB",
            _format_duration(entry.duration_s),
        )
    console.print(table)
    for rejection in state.rejections:
        console.print(f"[dim]Skipped {rejection.name}: {rejection.reason.value}[/]")
    if state.last_error:
        console.print(f"[red]{state.last_error}[/]")


def _format_duration(duration_s: float) -> str:
    minutes, seconds = divmod(int(duration_s), 60)
    return f"{minutes}:{seconds:02d}"


def _cmd_serve(args: argparse.Namespace, settings: Settings) -> None:
    uvicorn.run("voiceingest.main:create_app", factory=True, host=args.host, port=args.port)


def _run_environment_check(settings: Settings) -> None:
    """Check for the presence of required external dependencies."""
    ffprobe_path = shutil.which(settings.ffprobe_binary)
    version = binary_version((settings.ffprobe_binary, "-version")) if ffprobe_path else "unknown"
    staging = settings.resolved_staging_dir

    console.rule("[bold]Environment Check")
    console.print(f"[bold]ffprobe[/]: {'✅' if ffprobe_path else '❌'} {version}")
    console.print(f"[bold]staging dir[/]: {staging} ({settings.staging_mode})")
    console.print(f"[bold]storage dir[/]: {settings.storage_base_path}")

    if not ffprobe_path:
        console.print("[red]ffprobe not found. Install ffmpeg or set VOICEINGEST_FFPROBE_BINARY.[/]")
        sys.exit(1)
    console.print("[green]Environment looks good![/]")


if __name__ == "__main__":
    main()
