#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
CHROMASORT command line.

    chromasort                      launch the TUI
    chromasort scan PATH [options]  analyze a folder once and print the gallery
"""

from __future__ import annotations

import argparse
import json
import sys
from typing import List, Optional

from rich.console import Console
from rich.markup import escape
from rich.table import Table
from rich.text import Text

from . import __version__
from .config import load_app_config
from .engine import StatsTracker
from .errors import AccessDenied, ConfigurationMissing
from .scanner import pick_directory, scan_directory
from .state import GalleryState
from .vision import ClassificationClient, is_hex_color


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="chromasort",
        description="Organize a picture folder by dominant colors and tags.",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--no-check", action="store_true", help="Skip the start-up provider connection check")

    subparsers = parser.add_subparsers(dest="command")
    scan = subparsers.add_parser("scan", help="Analyze a folder without the TUI")
    scan.add_argument("path", help="Folder to scan (subfolders included)")
    filters = scan.add_mutually_exclusive_group()
    filters.add_argument("--color", help="Only show images containing this hex color")
    filters.add_argument("--tag", help="Only show images with this tag")
    scan.add_argument("--json", action="store_true", help="Print JSON instead of a table")
    scan.add_argument("--workers", type=int, default=None, help="Parallel requests (default from config: 1)")
    return parser


def gallery_table(state: GalleryState) -> Table:
    """The visible records as a rich table with color swatches."""
    table = Table(title=f"{len(state.visible_images())} of {len(state.images)} image(s)")
    table.add_column("File", style="bold")
    table.add_column("Colors")
    table.add_column("Tags", style="cyan")

    for record in state.visible_images():
        swatches = Text()
        for color in record.colors:
            swatches.append("■ ", style=color if is_hex_color(color) else "dim")
            swatches.append(f"{color} ")
        table.add_row(record.name, swatches, ", ".join(record.tags))
    return table


def gallery_json(state: GalleryState) -> dict:
    return {
        "images": [
            {"id": r.id, "name": r.name, "size": r.size, "colors": list(r.colors), "tags": list(r.tags)}
            for r in state.visible_images()
        ],
        "colors": state.colors,
        "tags": state.tags,
        "error": state.error,
    }


def run_scan(args: argparse.Namespace, client: ClassificationClient, app_config: dict, console: Console) -> int:
    log = console.print if not args.json else (lambda message: None)
    client.log_callback = log

    handle = pick_directory(args.path)
    log(f'Scanning folder "{handle.name}"...')
    files = scan_directory(handle, log)
    log(f"Found {len(files)} image file(s)")

    state = GalleryState()
    tracker = StatsTracker()

    def progress(index: int, total: int, file_name: str) -> None:
        log(f"[dim]({index}/{total})[/dim] Analyzing {file_name}...")

    state.ingest(
        files,
        client,
        progress_callback=progress,
        log_callback=log,
        max_workers=args.workers or app_config.get('max_workers', 1),
        tracker=tracker,
    )

    if args.color:
        state.select_color(args.color)
    elif args.tag:
        state.select_tag(args.tag)

    if args.json:
        console.print_json(json.dumps(gallery_json(state)))
    else:
        console.print(gallery_table(state))
        if state.colors:
            console.print(f"[bold]Colors:[/bold] {', '.join(state.colors)}")
        if state.tags:
            console.print(f"[bold]Tags:[/bold] {', '.join(state.tags)}")
        if state.error:
            console.print(f"[bold red]Error:[/bold red] {state.error}")
    state.clear_all()
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    console = Console()
    err_console = Console(stderr=True)

    app_config = load_app_config()
    try:
        client = ClassificationClient.from_config(app_config)
    except (ConfigurationMissing, ValueError) as e:
        err_console.print(f"[bold red]✗ {escape(str(e))}[/bold red]")
        return 2

    if args.command == "scan":
        try:
            return run_scan(args, client, app_config, console)
        except AccessDenied as e:
            err_console.print(f"[bold red]✗ {escape(str(e))}[/bold red]")
            return 2

    from .app import ChromaSortTUI
    ChromaSortTUI(client, app_config=app_config, check_connection=not args.no_check).run()
    return 0


if __name__ == "__main__":
    sys.exit(main())
