#!/usr/bin/env python3
"""
CHROMASORT TUI

- Folder browser with recursive image scan
- Per-image dominant colors and palette tags from a vision model
- Gallery filterable by one color or one tag at a time
- Threaded ingestion with spinner, live log and STOP
"""

from __future__ import annotations

import importlib.resources
import threading
import time
from collections import deque
from datetime import datetime
from pathlib import Path
from typing import Any, Deque, Dict, List, Optional

from rich.markup import escape
from rich.text import Text

from textual import on
from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.containers import Container, Horizontal, Vertical, ScrollableContainer
from textual.message import Message
from textual.screen import ModalScreen
from textual.timer import Timer
from textual.widgets import Button, Label, Static, DirectoryTree

from .config import save_app_config
from .engine import BatchResult, ImageRecord, StatsTracker, ingest_files
from .errors import AccessDenied
from .scanner import DirectoryHandle, pick_directory, scan_directory
from .state import GalleryState
from .vision import ClassificationClient, check_provider_connection, is_hex_color


# ==============================================================================
# Rendering helpers
# ==============================================================================

def format_size(size_bytes: float) -> str:
    """
    Format byte size into human-readable string (e.g. "45.6 KB").
    """
    for unit in ['B', 'KB', 'MB', 'GB', 'TB']:
        if size_bytes < 1024.0:
            return f"{size_bytes:.1f} {unit}"
        size_bytes /= 1024.0
    return f"{size_bytes:.1f} PB"


def render_card(record: ImageRecord) -> Text:
    """Gallery card: name and size, tag chips, color swatches with their codes."""
    text = Text()
    text.append(record.name, style="bold")
    text.append(f"  {format_size(record.size)}", style="dim")
    text.append("\n")

    for tag in record.tags:
        text.append(f" {tag} ", style="bold #111827 on #22d3ee")
        text.append(" ")
    if not record.tags:
        text.append("no tags", style="dim italic")
    text.append("\n")

    for color in record.colors:
        if is_hex_color(color):
            text.append("   ", style=f"on {color}")
        else:
            text.append(" ? ", style="dim")
        text.append(" ")
    if record.colors:
        text.append("  " + " ".join(record.colors), style="dim")
    else:
        text.append("no colors", style="dim italic")
    return text


# ==============================================================================
# Directory Selection Screen
# ==============================================================================

class DirectorySelectScreen(ModalScreen[Optional[Path]]):
    """Folder picker. Dismisses with the chosen folder, or None on cancel."""

    def __init__(self, title: str = "Select a Picture Folder", start_path: Optional[Path] = None):
        super().__init__()
        self.title_text = title
        self.start_path = start_path or Path.home()
        self.selected_path: Optional[Path] = None

    def compose(self) -> ComposeResult:
        with Container(id="dialog"):
            yield Label(f"[bold]{self.title_text}[/bold]", id="dialog-title")
            yield Static(f"Current: {self.start_path}", id="path-display")
            with ScrollableContainer(id="tree-container"):
                yield FilteredDirectoryTree(str(self.start_path), id="dir-tree")
            with Horizontal(id="button-row"):
                yield Button("Select", variant="primary", id="btn-select")
                yield Button("Cancel", variant="default", id="btn-cancel")

    def on_mount(self) -> None:
        tree = self.query_one("#dir-tree", DirectoryTree)
        tree.show_root = True
        tree.show_guides = True
        self.selected_path = self.start_path

    @on(DirectoryTree.DirectorySelected)
    def on_directory_selected(self, event: DirectoryTree.DirectorySelected) -> None:
        self.selected_path = event.path
        self.query_one("#path-display", Static).update(f"Selected: {event.path}")

    @on(Button.Pressed, "#btn-select")
    def on_select(self) -> None:
        tree = self.query_one("#dir-tree", DirectoryTree)
        node = tree.cursor_node
        if node and node.data and node.data.path.is_dir():
            self.selected_path = node.data.path
        self.dismiss(self.selected_path)

    @on(Button.Pressed, "#btn-cancel")
    def on_cancel(self) -> None:
        self.dismiss(None)


# ==============================================================================
# Widget Components
# ==============================================================================

class FilteredDirectoryTree(DirectoryTree):
    """A DirectoryTree that filters out hidden files and directories."""

    def filter_paths(self, paths):
        return [path for path in paths if not path.name.startswith(".")]


class LogPanel(Container):
    """Timestamped log lines, newest last. append_line may be called from any thread."""

    MAX_LINES = 1000

    class Changed(Message):
        """Posted after append_line; the app redraws the panel on its own thread."""

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.lines: Deque[str] = deque(maxlen=self.MAX_LINES)
        self.lock = threading.Lock()
        self.owner: Optional[App] = None

    def compose(self) -> ComposeResult:
        with ScrollableContainer(id="log-container"):
            yield Static(id="log-content")

    def on_mount(self) -> None:
        # Worker threads have no active-app context, so keep a direct reference
        self.owner = self.app

    def append_line(self, message: str) -> None:
        stamp = datetime.now().strftime("%H:%M:%S")
        with self.lock:
            self.lines.append(f"[dim]{stamp}[/dim] {message}")
        if self.owner:
            self.owner.post_message(self.Changed())

    def redraw(self) -> None:
        with self.lock:
            text = "\n".join(self.lines)
        self.query_one("#log-content", Static).update(text)
        self.query_one("#log-container", ScrollableContainer).scroll_end(animate=False)


class FacetButton(Button):
    """A palette swatch or tag chip. `value` is None for the "All" button."""

    def __init__(self, label: str, facet: str, value: Optional[str], **kwargs):
        super().__init__(label, **kwargs)
        self.facet = facet
        self.value = value


class GalleryCard(Static):
    """One image in the gallery."""

    def __init__(self, record: ImageRecord, **kwargs):
        super().__init__(render_card(record), classes="gallery-card", **kwargs)
        self.record = record


# ==============================================================================
# Main Application
# ==============================================================================

class ChromaSortTUI(App):
    """The main TUI application for ChromaSort."""

    CSS = ""  # Loaded from the themes package in __init__

    TITLE = "ChromaSort"

    BINDINGS = [
        Binding("q", "quit", "Quit (q)", show=False),
        Binding("ctrl+c", "quit", "Quit", show=False),
        Binding("o", "open_folder", "Open (o)", show=False),
        Binding("s", "scan_folder", "Scan (s)", show=False),
        Binding("x", "clear_all", "Clear All (x)", show=False),
        Binding("e", "dismiss_error", "Dismiss (e)", show=False),
        Binding("escape", "stop", "Stop (Esc)", show=False),
    ]

    BLOCK_SPINNER_FRAMES = [
        "■ □ □",
        "□ ■ □",
        "□ □ ■",
        "□ ■ □",
    ]

    def __init__(
        self,
        client: ClassificationClient,
        app_config: Optional[Dict[str, Any]] = None,
        state: Optional[GalleryState] = None,
        check_connection: bool = True,
        **kwargs
    ):
        from . import themes
        try:
            ref = importlib.resources.files(themes) / "chromasort.tcss"
            with ref.open("r", encoding="utf-8") as f:
                ChromaSortTUI.CSS = f.read()
        except OSError as e:
            print(f"Warning: Could not load theme: {e}")
            ChromaSortTUI.CSS = ""

        super().__init__(**kwargs)
        self.client = client
        self.app_config = app_config or {}
        self.state = state or GalleryState()
        self.check_connection = check_connection

        self.current_thread: Optional[threading.Thread] = None
        self.workflow_active = False
        self.stop_event = threading.Event()
        self.tracker = StatsTracker()

        self.workflow_start_time: Optional[float] = None
        self.spinner_timer: Optional[Timer] = None
        self.spinner_frame_index = 0

        self.log_panel: Optional[LogPanel] = None
        self.file_browser: Optional[DirectoryTree] = None

    def compose(self) -> ComposeResult:
        with Horizontal(id="header-row"):
            yield Static("[bold #22d3ee]Chroma[/bold #22d3ee][bold white]Sort[/bold white]", id="logo")
            yield Static("AI-powered picture organizer // colors & tags", id="tagline")

        with Horizontal(id="main-layout"):
            with Vertical(id="left-panel"):
                yield Static("[bold]Folder Browser[/bold]", classes="panel-title")
                with ScrollableContainer(id="file-browser-container"):
                    start = self.app_config.get('last_source_path') or str(Path.home())
                    if not Path(start).is_dir():
                        start = str(Path.home())
                    self.file_browser = FilteredDirectoryTree(start, id="file-browser")
                    yield self.file_browser
                with Horizontal(id="folder-buttons"):
                    yield Button("[S] Scan Folder", id="btn-scan", variant="primary", classes="ingest-btn", tooltip="Scan the highlighted folder and its subfolders")
                    yield Button("[O] Open...", id="btn-open", variant="default", classes="ingest-btn", tooltip="Pick a folder in a dialog")
                yield Static("", id="folder-name")
                yield Static("[bold]Status & Logs[/bold]", classes="panel-title")
                self.log_panel = LogPanel(id="log-panel")
                yield self.log_panel

            with Vertical(id="right-panel"):
                with Horizontal(id="error-banner"):
                    yield Static("", id="error-text")
                    yield Button("[E] Dismiss", id="btn-dismiss", variant="error")
                with Horizontal(id="progress-container"):
                    yield Static("", id="spinner-display")
                    yield Static("Ready", id="progress-message")
                with Horizontal(id="filter-header"):
                    yield Static("Filter Your Gallery", id="filter-title")
                    yield Button("[X] Clear All", id="btn-clear", variant="error")
                yield Static("[bold]Colors[/bold]", classes="panel-title")
                yield Container(id="color-palette")
                yield Static("[bold]Tags[/bold]", id="tags-title", classes="panel-title")
                yield Container(id="tag-filter")
                yield Static("", id="gallery-summary")
                yield ScrollableContainer(id="gallery")

        with Horizontal(id="button-bar"):
            yield Button("[Esc] STOP", id="btn-stop", variant="error", disabled=True)
            yield Button("[Q] Quit", id="btn-quit", variant="error")

    def on_mount(self) -> None:
        self.client.log_callback = self.write_to_log
        self.write_to_log("[bold #22d3ee]ChromaSort[/bold #22d3ee] - System Online")
        self.write_to_log("[dim]────────────────────────────────────────────[/dim]")
        self.write_to_log(f"✓ Model: {self.client.model} via {self.client.provider.name}")
        if self.app_config.get('config_file_found'):
            self.write_to_log(f"✓ Config loaded from {self.app_config.get('config_file_path')}")

        self.refresh_gallery()

        if self.check_connection:
            self.run_in_thread(self.run_connection_check_thread, "ConnectionCheck")

        self.write_to_log("")
        self.write_to_log("[dim]Highlight a folder and press 'Scan Folder (s)', or 'Open (o)' to pick one.[/dim]")

    # --- Logging ---

    @on(LogPanel.Changed)
    def on_log_changed(self, event: LogPanel.Changed) -> None:
        if self.log_panel:
            self.log_panel.redraw()

    def write_to_log(self, message: str) -> None:
        if self.log_panel:
            self.log_panel.append_line(message)

    # --- Loader ---

    def set_loading_message(self, message: str) -> None:
        self.query_one("#progress-message", Static).update(message)

    def start_progress_tracking(self) -> None:
        """Start the spinner animation."""
        self.workflow_start_time = time.time()
        self.spinner_frame_index = 0
        self.spinner_timer = self.set_interval(0.2, self._advance_spinner_frame)
        self._advance_spinner_frame()

    def _advance_spinner_frame(self) -> None:
        frame = self.BLOCK_SPINNER_FRAMES[self.spinner_frame_index % len(self.BLOCK_SPINNER_FRAMES)]
        self.query_one("#spinner-display", Static).update(f"[bold #22d3ee]{frame}[/bold #22d3ee]")
        self.spinner_frame_index += 1

    def stop_progress_tracking(self) -> None:
        """Stop the spinner and show completion."""
        if self.spinner_timer:
            self.spinner_timer.stop()
            self.spinner_timer = None

        if self.workflow_start_time:
            elapsed = int(time.time() - self.workflow_start_time)
            minutes, seconds = divmod(elapsed, 60)
            time_str = f"{minutes}m {seconds:02d}s" if minutes > 0 else f"{seconds}s"
            self.query_one("#spinner-display", Static).update("[bold green]✓[/bold green]")
            self.set_loading_message(f"Completed in {time_str}")
        self.workflow_start_time = None

    # --- Error banner ---

    def show_error(self, message: Optional[str]) -> None:
        self.state.error = message
        self.refresh_error_banner()

    def refresh_error_banner(self) -> None:
        banner = self.query_one("#error-banner", Horizontal)
        if self.state.error:
            self.query_one("#error-text", Static).update(f"[bold]Error:[/bold] {self.state.error}")
            banner.display = True
        else:
            banner.display = False

    @on(Button.Pressed, "#btn-dismiss")
    def on_dismiss_button(self) -> None:
        self.action_dismiss_error()

    def action_dismiss_error(self) -> None:
        self.state.dismiss_error()
        self.refresh_error_banner()

    # --- Gallery ---

    def refresh_gallery(self) -> None:
        """Rebuild palette, tag filter and gallery from state."""
        state = self.state

        palette = self.query_one("#color-palette", Container)
        palette.remove_children()
        swatches: List[Button] = [
            FacetButton("All", "color", None, variant="primary" if state.selected_color is None else "default", classes="facet-all")
        ]
        for color in state.colors:
            swatch = FacetButton(" " if is_hex_color(color) else color, "color", color, classes="color-swatch", tooltip=color)
            if is_hex_color(color):
                swatch.styles.background = color
            if color == state.selected_color:
                swatch.add_class("-selected")
            swatches.append(swatch)
        palette.mount(*swatches)

        tag_filter = self.query_one("#tag-filter", Container)
        tag_filter.remove_children()
        show_tags = bool(state.tags)
        tag_filter.display = show_tags
        self.query_one("#tags-title", Static).display = show_tags
        if show_tags:
            chips: List[Button] = [
                FacetButton("All", "tag", None, variant="primary" if state.selected_tag is None else "default", classes="facet-all")
            ]
            for tag in state.tags:
                chips.append(FacetButton(tag, "tag", tag, variant="primary" if tag == state.selected_tag else "default", classes="tag-chip"))
            tag_filter.mount(*chips)

        visible = state.visible_images()
        gallery = self.query_one("#gallery", ScrollableContainer)
        gallery.remove_children()
        if state.images and not visible:
            gallery.mount(Static("No images match the selected filter.", classes="gallery-empty"))
        else:
            gallery.mount(*[GalleryCard(record) for record in visible])

        summary = f"{len(visible)} of {len(state.images)} image(s)"
        if state.selected_color:
            summary += f"  |  color {state.selected_color}"
        if state.selected_tag:
            summary += f"  |  tag {state.selected_tag}"
        self.query_one("#gallery-summary", Static).update(summary if state.images else "No images yet")

        self.refresh_error_banner()

    @on(Button.Pressed)
    def on_facet_button(self, event: Button.Pressed) -> None:
        button = event.button
        if not isinstance(button, FacetButton):
            return
        if button.facet == "color":
            self.state.select_color(button.value)
        else:
            self.state.select_tag(button.value)
        self.refresh_gallery()

    @on(Button.Pressed, "#btn-clear")
    def on_clear_button(self) -> None:
        self.action_clear_all()

    def action_clear_all(self) -> None:
        if self.workflow_active:
            self.write_to_log("[yellow]Cannot clear while a scan is running[/yellow]")
            return
        count = len(self.state.images)
        self.state.clear_all()
        self.tracker.reset()
        self.write_to_log(f"✓ Cleared {count} image(s)")
        self.refresh_gallery()

    # --- Folder selection ---

    @on(Button.Pressed, "#btn-scan")
    def on_scan_button(self) -> None:
        self.action_scan_folder()

    @on(Button.Pressed, "#btn-open")
    def on_open_button(self) -> None:
        self.action_open_folder()

    def action_scan_folder(self) -> None:
        """Scan the folder highlighted in the browser."""
        node = self.file_browser.cursor_node if self.file_browser else None
        if not node or not node.data:
            self.write_to_log("[red]No directory selected in browser.[/red]")
            return
        path = node.data.path
        if not path.is_dir():
            path = path.parent
        self.start_ingest(path)

    def action_open_folder(self) -> None:
        """Open the directory picker dialog."""
        if self.workflow_active:
            self.write_to_log("[red]A scan is already running![/red]")
            return

        def handle_result(path: Optional[Path]) -> None:
            # Cancelled pick is a no-op
            if path:
                self.start_ingest(path)

        start = self.app_config.get('last_source_path')
        self.push_screen(DirectorySelectScreen(start_path=Path(start) if start else None), handle_result)

    def start_ingest(self, path: Path) -> None:
        if self.workflow_active:
            self.write_to_log("[red]A scan is already running![/red]")
            return

        try:
            handle = pick_directory(path)
        except AccessDenied as e:
            self.write_to_log(f"[red]{e}[/red]")
            self.show_error("Could not access the folder. Please try again.")
            return
        if handle is None:
            return

        self.query_one("#folder-name", Static).update(f"Selected folder: [bold #22d3ee]{escape(handle.name)}[/bold #22d3ee]")
        self.app_config['last_source_path'] = str(handle.path)
        if save_app_config(self.app_config):
            self.write_to_log("   [dim]Config saved[/dim]")

        self.state.dismiss_error()
        self.refresh_error_banner()
        self.toggle_workflow_buttons(disabled=True)
        self.start_progress_tracking()
        self.run_in_thread(lambda: self.run_ingest_thread(handle), "Ingest")

    # --- Workflow control ---

    def toggle_workflow_buttons(self, disabled: bool) -> None:
        self.workflow_active = disabled
        for button in self.query(".ingest-btn"):
            button.disabled = disabled
        self.query_one("#btn-clear", Button).disabled = disabled
        self.query_one("#btn-stop", Button).disabled = not disabled

    def run_in_thread(self, target, name: str) -> None:
        self.current_thread = threading.Thread(target=target, name=name, daemon=True)
        self.current_thread.start()

    @on(Button.Pressed, "#btn-stop")
    def on_stop_button(self) -> None:
        self.action_stop()

    def action_stop(self) -> None:
        if not self.workflow_active:
            return
        self.stop_event.set()
        self.write_to_log("🛑 [bold yellow]STOP requested...[/bold yellow]")
        self.write_to_log("   [yellow]The current image will finish, then the scan halts[/yellow]")

    @on(Button.Pressed, "#btn-quit")
    def on_quit_button(self) -> None:
        self.exit()

    def on_progress(self, index: int, total: int, file_name: str) -> None:
        """Called from the ingest thread before each file."""
        self.call_from_thread(self.set_loading_message, f"Analyzing {file_name}... ({index}/{total})")

    def run_ingest_thread(self, handle: DirectoryHandle) -> None:
        batch: Optional[BatchResult] = None
        try:
            self.call_from_thread(self.set_loading_message, f'Scanning folder "{handle.name}"...')
            self.write_to_log(f"🔎 Scanning {handle.path}")
            files = scan_directory(handle, self.write_to_log)
            if not files:
                self.write_to_log(f"  [yellow]No image files found in {handle.name}[/yellow]")
                return
            self.write_to_log(f"  Found {len(files)} image file(s)")

            self.stop_event.clear()
            self.tracker.reset()
            batch = ingest_files(
                files,
                self.client,
                self.state.registry,
                progress_callback=self.on_progress,
                log_callback=self.write_to_log,
                max_workers=self.app_config.get('max_workers', 1),
                stop_event=self.stop_event,
                tracker=self.tracker,
            )
            self.write_to_log(
                f"[bold green]✓ Analyzed {len(batch.records)} image(s)[/bold green] in {self.tracker.get('time')}"
            )

        except AccessDenied as e:
            self.write_to_log(f"[red]{e}[/red]")
            self.call_from_thread(self.show_error, "Could not access the folder. Please try again.")

        except Exception as e:
            self.write_to_log(f"[bold red]✗ Scan failed: {e}[/bold red]")

        finally:
            self.call_from_thread(self.on_ingest_complete, batch)

    def on_ingest_complete(self, batch: Optional[BatchResult]) -> None:
        """Runs on the app thread: merge results, then redraw."""
        if batch is not None:
            dropped = self.state.apply_batch(batch)
            if dropped:
                self.write_to_log(f"   [dim]Skipped {len(dropped)} duplicate image(s)[/dim]")
        self.stop_progress_tracking()
        self.toggle_workflow_buttons(disabled=False)
        self.refresh_gallery()

    def run_connection_check_thread(self) -> None:
        check_provider_connection(self.client.provider, self.write_to_log)

