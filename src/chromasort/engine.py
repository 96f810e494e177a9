#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
CHROMASORT Engine
Batch ingestion: classify scanned files, build image records, merge results.

Files are analyzed one at a time by default. A bounded worker pool can be
enabled with max_workers > 1; either way a failed file never aborts the batch.
"""

from __future__ import annotations

import threading
import uuid
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Tuple, List, Dict, Any, Callable, Iterable

from .errors import ClassificationFailure
from .scanner import FileHandle
from .vision import Classification, ClassificationClient


# ==============================================================================
# STATS TRACKER
# ==============================================================================

class StatsTracker:
    """
    Real-time statistics tracker for ingestion progress.
    Designed for thread-safe callback communication between engine and TUI.

    Usage:
        tracker = StatsTracker(callback=my_callback_function)
        tracker.start_timer()
        tracker.update('analyzed', 42)
        tracker.stop_timer()
    """

    def __init__(self, callback: Optional[Callable[[str, Any], None]] = None):
        self.callback = callback
        self._stats: Dict[str, Any] = {}
        self._start_time: Optional[datetime] = None
        self.reset()

    def update(self, key: str, value: Any) -> None:
        self._stats[key] = value
        if self.callback:
            self.callback(key, value)

    def increment(self, key: str) -> None:
        self.update(key, self._stats.get(key, 0) + 1)

    def get(self, key: str) -> Any:
        return self._stats.get(key)

    def start_timer(self) -> None:
        self._start_time = datetime.now()
        self.update('time', 'Running...')

    def stop_timer(self) -> None:
        """Stop the timer and store a human-readable duration ("2m 34s")."""
        if self._start_time:
            total_seconds = int((datetime.now() - self._start_time).total_seconds())
            minutes, seconds = divmod(total_seconds, 60)
            self.update('time', f"{minutes}m {seconds}s" if minutes > 0 else f"{seconds}s")

    def reset(self) -> None:
        self._stats = {'analyzed': 0, 'failed': 0, 'duplicates': 0, 'time': '--'}
        self._start_time = None


# ==============================================================================
# DISPLAY HANDLES
# ==============================================================================

@dataclass(frozen=True)
class DisplayHandle:
    token: str
    url: str


class DisplayRegistry:
    """
    In-memory image bytes addressable by URL, released explicitly.

    Every acquired handle must be released when its record is discarded,
    otherwise the bytes stay in memory for the life of the registry.
    """

    SCHEME = "chromasort"

    def __init__(self):
        self._blobs: Dict[str, bytes] = {}
        self._lock = threading.Lock()

    def acquire(self, file: FileHandle) -> DisplayHandle:
        """
        Raises:
            OSError: the file cannot be read
        """
        data = file.read().data
        token = uuid.uuid4().hex
        with self._lock:
            self._blobs[token] = data
        return DisplayHandle(token, f"{self.SCHEME}://{token}/{file.name}")

    def resolve(self, url: str) -> bytes:
        """
        Raises:
            KeyError: the URL is unknown or was released
        """
        prefix = f"{self.SCHEME}://"
        if not url.startswith(prefix):
            raise KeyError(url)
        token = url[len(prefix):].split("/", 1)[0]
        with self._lock:
            return self._blobs[token]

    def release(self, handle: DisplayHandle) -> None:
        with self._lock:
            self._blobs.pop(handle.token, None)

    def release_all(self) -> None:
        with self._lock:
            self._blobs.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._blobs)


# ==============================================================================
# IMAGE RECORDS
# ==============================================================================

@dataclass(frozen=True)
class ImageRecord:
    id: str
    file: FileHandle
    display: DisplayHandle
    colors: Tuple[str, ...]
    tags: Tuple[str, ...]
    # Captured once so identity stays stable if the file changes later
    size: int = 0

    @property
    def name(self) -> str:
        return self.file.name

    @property
    def identity(self) -> Tuple[str, int]:
        """Dedup key: two files with the same name and byte size are the same image."""
        return self.file.name, self.size


def make_record(file: FileHandle, classification: Classification, registry: DisplayRegistry) -> ImageRecord:
    """
    Raises:
        OSError: the file vanished or became unreadable
    """
    size = file.size
    return ImageRecord(
        id=uuid.uuid4().hex,
        file=file,
        display=registry.acquire(file),
        colors=tuple(classification.colors),
        tags=tuple(classification.tags),
        size=size,
    )


@dataclass
class BatchResult:
    records: List[ImageRecord] = field(default_factory=list)
    failures: List[str] = field(default_factory=list)
    stopped: bool = False


# ==============================================================================
# CORE UTILITIES
# ==============================================================================

def no_op_logger(message: str) -> None:
    """A dummy logger that does nothing, for when no callback is provided."""
    pass


def no_op_progress(index: int, total: int, file_name: str) -> None:
    pass


# Returned by a pool worker that saw the stop event before starting its file
SKIPPED = object()


def merge_records(
    existing: Iterable[ImageRecord],
    new: Iterable[ImageRecord]
) -> Tuple[List[ImageRecord], List[ImageRecord]]:
    """
    Append new records, keeping only the first record per (name, size).

    Dedup runs over the whole combined list, not just the new batch.

    Returns:
        Tuple of (merged records, dropped duplicates)
    """
    seen = set()
    merged: List[ImageRecord] = []
    dropped: List[ImageRecord] = []
    for record in list(existing) + list(new):
        if record.identity in seen:
            dropped.append(record)
            continue
        seen.add(record.identity)
        merged.append(record)
    return merged, dropped


def merge_facet(existing: Iterable[str], values: Iterable[str]) -> List[str]:
    """Union of both inputs, deduplicated and sorted ascending."""
    return sorted(set(existing) | set(values))


def failure_summary(failures: List[str]) -> Optional[str]:
    """Count-based message for the user, or None when nothing failed."""
    if not failures:
        return None
    return f"Could not process {len(failures)} image(s). Check the log and API key."


# ==============================================================================
# INGESTION
# ==============================================================================

def process_single_image(
    file: FileHandle,
    client: ClassificationClient,
    registry: DisplayRegistry,
    log_callback: Callable[[str], None] = no_op_logger
) -> Optional[ImageRecord]:
    """
    Classify one file and wrap it in an ImageRecord.

    Returns:
        ImageRecord, or None if the file failed (the reason is logged)
    """
    try:
        classification = client.classify(file)
        return make_record(file, classification, registry)
    except ClassificationFailure as e:
        log_callback(f"   [red]✗ Failed to process {file.name}:[/red] {e.detail}")
        return None
    except OSError as e:
        log_callback(f"   [red]✗ Failed to read {file.name}:[/red] {e}")
        return None
    except Exception as e:
        log_callback(f"   [red]✗ Unexpected error on {file.name}:[/red] {type(e).__name__}: {e}")
        return None


def ingest_files(
    files: List[FileHandle],
    client: ClassificationClient,
    registry: DisplayRegistry,
    progress_callback: Callable[[int, int, str], None] = no_op_progress,
    log_callback: Callable[[str], None] = no_op_logger,
    max_workers: int = 1,
    stop_event: Optional[threading.Event] = None,
    tracker: Optional[StatsTracker] = None
) -> BatchResult:
    """
    Run every file through the classification client.

    Args:
        files: Files to analyze, in the order they should appear
        client: Classification client
        registry: Issues display handles for successful records
        progress_callback: Called with (index, total, file_name) right before a
            file is classified (from a worker thread when max_workers > 1)
        log_callback: Logging function
        max_workers: 1 = one request at a time; >1 = bounded thread pool
        stop_event: Once set, files not yet started are skipped
        tracker: Optional StatsTracker for live counters

    Returns:
        BatchResult with records in input order and failed file names
    """
    result = BatchResult()
    total = len(files)
    if total == 0:
        return result

    if tracker:
        tracker.start_timer()

    def handle(file: FileHandle, record: Optional[ImageRecord]) -> None:
        if record is None:
            result.failures.append(file.name)
            if tracker:
                tracker.increment('failed')
        else:
            result.records.append(record)
            if tracker:
                tracker.increment('analyzed')

    if max_workers <= 1:
        for index, file in enumerate(files, start=1):
            if stop_event and stop_event.is_set():
                log_callback(f"[yellow]Stopped after {index - 1}/{total} images[/yellow]")
                result.stopped = True
                break
            progress_callback(index, total, file.name)
            handle(file, process_single_image(file, client, registry, log_callback))
    else:
        log_callback(f"   [dim]Analyzing with {max_workers} parallel workers[/dim]")

        def work(index: int, file: FileHandle):
            if stop_event and stop_event.is_set():
                return SKIPPED
            progress_callback(index, total, file.name)
            return process_single_image(file, client, registry, log_callback)

        with ThreadPoolExecutor(max_workers=max_workers) as executor:
            futures = [executor.submit(work, index, file) for index, file in enumerate(files, start=1)]
            # Collect in submission order so records keep input order
            for file, future in zip(files, futures):
                outcome = future.result()
                if outcome is SKIPPED:
                    result.stopped = True
                    continue
                handle(file, outcome)
        if result.stopped:
            done = len(result.records) + len(result.failures)
            log_callback(f"[yellow]Stopped after {done}/{total} images[/yellow]")

    if tracker:
        tracker.stop_timer()

    if result.failures:
        log_callback(f"[yellow]⚠️  {len(result.failures)} of {total} image(s) failed[/yellow]")
    return result
