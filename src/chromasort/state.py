#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
CHROMASORT State
The gallery's single source of truth: image collection, facet sets, the
color/tag selection and the current error message.
"""

from __future__ import annotations

import threading
from typing import Optional, List, Callable, Sequence

from .engine import (
    BatchResult,
    DisplayRegistry,
    ImageRecord,
    StatsTracker,
    failure_summary,
    ingest_files,
    merge_facet,
    merge_records,
    no_op_logger,
    no_op_progress,
)
from .scanner import FileHandle
from .vision import ClassificationClient


def filter_images(
    images: Sequence[ImageRecord],
    color: Optional[str] = None,
    tag: Optional[str] = None
) -> List[ImageRecord]:
    """Records containing the color (if given) and the tag (if given), in collection order."""
    result = list(images)
    if color:
        result = [image for image in result if color in image.colors]
    if tag:
        result = [image for image in result if tag in image.tags]
    return result


class GalleryState:
    """
    Owns everything the gallery shows.

    Mutated only through the methods below. Color and tag selection are
    mutually exclusive: choosing one clears the other.
    """

    def __init__(self, registry: Optional[DisplayRegistry] = None):
        self.registry = registry or DisplayRegistry()
        self.images: List[ImageRecord] = []
        self.colors: List[str] = []
        self.tags: List[str] = []
        self.selected_color: Optional[str] = None
        self.selected_tag: Optional[str] = None
        self.error: Optional[str] = None

    # --- Selection ---

    def select_color(self, color: Optional[str]) -> None:
        self.selected_color = color
        self.selected_tag = None

    def select_tag(self, tag: Optional[str]) -> None:
        self.selected_tag = tag
        self.selected_color = None

    def visible_images(self) -> List[ImageRecord]:
        return filter_images(self.images, self.selected_color, self.selected_tag)

    # --- Ingestion ---

    def apply_batch(self, batch: BatchResult) -> List[ImageRecord]:
        """
        Merge a finished batch into the collection.

        Duplicates (same name and size as a record already held) are dropped
        and their display handles released. Facets absorb the colors and tags
        of every record in the batch.

        Returns:
            Records dropped as duplicates
        """
        self.images, dropped = merge_records(self.images, batch.records)
        for record in dropped:
            self.registry.release(record.display)

        self.colors = merge_facet(self.colors, (c for record in batch.records for c in record.colors))
        self.tags = merge_facet(self.tags, (t for record in batch.records for t in record.tags))

        self.error = failure_summary(batch.failures)
        return dropped

    def ingest(
        self,
        files: List[FileHandle],
        client: ClassificationClient,
        progress_callback: Callable[[int, int, str], None] = no_op_progress,
        log_callback: Callable[[str], None] = no_op_logger,
        max_workers: int = 1,
        stop_event: Optional[threading.Event] = None,
        tracker: Optional[StatsTracker] = None
    ) -> Optional[BatchResult]:
        """
        Classify files and merge the results.

        Returns:
            The BatchResult, or None when files is empty (nothing changes)
        """
        if not files:
            return None
        self.error = None

        batch = ingest_files(
            files,
            client,
            self.registry,
            progress_callback=progress_callback,
            log_callback=log_callback,
            max_workers=max_workers,
            stop_event=stop_event,
            tracker=tracker,
        )
        dropped = self.apply_batch(batch)
        if dropped:
            log_callback(f"   [dim]Skipped {len(dropped)} duplicate image(s)[/dim]")
            if tracker:
                tracker.update('duplicates', len(dropped))
        return batch

    # --- Reset ---

    def dismiss_error(self) -> None:
        self.error = None

    def clear_all(self) -> None:
        """Release every display handle and reset all state."""
        for record in self.images:
            self.registry.release(record.display)
        self.registry.release_all()
        self.images = []
        self.colors = []
        self.tags = []
        self.selected_color = None
        self.selected_tag = None
        self.error = None
