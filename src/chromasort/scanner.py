#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
CHROMASORT Scanner
Folder access and recursive image discovery.

The handle classes mirror a platform directory picker: a DirectoryHandle lists
entries, a FileHandle reads bytes plus a declared media type.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, List, Optional, Callable, Union

from .config import SUPPORTED_EXTENSIONS, MEDIA_TYPES
from .errors import AccessDenied


def no_op_logger(message: str) -> None:
    """A dummy logger that does nothing, for when no callback is provided."""
    pass


# ==============================================================================
# HANDLES
# ==============================================================================

@dataclass(frozen=True)
class FileData:
    data: bytes
    media_type: str


class FileHandle:
    """A readable image file."""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)

    @property
    def name(self) -> str:
        return self.path.name

    @property
    def size(self) -> int:
        return self.path.stat().st_size

    @property
    def media_type(self) -> str:
        return MEDIA_TYPES.get(self.path.suffix.lower(), 'application/octet-stream')

    def read(self) -> FileData:
        with open(self.path, 'rb') as f:
            return FileData(f.read(), self.media_type)

    def __eq__(self, other: object) -> bool:
        return isinstance(other, FileHandle) and other.path == self.path

    def __hash__(self) -> int:
        return hash(self.path)

    def __repr__(self) -> str:
        return f"FileHandle({str(self.path)!r})"


@dataclass(frozen=True)
class Entry:
    kind: str  # "file" or "directory"
    name: str
    handle: Union["DirectoryHandle", FileHandle]


class DirectoryHandle:
    """A directory the user has granted access to."""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)

    @property
    def name(self) -> str:
        return self.path.name or str(self.path)

    def list_entries(self) -> Iterator[Entry]:
        """
        Yield the immediate children in os.scandir order.

        Symlinked directories are never followed. Entries that are neither
        files nor directories are skipped.

        Raises:
            OSError: the directory cannot be listed
        """
        with os.scandir(self.path) as it:
            for item in it:
                if item.is_dir(follow_symlinks=False):
                    yield Entry("directory", item.name, DirectoryHandle(item.path))
                elif item.is_file():
                    yield Entry("file", item.name, FileHandle(item.path))

    def __repr__(self) -> str:
        return f"DirectoryHandle({str(self.path)!r})"


# ==============================================================================
# FOLDER PICKER
# ==============================================================================

def pick_directory(path: Optional[Union[str, Path]]) -> Optional[DirectoryHandle]:
    """
    Turn a chosen path into a DirectoryHandle.

    Args:
        path: The folder chosen by the user, or None if the picker was cancelled

    Returns:
        DirectoryHandle, or None for a cancelled pick

    Raises:
        AccessDenied: the path is missing, not a folder, or not readable
    """
    if path is None:
        return None

    folder = Path(path).expanduser()
    if not folder.exists():
        raise AccessDenied(folder, "folder does not exist")
    if not folder.is_dir():
        raise AccessDenied(folder, "not a folder")
    if not os.access(folder, os.R_OK | os.X_OK):
        raise AccessDenied(folder, "permission denied")
    return DirectoryHandle(folder)


# ==============================================================================
# RECURSIVE SCAN
# ==============================================================================

def is_supported_image(name: str) -> bool:
    """True if the file name ends in a recognized image extension (any case)."""
    return os.path.splitext(name)[1].lower() in SUPPORTED_EXTENSIONS


def _walk(
    handle: DirectoryHandle,
    found: List[FileHandle],
    log_callback: Callable[[str], None]
) -> None:
    for entry in handle.list_entries():
        if entry.kind == "file":
            if is_supported_image(entry.name):
                found.append(entry.handle)
        elif entry.kind == "directory":
            try:
                _walk(entry.handle, found, log_callback)
            except OSError as e:
                log_callback(f"   [yellow]Skipping unreadable folder {entry.name}:[/yellow] {e}")


def scan_directory(
    handle: DirectoryHandle,
    log_callback: Callable[[str], None] = no_op_logger
) -> List[FileHandle]:
    """
    Recursively collect every supported image under a directory.

    No depth limit. Non-image files are skipped silently; a nested folder that
    cannot be listed is logged and skipped.

    Args:
        handle: Root directory
        log_callback: Logging function

    Returns:
        Flat list of FileHandles in traversal order (possibly empty)

    Raises:
        AccessDenied: the root directory itself cannot be listed
    """
    found: List[FileHandle] = []
    try:
        _walk(handle, found, log_callback)
    except OSError as e:
        raise AccessDenied(handle.path, e.strerror or str(e)) from e
    return found
