#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
CHROMASORT Errors
Exception types shared by the scanner, classification client and TUI.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional, Union


class ChromaSortError(Exception):
    """Base class for every error ChromaSort raises on purpose."""


class AccessDenied(ChromaSortError):
    """
    A folder could not be opened or listed.

    Distinct from an empty folder: scanning a readable folder with no images
    returns an empty list instead of raising.
    """

    def __init__(self, path: Union[str, Path], reason: str = "access denied"):
        self.path = Path(path)
        self.reason = reason
        super().__init__(f"Could not access the folder {self.path}: {reason}")


class ClassificationFailure(ChromaSortError):
    """
    The vision request for one image failed (network, auth, quota, service).

    The original exception is chained as ``__cause__`` by the raiser.
    """

    def __init__(self, file_name: str, detail: str):
        self.file_name = file_name
        self.detail = detail
        super().__init__(f"Failed to analyze {file_name}. Details: {detail}")


class ConfigurationMissing(ChromaSortError):
    """A required setting (the API key) is absent. Raised at construction time."""

    def __init__(self, setting: str, hint: Optional[str] = None):
        self.setting = setting
        message = f"{setting} not set"
        if hint:
            message = f"{message}. {hint}"
        super().__init__(message)
