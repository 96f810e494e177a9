#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
CHROMASORT Vision
Dominant-color and tag extraction through a vision/LLM provider.

One request per image, no retries. Missing or malformed fields in the model's
answer are downgraded to empty sequences; only a failed request is an error.
"""

from __future__ import annotations

import base64
import json
import re
from dataclasses import dataclass
from typing import Optional, Tuple, Dict, Any, Callable

import requests

from .config import CLASSIFY_TIMEOUT, DEFAULT_MODEL_NAME
from .errors import ClassificationFailure
from .scanner import FileHandle
from .vision_providers import VisionProvider, get_provider


# ==============================================================================
# AI PROMPT & RESPONSE SCHEMA
# ==============================================================================

ANALYSIS_PROMPT = (
    "Analyze this image. Identify the 5 most dominant colors and generate 3-4 "
    "descriptive tags based on the color palette (e.g., 'Warm Tones', 'Cool Blues', "
    "'Earthy', 'Monochromatic', 'Vibrant'). Return a JSON object with two keys: "
    "'colors' (an array of hex color codes) and 'tags' (an array of strings). "
    "Example: {\"colors\": [\"#RRGGBB\"], \"tags\": [\"Earthy\", \"Muted\"]}. "
    "Only return the JSON object."
)

RESPONSE_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "colors": {
            "type": "array",
            "items": {"type": "string", "description": "A hex color code, e.g., #FFFFFF"},
        },
        "tags": {
            "type": "array",
            "items": {"type": "string", "description": "A descriptive color tag, e.g., Warm Tones"},
        },
    },
}

RESPONSE_FIELDS = ("colors", "tags")

HEX_COLOR = re.compile(r"^#[0-9a-fA-F]{6}$")


# ==============================================================================
# HELPER FUNCTIONS
# ==============================================================================

def no_op_logger(message: str) -> None:
    """A dummy logger that does nothing, for when no callback is provided."""
    pass


@dataclass(frozen=True)
class Classification:
    colors: Tuple[str, ...] = ()
    tags: Tuple[str, ...] = ()


@dataclass(frozen=True)
class ValidationResult:
    """Parsed classification plus the field problems found on the way (if any)."""
    classification: Classification
    issues: Tuple[str, ...] = ()

    @property
    def valid(self) -> bool:
        return not self.issues


def is_hex_color(value: str) -> bool:
    """True for #RRGGBB strings. Other color strings are kept but cannot be drawn."""
    return bool(HEX_COLOR.match(value))


def encode_image(file: FileHandle) -> Tuple[str, str]:
    """
    Read an image and return it base64-encoded with its media type.

    Raises:
        OSError: the file cannot be read
    """
    file_data = file.read()
    return base64.b64encode(file_data.data).decode('utf-8'), file_data.media_type


# ==============================================================================
# RESPONSE VALIDATION
# ==============================================================================

def _validate_string_list(data: Dict[str, Any], field: str) -> Tuple[Tuple[str, ...], Optional[str]]:
    if field not in data or data[field] is None:
        return (), f"missing field '{field}'"
    value = data[field]
    if not isinstance(value, list):
        return (), f"field '{field}' is {type(value).__name__}, expected array"
    if not all(isinstance(item, str) for item in value):
        return (), f"field '{field}' contains non-string items"
    return tuple(value), None


def validate_classification(data: Any) -> ValidationResult:
    """
    Check a decoded JSON answer against RESPONSE_SCHEMA.

    Each field is judged on its own: an array of strings is kept verbatim,
    anything else becomes an empty tuple and an issue message.
    """
    if not isinstance(data, dict):
        return ValidationResult(
            Classification(),
            (f"response is {type(data).__name__}, expected object",)
        )

    values = {}
    issues = []
    for field in RESPONSE_FIELDS:
        values[field], issue = _validate_string_list(data, field)
        if issue:
            issues.append(issue)
    return ValidationResult(Classification(**values), tuple(issues))


def _strip_code_fence(text: str) -> str:
    # Clean up potential markdown formatting
    if text.startswith("```"):
        text = text.split("```")[1]
        if text.startswith("json"):
            text = text[4:]
        text = text.strip()
    return text


def parse_response_text(text: Optional[str]) -> ValidationResult:
    """
    Decode the model's raw text.

    Empty text means the model answered nothing: both fields are empty.

    Raises:
        json.JSONDecodeError: the text is not JSON at all
    """
    if not text or not text.strip():
        return ValidationResult(Classification(), ("empty response",))
    return validate_classification(json.loads(_strip_code_fence(text.strip())))


# ==============================================================================
# CLASSIFICATION CLIENT
# ==============================================================================

class ClassificationClient:
    """Turns one image file into a Classification through a VisionProvider."""

    def __init__(
        self,
        provider: VisionProvider,
        model: str = DEFAULT_MODEL_NAME,
        timeout: int = CLASSIFY_TIMEOUT,
        log_callback: Callable[[str], None] = no_op_logger
    ):
        self.provider = provider
        self.model = model
        self.timeout = timeout
        self.log_callback = log_callback

    @classmethod
    def from_config(
        cls,
        app_config: Dict[str, Any],
        log_callback: Callable[[str], None] = no_op_logger
    ) -> "ClassificationClient":
        """
        Build a client from load_app_config() output.

        Raises:
            ConfigurationMissing: the provider needs an API key and none is set
        """
        provider = get_provider(app_config)
        return cls(
            provider,
            model=app_config.get('model') or DEFAULT_MODEL_NAME,
            timeout=app_config.get('timeout') or CLASSIFY_TIMEOUT,
            log_callback=log_callback,
        )

    def build_payload(self, image_b64: str, media_type: str) -> Dict[str, Any]:
        return {
            "model": self.model,
            "prompt": ANALYSIS_PROMPT,
            "image": {"data": image_b64, "mime_type": media_type},
            "schema": RESPONSE_SCHEMA,
        }

    def classify(self, file: FileHandle) -> Classification:
        """
        Extract dominant colors and tags for one image.

        Args:
            file: Image to analyze

        Returns:
            Classification (fields may be empty if the answer was malformed)

        Raises:
            ClassificationFailure: the file could not be read, the request
                failed, or the answer was not JSON
        """
        try:
            image_b64, media_type = encode_image(file)
        except OSError as e:
            raise ClassificationFailure(file.name, f"could not read file: {e}") from e

        payload = self.build_payload(image_b64, media_type)

        try:
            text = self.provider.send_request(payload, timeout=self.timeout)
        except requests.exceptions.Timeout as e:
            raise ClassificationFailure(file.name, f"request timed out after {self.timeout}s") from e
        except requests.exceptions.HTTPError as e:
            status = e.response.status_code if e.response is not None else "?"
            raise ClassificationFailure(file.name, f"HTTP {status}: {e}") from e
        except requests.exceptions.RequestException as e:
            raise ClassificationFailure(file.name, str(e)) from e
        except (ValueError, KeyError, TypeError, IndexError, AttributeError) as e:
            raise ClassificationFailure(file.name, f"unexpected response from {self.provider.name}: {e}") from e

        if text is not None and not isinstance(text, str):
            raise ClassificationFailure(
                file.name, f"unexpected response from {self.provider.name}: text is {type(text).__name__}"
            )

        try:
            result = parse_response_text(text)
        except json.JSONDecodeError as e:
            raise ClassificationFailure(file.name, f"model returned invalid JSON: {e}") from e

        for issue in result.issues:
            self.log_callback(f"   [yellow]Warning: {issue} for {file.name}, using empty list[/yellow]")

        return result.classification


# ==============================================================================
# PROVIDER CONNECTION CHECK
# ==============================================================================

def check_provider_connection(
    provider: VisionProvider,
    log_callback: Callable[[str], None] = no_op_logger
) -> bool:
    """
    Check if the vision provider is reachable. Logs the outcome, never raises.
    """
    try:
        log_callback(f"   [grey]Connecting to {provider.name} vision provider...[/grey]")
        if provider.check_connection():
            log_callback(f"   [green]✓ {provider.name.upper()} provider connected[/green]")
            return True
        log_callback(f"   [red]✗ {provider.name.capitalize()} connection failed[/red]")
        if provider.name == "ollama":
            log_callback("   Start with: ollama serve")
        return False
    except Exception as e:
        log_callback(f"   [red]✗ Connection check failed:[/red] {e}")
        return False
