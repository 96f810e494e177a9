#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
CHROMASORT Configuration
Application settings, defaults, credential lookup and config file management.
"""

from __future__ import annotations

import os
import configparser
from pathlib import Path
from typing import Dict, Any, Optional

from .errors import ConfigurationMissing

# ==============================================================================
# CONFIGURATION CONSTANTS
# ==============================================================================

# --- Vision API Settings ---
DEFAULT_API_PROVIDER = "gemini"
DEFAULT_MODEL_NAME = "gemini-3-flash-preview"
GEMINI_URL = "https://generativelanguage.googleapis.com/v1beta"
OPENAI_COMPAT_URL = "http://localhost:8080/v1/chat/completions"
OLLAMA_URL = "http://localhost:11434/api/chat"

# Checked in order; the first one set wins.
API_KEY_ENV_VARS = ("API_KEY", "GEMINI_API_KEY")

# Providers that refuse to start without a key
KEY_REQUIRED_PROVIDERS = {"gemini"}

# --- Path Settings ---
CONFIG_FILE_PATH = Path.home() / ".chromasort.conf"

# --- File Processing Settings ---
SUPPORTED_EXTENSIONS = {'.png', '.jpg', '.jpeg', '.webp'}

MEDIA_TYPES = {
    '.png': 'image/png',
    '.jpg': 'image/jpeg',
    '.jpeg': 'image/jpeg',
    '.webp': 'image/webp',
}

# --- Workflow Settings ---
# 1 = strictly sequential, one request in flight at a time
DEFAULT_MAX_WORKERS = 1
MAX_WORKERS_CAP = 8
CLASSIFY_TIMEOUT = 120


# ==============================================================================
# CREDENTIALS
# ==============================================================================

def read_env_file(env_path: Path) -> Dict[str, str]:
    """Parse a simple .env file into key/value pairs."""
    values: Dict[str, str] = {}
    try:
        content = env_path.read_text(encoding="utf-8")
    except OSError:
        return values

    for raw_line in content.splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        if line.startswith("export "):
            line = line[len("export "):].strip()
        if "=" not in line:
            continue

        key, value = line.split("=", 1)
        key = key.strip()
        value = value.strip()
        if not key:
            continue

        if len(value) >= 2 and value[0] == value[-1] and value[0] in {"'", '"'}:
            value = value[1:-1]
        values[key] = value

    return values


def resolve_api_key(search_dir: Optional[Path] = None) -> Optional[str]:
    """
    Find the vision API key.

    Priority: environment (API_KEY, then GEMINI_API_KEY) > .env in the
    working directory > .env in search_dir.

    Returns:
        The key, or None when no source provides one
    """
    for var_name in API_KEY_ENV_VARS:
        value = os.environ.get(var_name)
        if value:
            return value

    candidates = [Path.cwd() / ".env"]
    if search_dir is not None:
        candidates.append(search_dir / ".env")

    for env_file in candidates:
        if not env_file.exists():
            continue
        values = read_env_file(env_file)
        for var_name in API_KEY_ENV_VARS:
            if values.get(var_name):
                return values[var_name]

    return None


def require_api_key(provider_name: str, api_key: Optional[str]) -> Optional[str]:
    """
    Fail fast when the provider needs a key and none was found.

    Raises:
        ConfigurationMissing: provider requires a key and api_key is empty
    """
    if provider_name in KEY_REQUIRED_PROVIDERS and not api_key:
        raise ConfigurationMissing(
            "API_KEY",
            f"The {provider_name} provider needs an API key. "
            "Set API_KEY (or GEMINI_API_KEY) in the environment or a .env file."
        )
    return api_key


def _clamp_workers(value: Any) -> int:
    try:
        workers = int(value)
    except (TypeError, ValueError):
        return DEFAULT_MAX_WORKERS
    return max(1, min(workers, MAX_WORKERS_CAP))


def _parse_timeout(value: Any) -> int:
    try:
        seconds = int(value)
    except (TypeError, ValueError):
        return CLASSIFY_TIMEOUT
    return seconds if seconds > 0 else CLASSIFY_TIMEOUT


# ==============================================================================
# CONFIGURATION FILE MANAGEMENT
# ==============================================================================

def load_app_config(config_path: Optional[Path] = None) -> Dict[str, Any]:
    """
    Load settings from ~/.chromasort.conf with fallback defaults.

    Priority: Env Vars > Config File > Defaults. The API key is only ever read
    from the environment (or .env), never from the config file.

    Args:
        config_path: Override for the config file location

    Returns:
        Dictionary containing all application settings
    """
    path = config_path or CONFIG_FILE_PATH
    parser = configparser.ConfigParser()
    config_loaded = False

    if path.exists():
        try:
            parser.read(path)
            config_loaded = True
        except configparser.Error:
            pass  # Will use fallbacks

    config = {}

    config['config_file_found'] = config_loaded
    config['config_file_path'] = str(path)

    config['api_provider'] = os.environ.get(
        'CHROMASORT_API_PROVIDER',
        parser.get('api', 'provider', fallback=DEFAULT_API_PROVIDER)
    ).lower()

    config['api_endpoint'] = os.environ.get(
        'CHROMASORT_API_ENDPOINT',
        parser.get('api', 'endpoint', fallback=None)
    )

    config['model'] = os.environ.get(
        'CHROMASORT_MODEL',
        parser.get('api', 'model', fallback=DEFAULT_MODEL_NAME)
    )

    config['api_key'] = resolve_api_key()

    config['max_workers'] = _clamp_workers(os.environ.get(
        'CHROMASORT_MAX_WORKERS',
        parser.get('ingest', 'max_workers', fallback=str(DEFAULT_MAX_WORKERS))
    ))

    config['timeout'] = _parse_timeout(
        parser.get('ingest', 'timeout', fallback=str(CLASSIFY_TIMEOUT))
    )

    config['last_source_path'] = parser.get(
        'behavior', 'last_source_path', fallback=None
    )

    return config


def save_app_config(config: Dict[str, Any], config_path: Optional[Path] = None) -> bool:
    """
    Save settings back to ~/.chromasort.conf.

    Only saves the last scanned folder and the model. The API key is never
    written to disk.

    Args:
        config: Dictionary with settings to save
        config_path: Override for the config file location

    Returns:
        True on success, False on error
    """
    path = config_path or CONFIG_FILE_PATH
    parser = configparser.ConfigParser()

    # Load existing config first to preserve other settings
    if path.exists():
        try:
            parser.read(path)
        except configparser.Error:
            pass

    for section in ('behavior', 'api'):
        if not parser.has_section(section):
            parser.add_section(section)

    if config.get('last_source_path'):
        parser.set('behavior', 'last_source_path', str(config['last_source_path']))

    if config.get('model'):
        parser.set('api', 'model', str(config['model']))

    try:
        with open(path, 'w') as f:
            parser.write(f)
        return True
    except OSError:
        return False
