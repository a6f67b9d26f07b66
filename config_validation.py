#!/usr/bin/env python3
"""
Configuration Validation Module
Validates settings.json to catch configuration errors early and turns the
raw JSON into a SlideshowConfig with defaults applied
"""

import logging
import re
from dataclasses import dataclass
from typing import Dict, Any, Optional, Tuple

from exceptions import ConfigError

logger = logging.getLogger(__name__)

VALID_MODES = ('cover', 'contain', 'fill')
VALID_LOG_LEVELS = ('DEBUG', 'INFO', 'WARNING', 'ERROR')

DEFAULT_SETTINGS: Dict[str, Any] = {
    'updateInterval': 30 * 1000,
    'refreshInterval': 30 * 60 * 1000,
    'transitionSpeed': 2000,
    'shuffle': True,
    'recursiveSearch': False,
    'mode': 'contain',
    'opacity': 1.0,
    'showPhotoInfo': False,
    'maxWidth': '100%',
    'maxHeight': '100%',
    'retryBackoff': 1000,
    'startupDelay': 1000,
    'tokenPath': 'token.json',
    'credentialsPath': 'credentials.json',
    'backgroundColor': [0, 0, 0],
    'fullscreen': True,
    'logLevel': 'INFO',
    'logFile': None,
}

_CSS_SIZE_RE = re.compile(r'^\s*(\d+(?:\.\d+)?)\s*(%|px)?\s*$')


@dataclass(frozen=True)
class SlideshowConfig:
    """Validated settings. Intervals are stored in seconds."""
    folder_id: str
    update_interval: float = 30.0
    refresh_interval: float = 1800.0
    transition_speed: float = 2.0
    shuffle: bool = True
    recursive_search: bool = False
    mode: str = 'contain'
    opacity: float = 1.0
    show_photo_info: bool = False
    max_width: str = '100%'
    max_height: str = '100%'
    retry_backoff: float = 1.0
    startup_delay: float = 1.0
    token_path: str = 'token.json'
    credentials_path: str = 'credentials.json'
    background_color: Tuple[int, int, int] = (0, 0, 0)
    fullscreen: bool = True
    log_level: str = 'INFO'
    log_file: Optional[str] = None


def extract_drive_id(value: str) -> str:
    """Extract folder ID from various Google Drive URL formats"""
    patterns = [
        r'/folders/([a-zA-Z0-9_-]+)',
        r'[?&]id=([a-zA-Z0-9_-]+)',
    ]

    for pattern in patterns:
        match = re.search(pattern, value)
        if match:
            return match.group(1)

    # If no pattern matches, assume the value is already an ID
    return value.strip().strip('/')


def validate_folder_id(value: Any, field_name: str) -> str:
    """Validate folderId is a non-empty id or Drive folder URL"""
    if value is None or value == '':
        raise ConfigError(field_name, "Required. Set it to the Google Drive folder ID")
    if not isinstance(value, str):
        raise ConfigError(field_name, "Must be a string")
    folder_id = extract_drive_id(value)
    if not re.fullmatch(r'[a-zA-Z0-9_-]+', folder_id):
        raise ConfigError(field_name, "Not a valid Google Drive folder ID", value)
    return folder_id


def validate_interval_ms(value: Any, field_name: str, minimum: int = 0) -> float:
    """Validate a millisecond interval and return it in seconds"""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigError(field_name, "Must be a number of milliseconds")
    if value < minimum:
        raise ConfigError(field_name, f"Must be at least {minimum} ms", str(value))
    return value / 1000.0


def validate_bool(value: Any, field_name: str) -> bool:
    if not isinstance(value, bool):
        raise ConfigError(field_name, "Must be true or false")
    return value


def validate_mode(value: Any, field_name: str) -> str:
    """Validate mode is 'cover', 'contain', or 'fill'"""
    if value not in VALID_MODES:
        raise ConfigError(field_name, f"Must be one of: {', '.join(VALID_MODES)}")
    return value


def validate_opacity(value: Any, field_name: str) -> float:
    """Validate opacity is between 0.0 and 1.0"""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigError(field_name, "Must be a number")
    if not (0.0 <= value <= 1.0):
        raise ConfigError(field_name, "Must be between 0.0 and 1.0", str(value))
    return float(value)


def validate_css_size(value: Any, field_name: str) -> str:
    """Validate a CSS-like size string such as '100%', '800px' or '800'"""
    if isinstance(value, int) and not isinstance(value, bool):
        value = str(value)
    if not isinstance(value, str) or not _CSS_SIZE_RE.match(value):
        raise ConfigError(field_name, "Must be a size like '100%' or '800px'", str(value))
    return value.strip()


def validate_color(value: Any, field_name: str) -> Tuple[int, int, int]:
    """Validate backgroundColor is a list of 3 integers 0-255"""
    if not isinstance(value, (list, tuple)):
        raise ConfigError(field_name, "Must be a list of 3 integers")
    if len(value) != 3:
        raise ConfigError(field_name, "Must have exactly 3 values (R, G, B)")
    for i, v in enumerate(value):
        if not isinstance(v, int):
            raise ConfigError(field_name, f"Value {i} must be an integer")
        if not (0 <= v <= 255):
            raise ConfigError(field_name, f"Value {i} must be 0-255, got {v}")
    return tuple(value)


def validate_path(value: Any, field_name: str) -> str:
    if not isinstance(value, str) or not value:
        raise ConfigError(field_name, "Must be a non-empty path")
    return value


def validate_log_level(value: Any, field_name: str) -> str:
    if not isinstance(value, str) or value.upper() not in VALID_LOG_LEVELS:
        raise ConfigError(field_name, f"Must be one of: {', '.join(VALID_LOG_LEVELS)}")
    return value.upper()


def validate_settings(settings: Dict[str, Any]) -> SlideshowConfig:
    """
    Validate all settings and return a SlideshowConfig.
    Every problem is collected first; a single ConfigError lists them all.
    """
    errors = []
    values: Dict[str, Any] = {}

    def check(key: str, attr: str, validator, *args):
        raw = settings.get(key, DEFAULT_SETTINGS.get(key))
        try:
            values[attr] = validator(raw, key, *args)
        except ConfigError as e:
            errors.append(str(e))

    unknown = sorted(set(settings) - set(DEFAULT_SETTINGS) - {'folderId'})
    for key in unknown:
        logger.warning(f"Ignoring unknown setting: '{key}'")

    check('folderId', 'folder_id', validate_folder_id)
    check('updateInterval', 'update_interval', validate_interval_ms, 1000)
    check('refreshInterval', 'refresh_interval', validate_interval_ms, 60 * 1000)
    check('transitionSpeed', 'transition_speed', validate_interval_ms, 0)
    check('retryBackoff', 'retry_backoff', validate_interval_ms, 0)
    check('startupDelay', 'startup_delay', validate_interval_ms, 0)
    check('shuffle', 'shuffle', validate_bool)
    check('recursiveSearch', 'recursive_search', validate_bool)
    check('showPhotoInfo', 'show_photo_info', validate_bool)
    check('fullscreen', 'fullscreen', validate_bool)
    check('mode', 'mode', validate_mode)
    check('opacity', 'opacity', validate_opacity)
    check('maxWidth', 'max_width', validate_css_size)
    check('maxHeight', 'max_height', validate_css_size)
    check('backgroundColor', 'background_color', validate_color)
    check('tokenPath', 'token_path', validate_path)
    check('credentialsPath', 'credentials_path', validate_path)
    check('logLevel', 'log_level', validate_log_level)

    log_file = settings.get('logFile')
    if log_file is not None:
        check('logFile', 'log_file', validate_path)

    # If there are errors, raise with all error messages
    if errors:
        error_msg = "Configuration validation failed:\n  - " + "\n  - ".join(errors)
        logger.error(error_msg)
        raise ConfigError("settings", error_msg)

    return SlideshowConfig(**values)
