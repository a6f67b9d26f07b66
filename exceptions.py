#!/usr/bin/env python3
"""
Custom exception types for gFrame
Separates configuration, fetch, playback and display failures so each layer
can decide whether to retry, degrade or report
"""

from typing import Optional


# ============= Configuration Errors =============
class ConfigError(Exception):
    """Raised when settings are missing or invalid. Fatal at startup."""

    def __init__(self, field: str, message: str, value: Optional[str] = None):
        self.field = field
        self.message = message
        self.value = value
        super().__init__(f"Config error in '{field}': {message}{f' (value: {value})' if value else ''}")


# ============= Fetch Errors =============
class FetchError(Exception):
    """Base class for errors raised while talking to Google Drive"""
    pass


class AuthError(FetchError):
    """No usable credential. Blocks fetching until the token is replaced."""
    pass


class NotFoundError(FetchError):
    """Folder is missing or not accessible with the current credential"""
    pass


class TransientError(FetchError):
    """Network failure or rate limit; retried on the next scheduled attempt"""
    pass


# ============= Playback Errors =============
class LoadError(Exception):
    """Raised when an image cannot be downloaded or decoded into a slot"""

    def __init__(self, url: str, reason: str = ""):
        self.url = url
        self.reason = reason
        super().__init__(f"Failed to load {url}{f': {reason}' if reason else ''}")


# ============= Display Errors =============
class DisplayError(Exception):
    """Base class for display-related errors"""
    pass


class InitializationFailed(DisplayError):
    """Raised when no pygame video driver could be initialized"""
    pass
