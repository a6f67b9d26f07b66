#!/usr/bin/env python3
"""
Google Drive Credentials
Loads the authorized-user token written by the one-time auth step, refreshes
it when expired and saves the refreshed token back to disk
"""

import json
import logging
import os
import threading
from pathlib import Path
from typing import Callable, List, Optional

from google.auth.exceptions import RefreshError, TransportError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials

from exceptions import AuthError, TransientError

logger = logging.getLogger(__name__)

# Only request read-only access to Drive files
SCOPES = ['https://www.googleapis.com/auth/drive.readonly']


class TokenFileCredentials:
    """
    Credential provider backed by token.json.

    get_credential() is called from worker threads, so loading and refreshing
    happen under a lock. Listeners are told when a new token shows up on disk.
    """

    def __init__(self, token_path: str = "token.json",
                 credentials_path: Optional[str] = "credentials.json",
                 scopes: Optional[List[str]] = None):
        self.token_path = Path(token_path)
        self.credentials_path = Path(credentials_path) if credentials_path else None
        self.scopes = scopes or SCOPES
        self._creds: Optional[Credentials] = None
        self._token_mtime: Optional[float] = None
        self._lock = threading.Lock()
        self._listeners: List[Callable[[], None]] = []

    def add_listener(self, listener: Callable[[], None]) -> None:
        self._listeners.append(listener)

    def _client_info(self) -> dict:
        """client_id/client_secret from credentials.json ('installed' or 'web')"""
        if self.credentials_path is None or not self.credentials_path.exists():
            return {}
        try:
            with open(self.credentials_path, 'r') as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"[Auth] Could not read {self.credentials_path}: {e}")
            return {}
        section = data.get('installed') or data.get('web') or {}
        return {k: section[k] for k in ('client_id', 'client_secret') if k in section}

    def _load(self) -> Credentials:
        if not self.token_path.exists():
            raise AuthError(f"{self.token_path} not found. Authenticate with Google Drive first")
        try:
            with open(self.token_path, 'r') as f:
                info = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise AuthError(f"Could not read {self.token_path}: {e}") from e

        for key, value in self._client_info().items():
            info.setdefault(key, value)

        # Tokens written by other OAuth clients call the access token 'access_token'
        if 'token' not in info and 'access_token' in info:
            info['token'] = info['access_token']

        try:
            creds = Credentials.from_authorized_user_info(info, self.scopes)
        except ValueError as e:
            raise AuthError(f"Invalid token file {self.token_path}: {e}") from e

        self._token_mtime = self._current_mtime()
        logger.info(f"[Auth] Loaded credentials from {self.token_path}")
        return creds

    def _current_mtime(self) -> Optional[float]:
        try:
            return os.stat(self.token_path).st_mtime
        except OSError:
            return None

    def _save(self, creds: Credentials) -> None:
        try:
            with open(self.token_path, 'w') as f:
                f.write(creds.to_json())
            self._token_mtime = self._current_mtime()
            logger.info(f"[Auth] Token saved to {self.token_path}")
        except OSError as e:
            logger.warning(f"[Auth] Failed to save refreshed token: {e}")

    def get_credential(self) -> Credentials:
        """Return a usable credential or raise AuthError"""
        with self._lock:
            if self._creds is None:
                self._creds = self._load()
            creds = self._creds

            if creds.valid:
                return creds

            if not creds.refresh_token:
                self._creds = None
                raise AuthError("Token expired and has no refresh token. Authenticate again")

            logger.info("[Auth] Access token expired, refreshing...")
            try:
                creds.refresh(Request())
            except RefreshError as e:
                self._creds = None
                raise AuthError(f"Token refresh rejected: {e}") from e
            except TransportError as e:
                raise TransientError(f"Token refresh failed: {e}") from e

            self._save(creds)
            return creds

    def check_for_update(self) -> bool:
        """
        Detect a token file rewritten by someone else (e.g. a fresh auth run).
        Drops the cached credential and notifies listeners when it changed.
        """
        mtime = self._current_mtime()
        with self._lock:
            if mtime is None or mtime == self._token_mtime:
                return False
            first_seen = self._token_mtime is None and self._creds is None
            self._creds = None
            self._token_mtime = mtime

        logger.info(f"[Auth] {'Found' if first_seen else 'Detected updated'} token at {self.token_path}")
        for listener in list(self._listeners):
            listener()
        return True
