#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Google Drive Sync Module
Lists the photos of a Google Drive folder (optionally with all subfolders)
and resolves a display URL for each photo
"""

import json
import logging
import re
import threading
from collections import deque
from typing import Callable, Dict, List, Optional, Set

import httplib2
from google.auth.exceptions import RefreshError, TransportError
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from exceptions import AuthError, NotFoundError, TransientError
from gframe_types import DriveFile, ImageRef

logger = logging.getLogger(__name__)

IMAGE_MIME_TYPES = (
    'image/jpeg',
    'image/png',
    'image/gif',
    'image/webp',
    'image/bmp',
    'image/tiff',
)
FOLDER_MIME_TYPE = 'application/vnd.google-apps.folder'

IMAGE_FIELDS = "nextPageToken, files(id, name, mimeType, createdTime, modifiedTime, imageMediaMetadata)"
FOLDER_FIELDS = "nextPageToken, files(id, name)"
PAGE_SIZE = 1000
MAX_FOLDER_DEPTH = 10

DIRECT_URL_TEMPLATE = "https://drive.google.com/uc?export=view&id={file_id}"

RATE_LIMIT_REASONS = {'rateLimitExceeded', 'userRateLimitExceeded', 'dailyLimitExceeded'}

# Client purposes
LISTING = 'listing'
RESOLVING = 'resolving'


def _quote(value: str) -> str:
    """Escape a value for use inside a Drive query string literal"""
    return value.replace('\\', '\\\\').replace("'", "\\'")


def _error_reasons(exc: HttpError) -> Set[str]:
    try:
        payload = json.loads(exc.content.decode('utf-8'))
    except (ValueError, AttributeError, UnicodeDecodeError):
        return set()
    errors = payload.get('error', {}).get('errors', []) if isinstance(payload, dict) else []
    return {e.get('reason') for e in errors if isinstance(e, dict) and e.get('reason')}


def classify_http_error(exc: HttpError, what: str):
    """Map a Drive HttpError onto AuthError, NotFoundError or TransientError"""
    status = exc.resp.status if exc.resp is not None else 0
    message = f"{what} failed (HTTP {status})"
    if status == 401:
        return AuthError(f"{message}: credential rejected")
    if status == 403:
        if _error_reasons(exc) & RATE_LIMIT_REASONS:
            return TransientError(f"{message}: rate limited")
        return NotFoundError(f"{message}: access denied")
    if status == 404:
        return NotFoundError(f"{message}: not found")
    return TransientError(message)


def thumbnail_url(thumbnail_link: str, width: int, height: int) -> str:
    """Rewrite a Drive thumbnail link (…=s220) to the requested size"""
    return re.sub(r'=s\d+', f'=s{max(width, height)}', thumbnail_link)


class GoogleDriveGateway:
    """Drive v3 access for the slideshow"""

    def __init__(self, credentials, page_size: int = PAGE_SIZE,
                 max_depth: int = MAX_FOLDER_DEPTH,
                 service_factory: Optional[Callable] = None):
        self._credentials = credentials
        self.page_size = page_size
        self.max_depth = max_depth
        self._service_factory = service_factory or self._build_service
        # Discovery clients are not thread-safe. Listing and resolving get their
        # own client and lock so a long folder walk never holds up a resolve.
        self._services: Dict[str, tuple] = {}
        self._locks = {LISTING: threading.Lock(), RESOLVING: threading.Lock()}

    @staticmethod
    def _build_service(creds):
        return build('drive', 'v3', credentials=creds, cache_discovery=False)

    def _get_service(self, purpose: str):
        """Drive client for purpose; caller holds that purpose's lock"""
        creds = self._credentials.get_credential()
        service, service_creds = self._services.get(purpose, (None, None))
        if service is None or creds is not service_creds:
            logger.debug(f"Building Google Drive service ({purpose})")
            service = self._service_factory(creds)
            self._services[purpose] = (service, creds)
        return service

    def _execute(self, request, what: str):
        try:
            return request.execute()
        except HttpError as e:
            raise classify_http_error(e, what) from e
        except RefreshError as e:
            raise AuthError(f"{what} failed: {e}") from e
        except (TransportError, httplib2.HttpLib2Error, OSError) as e:
            raise TransientError(f"{what} failed: {e}") from e

    def _list_all(self, service, query: str, fields: str, order_by: Optional[str] = None) -> List[DriveFile]:
        """Run a files.list query and follow nextPageToken until exhausted"""
        items: List[DriveFile] = []
        page_token = None
        while True:
            params = {
                'q': query,
                'fields': fields,
                'pageSize': self.page_size,
                'pageToken': page_token,
            }
            if order_by:
                params['orderBy'] = order_by
            response = self._execute(service.files().list(**params), "List files")
            items.extend(response.get('files', []))
            page_token = response.get('nextPageToken')
            if not page_token:
                return items

    def _check_folder(self, service, folder_id: str) -> None:
        folder = self._execute(
            service.files().get(fileId=folder_id, fields="id, name, mimeType, trashed"),
            f"Open folder {folder_id}",
        )
        if folder.get('mimeType') != FOLDER_MIME_TYPE:
            raise NotFoundError(f"{folder_id} is not a folder")
        if folder.get('trashed'):
            raise NotFoundError(f"Folder {folder_id} is in the trash")

    def _list_folder_images(self, service, folder_id: str) -> List[DriveFile]:
        mime_query = " or ".join(f"mimeType='{m}'" for m in IMAGE_MIME_TYPES)
        query = f"'{_quote(folder_id)}' in parents and ({mime_query}) and trashed=false"
        return self._list_all(service, query, IMAGE_FIELDS, order_by="createdTime desc")

    def _list_subfolders(self, service, folder_id: str) -> List[DriveFile]:
        query = f"'{_quote(folder_id)}' in parents and mimeType='{FOLDER_MIME_TYPE}' and trashed=false"
        return self._list_all(service, query, FOLDER_FIELDS)

    def list_images(self, folder_id: str, recursive: bool = False) -> List[ImageRef]:
        """
        List every image in the folder, newest first, optionally including all
        subfolders. Either the complete list is returned or an error is raised;
        partial results never escape.
        """
        with self._locks[LISTING]:
            service = self._get_service(LISTING)
            self._check_folder(service, folder_id)

            photos: List[ImageRef] = []
            seen_ids: Set[str] = set()
            visited: Set[str] = {folder_id}
            folders = deque([(folder_id, 0)])

            while folders:
                current, depth = folders.popleft()
                for item in self._list_folder_images(service, current):
                    if item['id'] in seen_ids:
                        continue
                    seen_ids.add(item['id'])
                    photos.append(ImageRef.from_drive_file(item))

                if not recursive:
                    break
                if depth >= self.max_depth:
                    logger.warning(f"Not descending below folder {current}: depth limit {self.max_depth} reached")
                    continue
                for sub in self._list_subfolders(service, current):
                    if sub['id'] in visited:
                        continue
                    visited.add(sub['id'])
                    folders.append((sub['id'], depth + 1))

        logger.info(f"Found {len(photos)} photos in folder {folder_id}"
                    f"{f' ({len(visited) - 1} subfolders)' if recursive else ''}")
        return photos

    @staticmethod
    def fallback_url(ref: ImageRef) -> str:
        return DIRECT_URL_TEMPLATE.format(file_id=ref.id)

    def resolve_display_url(self, ref: ImageRef, width: int, height: int) -> str:
        """
        URL to display ref at roughly width x height.
        Prefers a resized thumbnail, then the content link, then the direct URL.
        Raises AuthError when no credential is usable, TransientError otherwise.
        """
        try:
            with self._locks[RESOLVING]:
                service = self._get_service(RESOLVING)
                data: Dict[str, str] = self._execute(
                    service.files().get(fileId=ref.id, fields="webContentLink, thumbnailLink"),
                    f"Resolve {ref.display_name or ref.id}",
                )
        except NotFoundError as e:
            raise TransientError(str(e)) from e

        if data.get('thumbnailLink'):
            return thumbnail_url(data['thumbnailLink'], width, height)
        if data.get('webContentLink'):
            return data['webContentLink']
        return self.fallback_url(ref)
