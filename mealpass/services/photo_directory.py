"""
Participant photo lookup backed by a Google Drive folder listing
"""

import asyncio
import logging
import re
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

import httpx

from mealpass.core.config import settings
from mealpass.core.exceptions import UpstreamError

logger = logging.getLogger(__name__)

DRIVE_FILES_URL = "https://www.googleapis.com/drive/v3/files"
PHOTO_VIEW_URL = "https://drive.google.com/uc?export=view&id={file_id}"

_EXTENSION = re.compile(r"\.(jpe?g|png|webp|heic)$", re.IGNORECASE)
_LEADING_ROLL = re.compile(r"^([A-Z0-9]{5,})", re.IGNORECASE)
_TRAILING_ROLL = re.compile(r"[\s_-]([A-Z0-9]{5,})$", re.IGNORECASE)
_LEADING_TOKEN = re.compile(r"^([A-Z0-9]+)", re.IGNORECASE)


def roll_from_filename(filename: str) -> Optional[str]:
    """
    "24ALR004 - BHARAT HARI S 24ALR004.jpg" -> "24ALR004"
    "IMG-20250318-WA0054 - ADITHYA T 24CDR007.jpg" -> "24CDR007"
    """
    stem = _EXTENSION.sub("", filename.strip())
    for pattern in (_LEADING_ROLL, _TRAILING_ROLL, _LEADING_TOKEN):
        match = pattern.search(stem)
        if match:
            return match.group(1).upper()
    return None


@dataclass
class _FolderIndex:
    photos: Dict[str, str] = field(default_factory=dict)
    built_at: float = 0.0


class PhotoDirectory:
    """Roll number -> photo URL, cached per Drive folder with a TTL.

    One instance lives on the application state; nothing here is module-global.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        default_folder_id: Optional[str] = None,
        ttl: Optional[float] = None,
        client: Optional[httpx.AsyncClient] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.api_key = api_key if api_key is not None else settings.GOOGLE_API_KEY
        self.default_folder_id = default_folder_id or settings.DEFAULT_DRIVE_FOLDER_ID
        self.ttl = ttl if ttl is not None else settings.PHOTO_CACHE_TTL
        self._client = client
        self._owns_client = client is None
        self._clock = clock
        self._folders: Dict[str, _FolderIndex] = {}
        self._rebuilds: Dict[str, "asyncio.Task[int]"] = {}
        self.hits = 0
        self.misses = 0

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=10.0)
        return self._client

    async def close(self) -> None:
        for task in list(self._rebuilds.values()):
            task.cancel()
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    def _resolve_folder(self, folder_id: Optional[str]) -> Optional[str]:
        return folder_id or self.default_folder_id

    def _is_fresh(self, index: Optional[_FolderIndex]) -> bool:
        return index is not None and (self._clock() - index.built_at) < self.ttl

    async def lookup(self, folder_id: Optional[str], roll_no: Optional[str]) -> Optional[str]:
        """Photo URL for a roll number, or None"""
        folder = self._resolve_folder(folder_id)
        if not roll_no or not folder:
            return None

        index = self._folders.get(folder)
        if not self._is_fresh(index):
            # A caller that stops waiting leaves the rebuild running for the next scan
            await asyncio.shield(self._rebuild_task(folder))
            index = self._folders[folder]

        file_id = index.photos.get(roll_no.strip().upper())
        if not file_id:
            self.misses += 1
            logger.debug(f"No photo for {roll_no} in folder {folder}")
            return None
        self.hits += 1
        return PHOTO_VIEW_URL.format(file_id=file_id)

    def _rebuild_task(self, folder: str) -> "asyncio.Task[int]":
        """The in-flight rebuild of a folder's index, started if there is none"""
        task = self._rebuilds.get(folder)
        loop = asyncio.get_running_loop()
        if task is None or task.done() or task.get_loop() is not loop:
            task = loop.create_task(self.refresh(folder))
            self._rebuilds[folder] = task
            task.add_done_callback(lambda t: self._rebuild_finished(folder, t))
        return task

    def _rebuild_finished(self, folder: str, task: "asyncio.Task[int]") -> None:
        if self._rebuilds.get(folder) is task:
            del self._rebuilds[folder]
        if not task.cancelled() and task.exception() is not None:
            logger.warning(f"Photo index rebuild for folder {folder} failed: {task.exception()}")

    async def refresh(self, folder_id: Optional[str] = None) -> int:
        """Rebuild one folder's index now. Returns the number of photos indexed."""
        folder = self._resolve_folder(folder_id)
        if not folder:
            raise UpstreamError("Google Drive", "No photo folder configured")
        if not self.api_key:
            logger.warning("GOOGLE_API_KEY not configured; photo lookup disabled")
            self._folders[folder] = _FolderIndex(built_at=self._clock())
            return 0

        files = await self._list_files(folder)
        photos: Dict[str, str] = {}
        for item in files:
            roll_no = roll_from_filename(item.get("name") or "")
            if roll_no and item.get("id"):
                photos[roll_no] = item["id"]

        self._folders[folder] = _FolderIndex(photos=photos, built_at=self._clock())
        logger.info(f"Photo index built for folder {folder} with {len(photos)} entries")
        return len(photos)

    async def _list_files(self, folder: str) -> List[dict]:
        files: List[dict] = []
        page_token = None
        while True:
            params = {
                "q": f"'{folder}' in parents and trashed = false",
                "key": self.api_key,
                "fields": "nextPageToken, files(id, name)",
                "pageSize": 1000,
            }
            if page_token:
                params["pageToken"] = page_token
            try:
                response = await self.client.get(DRIVE_FILES_URL, params=params)
                response.raise_for_status()
            except httpx.HTTPError as e:
                raise UpstreamError("Google Drive", f"Could not list folder {folder}: {e}")
            data = response.json()
            files.extend(data.get("files") or [])
            page_token = data.get("nextPageToken")
            if not page_token:
                return files

    def invalidate(self, folder_id: Optional[str] = None) -> None:
        """Drop one folder's index, or every index when no folder is given"""
        if folder_id is None:
            self._folders.clear()
        else:
            self._folders.pop(folder_id, None)

    def stats(self) -> dict:
        now = self._clock()
        return {
            "totalFolders": len(self._folders),
            "hits": self.hits,
            "misses": self.misses,
            "ttlSeconds": self.ttl,
            "folders": [
                {
                    "folderId": folder,
                    "size": len(index.photos),
                    "ageSeconds": round(now - index.built_at, 1),
                    "fresh": self._is_fresh(index),
                }
                for folder, index in self._folders.items()
            ],
        }
