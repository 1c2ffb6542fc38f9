"""Local media cache for message attachments.

Two naming schemes:

- id-addressed (``photo_<id>.jpg``) for media with a stable service id;
  a cached file is returned without downloading again
- content-addressed (``<sha256[:16]>.<ext>``) for payloads without one

Media is best-effort: a failed download or write is logged and yields
``None`` so the message is still delivered without an ``image_path``.
"""

from __future__ import annotations

import asyncio
import hashlib
from pathlib import Path
from typing import Awaitable, Callable, Optional

import aiofiles
import structlog

Downloader = Callable[[], Awaitable[Optional[bytes]]]


class MediaCache:
    """Files under one per-service media directory."""

    def __init__(self, root: str | Path) -> None:
        self._root = Path(root)
        self._logger = structlog.get_logger(__name__).bind(component="MediaCache")

    @property
    def root(self) -> Path:
        return self._root

    @staticmethod
    def id_name(kind: str, media_id: int, ext: str = "jpg") -> str:
        return f"{kind}_{media_id}.{ext}"

    @staticmethod
    def content_name(data: bytes, ext: str) -> str:
        return f"{hashlib.sha256(data).hexdigest()[:16]}.{ext.lstrip('.')}"

    async def fetch(self, name: str, download: Downloader) -> Optional[str]:
        """Return the cached path for ``name``, downloading it on a miss."""
        path = self._root / name
        if path.exists():
            return str(path)
        try:
            data = await download()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self._logger.warning("media.download_failed", name=name, error=str(exc))
            return None
        if not data:
            self._logger.warning("media.empty_download", name=name)
            return None
        return await self._write(path, data)

    async def store(self, data: bytes, ext: str) -> Optional[str]:
        """Store a payload under its content hash."""
        path = self._root / self.content_name(data, ext)
        if path.exists():
            return str(path)
        return await self._write(path, data)

    async def _write(self, path: Path, data: bytes) -> Optional[str]:
        tmp_path = path.with_name(path.name + ".tmp")
        try:
            path.parent.mkdir(mode=0o700, parents=True, exist_ok=True)
            async with aiofiles.open(tmp_path, "wb") as handle:
                await handle.write(data)
            tmp_path.replace(path)
        except OSError as exc:
            self._logger.warning("media.write_failed", path=str(path), error=str(exc))
            return None
        self._logger.debug("media.saved", path=str(path), size=len(data))
        return str(path)
