"""
Local Content Source

Stores original document bytes on local disk under a root directory. Logical
paths are always relative to that root; anything resolving outside it is
rejected.
"""

from __future__ import annotations

import asyncio
import io
import logging
from pathlib import Path
from typing import BinaryIO, Union

from ..core.errors import ContentNotFoundError, StorageError
from ..core.logging import sanitize
from .base import ContentSource

logger = logging.getLogger("kb.storage.files")


class LocalContentSource(ContentSource):
    def __init__(self, root: Union[str, Path]) -> None:
        self._root = Path(root).resolve()
        self._root.mkdir(parents=True, exist_ok=True)

    @property
    def root(self) -> Path:
        return self._root

    def resolve(self, path: str) -> Path:
        """
        Map a logical path onto the filesystem.

        Raises
        ------
        StorageError
            If the path is empty or escapes the content root.
        """
        cleaned = path.replace("\\", "/").lstrip("/")
        if not cleaned:
            raise StorageError("Empty content path")

        target = (self._root / cleaned).resolve()
        if target != self._root and self._root not in target.parents:
            logger.warning("Rejected path outside content root: %s", sanitize(path))
            raise StorageError(f"Path escapes content root: {path}")
        return target

    async def open(self, path: str) -> BinaryIO:
        target = self.resolve(path)
        if not target.is_file():
            raise ContentNotFoundError(path)
        data = await asyncio.to_thread(target.read_bytes)
        return io.BytesIO(data)

    async def exists(self, path: str) -> bool:
        return self.resolve(path).is_file()

    async def write(self, path: str, content: bytes) -> int:
        target = self.resolve(path)

        def _write() -> int:
            target.parent.mkdir(parents=True, exist_ok=True)
            return target.write_bytes(content)

        written = await asyncio.to_thread(_write)
        logger.debug("Stored %d bytes at %s", written, sanitize(path))
        return written

    async def delete(self, path: str) -> bool:
        target = self.resolve(path)
        if not target.is_file():
            return False
        await asyncio.to_thread(target.unlink)
        return True
