"""Local filesystem image store."""

from __future__ import annotations

import asyncio
import logging
import os
from datetime import datetime
from pathlib import Path, PurePosixPath

from pixle.errors import ImageNotFoundError, StorageError

from .base import ImageStore

logger = logging.getLogger(__name__)


class LocalImageStore(ImageStore):
    """Stores PNG images as files under a root directory, keyed by relative name."""

    def __init__(self, root: Path):
        self.root = root

    def path_for(self, name: str) -> Path:
        """Map an image name to a file path, rejecting names that escape the root."""
        rel = PurePosixPath(name)
        if not name or rel.is_absolute() or ".." in rel.parts:
            raise StorageError(f"Invalid image name: {name!r}")
        return self.root.joinpath(*rel.parts)

    async def put(self, name: str, data: bytes) -> str:
        path = self.path_for(name)

        def _write() -> None:
            tmp_path = path.with_name(path.name + ".tmp")
            try:
                path.parent.mkdir(parents=True, exist_ok=True)
                tmp_path.write_bytes(data)
                os.replace(tmp_path, path)
            except OSError as e:
                raise StorageError(f"Failed to store image {name}: {e}") from e

        await asyncio.to_thread(_write)
        logger.debug("Stored image %s (%d bytes)", name, len(data))
        return name

    async def get(self, name: str) -> bytes:
        path = self.path_for(name)

        def _read() -> bytes:
            try:
                return path.read_bytes()
            except FileNotFoundError:
                raise ImageNotFoundError(name) from None
            except OSError as e:
                raise StorageError(f"Failed to read image {name}: {e}") from e

        return await asyncio.to_thread(_read)

    async def exists(self, name: str) -> bool:
        path = self.path_for(name)
        return await asyncio.to_thread(path.is_file)

    async def last_modified(self, name: str) -> datetime:
        path = self.path_for(name)

        def _stat() -> datetime:
            try:
                mtime = path.stat().st_mtime
            except FileNotFoundError:
                raise ImageNotFoundError(name) from None
            except OSError as e:
                raise StorageError(f"Failed to stat image {name}: {e}") from e
            return datetime.fromtimestamp(mtime).astimezone()

        return await asyncio.to_thread(_stat)
