from __future__ import annotations

import json
import logging
import os
from datetime import datetime, timezone
from pathlib import Path

import anyio

from src.docflow.domain.errors import StorageError
from src.docflow.domain.value_objects import ObjectMetadata

logger = logging.getLogger(__name__)

META_SUFFIX = ".meta.json"


class FilesystemObjectStore:
    """
    Object store поверх локального каталога.
    Ключ - относительный путь; рядом лежит <key>.meta.json.
    """

    def __init__(self, root: str):
        self.root = Path(root).resolve()
        self.root.mkdir(parents=True, exist_ok=True)
        logger.info("filesystem storage initialized at %s", self.root)

    def _path(self, key: str) -> Path:
        if not key or key.startswith("/"):
            raise StorageError(f"invalid object key: {key!r}", retryable=False)
        path = (self.root / key).resolve()
        if self.root not in path.parents:
            raise StorageError(f"object key escapes storage root: {key!r}", retryable=False)
        return path

    async def put(self, key: str, content: bytes, metadata: ObjectMetadata) -> None:
        path = self._path(key)
        try:
            await anyio.to_thread.run_sync(self._write, path, content, metadata)
        except OSError as e:
            raise StorageError(f"failed to store {key}: {e}") from e
        logger.info("object stored: %s (%s bytes)", key, len(content))

    def _write(self, path: Path, content: bytes, metadata: ObjectMetadata) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        # перезапись по тому же ключу атомарна
        tmp = path.with_name(path.name + ".tmp")
        tmp.write_bytes(content)
        os.replace(tmp, path)

        meta = {
            "content_type": metadata.content_type,
            "content_length": len(content),
            "user_metadata": dict(metadata.user_metadata),
            "stored_at": datetime.now(timezone.utc).isoformat(),
        }
        path.with_name(path.name + META_SUFFIX).write_text(json.dumps(meta), encoding="utf-8")

    async def get(self, key: str) -> bytes:
        path = self._path(key)
        try:
            return await anyio.to_thread.run_sync(path.read_bytes)
        except FileNotFoundError as e:
            raise StorageError(f"object not found: {key}", retryable=False) from e
        except OSError as e:
            raise StorageError(f"failed to read {key}: {e}") from e

    async def get_metadata(self, key: str) -> ObjectMetadata:
        path = self._path(key)
        meta_path = path.with_name(path.name + META_SUFFIX)
        try:
            raw = json.loads(await anyio.to_thread.run_sync(meta_path.read_text))
        except FileNotFoundError as e:
            raise StorageError(f"metadata not found: {key}", retryable=False) from e
        return ObjectMetadata(
            content_type=raw.get("content_type", "application/octet-stream"),
            user_metadata=raw.get("user_metadata") or {},
        )

    async def exists(self, key: str) -> bool:
        path = self._path(key)
        return await anyio.to_thread.run_sync(path.is_file)
