from typing import Any, Protocol

from src.docflow.domain.value_objects import DownloadResult, ObjectMetadata


class ObjectStore(Protocol):
    """Перезапись по тому же ключу идемпотентна."""

    async def put(self, key: str, content: bytes, metadata: ObjectMetadata) -> None: ...
    async def get(self, key: str) -> bytes: ...
    async def exists(self, key: str) -> bool: ...


class Downloader(Protocol):
    async def fetch(self, url: str) -> DownloadResult: ...


class Publisher(Protocol):
    async def publish(self, target_queue: str, message: dict[str, Any]) -> None: ...
