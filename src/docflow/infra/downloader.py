import logging
from typing import Optional

import httpx

from src.docflow.domain.errors import DownloadError
from src.docflow.domain.services.backoff import retry_async
from src.docflow.domain.value_objects import DownloadResult, RetryPolicy

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = "docflow-downloader/1.0"
DEFAULT_MAX_FILE_SIZE = 100 * 1024 * 1024


def _is_retryable(exc: Exception) -> bool:
    return isinstance(exc, DownloadError) and exc.retryable


class HttpDownloader:
    """
    GET с повторами по RetryPolicy: сетевые ошибки и 5xx повторяются,
    4xx, пустой ответ и превышение размера - нет.
    """

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        policy: RetryPolicy = RetryPolicy(),
        user_agent: str = DEFAULT_USER_AGENT,
        timeout: float = 120.0,
        max_file_size: int = DEFAULT_MAX_FILE_SIZE,
    ):
        self.client = client or httpx.AsyncClient(timeout=timeout, follow_redirects=True)
        self.policy = policy
        self.user_agent = user_agent
        self.max_file_size = max_file_size

    async def fetch(self, url: str) -> DownloadResult:
        async def _attempt() -> DownloadResult:
            return await self._fetch_once(url)

        return await retry_async(_attempt, self.policy, is_retryable=_is_retryable, describe=f"GET {url}")

    async def _fetch_once(self, url: str) -> DownloadResult:
        try:
            async with self.client.stream("GET", url, headers={"User-Agent": self.user_agent}) as resp:
                if resp.status_code != 200:
                    raise DownloadError(
                        f"unexpected status code: {resp.status_code}",
                        url=url,
                        status_code=resp.status_code,
                        retryable=resp.status_code >= 500 or resp.status_code == 429,
                    )

                buf = bytearray()
                async for chunk in resp.aiter_bytes():
                    buf.extend(chunk)
                    if len(buf) > self.max_file_size:
                        raise DownloadError(
                            f"file exceeds max size of {self.max_file_size} bytes",
                            url=url,
                            retryable=False,
                        )

                content_type = resp.headers.get("content-type", "application/octet-stream")
                final_url = str(resp.url)

        except httpx.TransportError as e:
            raise DownloadError(f"http request failed: {e}", url=url) from e

        if not buf:
            raise DownloadError("empty response body", url=url, retryable=False)

        logger.info("downloaded %s: %s bytes, %s", url, len(buf), content_type)
        return DownloadResult(content=bytes(buf), content_type=content_type, url=final_url)

    async def aclose(self) -> None:
        await self.client.aclose()
