"""Document download over HTTP."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol

import httpx
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from .config import DocumentSettings
from .errors import DocumentFetchError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FetchedDocument:
    url: str
    content: bytes
    content_type: str | None = None


class DocumentFetcher(Protocol):
    async def fetch(self, url: str) -> FetchedDocument:
        ...


class HttpDocumentFetcher:
    """Downloads documents with httpx, retrying transport errors.

    Bodies are streamed and abandoned as soon as they pass ``max_bytes``.
    Raises DocumentFetchError for malformed URLs, HTTP errors, oversized
    bodies and exhausted retries.
    """

    def __init__(self, config: DocumentSettings, client: httpx.AsyncClient | None = None) -> None:
        self.config = config
        self._client = client or httpx.AsyncClient(
            timeout=config.timeout_seconds,
            follow_redirects=True,
            headers={"User-Agent": config.user_agent},
        )

    async def fetch(self, url: str) -> FetchedDocument:
        try:
            return await self._download(url)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise DocumentFetchError(f"Fetching {url} failed: {e}", component="fetcher") from e

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=8),
        retry=retry_if_exception_type(httpx.TransportError),
        reraise=True,
    )
    async def _download(self, url: str) -> FetchedDocument:
        limit = self.config.max_bytes
        async with self._client.stream("GET", url) as response:
            if response.status_code >= 400:
                raise DocumentFetchError(f"Fetching {url} returned HTTP {response.status_code}", component="fetcher")

            declared = response.headers.get("content-length", "")
            if declared.isdigit() and int(declared) > limit:
                raise DocumentFetchError(
                    f"Document {url} declares {declared} bytes, limit is {limit}",
                    component="fetcher",
                )

            chunks: list[bytes] = []
            size = 0
            async for chunk in response.aiter_bytes():
                size += len(chunk)
                if size > limit:
                    raise DocumentFetchError(f"Document {url} exceeds the {limit} byte limit", component="fetcher")
                chunks.append(chunk)

            logger.debug(f"Fetched {url} ({size} bytes)")
            return FetchedDocument(url=url, content=b"".join(chunks), content_type=response.headers.get("content-type"))

    async def aclose(self) -> None:
        await self._client.aclose()
