from __future__ import annotations

import asyncio
import logging

import httpx

from antiplagiarism_common.correlation import outbound_headers
from antiplagiarism_common.errors import UpstreamError, UpstreamUnavailableError
from antiplagiarism_common.schemas import WorkMeta
from antiplagiarism_common.upstream import ensure_success, upstream_call

logger = logging.getLogger(__name__)

SERVICE_NAME = "File storing service"


class FileStoringClient:
    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 10.0,
        retry_attempts: int = 3,
        retry_base_delay: float = 1.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.retry_attempts = max(1, retry_attempts)
        self.retry_base_delay = retry_base_delay
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            transport=self._transport,
            headers=outbound_headers(),
        )

    async def _get(self, path: str) -> httpx.Response:
        with upstream_call(SERVICE_NAME):
            async with self._client() as client:
                resp = await client.get(path)
        return ensure_success(resp, SERVICE_NAME)

    async def get_work_meta(self, work_id: int) -> WorkMeta:
        resp = await self._get(f"/files/{work_id}/meta")
        try:
            return WorkMeta.model_validate(resp.json())
        except ValueError as e:
            raise UpstreamError(f"{SERVICE_NAME} returned malformed metadata for work {work_id}") from e

    async def get_work_meta_with_retry(self, work_id: int) -> WorkMeta:
        """Fetch metadata, retrying upstream failures with exponential backoff (1s, 2s, ...)."""
        for attempt in range(1, self.retry_attempts + 1):
            try:
                return await self.get_work_meta(work_id)
            except (UpstreamUnavailableError, UpstreamError) as e:
                if attempt == self.retry_attempts:
                    logger.error("Giving up on metadata for work %s after %d attempts: %s", work_id, attempt, e)
                    raise
                delay = self.retry_base_delay * 2 ** (attempt - 1)
                logger.warning("Attempt %d to fetch metadata for work %s failed, retrying in %.1fs", attempt, work_id, delay)
                await asyncio.sleep(delay)
        raise AssertionError("unreachable")

    async def download_text(self, work_id: int) -> str:
        resp = await self._get(f"/files/{work_id}/download")
        return resp.content.decode("utf-8", errors="ignore")

    async def list_assignment_works(self, assignment_id: int) -> list[WorkMeta]:
        resp = await self._get(f"/assignments/{assignment_id}/files")
        try:
            return [WorkMeta.model_validate(item) for item in resp.json()]
        except (ValueError, TypeError) as e:
            raise UpstreamError(f"{SERVICE_NAME} returned a malformed list for assignment {assignment_id}") from e
