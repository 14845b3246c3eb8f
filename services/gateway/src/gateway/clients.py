from __future__ import annotations

from typing import Any, Awaitable, Callable, TypeVar

import httpx
from fastapi import UploadFile
from pydantic import BaseModel

from antiplagiarism_common.correlation import outbound_headers
from antiplagiarism_common.errors import UpstreamError
from antiplagiarism_common.schemas import (
    AnalysisResponse,
    AssignmentReports,
    ReportDetails,
    WorkMeta,
)
from antiplagiarism_common.upstream import ensure_success, error_from_response, upstream_call

from .config import settings

ModelT = TypeVar("ModelT", bound=BaseModel)


class ServiceClient:
    name = "Downstream service"

    def __init__(self, base_url: str, timeout: float, transport: httpx.AsyncBaseTransport | None = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    async def request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        with upstream_call(self.name):
            async with httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self._transport,
                headers=outbound_headers(),
            ) as client:
                resp = await client.request(method, path, **kwargs)
        return ensure_success(resp, self.name)

    def parse(self, resp: httpx.Response, model: type[ModelT]) -> ModelT:
        try:
            return model.model_validate(resp.json())
        except ValueError as e:
            raise UpstreamError(f"{self.name} returned an unexpected response") from e


class FileStoringClient(ServiceClient):
    name = "File storing service"

    async def store_file(self, file: UploadFile, student_id: int, assignment_id: int) -> WorkMeta:
        files = {"file": (file.filename or "uploaded.bin", file.file, file.content_type or "application/octet-stream")}
        data = {"studentId": str(student_id), "assignmentId": str(assignment_id)}
        resp = await self.request("POST", "/files", files=files, data=data)
        return self.parse(resp, WorkMeta)

    async def get_work_meta(self, work_id: int) -> WorkMeta:
        return self.parse(await self.request("GET", f"/files/{work_id}/meta"), WorkMeta)

    async def open_download(
        self, work_id: int, inline: bool = False, byte_range: str | None = None
    ) -> tuple[httpx.Response, Callable[[], Awaitable[None]]]:
        """Start streaming a stored file; the returned callback closes the connection."""
        headers = outbound_headers()
        if byte_range:
            headers["Range"] = byte_range
        client = httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout, transport=self._transport)
        request = client.build_request(
            "GET", f"/files/{work_id}/download", params={"inline": str(inline).lower()}, headers=headers
        )
        try:
            with upstream_call(self.name):
                resp = await client.send(request, stream=True)
        except BaseException:
            await client.aclose()
            raise

        async def close() -> None:
            await resp.aclose()
            await client.aclose()

        if not resp.is_success:
            await resp.aread()
            await close()
            raise error_from_response(resp, self.name)
        return resp, close


class FileAnalysisClient(ServiceClient):
    name = "File analysis service"

    async def start_analysis(self, work_id: int) -> tuple[int, AnalysisResponse]:
        resp = await self.request("POST", f"/analyze/{work_id}")
        return resp.status_code, self.parse(resp, AnalysisResponse)

    async def get_report(self, report_id: int) -> ReportDetails:
        return self.parse(await self.request("GET", f"/reports/{report_id}"), ReportDetails)

    async def get_work_report(self, work_id: int) -> ReportDetails:
        return self.parse(await self.request("GET", f"/works/{work_id}/report"), ReportDetails)

    async def get_assignment_reports(self, assignment_id: int) -> AssignmentReports:
        resp = await self.request("GET", f"/assignments/{assignment_id}/reports")
        return self.parse(resp, AssignmentReports)


file_storing = FileStoringClient(settings.file_storing_base_url, settings.file_storing_timeout_seconds)
file_analysis = FileAnalysisClient(settings.file_analysis_base_url, settings.file_analysis_timeout_seconds)
