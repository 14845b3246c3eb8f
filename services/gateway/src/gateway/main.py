import logging

from fastapi import Depends, FastAPI, File, Form, Request, Response, UploadFile
from fastapi.responses import StreamingResponse
from starlette.background import BackgroundTask

from antiplagiarism_common.correlation import install_correlation_middleware
from antiplagiarism_common.errors import ServiceError, ValidationError
from antiplagiarism_common.handlers import install_error_handlers
from antiplagiarism_common.logging_config import configure_logging
from antiplagiarism_common.schemas import (
    AnalysisResponse,
    AssignmentReports,
    ReportDetails,
    UploadWorkResponse,
    WorkMeta,
)
from antiplagiarism_common.validation import parse_positive_int

from . import clients
from .clients import FileAnalysisClient, FileStoringClient
from .config import settings

logger = logging.getLogger(__name__)

PROXIED_DOWNLOAD_HEADERS = (
    "content-disposition",
    "content-length",
    "content-range",
    "accept-ranges",
    "x-work-id",
)

app = FastAPI(title="API Gateway", version="1.0.0")
install_correlation_middleware(app)
install_error_handlers(app)


def get_file_storing() -> FileStoringClient:
    return clients.file_storing


def get_file_analysis() -> FileAnalysisClient:
    return clients.file_analysis


@app.on_event("startup")
def _startup():
    configure_logging(settings.log_level)


@app.get("/health")
def health():
    return {"status": "ok", "service": "gateway"}


@app.post("/works/upload", response_model=UploadWorkResponse)
async def upload_work(
    student_id: str | None = Form(None, alias="studentId"),
    assignment_id: str | None = Form(None, alias="assignmentId"),
    file: UploadFile | None = File(None),
    files: FileStoringClient = Depends(get_file_storing),
    analysis: FileAnalysisClient = Depends(get_file_analysis),
):
    if file is None or file.size == 0:
        raise ValidationError("Field 'file' is required and must not be empty")
    student = parse_positive_int("studentId", student_id)
    assignment = parse_positive_int("assignmentId", assignment_id)

    # сохраняем файл через File Storing Service
    work = await files.store_file(file, student, assignment)
    result = UploadWorkResponse(
        work_id=work.work_id,
        student_id=work.student_id,
        assignment_id=work.assignment_id,
        submitted_at=work.submitted_at,
    )

    # запускаем анализ; его сбой не отменяет загрузку
    try:
        _, started = await analysis.start_analysis(work.work_id)
        result.analysis_started = True
        result.report_id = started.report_id
    except ServiceError as e:
        logger.warning("Analysis of work %s was not started: %s", work.work_id, e.details)
        result.report_id = e.extra.get("reportId")
        result.error = f"Work stored, but analysis was not started: {e.details}. Reports can be requested later."

    return result


@app.get("/works/{work_id}", response_model=WorkMeta)
async def get_work(work_id: int, files: FileStoringClient = Depends(get_file_storing)):
    return await files.get_work_meta(work_id)


@app.get("/works/{work_id}/download")
async def download_work(
    work_id: int,
    request: Request,
    inline: bool = False,
    files: FileStoringClient = Depends(get_file_storing),
):
    resp, close = await files.open_download(work_id, inline, request.headers.get("range"))
    headers = {k: resp.headers[k] for k in PROXIED_DOWNLOAD_HEADERS if k in resp.headers}
    return StreamingResponse(
        resp.aiter_bytes(),
        status_code=resp.status_code,
        media_type=resp.headers.get("content-type", "application/octet-stream"),
        headers=headers,
        background=BackgroundTask(close),
    )


@app.post("/works/{work_id}/analyze", response_model=AnalysisResponse)
async def analyze_work(
    work_id: int,
    response: Response,
    analysis: FileAnalysisClient = Depends(get_file_analysis),
):
    status_code, started = await analysis.start_analysis(work_id)
    response.status_code = status_code
    return started


@app.get("/works/{work_id}/report", response_model=ReportDetails)
async def get_work_report(work_id: int, analysis: FileAnalysisClient = Depends(get_file_analysis)):
    return await analysis.get_work_report(work_id)


@app.get("/reports/{report_id}", response_model=ReportDetails)
async def get_report(report_id: int, analysis: FileAnalysisClient = Depends(get_file_analysis)):
    if report_id <= 0:
        raise ValidationError("reportId must be positive")
    return await analysis.get_report(report_id)


@app.get("/assignments/{assignment_id}/reports", response_model=AssignmentReports)
async def get_assignment_reports(assignment_id: int, analysis: FileAnalysisClient = Depends(get_file_analysis)):
    return await analysis.get_assignment_reports(assignment_id)


def run() -> None:
    import uvicorn

    uvicorn.run("gateway.main:app", host="0.0.0.0", port=settings.port)
