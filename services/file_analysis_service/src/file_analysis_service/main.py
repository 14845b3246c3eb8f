import logging

from fastapi import Depends, FastAPI, Response, status

from antiplagiarism_common.correlation import install_correlation_middleware
from antiplagiarism_common.errors import NotFoundError
from antiplagiarism_common.handlers import install_error_handlers
from antiplagiarism_common.logging_config import configure_logging
from antiplagiarism_common.schemas import (
    AnalysisResponse,
    AssignmentReports,
    PlagiarismSource,
    ReportDetails,
    ReportSummary,
)

from .clients import FileStoringClient
from .config import settings
from .db import SessionLocal, init_db
from .models import Report, ReportStatus
from .orchestrator import ANALYSIS_STARTED, AnalysisOrchestrator
from .store import ReportStore
from .wordcloud import WordCloudClient

logger = logging.getLogger(__name__)

MAX_REPORTS_IN_LISTING = 100
INTERRUPTED_BY_RESTART = "Analysis was interrupted by a service restart"

app = FastAPI(title="File Analysis Service", version="1.0.0")
install_correlation_middleware(app)
install_error_handlers(app)

_reports = ReportStore(SessionLocal)
_orchestrator = AnalysisOrchestrator(
    _reports,
    FileStoringClient(
        settings.file_storing_base_url,
        timeout=settings.file_storing_timeout_seconds,
        retry_attempts=settings.metadata_retry_attempts,
        retry_base_delay=settings.metadata_retry_base_delay_seconds,
    ),
    WordCloudClient(
        settings.word_cloud_api_url,
        width=settings.word_cloud_width,
        height=settings.word_cloud_height,
        max_words=settings.word_cloud_max_words,
        timeout=settings.word_cloud_timeout_seconds,
        fallback_url=settings.word_cloud_fallback_url,
    ),
    max_concurrent=settings.max_concurrent_analyses,
    admission_timeout=settings.admission_timeout_seconds,
    workers=settings.analysis_workers,
    queue_size=settings.analysis_queue_size,
    compare_prior_content=settings.compare_prior_content,
)


def get_report_store() -> ReportStore:
    return _reports


def get_orchestrator() -> AnalysisOrchestrator:
    return _orchestrator


@app.on_event("startup")
async def _startup():
    configure_logging(settings.log_level)
    init_db()
    # очередь в памяти не переживает рестарт
    _reports.fail_active(INTERRUPTED_BY_RESTART)
    await _orchestrator.pool.start()


@app.on_event("shutdown")
async def _shutdown():
    await _orchestrator.pool.stop()


@app.get("/health")
def health(orchestrator: AnalysisOrchestrator = Depends(get_orchestrator)):
    return {
        "status": "ok",
        "service": "file-analysis-service",
        "queuedAnalyses": orchestrator.pool.pending,
        "workersRunning": orchestrator.pool.running,
    }


def _report_summary(r: Report) -> ReportSummary:
    return ReportSummary(
        report_id=r.id,
        work_id=r.work_id,
        student_id=r.student_id,
        is_plagiarism=r.is_plagiarism,
        status=r.status,
        created_at=r.created_at,
        word_cloud_url=r.word_cloud_url,
    )


def _similarity_score(r: Report, sources: list[PlagiarismSource]) -> float | None:
    if r.status != ReportStatus.DONE.value:
        return None
    if sources:
        return sum(s.similarity_percentage for s in sources) / len(sources) / 100
    return 0.8 if r.is_plagiarism else 0.1


def _report_details(r: Report) -> ReportDetails:
    sources = [PlagiarismSource.model_validate(s) for s in (r.plagiarism_sources or [])]
    return ReportDetails(
        summary=_report_summary(r),
        assignment_id=r.assignment_id,
        completed_at=r.completed_at,
        analysis_duration=r.analysis_duration,
        details=r.details,
        similarity_score=_similarity_score(r, sources),
        plagiarism_sources=sources,
    )


@app.post("/analyze/{work_id}", response_model=AnalysisResponse)
async def analyze(
    work_id: int,
    response: Response,
    orchestrator: AnalysisOrchestrator = Depends(get_orchestrator),
):
    started = await orchestrator.start_analysis(work_id)
    if started.status == ANALYSIS_STARTED:
        response.status_code = status.HTTP_202_ACCEPTED
        return AnalysisResponse(
            report_id=started.report_id,
            work_id=work_id,
            status=started.status,
            message="Analysis started. The report will be ready in a few seconds.",
            estimated_completion=orchestrator.estimated_completion(),
        )
    return AnalysisResponse(
        report_id=started.report_id,
        work_id=work_id,
        status=started.status,
        message="Work has already been analyzed.",
    )


@app.get("/reports/{report_id}", response_model=ReportDetails)
def get_report(report_id: int, reports: ReportStore = Depends(get_report_store)):
    return _report_details(reports.get_by_id(report_id))


@app.get("/works/{work_id}/report", response_model=ReportDetails)
def get_latest_work_report(work_id: int, reports: ReportStore = Depends(get_report_store)):
    return _report_details(reports.get_latest_by_work_id(work_id))


@app.get("/assignments/{assignment_id}/reports", response_model=AssignmentReports)
def get_assignment_reports(assignment_id: int, reports: ReportStore = Depends(get_report_store)):
    rows = reports.list_by_assignment(assignment_id)
    if not rows:
        raise NotFoundError(f"No reports found for assignment {assignment_id}")
    logger.info("Found %d reports for assignment %s", len(rows), assignment_id)
    return AssignmentReports(
        assignment_id=assignment_id,
        total_count=len(rows),
        plagiarism_count=sum(1 for r in rows if r.is_plagiarism),
        reports=[_report_summary(r) for r in rows[:MAX_REPORTS_IN_LISTING]],
    )


def run() -> None:
    import uvicorn

    uvicorn.run("file_analysis_service.main:app", host="0.0.0.0", port=settings.port)
