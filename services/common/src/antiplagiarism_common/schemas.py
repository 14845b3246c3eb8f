"""Canonical request/response records exchanged between the services.

All models serialize with camelCase keys and accept either camelCase or
snake_case on input.
"""
import datetime as dt

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class WorkMeta(ApiModel):
    work_id: int
    student_id: int
    assignment_id: int
    submitted_at: dt.datetime
    file_name: str
    file_path: str
    file_size: int
    content_type: str = "application/octet-stream"
    sha256: str | None = None
    download_url: str | None = None


class PlagiarismSource(ApiModel):
    source_work_id: int
    source_student_id: int
    source_submitted_at: dt.datetime
    reason: str
    similarity_percentage: float


class ReportSummary(ApiModel):
    report_id: int
    work_id: int
    student_id: int | None = None
    is_plagiarism: bool = False
    status: str
    created_at: dt.datetime
    word_cloud_url: str | None = None


class ReportDetails(ApiModel):
    summary: ReportSummary
    assignment_id: int | None = None
    completed_at: dt.datetime | None = None
    analysis_duration: float | None = None
    details: str | None = None
    similarity_score: float | None = None
    plagiarism_sources: list[PlagiarismSource] = Field(default_factory=list)


class AnalysisResponse(ApiModel):
    report_id: int
    work_id: int
    status: str
    message: str
    estimated_completion: dt.datetime | None = None


class AssignmentReports(ApiModel):
    assignment_id: int
    total_count: int
    plagiarism_count: int
    reports: list[ReportSummary] = Field(default_factory=list)


class UploadWorkResponse(ApiModel):
    work_id: int
    student_id: int
    assignment_id: int
    submitted_at: dt.datetime
    analysis_started: bool = False
    report_id: int | None = None
    error: str | None = None


class ErrorResponse(ApiModel):
    correlation_id: str | None = None
    message: str
    details: str
    timestamp: dt.datetime
