import datetime as dt
import enum

from sqlalchemy import JSON, Boolean, DateTime, Float, Index, Integer, String, Text, text
from sqlalchemy.orm import Mapped, mapped_column

from .db import Base


def utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc).replace(tzinfo=None)


class ReportStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    DONE = "done"
    ERROR = "error"


ACTIVE_STATUSES = (ReportStatus.PENDING.value, ReportStatus.PROCESSING.value)
_ACTIVE_CLAUSE = text("status IN ('pending', 'processing')")


class Report(Base):
    __tablename__ = "reports"
    __table_args__ = (
        # at most one running analysis per work
        Index(
            "uq_reports_active_work",
            "work_id",
            unique=True,
            sqlite_where=_ACTIVE_CLAUSE,
            postgresql_where=_ACTIVE_CLAUSE,
        ),
        {"sqlite_autoincrement": True},
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    work_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    student_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    assignment_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)

    status: Mapped[str] = mapped_column(String, nullable=False, default=ReportStatus.PENDING.value)
    is_plagiarism: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    plagiarism_sources: Mapped[list[dict]] = mapped_column(JSON, default=list, nullable=False)
    details: Mapped[str | None] = mapped_column(Text, nullable=True)
    word_cloud_url: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[dt.datetime] = mapped_column(DateTime, default=utcnow, nullable=False, index=True)
    completed_at: Mapped[dt.datetime | None] = mapped_column(DateTime, nullable=True)
    analysis_duration: Mapped[float | None] = mapped_column(Float, nullable=True)
