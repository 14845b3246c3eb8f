from __future__ import annotations

import logging
from typing import Sequence

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from antiplagiarism_common.errors import ConflictError, NotFoundError
from antiplagiarism_common.schemas import PlagiarismSource

from .models import ACTIVE_STATUSES, Report, ReportStatus, utcnow

logger = logging.getLogger(__name__)


class ReportStore:
    """Owns report rows and enforces the report state machine.

    pending -> processing -> done, and pending/processing -> error. done and
    error are terminal. Every status change is a compare-and-swap on the
    current status, so two writers racing on the same report cannot both win.
    """

    def __init__(self, session_factory: sessionmaker[Session]):
        self._session_factory = session_factory

    def create(
        self,
        work_id: int,
        student_id: int | None = None,
        assignment_id: int | None = None,
        details: str = "Analysis queued",
    ) -> Report:
        with self._session_factory() as db:
            active_id = db.execute(
                select(Report.id)
                .where(Report.work_id == work_id, Report.status.in_(ACTIVE_STATUSES))
                .limit(1)
            ).scalar_one_or_none()
            if active_id is not None:
                raise ConflictError(
                    f"Work {work_id} is already being analyzed (report {active_id})",
                    extra={"reportId": active_id},
                )

            report = Report(
                work_id=work_id,
                student_id=student_id,
                assignment_id=assignment_id,
                status=ReportStatus.PENDING.value,
                plagiarism_sources=[],
                details=details,
            )
            db.add(report)
            try:
                db.commit()
            except IntegrityError as e:
                db.rollback()
                raise ConflictError(f"Work {work_id} is already being analyzed") from e
            return report

    def get_by_id(self, report_id: int) -> Report:
        with self._session_factory() as db:
            report = db.get(Report, report_id)
        if report is None:
            raise NotFoundError(f"Report {report_id} not found")
        return report

    def find_latest_by_work_id(self, work_id: int) -> Report | None:
        with self._session_factory() as db:
            return db.execute(
                select(Report)
                .where(Report.work_id == work_id)
                .order_by(Report.created_at.desc(), Report.id.desc())
                .limit(1)
            ).scalar_one_or_none()

    def get_latest_by_work_id(self, work_id: int) -> Report:
        report = self.find_latest_by_work_id(work_id)
        if report is None:
            raise NotFoundError(f"No analysis has been started for work {work_id}")
        return report

    def list_by_assignment(self, assignment_id: int) -> list[Report]:
        with self._session_factory() as db:
            rows = db.execute(
                select(Report)
                .where(Report.assignment_id == assignment_id)
                .order_by(Report.created_at.desc(), Report.id.desc())
            ).scalars().all()
        return list(rows)

    def fail_active(self, details: str) -> int:
        """Move every pending/processing report to error; returns how many were closed."""
        with self._session_factory() as db:
            ids = db.execute(select(Report.id).where(Report.status.in_(ACTIVE_STATUSES))).scalars().all()
        closed = 0
        for report_id in ids:
            try:
                self.transition_to_error(report_id, details)
                closed += 1
            except ConflictError:
                # finished in the meantime
                continue
        if closed:
            logger.warning("Closed %d unfinished reports: %s", closed, details)
        return closed

    def mark_processing(self, report_id: int) -> Report:
        with self._session_factory() as db:
            result = db.execute(
                update(Report)
                .where(Report.id == report_id, Report.status == ReportStatus.PENDING.value)
                .values(status=ReportStatus.PROCESSING.value)
                .execution_options(synchronize_session=False)
            )
            db.commit()
            report = db.get(Report, report_id)
            if report is None:
                raise NotFoundError(f"Report {report_id} not found")
            if result.rowcount == 0 and report.status != ReportStatus.PROCESSING.value:
                raise ConflictError(f"Report {report_id} is {report.status}, cannot start processing")
            return report

    def transition_to_done(
        self,
        report_id: int,
        is_plagiarism: bool,
        sources: Sequence[PlagiarismSource],
        details: str | None,
        word_cloud_url: str | None,
    ) -> Report:
        if not details:
            details = f"Analysis completed. Plagiarism {'detected' if is_plagiarism else 'not detected'}."
        return self._complete(
            report_id,
            ReportStatus.DONE,
            is_plagiarism=is_plagiarism,
            plagiarism_sources=[s.model_dump(mode="json") for s in sources] if is_plagiarism else [],
            details=details,
            word_cloud_url=word_cloud_url,
        )

    def transition_to_error(self, report_id: int, details: str) -> Report:
        return self._complete(report_id, ReportStatus.ERROR, details=details)

    def _complete(self, report_id: int, status: ReportStatus, **values) -> Report:
        with self._session_factory() as db:
            report = db.get(Report, report_id)
            if report is None:
                raise NotFoundError(f"Report {report_id} not found")
            if report.status == status.value:
                return report
            if report.status not in ACTIVE_STATUSES:
                raise ConflictError(f"Report {report_id} is already {report.status}")

            completed_at = max(utcnow(), report.created_at)
            result = db.execute(
                update(Report)
                .where(Report.id == report_id, Report.status.in_(ACTIVE_STATUSES))
                .values(
                    status=status.value,
                    completed_at=completed_at,
                    analysis_duration=(completed_at - report.created_at).total_seconds(),
                    **values,
                )
                .execution_options(synchronize_session=False)
            )
            db.commit()
            db.refresh(report)

            if result.rowcount == 0 and report.status != status.value:
                raise ConflictError(f"Report {report_id} is already {report.status}")
            logger.info("Report %s -> %s", report_id, report.status)
            return report
