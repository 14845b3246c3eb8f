import threading

import pytest

from antiplagiarism_common.errors import ConflictError, NotFoundError
from antiplagiarism_common.schemas import PlagiarismSource
from file_analysis_service.models import ReportStatus
from tests.factories import T0


def _source(work_id: int = 1) -> PlagiarismSource:
    return PlagiarismSource(
        source_work_id=work_id,
        source_student_id=10,
        source_submitted_at=T0,
        reason="earlier submission to the same assignment",
        similarity_percentage=100.0,
    )


def _assert_completion_invariant(report) -> None:
    if report.status in (ReportStatus.PENDING.value, ReportStatus.PROCESSING.value):
        assert report.completed_at is None
        assert report.analysis_duration is None
    else:
        assert report.completed_at is not None
        assert report.analysis_duration == (report.completed_at - report.created_at).total_seconds()


class TestCreate:
    def test_new_report_is_pending(self, report_store) -> None:
        report = report_store.create(5, student_id=20, assignment_id=1)

        assert report.id is not None
        assert report.status == ReportStatus.PENDING.value
        assert report.created_at is not None
        _assert_completion_invariant(report)

    def test_ids_are_distinct(self, report_store) -> None:
        a = report_store.create(1, 10, 1)
        b = report_store.create(2, 20, 1)

        assert a.id != b.id

    def test_active_report_conflicts(self, report_store) -> None:
        first = report_store.create(5, 20, 1)

        with pytest.raises(ConflictError) as exc:
            report_store.create(5, 20, 1)
        assert exc.value.extra["reportId"] == first.id

    def test_processing_report_conflicts(self, report_store) -> None:
        first = report_store.create(5, 20, 1)
        report_store.mark_processing(first.id)

        with pytest.raises(ConflictError):
            report_store.create(5, 20, 1)

    def test_new_run_allowed_after_error(self, report_store) -> None:
        first = report_store.create(5, 20, 1)
        report_store.transition_to_error(first.id, "boom")

        second = report_store.create(5, 20, 1)

        assert second.id != first.id
        assert report_store.get_latest_by_work_id(5).id == second.id


class TestTransitions:
    def test_done_sets_completion_fields(self, report_store) -> None:
        report = report_store.create(5, 20, 1)
        report_store.mark_processing(report.id)

        done = report_store.transition_to_done(report.id, True, [_source()], "found", "http://img")

        assert done.status == ReportStatus.DONE.value
        assert done.is_plagiarism is True
        assert done.plagiarism_sources[0]["source_work_id"] == 1
        assert done.word_cloud_url == "http://img"
        assert done.details == "found"
        _assert_completion_invariant(done)

    def test_done_is_idempotent(self, report_store) -> None:
        report = report_store.create(5, 20, 1)
        first = report_store.transition_to_done(report.id, False, [], "clean", None)

        again = report_store.transition_to_done(report.id, True, [_source()], "changed", "http://other")

        assert again.completed_at == first.completed_at
        assert again.is_plagiarism is False
        assert again.details == "clean"

    def test_sources_dropped_without_plagiarism(self, report_store) -> None:
        report = report_store.create(5, 20, 1)

        done = report_store.transition_to_done(report.id, False, [_source()], None, None)

        assert done.plagiarism_sources == []
        assert "not detected" in done.details

    def test_error_is_terminal(self, report_store) -> None:
        report = report_store.create(5, 20, 1)
        failed = report_store.transition_to_error(report.id, "metadata unavailable")

        _assert_completion_invariant(failed)
        with pytest.raises(ConflictError):
            report_store.transition_to_done(report.id, True, [], "late", None)
        with pytest.raises(ConflictError):
            report_store.mark_processing(report.id)

    def test_error_after_done_rejected(self, report_store) -> None:
        report = report_store.create(5, 20, 1)
        report_store.transition_to_done(report.id, False, [], "clean", None)

        with pytest.raises(ConflictError):
            report_store.transition_to_error(report.id, "late failure")
        assert report_store.get_by_id(report.id).status == ReportStatus.DONE.value

    def test_missing_report(self, report_store) -> None:
        with pytest.raises(NotFoundError):
            report_store.transition_to_done(999, False, [], "x", None)
        with pytest.raises(NotFoundError):
            report_store.transition_to_error(999, "x")

    def test_racing_completions_have_one_winner(self, report_store) -> None:
        for work_id in range(1, 9):
            report = report_store.create(work_id, 20, 1)
            barrier = threading.Barrier(2)
            outcomes = {}

            def complete(name, transition):
                barrier.wait()
                try:
                    transition()
                    outcomes[name] = "won"
                except ConflictError:
                    outcomes[name] = "lost"

            threads = [
                threading.Thread(
                    target=complete,
                    args=(ReportStatus.DONE.value, lambda rid=report.id: report_store.transition_to_done(rid, False, [], "clean", None)),
                ),
                threading.Thread(
                    target=complete,
                    args=(ReportStatus.ERROR.value, lambda rid=report.id: report_store.transition_to_error(rid, "failed")),
                ),
            ]
            for t in threads:
                t.start()
            for t in threads:
                t.join(timeout=10)

            assert sorted(outcomes.values()) == ["lost", "won"]
            winner = next(name for name, outcome in outcomes.items() if outcome == "won")
            final = report_store.get_by_id(report.id)
            assert final.status == winner
            _assert_completion_invariant(final)


class TestQueries:
    def test_get_by_id_missing(self, report_store) -> None:
        with pytest.raises(NotFoundError):
            report_store.get_by_id(42)

    def test_latest_by_work_missing(self, report_store) -> None:
        assert report_store.find_latest_by_work_id(42) is None
        with pytest.raises(NotFoundError):
            report_store.get_latest_by_work_id(42)

    def test_list_by_assignment_newest_first(self, report_store) -> None:
        a = report_store.create(1, 10, 7)
        b = report_store.create(2, 20, 7)
        report_store.create(3, 30, 8)

        rows = report_store.list_by_assignment(7)

        assert [r.id for r in rows] == [b.id, a.id]

    def test_fail_active_closes_unfinished_reports(self, report_store) -> None:
        pending = report_store.create(1, 10, 1)
        processing = report_store.create(2, 20, 1)
        report_store.mark_processing(processing.id)
        done = report_store.create(3, 30, 1)
        report_store.transition_to_done(done.id, False, [], "clean", None)

        closed = report_store.fail_active("interrupted by restart")

        assert closed == 2
        for report_id in (pending.id, processing.id):
            report = report_store.get_by_id(report_id)
            assert report.status == ReportStatus.ERROR.value
            assert report.details == "interrupted by restart"
            _assert_completion_invariant(report)
        assert report_store.get_by_id(done.id).status == ReportStatus.DONE.value
        assert report_store.fail_active("again") == 0
