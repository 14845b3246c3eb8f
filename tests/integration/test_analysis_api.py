import time
from unittest.mock import AsyncMock

import httpx
import pytest
from fastapi.testclient import TestClient

from file_analysis_service import main
from file_analysis_service.clients import FileStoringClient
from file_analysis_service.orchestrator import AnalysisOrchestrator
from file_analysis_service.wordcloud import WordCloudClient
from tests.factories import make_work

WORKS = {
    1: make_work(1, student_id=10, minutes=0),
    2: make_work(2, student_id=20, minutes=5),
}
CLOUD_URL = "https://charts.test/cloud.png"


def _file_storing(request: httpx.Request) -> httpx.Response:
    parts = request.url.path.strip("/").split("/")
    if parts[0] == "assignments":
        return httpx.Response(200, json=[w.model_dump(mode="json", by_alias=True) for w in WORKS.values()])
    work = WORKS.get(int(parts[1]))
    if work is None:
        return httpx.Response(404, json={"details": f"Work with id '{parts[1]}' not found"})
    if parts[2] == "meta":
        return httpx.Response(200, json=work.model_dump(mode="json", by_alias=True))
    return httpx.Response(200, content=b"Recursion explains the Fibonacci sequence")


@pytest.fixture()
def client(monkeypatch, report_store):
    orchestrator = AnalysisOrchestrator(
        report_store,
        FileStoringClient("http://file-storing.test", retry_base_delay=0, transport=httpx.MockTransport(_file_storing)),
        WordCloudClient(
            "https://charts.test/wordcloud",
            transport=httpx.MockTransport(lambda request: httpx.Response(200, json={"url": CLOUD_URL})),
        ),
        workers=2,
    )
    monkeypatch.setattr(main, "_reports", report_store)
    monkeypatch.setattr(main, "_orchestrator", orchestrator)
    with TestClient(main.app) as c:
        yield c


def _wait_for_done(client, report_id: int, timeout: float = 5.0) -> dict:
    deadline = time.monotonic() + timeout
    while True:
        body = client.get(f"/reports/{report_id}").json()
        if body["summary"]["status"] in ("done", "error") or time.monotonic() > deadline:
            return body
        time.sleep(0.05)


class TestAnalyze:
    def test_analysis_runs_in_background(self, client) -> None:
        resp = client.post("/analyze/2")

        assert resp.status_code == 202
        started = resp.json()
        assert started["status"] == "analysis_started"
        assert started["workId"] == 2
        assert started["estimatedCompletion"] is not None

        report = _wait_for_done(client, started["reportId"])
        assert report["summary"]["status"] == "done"
        assert report["summary"]["isPlagiarism"] is True
        assert report["summary"]["wordCloudUrl"] == CLOUD_URL
        assert report["assignmentId"] == 1
        assert report["completedAt"] is not None
        assert report["analysisDuration"] >= 0
        assert [s["sourceWorkId"] for s in report["plagiarismSources"]] == [1]
        assert report["similarityScore"] == pytest.approx(0.0)

    def test_completed_work_is_not_reanalyzed(self, client) -> None:
        report_id = client.post("/analyze/1").json()["reportId"]
        _wait_for_done(client, report_id)

        resp = client.post("/analyze/1")

        assert resp.status_code == 200
        assert resp.json()["status"] == "already_analyzed"
        assert resp.json()["reportId"] == report_id

    def test_unknown_work(self, client) -> None:
        resp = client.post("/analyze/9")

        assert resp.status_code == 404
        assert resp.json()["details"] == "Work with id '9' not found"

    def test_active_analysis_conflicts(self, client, report_store) -> None:
        pending = report_store.create(1, 10, 1)

        resp = client.post("/analyze/1")

        assert resp.status_code == 409
        assert resp.json()["reportId"] == pending.id


class TestReports:
    def test_work_report_is_latest(self, client) -> None:
        report_id = client.post("/analyze/1").json()["reportId"]
        _wait_for_done(client, report_id)

        body = client.get("/works/1/report").json()

        assert body["summary"]["reportId"] == report_id
        assert body["summary"]["isPlagiarism"] is False
        assert body["plagiarismSources"] == []
        assert body["similarityScore"] == pytest.approx(0.1)

    def test_pending_report_has_no_score(self, client, report_store) -> None:
        pending = report_store.create(1, 10, 1)

        body = client.get(f"/reports/{pending.id}").json()

        assert body["summary"]["status"] == "pending"
        assert body["completedAt"] is None
        assert body["similarityScore"] is None

    def test_assignment_reports(self, client) -> None:
        first = client.post("/analyze/1").json()["reportId"]
        second = client.post("/analyze/2").json()["reportId"]
        _wait_for_done(client, first)
        _wait_for_done(client, second)

        body = client.get("/assignments/1/reports").json()

        assert body["assignmentId"] == 1
        assert body["totalCount"] == 2
        assert body["plagiarismCount"] == 1
        assert {r["reportId"] for r in body["reports"]} == {first, second}

    @pytest.mark.parametrize("path", ["/reports/999", "/works/999/report", "/assignments/42/reports"])
    def test_not_found(self, client, path) -> None:
        resp = client.get(path)

        assert resp.status_code == 404
        assert resp.json()["correlationId"] == resp.headers["X-Correlation-Id"]


class TestHealth:
    def test_health(self, client) -> None:
        body = client.get("/health").json()

        assert body["status"] == "ok"
        assert body["workersRunning"] is True


def test_startup_closes_reports_left_active(monkeypatch, report_store) -> None:
    stale = report_store.create(1, 10, 1)
    report_store.mark_processing(report_store.create(2, 20, 1).id)
    monkeypatch.setattr(main, "_reports", report_store)
    monkeypatch.setattr(main, "_orchestrator", AnalysisOrchestrator(report_store, AsyncMock(), AsyncMock()))

    with TestClient(main.app) as client:
        first = client.get(f"/reports/{stale.id}").json()
        second = client.get("/works/2/report").json()

    assert first["summary"]["status"] == "error"
    assert first["details"] == main.INTERRUPTED_BY_RESTART
    assert second["summary"]["status"] == "error"
