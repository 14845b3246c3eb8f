import httpx
import pytest

from antiplagiarism_common.correlation import CORRELATION_HEADER, set_correlation_id
from antiplagiarism_common.errors import NotFoundError, UpstreamError, UpstreamUnavailableError
from file_analysis_service.clients import FileStoringClient
from tests.factories import make_work

BASE_URL = "http://file-storing.test"


def _client(handler, attempts: int = 3) -> FileStoringClient:
    return FileStoringClient(
        BASE_URL,
        timeout=1.0,
        retry_attempts=attempts,
        retry_base_delay=0,
        transport=httpx.MockTransport(handler),
    )


def _meta_json(work_id: int = 7) -> dict:
    return make_work(work_id, student_id=20).model_dump(mode="json", by_alias=True)


class TestMetadataRetry:
    async def test_succeeds_after_transient_failures(self) -> None:
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request.url.path)
            if len(calls) < 3:
                return httpx.Response(503, json={"details": "warming up"})
            return httpx.Response(200, json=_meta_json())

        work = await _client(handler).get_work_meta_with_retry(7)

        assert work.work_id == 7
        assert calls == ["/files/7/meta"] * 3

    async def test_not_found_is_not_retried(self) -> None:
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(404, json={"details": "Work with id '7' not found"})

        with pytest.raises(NotFoundError) as exc:
            await _client(handler).get_work_meta_with_retry(7)
        assert exc.value.details == "Work with id '7' not found"
        assert len(calls) == 1

    async def test_gives_up_after_all_attempts(self) -> None:
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(UpstreamUnavailableError):
            await _client(handler).get_work_meta_with_retry(7)
        assert len(calls) == 3

    async def test_malformed_metadata(self) -> None:
        client = _client(lambda request: httpx.Response(200, json={"unexpected": True}), attempts=1)

        with pytest.raises(UpstreamError):
            await client.get_work_meta_with_retry(7)


class TestContent:
    async def test_download_text_ignores_undecodable_bytes(self) -> None:
        client = _client(lambda request: httpx.Response(200, content=b"caf\xc3\xa9 \xff ok"))

        assert await client.download_text(7) == "café  ok"

    async def test_list_assignment_works(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/assignments/1/files"
            return httpx.Response(200, json=[_meta_json(1), _meta_json(2)])

        works = await _client(handler).list_assignment_works(1)

        assert [w.work_id for w in works] == [1, 2]

    async def test_correlation_id_is_forwarded(self) -> None:
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["cid"] = request.headers.get(CORRELATION_HEADER)
            return httpx.Response(200, json=[])

        set_correlation_id("cid-123")
        try:
            await _client(handler).list_assignment_works(1)
        finally:
            set_correlation_id(None)

        assert seen["cid"] == "cid-123"
