import json
import typing as t

import httpx
import pytest

from gptbatch import endpoints
from gptbatch.exceptions import (
    CancelError,
    DeleteError,
    FileRequestError,
    JobRequestError,
    NetworkError,
    SubmissionError,
    UploadError,
)
from tests.mocks.api import FakeOpenAIAPI, make_fake_api_transport

API_BASE = "https://api.test"


def _client(handler: t.Callable[[httpx.Request], httpx.Response]) -> httpx.AsyncClient:
    return httpx.AsyncClient(base_url=API_BASE, transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_create_job_sends_batch_parameters():
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(200, json={"id": "batch_1", "status": "validating"})

    async with _client(handler) as client:
        job = await endpoints.create_job(client, input_file_id="file_1")

    assert job.id == "batch_1"
    assert requests[0].method == "POST"
    assert requests[0].url.path == "/v1/batches"
    assert json.loads(requests[0].content) == {
        "input_file_id": "file_1",
        "endpoint": "/v1/chat/completions",
        "completion_window": "24h",
    }


@pytest.mark.asyncio
async def test_create_job_non_ok_raises_submission_error():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(400, json={"error": {"message": "invalid file"}})

    async with _client(handler) as client:
        with pytest.raises(SubmissionError) as exc_info:
            await endpoints.create_job(client, input_file_id="file_1")

    assert exc_info.value.status_code == 400
    assert "invalid file" in exc_info.value.body
    assert exc_info.value.operation == "create_job"


@pytest.mark.asyncio
async def test_upload_file_sends_multipart_batch_purpose():
    api = FakeOpenAIAPI()
    async with httpx.AsyncClient(base_url=API_BASE, transport=make_fake_api_transport(api)) as client:
        uploaded = await endpoints.upload_file(client, filename="app-shard.jsonl", content=b'{"a": 1}\n')

    assert uploaded.id in api.files
    (upload,) = api.uploads
    assert upload["purpose"] == "batch"
    assert upload["filename"] == "app-shard.jsonl"
    assert upload["content_type"] == "application/jsonl"
    assert upload["file"].strip() == b'{"a": 1}'


@pytest.mark.asyncio
async def test_upload_file_undecodable_body_raises_upload_error():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=b"not json")

    async with _client(handler) as client:
        with pytest.raises(UploadError):
            await endpoints.upload_file(client, filename="shard.jsonl", content=b"{}\n")


@pytest.mark.asyncio
async def test_retrieve_job_non_ok_raises_job_request_error():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, text="boom")

    async with _client(handler) as client:
        with pytest.raises(JobRequestError) as exc_info:
            await endpoints.retrieve_job(client, job_id="batch_1")

    assert exc_info.value.status_code == 500
    assert exc_info.value.body == "boom"


@pytest.mark.asyncio
async def test_list_jobs_follows_after_cursor():
    seen_params: list[dict[str, str]] = []
    pages = {
        None: {"data": [{"id": "batch_1"}, {"id": "batch_2"}], "has_more": True, "last_id": "batch_2"},
        "batch_2": {"data": [{"id": "batch_3"}], "has_more": False, "last_id": "batch_3"},
    }

    def handler(request: httpx.Request) -> httpx.Response:
        params = dict(request.url.params)
        seen_params.append(params)
        return httpx.Response(200, json=pages[params.get("after")])

    async with _client(handler) as client:
        jobs = await endpoints.list_jobs(client)

    assert [job.id for job in jobs] == ["batch_1", "batch_2", "batch_3"]
    assert seen_params == [{"limit": "100"}, {"limit": "100", "after": "batch_2"}]


@pytest.mark.asyncio
@pytest.mark.parametrize("status_code", [200, 409])
async def test_cancel_job_accepts_ok_and_conflict(status_code: int):
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/v1/batches/batch_1/cancel"
        return httpx.Response(status_code, json={"id": "batch_1", "status": "cancelling"})

    async with _client(handler) as client:
        await endpoints.cancel_job(client, job_id="batch_1")


@pytest.mark.asyncio
async def test_cancel_job_other_status_raises():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(404, json={"error": "not found"})

    async with _client(handler) as client:
        with pytest.raises(CancelError):
            await endpoints.cancel_job(client, job_id="batch_1")


@pytest.mark.asyncio
async def test_list_files_and_retrieve_file():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/v1/files":
            return httpx.Response(200, json={"data": [{"id": "file_1", "purpose": "batch"}]})
        return httpx.Response(200, json={"id": "file_1", "filename": "shard.jsonl"})

    async with _client(handler) as client:
        files = await endpoints.list_files(client)
        file = await endpoints.retrieve_file(client, file_id="file_1")

    assert [f.id for f in files] == ["file_1"]
    assert file.filename == "shard.jsonl"


@pytest.mark.asyncio
async def test_retrieve_file_content_returns_raw_bytes():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/v1/files/file_1/content"
        return httpx.Response(200, content=b"line one\nline two\n")

    async with _client(handler) as client:
        content = await endpoints.retrieve_file_content(client, file_id="file_1")

    assert content == b"line one\nline two\n"


@pytest.mark.asyncio
async def test_retrieve_file_content_non_ok_raises():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(404, json={"error": "not found"})

    async with _client(handler) as client:
        with pytest.raises(FileRequestError):
            await endpoints.retrieve_file_content(client, file_id="file_1")


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(200, json={"id": "file_1", "object": "file", "deleted": True}),
        httpx.Response(404, json={"error": "not found"}),
    ],
)
async def test_delete_file_success_and_already_gone(response: httpx.Response):
    async with _client(lambda request: response) as client:
        await endpoints.delete_file(client, file_id="file_1")


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(200, json={"id": "file_1", "object": "file", "deleted": False}),
        httpx.Response(500, text="boom"),
    ],
)
async def test_delete_file_failures(response: httpx.Response):
    async with _client(lambda request: response) as client:
        with pytest.raises(DeleteError):
            await endpoints.delete_file(client, file_id="file_1")


@pytest.mark.asyncio
async def test_transport_errors_become_network_errors():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    async with _client(handler) as client:
        with pytest.raises(NetworkError) as exc_info:
            await endpoints.retrieve_job(client, job_id="batch_1")

    assert exc_info.value.operation == "retrieve_job"
    assert isinstance(exc_info.value.__cause__, httpx.ConnectError)
