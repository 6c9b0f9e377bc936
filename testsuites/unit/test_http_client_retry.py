import asyncio
import json
from dataclasses import dataclass

import httpx
import pytest
import respx

from testsuites.api_testing.framework.http_client import (
    HttpClientError,
    RequestCancelled,
    RequestExecutor,
    merge_headers,
    serialize_body,
)
from testsuites.api_testing.framework.models import RequestEnvelope
from testsuites.api_testing.framework.request_logger import PerformanceRecorder
from testsuites.unit.conftest import BASE_URL, events


@dataclass
class Item:
    id: int
    name: str


@pytest.mark.asyncio
async def test_retries_transient_status_with_exponential_backoff(make_config, recording_sleep):
    config = make_config(max_retries=3, delay_ms=100)

    with respx.mock:
        route = respx.get(f"{BASE_URL}/items").mock(side_effect=[
            httpx.Response(503),
            httpx.Response(503),
            httpx.Response(200, json={"ok": True}),
        ])
        async with RequestExecutor(config, sleep=recording_sleep) as executor:
            result = await executor.get("/items")

    assert route.call_count == 3
    assert result.status_code == 200
    assert result.successful
    assert result.attempts == 3
    assert result.data == {"ok": True}
    assert recording_sleep.delays == [0.1, 0.2]


@pytest.mark.asyncio
async def test_retryable_status_exhausts_max_retries(make_config, recording_sleep):
    config = make_config(max_retries=2, delay_ms=50)

    with respx.mock:
        route = respx.get(f"{BASE_URL}/busy").mock(return_value=httpx.Response(429))
        async with RequestExecutor(config, sleep=recording_sleep) as executor:
            result = await executor.get("/busy")

    assert route.call_count == 3
    assert result.status_code == 429
    assert not result.successful
    assert result.exception is None
    assert recording_sleep.delays == [0.05, 0.1]


@pytest.mark.asyncio
async def test_constant_backoff_keeps_base_delay(make_config, recording_sleep):
    config = make_config(max_retries=3, delay_ms=250, exponential_backoff=False)

    with respx.mock:
        respx.get(f"{BASE_URL}/flaky").mock(return_value=httpx.Response(502))
        async with RequestExecutor(config, sleep=recording_sleep) as executor:
            await executor.get("/flaky")

    assert recording_sleep.delays == [0.25, 0.25, 0.25]


@pytest.mark.asyncio
@pytest.mark.parametrize("status", [400, 401, 404, 422, 501])
async def test_non_retryable_status_is_returned_after_one_attempt(make_config, recording_sleep, status):
    config = make_config(max_retries=3)

    with respx.mock:
        route = respx.get(f"{BASE_URL}/thing").mock(return_value=httpx.Response(status))
        async with RequestExecutor(config, sleep=recording_sleep) as executor:
            result = await executor.get("/thing")

    assert route.call_count == 1
    assert result.status_code == status
    assert result.attempts == 1
    assert recording_sleep.delays == []


@pytest.mark.asyncio
async def test_zero_max_retries_disables_retrying(make_config, recording_sleep):
    config = make_config(max_retries=0)

    with respx.mock:
        route = respx.get(f"{BASE_URL}/down").mock(return_value=httpx.Response(503))
        async with RequestExecutor(config, sleep=recording_sleep) as executor:
            result = await executor.get("/down")

    assert route.call_count == 1
    assert result.status_code == 503


@pytest.mark.asyncio
async def test_transport_failure_becomes_generic_server_error(make_config, recording_sleep, log_records):
    config = make_config(max_retries=1, delay_ms=100)

    with respx.mock:
        route = respx.get(f"{BASE_URL}/unreachable").mock(
            side_effect=httpx.ConnectError("connection refused")
        )
        async with RequestExecutor(config, sleep=recording_sleep) as executor:
            result = await executor.get("/unreachable")

    assert route.call_count == 2
    assert result.status_code == 500
    assert result.reason_phrase == "Internal Server Error"
    assert isinstance(result.exception, httpx.ConnectError)
    assert result.attempts == 2
    assert result.raw_body is None
    assert result.elapsed_ms >= 0
    assert recording_sleep.delays == [0.1]

    retries = events(log_records, "retry")
    assert len(retries) == 1
    assert retries[0]["exception"] is not None
    failures = [r for r in events(log_records, "response") if r["level"].name == "ERROR"]
    assert len(failures) == 1
    assert failures[0]["extra"]["status"] == 500


@pytest.mark.asyncio
async def test_transport_failure_then_success(make_config, recording_sleep):
    config = make_config(max_retries=2)

    with respx.mock:
        respx.get(f"{BASE_URL}/recover").mock(side_effect=[
            httpx.ReadTimeout("timed out"),
            httpx.Response(200, json=[1, 2]),
        ])
        async with RequestExecutor(config, sleep=recording_sleep) as executor:
            result = await executor.get("/recover")

    assert result.status_code == 200
    assert result.exception is None
    assert result.data == [1, 2]
    assert result.attempts == 2


@pytest.mark.asyncio
async def test_cancel_event_set_before_dispatch(make_config, recording_sleep):
    config = make_config()
    cancel = asyncio.Event()
    cancel.set()

    with respx.mock(assert_all_called=False) as respx_mock:
        route = respx_mock.get(f"{BASE_URL}/items").mock(return_value=httpx.Response(200))
        async with RequestExecutor(config, sleep=recording_sleep) as executor:
            with pytest.raises(RequestCancelled) as exc_info:
                await executor.get("/items", cancel_event=cancel)

    assert route.call_count == 0
    assert exc_info.value.attempt == 1
    assert exc_info.value.method == "GET"


@pytest.mark.asyncio
async def test_cancel_event_during_retry_delay(make_config, recording_sleep, log_records):
    config = make_config(max_retries=3)
    cancel = asyncio.Event()
    recording_sleep.on_sleep = cancel.set

    with respx.mock:
        route = respx.get(f"{BASE_URL}/items").mock(return_value=httpx.Response(503))
        async with RequestExecutor(config, sleep=recording_sleep) as executor:
            with pytest.raises(RequestCancelled):
                await executor.get("/items", cancel_event=cancel)

    assert route.call_count == 1
    assert recording_sleep.delays == [0.1]
    assert events(log_records, "cancelled")


@pytest.mark.asyncio
async def test_cancel_event_while_request_in_flight(make_config, recording_sleep):
    config = make_config(max_retries=3)
    cancel = asyncio.Event()

    async def slow_response(request):
        await asyncio.sleep(1)
        return httpx.Response(200)

    with respx.mock:
        route = respx.get(f"{BASE_URL}/slow").mock(side_effect=slow_response)
        async with RequestExecutor(config, sleep=recording_sleep) as executor:
            asyncio.get_running_loop().call_later(0.05, cancel.set)
            with pytest.raises(RequestCancelled):
                await executor.get("/slow", cancel_event=cancel)

    assert route.call_count == 1
    assert recording_sleep.delays == []


@pytest.mark.asyncio
async def test_per_attempt_timeout_retries_then_fails(make_config, recording_sleep):
    config = make_config(max_retries=1, timeout_seconds=0.1)

    async def slow_response(request):
        await asyncio.sleep(1)
        return httpx.Response(200)

    with respx.mock:
        route = respx.get(f"{BASE_URL}/slow").mock(side_effect=slow_response)
        async with RequestExecutor(config, sleep=recording_sleep) as executor:
            result = await executor.get("/slow")

    assert route.call_count == 2
    assert recording_sleep.delays == [0.1]
    assert result.status_code == 500
    assert result.reason_phrase == "Internal Server Error"
    assert isinstance(result.exception, asyncio.TimeoutError)
    assert result.attempts == 2
    assert 50 <= result.elapsed_ms < 900


@pytest.mark.asyncio
async def test_task_cancellation_propagates(make_config):
    blocker = asyncio.Event()

    async def never_wakes(delay):
        await blocker.wait()

    config = make_config(max_retries=3)

    with respx.mock:
        respx.get(f"{BASE_URL}/items").mock(return_value=httpx.Response(503))
        async with RequestExecutor(config, sleep=never_wakes) as executor:
            task = asyncio.ensure_future(executor.get("/items"))
            await asyncio.sleep(0.05)
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task


@pytest.mark.asyncio
async def test_decode_failure_keeps_raw_body(make_config, log_records):
    config = make_config()

    with respx.mock:
        respx.get(f"{BASE_URL}/text").mock(
            return_value=httpx.Response(200, text="not json at all")
        )
        async with RequestExecutor(config) as executor:
            result = await executor.get("/text", response_type=Item)

    assert result.status_code == 200
    assert result.successful
    assert result.data is None
    assert result.raw_body == "not json at all"
    assert events(log_records, "decode")


@pytest.mark.asyncio
async def test_converter_error_keeps_raw_body(make_config, log_records):
    config = make_config()

    def needs_id(document):
        return document["id"]

    with respx.mock:
        respx.get(f"{BASE_URL}/named").mock(
            return_value=httpx.Response(200, text='{"name": "n"}')
        )
        async with RequestExecutor(config) as executor:
            result = await executor.get("/named", response_type=needs_id)

    assert result.successful
    assert result.data is None
    assert result.raw_body == '{"name": "n"}'
    assert events(log_records, "decode")


@pytest.mark.asyncio
async def test_response_type_builds_dataclass(make_config):
    config = make_config()

    with respx.mock:
        respx.get(f"{BASE_URL}/items/7").mock(
            return_value=httpx.Response(200, json={"id": 7, "name": "widget"})
        )
        async with RequestExecutor(config) as executor:
            result = await executor.get("/items/7", response_type=Item)

    assert result.data == Item(id=7, name="widget")


@pytest.mark.asyncio
async def test_response_headers_keep_repeated_values(make_config):
    config = make_config()

    with respx.mock:
        respx.get(f"{BASE_URL}/cookies").mock(return_value=httpx.Response(
            204,
            headers=[("Set-Cookie", "a=1"), ("Set-Cookie", "b=2"), ("X-Request-Id", "r-1")],
        ))
        async with RequestExecutor(config) as executor:
            result = await executor.get("/cookies")

    assert result.get_header_values("set-cookie") == ["a=1", "b=2"]
    assert result.get_header("x-request-id") == "r-1"
    assert result.raw_body == ""
    assert result.data is None


@pytest.mark.asyncio
async def test_per_call_headers_override_defaults_case_insensitively(make_config):
    config = make_config(default_headers={"X-Trace": "default", "Accept": "application/json"})

    with respx.mock:
        route = respx.get(f"{BASE_URL}/items").mock(return_value=httpx.Response(200))
        async with RequestExecutor(config) as executor:
            await executor.get("/items", headers={"x-trace": "per-call"})
            await executor.get("/items")
            defaults_after = executor.default_headers

    first, second = route.calls[0].request, route.calls[1].request
    assert first.headers.get_list("x-trace") == ["per-call"]
    assert first.headers["accept"] == "application/json"
    assert second.headers["x-trace"] == "default"
    assert defaults_after == {"X-Trace": "default", "Accept": "application/json"}


@pytest.mark.asyncio
@pytest.mark.parametrize("method", ["POST", "PUT", "PATCH"])
async def test_body_is_serialized_for_body_methods(make_config, method):
    config = make_config()

    with respx.mock:
        route = respx.route(method=method, url=f"{BASE_URL}/items").mock(
            return_value=httpx.Response(201, json={"id": 1})
        )
        async with RequestExecutor(config) as executor:
            result = await executor.execute(method, "/items", {"name": "café", "qty": 2})

    request = route.calls.last.request
    assert result.status_code == 201
    assert request.headers["content-type"] == "application/json"
    assert json.loads(request.content.decode("utf-8")) == {"name": "café", "qty": 2}
    assert request.content == serialize_body({"name": "café", "qty": 2})


@pytest.mark.asyncio
@pytest.mark.parametrize("method", ["GET", "DELETE"])
async def test_body_is_dropped_for_other_methods(make_config, method):
    config = make_config()

    with respx.mock:
        route = respx.route(method=method, url=f"{BASE_URL}/items").mock(
            return_value=httpx.Response(200)
        )
        async with RequestExecutor(config) as executor:
            await executor.execute(method, "/items", {"ignored": True})

    request = route.calls.last.request
    assert request.content == b""
    assert "content-type" not in request.headers


@pytest.mark.asyncio
async def test_execute_outside_context_manager_raises(make_config):
    executor = RequestExecutor(make_config())

    with pytest.raises(HttpClientError):
        await executor.get("/items")


def test_executor_requires_config():
    with pytest.raises(HttpClientError):
        RequestExecutor(None)


@pytest.mark.asyncio
async def test_execute_many_preserves_order(make_config):
    config = make_config()

    with respx.mock:
        for index in range(3):
            respx.get(f"{BASE_URL}/items/{index}").mock(
                return_value=httpx.Response(200, json={"index": index})
            )
        async with RequestExecutor(config) as executor:
            results = await executor.execute_many([
                RequestEnvelope("GET", f"/items/{index}") for index in range(3)
            ])

    assert [result.data["index"] for result in results] == [0, 1, 2]


@pytest.mark.asyncio
async def test_performance_metric_recorded_per_logical_call(make_config, recording_sleep):
    recorder = PerformanceRecorder()
    config = make_config(max_retries=1)

    with respx.mock:
        respx.get(f"{BASE_URL}/items").mock(side_effect=[
            httpx.Response(500),
            httpx.Response(200),
        ])
        async with RequestExecutor(config, sleep=recording_sleep, performance=recorder) as executor:
            await executor.get("/items")

    metric = recorder.metric("GET /items")
    assert metric is not None
    assert metric.total_executions == 1
    assert metric.successful_executions == 1


@pytest.mark.asyncio
async def test_request_and_response_events_are_logged(make_config, log_records):
    config = make_config()

    with respx.mock:
        respx.post(f"{BASE_URL}/login").mock(return_value=httpx.Response(200, json={}))
        async with RequestExecutor(config) as executor:
            await executor.post("/login", {"user": "amy", "password": "hunter2"})

    requests = events(log_records, "request")
    responses = events(log_records, "response")
    assert len(requests) == 1
    assert requests[0]["extra"]["method"] == "POST"
    assert requests[0]["extra"]["url"] == f"{BASE_URL}/login"
    assert "hunter2" not in requests[0]["message"]
    assert responses[0]["extra"]["status"] == 200
    assert responses[0]["extra"]["elapsed_ms"] >= 0
    assert events(log_records, "curl")


def test_merge_headers_is_idempotent():
    defaults = {"Accept": "application/json", "X-Trace": "a"}
    extra = {"x-trace": "b"}

    once = merge_headers(defaults, extra)
    twice = merge_headers(once, extra)

    assert once == twice == {"Accept": "application/json", "x-trace": "b"}
    assert defaults == {"Accept": "application/json", "X-Trace": "a"}
