"""
Tests for the congestion controller and its httpx transport.
"""

import asyncio

import httpx
import pytest

from gptbatch.config import CongestionConfig
from gptbatch.exceptions import TooManyAttemptsError
from gptbatch.transport import (
    CongestionControlTransport,
    CongestionController,
    CongestionMode,
    build_transport,
)
from tests.mocks.api import ScriptedTransport


def _http_client(controller: CongestionController, base: httpx.AsyncBaseTransport) -> httpx.AsyncClient:
    return httpx.AsyncClient(
        base_url="https://api.test",
        transport=build_transport(controller, base=base),
    )


@pytest.mark.asyncio
async def test_controller_starts_concurrent(fast_congestion):
    controller = CongestionController(fast_congestion)

    assert controller.mode is CongestionMode.CONCURRENT
    assert controller.backoff == 0.0
    assert controller.consecutive_successes == 0


@pytest.mark.asyncio
async def test_first_throttle_multiplies_after_raising_to_floor(fast_congestion):
    """The first 429 jumps straight from zero to floor * factor."""
    controller = CongestionController(fast_congestion)

    await controller.record_throttled()

    assert controller.mode is CongestionMode.SERIALIZED
    assert controller.backoff == pytest.approx(0.002)


@pytest.mark.asyncio
async def test_repeated_throttling_never_decreases_nor_exceeds_max(fast_congestion):
    controller = CongestionController(fast_congestion)
    observed = []

    for _ in range(8):
        await controller.record_throttled()
        observed.append(controller.backoff)
        assert controller.mode is CongestionMode.SERIALIZED

    assert observed == sorted(observed)
    assert max(observed) == pytest.approx(fast_congestion.max_backoff)
    assert all(value <= fast_congestion.max_backoff for value in observed)


@pytest.mark.asyncio
async def test_success_streak_halves_backoff_then_returns_to_concurrent(fast_congestion):
    controller = CongestionController(fast_congestion)
    await controller.record_throttled()

    for _ in range(10):
        await controller.record_success()
    assert controller.backoff == pytest.approx(fast_congestion.min_backoff)
    assert controller.mode is CongestionMode.SERIALIZED

    for _ in range(10):
        await controller.record_success()
    assert controller.backoff == pytest.approx(fast_congestion.min_backoff)
    assert controller.mode is CongestionMode.CONCURRENT


@pytest.mark.asyncio
async def test_decay_needs_a_new_full_streak():
    controller = CongestionController(CongestionConfig(min_backoff=0.001, max_backoff=1.0))
    for _ in range(3):
        await controller.record_throttled()
    assert controller.backoff == pytest.approx(0.008)

    for _ in range(10):
        await controller.record_success()
    assert controller.backoff == pytest.approx(0.004)

    for _ in range(9):
        await controller.record_success()
    assert controller.backoff == pytest.approx(0.004)
    assert controller.consecutive_successes == 9


@pytest.mark.asyncio
async def test_throttle_after_nine_successes_resets_streak(fast_congestion):
    controller = CongestionController(fast_congestion)
    await controller.record_throttled()
    before = controller.backoff

    for _ in range(9):
        await controller.record_success()
    assert controller.consecutive_successes == 9
    assert controller.backoff == before

    await controller.record_throttled()

    assert controller.consecutive_successes == 0
    assert controller.backoff > before


@pytest.mark.asyncio
async def test_successes_in_concurrent_mode_stay_concurrent(fast_congestion):
    controller = CongestionController(fast_congestion)

    for _ in range(25):
        await controller.record_success()

    assert controller.mode is CongestionMode.CONCURRENT
    assert controller.backoff == pytest.approx(fast_congestion.min_backoff)


@pytest.mark.asyncio
async def test_transport_retries_throttled_requests(fast_congestion):
    controller = CongestionController(fast_congestion)
    scripted = ScriptedTransport([429, 429, 200])

    async with _http_client(controller, scripted) as client:
        response = await client.get("/v1/batches/batch_1")

    assert response.status_code == 200
    assert scripted.calls == 3
    assert controller.mode is CongestionMode.SERIALIZED
    assert controller.consecutive_successes == 1


@pytest.mark.asyncio
async def test_transport_gives_up_after_max_attempts():
    controller = CongestionController(
        CongestionConfig(min_backoff=0.001, max_backoff=0.002, max_attempts=3)
    )
    scripted = ScriptedTransport([429])

    async with _http_client(controller, scripted) as client:
        with pytest.raises(TooManyAttemptsError) as exc_info:
            await client.get("/v1/batches/batch_1")

    assert scripted.calls == 3
    assert exc_info.value.attempts == 3


@pytest.mark.asyncio
async def test_other_statuses_leave_state_untouched(fast_congestion):
    controller = CongestionController(fast_congestion)
    await controller.record_throttled()
    for _ in range(4):
        await controller.record_success()
    scripted = ScriptedTransport([500])

    async with _http_client(controller, scripted) as client:
        response = await client.get("/v1/batches/batch_1")

    assert response.status_code == 500
    assert scripted.calls == 1
    assert controller.consecutive_successes == 4
    assert controller.backoff == pytest.approx(0.002)
    assert controller.mode is CongestionMode.SERIALIZED


@pytest.mark.asyncio
async def test_network_errors_propagate_without_state_change(fast_congestion):
    controller = CongestionController(fast_congestion)

    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    async with _http_client(controller, httpx.MockTransport(handler)) as client:
        with pytest.raises(httpx.ConnectError):
            await client.get("/v1/batches/batch_1")

    assert controller.mode is CongestionMode.CONCURRENT
    assert controller.consecutive_successes == 0


@pytest.mark.asyncio
async def test_serialized_mode_allows_one_request_in_flight(fast_congestion):
    controller = CongestionController(fast_congestion)
    await controller.record_throttled()
    scripted = ScriptedTransport([200], delay=0.01)

    async with _http_client(controller, scripted) as client:
        responses = await asyncio.gather(*(client.get(f"/v1/files/file_{i}") for i in range(5)))

    assert all(response.status_code == 200 for response in responses)
    assert scripted.max_in_flight == 1


@pytest.mark.asyncio
async def test_concurrent_mode_dispatches_in_parallel(fast_congestion):
    controller = CongestionController(fast_congestion)
    scripted = ScriptedTransport([200], delay=0.02)

    async with _http_client(controller, scripted) as client:
        await asyncio.gather(*(client.get(f"/v1/files/file_{i}") for i in range(5)))

    assert scripted.max_in_flight > 1


@pytest.mark.asyncio
async def test_cancellation_aborts_backoff_and_releases_slot():
    controller = CongestionController(CongestionConfig(min_backoff=5.0, max_backoff=60.0))
    await controller.record_throttled()
    scripted = ScriptedTransport([200])

    async with _http_client(controller, scripted) as client:
        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(client.get("/v1/batches/batch_1"), timeout=0.05)

    assert scripted.calls == 0
    assert not controller.execution_slot.locked()
    assert controller.backoff == pytest.approx(10.0)
    assert controller.mode is CongestionMode.SERIALIZED
    assert controller.consecutive_successes == 0


@pytest.mark.asyncio
async def test_clients_do_not_share_congestion_state(fast_congestion):
    throttled = CongestionController(fast_congestion)
    untouched = CongestionController(fast_congestion)

    async with _http_client(throttled, ScriptedTransport([429, 200])) as client:
        await client.get("/v1/batches/batch_1")

    assert throttled.mode is CongestionMode.SERIALIZED
    assert untouched.mode is CongestionMode.CONCURRENT


@pytest.mark.asyncio
async def test_throttled_uploads_replay_the_body(fast_congestion):
    controller = CongestionController(fast_congestion)
    bodies = []

    def handler(request: httpx.Request) -> httpx.Response:
        bodies.append(request.read())
        status = 429 if len(bodies) == 1 else 200
        return httpx.Response(status_code=status, json={"id": "file_1"})

    transport = CongestionControlTransport(httpx.MockTransport(handler), controller)
    async with httpx.AsyncClient(base_url="https://api.test", transport=transport) as client:
        response = await client.post(
            "/v1/files",
            files={"file": ("shard.jsonl", b'{"custom_id": "a"}\n', "application/jsonl")},
            data={"purpose": "batch"},
        )

    assert response.status_code == 200
    assert len(bodies) == 2
    assert bodies[0] == bodies[1]
    assert b'{"custom_id": "a"}' in bodies[1]
