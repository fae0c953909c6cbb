import httpx
import pytest
import pytest_asyncio

from gptbatch.client import GptBatchClient
from gptbatch.config import ClientConfig, CongestionConfig
from tests.mocks.api import FakeOpenAIAPI, make_fake_api_transport


@pytest.fixture(autouse=True)
def test_set_env(monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "test-key")
    monkeypatch.delenv("GPTBATCH_CACHE_DIR", raising=False)


@pytest.fixture
def fast_congestion() -> CongestionConfig:
    """Congestion settings with millisecond backoffs."""
    return CongestionConfig(min_backoff=0.001, max_backoff=0.008)


@pytest.fixture
def fake_api() -> FakeOpenAIAPI:
    return FakeOpenAIAPI()


@pytest.fixture
def fake_transport(fake_api: FakeOpenAIAPI) -> httpx.MockTransport:
    return make_fake_api_transport(fake_api)


@pytest_asyncio.fixture
async def client(fake_transport: httpx.MockTransport, fast_congestion: CongestionConfig):
    """
    Create a client talking to the fake API.

    Yields
    ------
    GptBatchClient
        Client without persisted cache.
    """
    async with GptBatchClient(
        config=ClientConfig(congestion=fast_congestion),
        transport=fake_transport,
    ) as client:
        yield client


@pytest_asyncio.fixture
async def cached_client(fake_transport: httpx.MockTransport, fast_congestion: CongestionConfig, tmp_path):
    """
    Create a client talking to the fake API with a persisted cache in ``tmp_path``.

    Yields
    ------
    GptBatchClient
        Client with persisted cache.
    """
    async with GptBatchClient(
        config=ClientConfig(congestion=fast_congestion, cache_dir=tmp_path),
        transport=fake_transport,
    ) as client:
        yield client
