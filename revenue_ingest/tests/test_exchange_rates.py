import httpx
import pytest

from revenue_ingest.ingest.adapters.exchange_rates import ExchangeRateClient


@pytest.mark.asyncio
async def test_latest_parses_rates_for_base():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(str(request.url))
        return httpx.Response(200, json={"base": "CNY", "rates": {"cny": 1, "USD": "0.14"}})

    client = ExchangeRateClient("https://rates.test/v4/latest/", transport=httpx.MockTransport(handler))
    rates = await client.latest("cny")

    assert seen == ["https://rates.test/v4/latest/CNY"]
    assert rates == {"CNY": 1.0, "USD": 0.14}


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(503, text="unavailable"),
        httpx.Response(200, json={"result": "error"}),
        httpx.Response(200, text="not json"),
        httpx.Response(200, json={"rates": {"USD": "abc"}}),
    ],
)
async def test_latest_failure_yields_empty_table(response):
    client = ExchangeRateClient("https://rates.test", transport=httpx.MockTransport(lambda request: response))
    assert await client.latest("USD") == {}


@pytest.mark.asyncio
async def test_latest_network_error_yields_empty_table():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectTimeout("slow", request=request)

    client = ExchangeRateClient("https://rates.test", transport=httpx.MockTransport(handler))
    assert await client.latest() == {}
