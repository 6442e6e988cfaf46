from __future__ import annotations

import logging
from typing import Dict

import httpx

logger = logging.getLogger(__name__)

DEFAULT_RATES_URL = "https://api.exchangerate-api.com/v4/latest"


class ExchangeRateClient:
    """
    Latest rates relative to a base currency, e.g. GET {base_url}/USD -> {"rates": {...}}.
    Any failure yields an empty table; callers then skip conversion.
    """

    def __init__(
        self,
        base_url: str = DEFAULT_RATES_URL,
        *,
        timeout: float = 5.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    async def latest(self, base_currency: str = "USD") -> Dict[str, float]:
        base = base_currency.upper()
        url = f"{self.base_url}/{base}"
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                resp = await client.get(url)
                resp.raise_for_status()
                rates = resp.json()["rates"]
            parsed = {str(k).upper(): float(v) for k, v in rates.items()}
        except (httpx.HTTPError, KeyError, ValueError, TypeError, AttributeError) as exc:
            logger.warning("Exchange rate fetch for base %s failed: %s", base, exc)
            return {}
        logger.info("Fetched %d exchange rates for base %s", len(parsed), base)
        return parsed
