from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping

import httpx

from revenue_ingest.ingest.pipeline.errors import UpstreamError
from revenue_ingest.ingest.pipeline.source_port import Page, PaymentsSource, Record

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.stripe.com"

_SUBSCRIPTION_EXPAND = ["data.latest_invoice", "data.items.data.price"]


def _ref_id(val: object) -> str | None:
    """Expandable field: either an id string or an expanded object."""
    if val is None:
        return None
    if isinstance(val, Mapping):
        ref = val.get("id")
        return str(ref) if ref else None
    return str(val) or None


def flatten_charge(charge: Mapping[str, Any]) -> Record:
    invoice = charge.get("invoice")
    sub_id = _ref_id(charge.get("subscription"))
    if sub_id is None and isinstance(invoice, Mapping):
        sub_id = _ref_id(invoice.get("subscription"))
    return {
        "id": charge.get("id"),
        "amount": charge.get("amount"),
        "currency": charge.get("currency"),
        "created": charge.get("created"),
        "status": charge.get("status"),
        "refunded": bool(charge.get("refunded")),
        "subscription_id": sub_id,
    }


def flatten_subscription(sub: Mapping[str, Any]) -> Record:
    items = (sub.get("items") or {}).get("data") or []
    item = items[0] if items else {}
    price = item.get("price") or {}
    plan = item.get("plan") or sub.get("plan") or {}
    recurring = price.get("recurring") or {}

    interval = recurring.get("interval") or plan.get("interval")
    interval_count = recurring.get("interval_count") or plan.get("interval_count") or 1
    unit_amount = price.get("unit_amount")
    if unit_amount is None:
        unit_amount = plan.get("amount") or 0
    period_end = sub.get("current_period_end") or item.get("current_period_end") or 0

    invoice = sub.get("latest_invoice")
    invoice = invoice if isinstance(invoice, Mapping) else {}

    return {
        "id": sub.get("id"),
        "currency": sub.get("currency"),
        "interval": interval,
        "interval_count": interval_count,
        "current_period_end": period_end,
        "status": sub.get("status"),
        "created": sub.get("created") or 0,
        "unit_amount": unit_amount,
        "latest_invoice_amount_paid": invoice.get("amount_paid"),
        "latest_invoice_created": invoice.get("created"),
    }


def flatten_payout(payout: Mapping[str, Any]) -> Record:
    return {k: payout.get(k) for k in ("id", "amount", "currency", "created", "status")}


def _flatten(path: str, flatten, raw: Any) -> Record:
    try:
        return flatten(raw)
    except (AttributeError, TypeError, IndexError) as e:
        raise UpstreamError(f"{path} returned a malformed record") from e


def _drop_none(params: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in params.items() if v is not None}


class PaymentsApiClient(PaymentsSource):
    """
    Stripe-compatible REST client (read-only).
    One instance per merchant account; close with aclose().
    """

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers={"Authorization": f"Bearer {api_key}"},
            timeout=timeout,
            transport=transport,
        )

    async def _get(self, path: str, params: Dict[str, Any] | None = None) -> Dict[str, Any]:
        try:
            resp = await self._client.get(path, params=_drop_none(params or {}))
            resp.raise_for_status()
            body = resp.json()
        except httpx.HTTPStatusError as e:
            logger.error("Payments API %s failed | status=%s", path, e.response.status_code)
            raise UpstreamError(
                f"{path} failed: {e.response.status_code}",
                status_code=e.response.status_code,
            ) from e
        except httpx.RequestError as e:
            logger.error("Payments API %s request failed: %s", path, e)
            raise UpstreamError(f"{path} unreachable") from e
        except ValueError as e:
            raise UpstreamError(f"{path} returned invalid JSON") from e
        if not isinstance(body, dict):
            raise UpstreamError(f"{path} returned unexpected payload")
        logger.debug("Payments API %s ok", path)
        return body

    @staticmethod
    def _page(path: str, body: Mapping[str, Any], flatten) -> Page:
        data: List[Record] = [_flatten(path, flatten, r) for r in body.get("data") or []]
        return Page(data=data, has_more=bool(body.get("has_more")))

    async def list_charges(
        self,
        *,
        created_gte: int,
        created_lte: int,
        starting_after: str | None = None,
        limit: int = 100,
    ) -> Page:
        body = await self._get(
            "/v1/charges",
            {
                "created[gte]": created_gte,
                "created[lte]": created_lte,
                "starting_after": starting_after,
                "limit": limit,
                "expand[]": ["data.invoice"],
            },
        )
        return self._page("/v1/charges", body, flatten_charge)

    async def list_subscriptions(
        self,
        *,
        status: str | None = None,
        created_gte: int | None = None,
        created_lte: int | None = None,
        current_period_end_lte: int | None = None,
        starting_after: str | None = None,
        limit: int = 100,
    ) -> Page:
        body = await self._get(
            "/v1/subscriptions",
            {
                # upstream defaults to non-canceled only
                "status": status or "all",
                "created[gte]": created_gte,
                "created[lte]": created_lte,
                "current_period_end[lte]": current_period_end_lte,
                "starting_after": starting_after,
                "limit": limit,
                "expand[]": _SUBSCRIPTION_EXPAND,
            },
        )
        return self._page("/v1/subscriptions", body, flatten_subscription)

    async def list_payouts(
        self,
        *,
        created_gte: int,
        created_lte: int,
        status: str | None = None,
        starting_after: str | None = None,
        limit: int = 100,
    ) -> Page:
        body = await self._get(
            "/v1/payouts",
            {
                "created[gte]": created_gte,
                "created[lte]": created_lte,
                "status": status,
                "starting_after": starting_after,
                "limit": limit,
            },
        )
        return self._page("/v1/payouts", body, flatten_payout)

    async def retrieve_subscription(self, subscription_id: str) -> Record:
        body = await self._get(
            f"/v1/subscriptions/{subscription_id}",
            {"expand[]": ["latest_invoice", "items.data.price"]},
        )
        return _flatten(f"/v1/subscriptions/{subscription_id}", flatten_subscription, body)

    async def retrieve_account(self) -> Record:
        return await self._get("/v1/account")

    async def aclose(self) -> None:
        await self._client.aclose()
