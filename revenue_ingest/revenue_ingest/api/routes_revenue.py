from __future__ import annotations

import asyncio
import logging
from typing import Mapping

from fastapi import APIRouter, File, Form, HTTPException, Request, UploadFile

from revenue_ingest.api.schemas import DateRange, MerchantAccount, RevenueRequest
from revenue_ingest.config import PipelineConfig, load_config
from revenue_ingest.ingest.adapters.csv_file import charge_records_from_csv
from revenue_ingest.ingest.adapters.exchange_rates import ExchangeRateClient
from revenue_ingest.ingest.adapters.memory_source import InMemoryPaymentsSource
from revenue_ingest.ingest.adapters.payments_api import PaymentsApiClient
from revenue_ingest.ingest.pipeline.combiner import RevenueCombiner
from revenue_ingest.ingest.pipeline.dates import current_month_date_range, month_date_range, resolve_timezone
from revenue_ingest.ingest.pipeline.errors import (
    ConfigurationError,
    InvalidDateRangeError,
    NoMerchantAccountsError,
)
from revenue_ingest.ingest.pipeline.fetcher import new_gate
from revenue_ingest.ingest.pipeline.normalizer import normalize_charge_records
from revenue_ingest.ingest.pipeline.source_port import PaymentsSource
from revenue_ingest.ingest.pipeline.subscriptions import subscription_overview

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/revenue", tags=["revenue"])

UPLOAD_ACCOUNT_KEY = "csv-upload"


def default_source_factory(account: MerchantAccount) -> PaymentsSource:
    config = load_config()
    return PaymentsApiClient(
        account.api_key,
        base_url=config.payments_api_base_url,
        timeout=config.http_timeout_seconds,
    )


async def default_rates_provider(base_currency: str) -> Mapping[str, float]:
    config = load_config()
    client = ExchangeRateClient(config.exchange_rate_url, timeout=config.http_timeout_seconds)
    return await client.latest(base_currency)


def _bad_request(error: str, message: str) -> HTTPException:
    return HTTPException(status_code=400, detail={"error": error, "message": message})


def _resolve_range(
    year: int | None,
    month: int | None,
    timezone: str | None,
    config: PipelineConfig,
) -> tuple[str, DateRange]:
    if timezone is None:
        # a bad configured zone is a server fault, only request zones are 400s
        try:
            resolve_timezone(config.timezone)
        except InvalidDateRangeError as e:
            raise ConfigurationError(f"REVENUE_TIMEZONE is not a known timezone: {config.timezone!r}") from e
    tz = timezone or config.timezone
    if (year is None) != (month is None):
        raise InvalidDateRangeError("year and month must be provided together")
    if year is not None:
        return tz, month_date_range(tz, year, month)
    return tz, current_month_date_range(tz)


async def _display_rates(request: Request, display: str) -> Mapping[str, float]:
    try:
        return await request.app.state.rates_provider(display)
    except Exception:
        logger.warning("Exchange rates unavailable for %s", display, exc_info=True)
        return {}


@router.post("")
async def get_revenue(request: Request, payload: RevenueRequest):
    """
    Aggregate one calendar month of revenue across every account in the body.
    Per-merchant upstream failures degrade that merchant only.
    """
    config = load_config()
    try:
        tz, date_range = _resolve_range(payload.year, payload.month, payload.timezone, config)
        combiner = RevenueCombiner(
            payload.accounts,
            request.app.state.source_factory,
            config,
            rates_provider=request.app.state.rates_provider,
        )
        result = await combiner.combine_all(
            date_range,
            tz,
            display_currency=payload.display_currency,
            time_slices=payload.time_slices,
        )
    except NoMerchantAccountsError as e:
        raise _bad_request("no_merchant_accounts", str(e))
    except InvalidDateRangeError as e:
        raise _bad_request("invalid_date_range", str(e))

    return result.model_dump(by_alias=True, exclude_none=True)


@router.post("/files")
async def revenue_from_file(
    request: Request,
    file: UploadFile = File(...),
    merchant_name: str | None = Form(None),
    year: int | None = Form(None, ge=1970, le=9999),
    month: int | None = Form(None, ge=1, le=12),
    timezone: str | None = Form(None),
    display_currency: str | None = Form(None),
):
    """
    Same aggregation as POST /v1/revenue, over an uploaded charges export
    instead of a live payments account.
    """
    config = load_config()
    try:
        tz, date_range = _resolve_range(year, month, timezone, config)
    except InvalidDateRangeError as e:
        raise _bad_request("invalid_date_range", str(e))

    raw = await file.read()
    if not raw:
        raise _bad_request("invalid_file", "empty file")
    try:
        records = charge_records_from_csv(raw)
    except ValueError as e:
        raise _bad_request("invalid_file", str(e))

    transactions, rejected = normalize_charge_records(records)
    source = InMemoryPaymentsSource(
        charges=[t.model_dump() for t in transactions],
        account={"business_profile": {"name": merchant_name}} if merchant_name else None,
    )
    combiner = RevenueCombiner(
        [MerchantAccount(api_key=UPLOAD_ACCOUNT_KEY, name=merchant_name)],
        lambda _account: source,
        config,
        rates_provider=request.app.state.rates_provider,
    )
    result = await combiner.combine_all(date_range, tz, display_currency=display_currency)

    body = result.model_dump(by_alias=True, exclude_none=True)
    body["rowsAccepted"] = len(transactions)
    body["rejectionBreakdown"] = rejected
    return body


@router.post("/subscriptions")
async def get_subscription_overview(request: Request, payload: RevenueRequest):
    """
    Payouts, subscription revenue, pending and renewal estimates per merchant.
    Unlike the revenue view, a merchant failure here is reported in its entry.
    """
    config = load_config()
    try:
        tz, date_range = _resolve_range(payload.year, payload.month, payload.timezone, config)
    except InvalidDateRangeError as e:
        raise _bad_request("invalid_date_range", str(e))
    if not payload.accounts:
        raise _bad_request("no_merchant_accounts", str(NoMerchantAccountsError()))

    gate = new_gate(config.max_concurrent_requests)
    display = payload.display_currency or config.display_currency
    rates = await _display_rates(request, display) if display else {}

    async def one(account: MerchantAccount) -> dict:
        source: PaymentsSource | None = None
        try:
            source = request.app.state.source_factory(account)
            overview = await subscription_overview(
                source,
                date_range,
                tz,
                limit=config.page_size,
                gate=gate,
                display_currency=display,
                rates=rates,
            )
            return {"merchant_name": account.name, **overview}
        except Exception as e:
            logger.warning("Subscription overview failed for %s", account.name or "merchant", exc_info=True)
            return {"merchant_name": account.name, "error": str(e)}
        finally:
            if source is not None:
                await source.aclose()

    merchants = await asyncio.gather(*(one(a) for a in payload.accounts))
    return {
        "merchants": list(merchants),
        "period": {
            "start": date_range.start_date.date().isoformat(),
            "end": date_range.end_date.date().isoformat(),
        },
    }
