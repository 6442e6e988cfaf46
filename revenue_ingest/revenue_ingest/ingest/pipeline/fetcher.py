from __future__ import annotations

import asyncio
import logging
from functools import partial
from typing import Awaitable, Callable, List

from revenue_ingest.api.schemas import DateRange, Payout, Subscription, Transaction
from revenue_ingest.ingest.pipeline.dates import split_date_range
from revenue_ingest.ingest.pipeline.normalizer import (
    normalize_charge_records,
    normalize_payout_records,
    normalize_subscription_records,
)
from revenue_ingest.ingest.pipeline.source_port import Page, PaymentsSource, Record

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 100
DEFAULT_MAX_IN_FLIGHT = 8

PageFn = Callable[..., Awaitable[Page]]


def new_gate(max_in_flight: int = DEFAULT_MAX_IN_FLIGHT) -> asyncio.Semaphore:
    return asyncio.Semaphore(max(1, max_in_flight))


async def paginate(
    list_page: PageFn,
    *,
    limit: int = DEFAULT_PAGE_SIZE,
    gate: asyncio.Semaphore | None = None,
) -> List[Record]:
    """
    Follow starting_after cursors until the upstream reports no more pages.
    The gate is held per request, not for the whole chain.
    """
    gate = gate or new_gate()
    items: List[Record] = []
    cursor: str | None = None
    pages = 0
    while True:
        async with gate:
            page = await list_page(starting_after=cursor, limit=limit)
        pages += 1
        items.extend(page.data)
        if not page.has_more or not page.data:
            break
        cursor = str(page.data[-1]["id"])
    logger.debug("Fetched %d records over %d pages", len(items), pages)
    return items


async def _raw_charges(
    source: PaymentsSource,
    created_gte: int,
    created_lte: int,
    *,
    limit: int,
    gate: asyncio.Semaphore,
) -> List[Record]:
    return await paginate(
        partial(source.list_charges, created_gte=created_gte, created_lte=created_lte),
        limit=limit,
        gate=gate,
    )


async def fetch_all_charges(
    source: PaymentsSource,
    date_range: DateRange,
    *,
    limit: int = DEFAULT_PAGE_SIZE,
    gate: asyncio.Semaphore | None = None,
) -> List[Transaction]:
    """Sequential cursor-following over the whole range."""
    raw = await _raw_charges(source, date_range.start_ts, date_range.end_ts, limit=limit, gate=gate or new_gate())
    transactions, _rejected = normalize_charge_records(raw)
    return transactions


async def fetch_all_charges_sliced(
    source: PaymentsSource,
    date_range: DateRange,
    slices: int,
    *,
    limit: int = DEFAULT_PAGE_SIZE,
    gate: asyncio.Semaphore | None = None,
) -> List[Transaction]:
    """
    Split the range into contiguous slices, paginate each concurrently,
    concatenate in slice order. Any slice failure propagates.
    """
    bounds = split_date_range(date_range, slices)
    gate = gate or new_gate()
    chunks = await asyncio.gather(
        *(_raw_charges(source, lo, hi, limit=limit, gate=gate) for lo, hi in bounds)
    )
    raw = [rec for chunk in chunks for rec in chunk]
    logger.debug("Fetched %d charges across %d slices", len(raw), len(bounds))
    transactions, _rejected = normalize_charge_records(raw)
    return transactions


async def fetch_charges(
    source: PaymentsSource,
    date_range: DateRange,
    *,
    slices: int = 1,
    limit: int = DEFAULT_PAGE_SIZE,
    gate: asyncio.Semaphore | None = None,
) -> List[Transaction]:
    if slices <= 1:
        return await fetch_all_charges(source, date_range, limit=limit, gate=gate)
    return await fetch_all_charges_sliced(source, date_range, slices, limit=limit, gate=gate)


async def fetch_all_subscriptions(
    source: PaymentsSource,
    *,
    status: str | None = None,
    created_gte: int | None = None,
    created_lte: int | None = None,
    current_period_end_lte: int | None = None,
    limit: int = DEFAULT_PAGE_SIZE,
    gate: asyncio.Semaphore | None = None,
) -> List[Subscription]:
    raw = await paginate(
        partial(
            source.list_subscriptions,
            status=status,
            created_gte=created_gte,
            created_lte=created_lte,
            current_period_end_lte=current_period_end_lte,
        ),
        limit=limit,
        gate=gate,
    )
    subscriptions, _rejected = normalize_subscription_records(raw)
    return subscriptions


async def fetch_all_payouts(
    source: PaymentsSource,
    date_range: DateRange,
    *,
    status: str | None = "paid",
    limit: int = DEFAULT_PAGE_SIZE,
    gate: asyncio.Semaphore | None = None,
) -> List[Payout]:
    raw = await paginate(
        partial(
            source.list_payouts,
            created_gte=date_range.start_ts,
            created_lte=date_range.end_ts,
            status=status,
        ),
        limit=limit,
        gate=gate,
    )
    payouts, _rejected = normalize_payout_records(raw)
    return payouts
