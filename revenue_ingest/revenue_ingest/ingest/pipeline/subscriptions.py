from __future__ import annotations

import asyncio
from collections import defaultdict
from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, Iterable, Mapping
from zoneinfo import ZoneInfo

from revenue_ingest.api.schemas import DateRange, Payout, Subscription
from revenue_ingest.ingest.pipeline.currency import convert_total_to, round_amount, to_decimal
from revenue_ingest.ingest.pipeline.dates import month_date_range, resolve_timezone
from revenue_ingest.ingest.pipeline.fetcher import (
    DEFAULT_PAGE_SIZE,
    fetch_all_payouts,
    fetch_all_subscriptions,
    new_gate,
)
from revenue_ingest.ingest.pipeline.payment_classifier import classify_subscription, subscription_cadence_ids
from revenue_ingest.ingest.pipeline.source_port import PaymentsSource


def _rounded(sums: Mapping[str, Decimal]) -> Dict[str, float]:
    return {cur: round_amount(v) for cur, v in sorted(sums.items())}


def _amount(currency: str, minor: int | None) -> Decimal:
    return Decimal(str(to_decimal(currency, minor or 0)))


def summarize_payouts(payouts: Iterable[Payout]) -> Dict[str, float]:
    sums: Dict[str, Decimal] = defaultdict(Decimal)
    for p in payouts:
        if p.status != "paid":
            continue
        sums[p.currency] += _amount(p.currency, p.amount)
    return _rounded(sums)


def subscription_revenue(
    subscriptions: Iterable[Subscription],
    date_range: DateRange,
) -> Dict[str, Dict[str, float]]:
    """
    Latest-invoice revenue of active subscriptions, split into
    "created" (subscription started in range) and "updated" (renewed in range).
    """
    created: Dict[str, Decimal] = defaultdict(Decimal)
    updated: Dict[str, Decimal] = defaultdict(Decimal)
    start, end = date_range.start_ts, date_range.end_ts

    for s in subscriptions:
        if s.status != "active" or s.latest_invoice_created is None:
            continue
        if not start <= s.latest_invoice_created <= end:
            continue
        amount = _amount(s.currency, s.latest_invoice_amount_paid)
        if s.created >= start:
            created[s.currency] += amount
        else:
            updated[s.currency] += amount

    return {"created": _rounded(created), "updated": _rounded(updated)}


def subscription_type_revenue(
    subscriptions: Iterable[Subscription],
    date_range: DateRange,
) -> Dict[str, Dict[str, float]]:
    """Latest-invoice revenue of subscriptions created in range, by cadence."""
    by_cadence: Dict[str, Dict[str, Decimal]] = {cid: defaultdict(Decimal) for cid in subscription_cadence_ids()}
    start, end = date_range.start_ts, date_range.end_ts

    for s in subscriptions:
        if not start <= s.created <= end or s.latest_invoice_created is None:
            continue
        result = classify_subscription(s)
        if not result.is_subscription:
            continue
        by_cadence.setdefault(result.cadence, defaultdict(Decimal))
        by_cadence[result.cadence][s.currency] += _amount(s.currency, s.latest_invoice_amount_paid)

    return {cid: _rounded(sums) for cid, sums in by_cadence.items()}


def _month_end(now: datetime, zone: ZoneInfo, months_ahead: int = 0) -> int:
    local = now.astimezone(zone)
    month_index = local.month - 1 + months_ahead
    year, month = local.year + month_index // 12, month_index % 12 + 1
    return month_date_range(zone, year, month).end_ts


def pending_subscriptions(
    subscriptions: Iterable[Subscription],
    tz: str | ZoneInfo,
    now: datetime | None = None,
) -> Dict[str, object]:
    """Active subscriptions whose current period ends by the end of this month."""
    zone = resolve_timezone(tz)
    cutoff = _month_end(now or datetime.now(timezone.utc), zone)
    count = 0
    totals: Dict[str, Decimal] = defaultdict(Decimal)
    for s in subscriptions:
        if s.status != "active" or s.current_period_end > cutoff:
            continue
        count += 1
        totals[s.currency] += _amount(s.currency, s.unit_amount)
    return {"count": count, "total_amount": _rounded(totals)}


def estimated_renewal_revenue(
    subscriptions: Iterable[Subscription],
    tz: str | ZoneInfo,
    now: datetime | None = None,
) -> Dict[str, Dict[str, object]]:
    """Unit amounts of active subscriptions renewing this month vs. next month."""
    zone = resolve_timezone(tz)
    now = now or datetime.now(timezone.utc)
    current_end = _month_end(now, zone)
    next_end = _month_end(now, zone, months_ahead=1)

    buckets = {
        "current_month": {"count": 0, "revenue": defaultdict(Decimal)},
        "next_month": {"count": 0, "revenue": defaultdict(Decimal)},
    }
    for s in subscriptions:
        if s.status != "active":
            continue
        if s.current_period_end <= current_end:
            bucket = buckets["current_month"]
        elif s.current_period_end <= next_end:
            bucket = buckets["next_month"]
        else:
            continue
        bucket["count"] += 1
        bucket["revenue"][s.currency] += _amount(s.currency, s.unit_amount)

    return {
        name: {"count": b["count"], "revenue": _rounded(b["revenue"])}
        for name, b in buckets.items()
    }


async def subscription_overview(
    source: PaymentsSource,
    date_range: DateRange,
    tz: str | ZoneInfo,
    *,
    now: datetime | None = None,
    limit: int = DEFAULT_PAGE_SIZE,
    gate: asyncio.Semaphore | None = None,
    display_currency: str | None = None,
    rates: Mapping[str, float] | None = None,
) -> Dict[str, object]:
    """
    Everything the subscription panel shows for one merchant.

    Revenue views use subscriptions created up to the range end. Pending and renewal
    views are relative to now, so they read every currently active subscription.
    With a display currency, paid payouts are also totalled in that currency.
    """
    gate = gate or new_gate()
    in_range, active, payouts = await asyncio.gather(
        fetch_all_subscriptions(source, created_lte=date_range.end_ts, limit=limit, gate=gate),
        fetch_all_subscriptions(source, status="active", limit=limit, gate=gate),
        fetch_all_payouts(source, date_range, limit=limit, gate=gate),
    )
    now = now or datetime.now(timezone.utc)
    payout_totals = summarize_payouts(payouts)
    overview: Dict[str, object] = {
        "payouts": payout_totals,
        "subscription_revenue": subscription_revenue(in_range, date_range),
        "subscription_type_revenue": subscription_type_revenue(in_range, date_range),
        "pending_subscriptions": pending_subscriptions(active, tz, now),
        "estimated_renewal": estimated_renewal_revenue(active, tz, now),
    }
    if display_currency:
        target = display_currency.upper()
        overview["total_payouts"] = {target: convert_total_to(payout_totals, target, rates or {})}
    return overview
