from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from decimal import Decimal
from typing import Dict, Iterable, Mapping, Sequence

from pydantic import ValidationError

from revenue_ingest.api.schemas import RevenueBreakdown, Subscription, Transaction
from revenue_ingest.ingest.pipeline.currency import round_amount, to_decimal
from revenue_ingest.ingest.pipeline.errors import UpstreamError
from revenue_ingest.ingest.pipeline.fetcher import new_gate
from revenue_ingest.ingest.pipeline.payment_classifier import classify_payment, subscription_cadence_ids
from revenue_ingest.ingest.pipeline.source_port import PaymentsSource

logger = logging.getLogger(__name__)

SubscriptionLookup = Mapping[str, Subscription | None]


def zeroed_breakdown() -> RevenueBreakdown:
    return RevenueBreakdown(
        one_time={},
        subscription={cid: {} for cid in subscription_cadence_ids()},
    )


def _rounded(sums: Mapping[str, Decimal]) -> Dict[str, float]:
    return {cur: round_amount(v) for cur, v in sorted(sums.items())}


def _build(one_time: Mapping[str, Decimal], by_cadence: Mapping[str, Mapping[str, Decimal]]) -> RevenueBreakdown:
    out = zeroed_breakdown()
    out.one_time = _rounded(one_time)
    for cid, sums in by_cadence.items():
        out.subscription[cid] = _rounded(sums)
    return out


def aggregate_breakdown(
    transactions: Iterable[Transaction],
    subscriptions_by_id: SubscriptionLookup,
) -> RevenueBreakdown:
    """
    One-time vs. per-cadence revenue. Subscriptions come from a prebuilt lookup;
    an id missing from it (or mapped to None) counts as one-time.
    """
    one_time: Dict[str, Decimal] = defaultdict(Decimal)
    by_cadence: Dict[str, Dict[str, Decimal]] = defaultdict(lambda: defaultdict(Decimal))

    for t in transactions:
        if not t.is_revenue:
            continue
        sub = subscriptions_by_id.get(t.subscription_id) if t.subscription_id else None
        result = classify_payment(t, sub)
        amount = Decimal(str(to_decimal(t.currency, t.amount)))
        if result.is_subscription:
            by_cadence[result.cadence][t.currency] += amount
        else:
            one_time[t.currency] += amount

    return _build(one_time, by_cadence)


def merge_breakdowns(breakdowns: Sequence[RevenueBreakdown]) -> RevenueBreakdown:
    one_time: Dict[str, Decimal] = defaultdict(Decimal)
    by_cadence: Dict[str, Dict[str, Decimal]] = defaultdict(lambda: defaultdict(Decimal))
    for b in breakdowns:
        for cur, amt in b.one_time.items():
            one_time[cur] += Decimal(str(amt))
        for cid, amounts in b.subscription.items():
            cadence_sums = by_cadence[cid]
            for cur, amt in amounts.items():
                cadence_sums[cur] += Decimal(str(amt))
    return _build(one_time, by_cadence)


async def build_subscription_lookup(
    source: PaymentsSource,
    transactions: Iterable[Transaction],
    *,
    gate: asyncio.Semaphore | None = None,
) -> Dict[str, Subscription | None]:
    """
    Retrieve each distinct subscription referenced by revenue charges, concurrently.
    A failed retrieval maps to None, so its charges fall back to one-time.
    """
    gate = gate or new_gate()
    ids = sorted({t.subscription_id for t in transactions if t.is_revenue and t.subscription_id})

    async def _one(subscription_id: str) -> Subscription | None:
        try:
            async with gate:
                raw = await source.retrieve_subscription(subscription_id)
            return Subscription.model_validate(raw)
        except (UpstreamError, ValidationError):
            # TODO: surface an "unclassified" bucket instead of folding into one-time
            logger.warning(
                "Subscription %s unavailable; its charges count as one-time",
                subscription_id,
                exc_info=True,
            )
            return None

    results = await asyncio.gather(*(_one(sid) for sid in ids))
    return dict(zip(ids, results))
