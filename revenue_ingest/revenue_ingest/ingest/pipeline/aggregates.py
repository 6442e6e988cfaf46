from __future__ import annotations

from collections import defaultdict
from decimal import Decimal
from typing import Dict, Iterable, List, Mapping, Sequence
from zoneinfo import ZoneInfo

from revenue_ingest.api.schemas import DailyStat, DateRange, Transaction
from revenue_ingest.ingest.pipeline.currency import round_amount, to_decimal
from revenue_ingest.ingest.pipeline.dates import iter_days, local_day, resolve_timezone


def _dec(amount: float) -> Decimal:
    return Decimal(str(amount))


def _emit(day: str, count: int, sums: Mapping[str, Decimal]) -> DailyStat:
    return DailyStat(
        date=day,
        order_count=count,
        revenue={cur: round_amount(v) for cur, v in sorted(sums.items())},
    )


def aggregate_daily(
    transactions: Iterable[Transaction],
    date_range: DateRange,
    tz: str | ZoneInfo,
) -> List[DailyStat]:
    """
    Per-day order count and revenue by currency, bucketed by local calendar day in tz.
    Every day of the range is present (zeroed) even without charges.
    Charges falling outside the range's days are dropped.
    """
    zone = resolve_timezone(tz)
    days = iter_days(date_range, zone)
    counts: Dict[str, int] = {d: 0 for d in days}
    sums: Dict[str, Dict[str, Decimal]] = {d: defaultdict(Decimal) for d in days}

    for t in transactions:
        if not t.is_revenue:
            continue
        day = local_day(t.created, zone)
        if day not in counts:
            continue
        counts[day] += 1
        sums[day][t.currency] += _dec(to_decimal(t.currency, t.amount))

    return [_emit(d, counts[d], sums[d]) for d in days]


def revenue_from_daily(daily_stats: Iterable[DailyStat]) -> Dict[str, float]:
    """Flat currency totals, derived from the daily buckets."""
    totals: Dict[str, Decimal] = defaultdict(Decimal)
    for stat in daily_stats:
        for cur, amt in stat.revenue.items():
            totals[cur] += _dec(amt)
    return {cur: round_amount(v) for cur, v in sorted(totals.items())}


def merge_daily_stats(per_merchant: Sequence[Sequence[DailyStat]]) -> List[DailyStat]:
    """Sum order counts and per-currency revenue by date key; ascending by date."""
    counts: Dict[str, int] = defaultdict(int)
    sums: Dict[str, Dict[str, Decimal]] = defaultdict(lambda: defaultdict(Decimal))

    for stats in per_merchant:
        for stat in stats:
            counts[stat.date] += stat.order_count
            day_sums = sums[stat.date]
            for cur, amt in stat.revenue.items():
                day_sums[cur] += _dec(amt)

    return [_emit(d, counts[d], sums[d]) for d in sorted(counts.keys())]
