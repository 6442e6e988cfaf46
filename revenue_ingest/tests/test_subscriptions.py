from datetime import datetime
from zoneinfo import ZoneInfo

import pytest

from revenue_ingest.api.schemas import Payout, Subscription
from revenue_ingest.ingest.adapters.memory_source import InMemoryPaymentsSource
from revenue_ingest.ingest.pipeline.dates import month_date_range
from revenue_ingest.ingest.pipeline.subscriptions import (
    estimated_renewal_revenue,
    pending_subscriptions,
    subscription_overview,
    subscription_revenue,
    subscription_type_revenue,
    summarize_payouts,
)

SHANGHAI = ZoneInfo("Asia/Shanghai")
MARCH = month_date_range(SHANGHAI, 2024, 3)
NOW = datetime(2024, 3, 15, 9, tzinfo=SHANGHAI)


def _ts(year: int, month: int, day: int) -> int:
    return int(datetime(year, month, day, 12, tzinfo=SHANGHAI).timestamp())


def _sub(sub_id: str, **kw) -> dict:
    base = {
        "id": sub_id,
        "currency": "usd",
        "interval": "month",
        "interval_count": 1,
        "status": "active",
        "unit_amount": 1000,
    }
    base.update(kw)
    return base


SUBSCRIPTIONS = [
    # new in March, renews in April
    _sub(
        "sub_a",
        created=_ts(2024, 3, 2),
        current_period_end=_ts(2024, 4, 2),
        latest_invoice_amount_paid=1000,
        latest_invoice_created=_ts(2024, 3, 2),
    ),
    # older quarterly plan renewed in March
    _sub(
        "sub_b",
        interval_count=3,
        unit_amount=3000,
        created=_ts(2023, 12, 10),
        current_period_end=_ts(2024, 6, 10),
        latest_invoice_amount_paid=3000,
        latest_invoice_created=_ts(2024, 3, 10),
    ),
    # renews later this month, last invoiced in February
    _sub(
        "sub_c",
        unit_amount=500,
        created=_ts(2024, 1, 20),
        current_period_end=_ts(2024, 3, 20),
        latest_invoice_amount_paid=500,
        latest_invoice_created=_ts(2024, 2, 20),
    ),
    _sub(
        "sub_d",
        interval="year",
        status="canceled",
        unit_amount=2000,
        created=_ts(2024, 3, 5),
        current_period_end=_ts(2025, 3, 5),
        latest_invoice_amount_paid=2000,
        latest_invoice_created=_ts(2024, 3, 5),
    ),
]

PAYOUTS = [
    {"id": "po_1", "amount": 50000, "currency": "usd", "created": _ts(2024, 3, 3), "status": "paid"},
    {"id": "po_2", "amount": 900, "currency": "usd", "created": _ts(2024, 3, 4), "status": "pending"},
    {"id": "po_3", "amount": 7000, "currency": "jpy", "created": _ts(2024, 3, 8), "status": "paid"},
]


def _models():
    return [Subscription.model_validate(s) for s in SUBSCRIPTIONS]


def test_summarize_payouts_counts_paid_only():
    payouts = [Payout.model_validate(p) for p in PAYOUTS]
    assert summarize_payouts(payouts) == {"JPY": 7000, "USD": 500.0}


def test_subscription_revenue_splits_created_and_renewed():
    out = subscription_revenue(_models(), MARCH)
    assert out == {"created": {"USD": 10.0}, "updated": {"USD": 30.0}}


def test_subscription_type_revenue_only_counts_new_subscriptions():
    out = subscription_type_revenue(_models(), MARCH)
    assert out["monthly"] == {"USD": 10.0}
    assert out["annual"] == {"USD": 20.0}
    assert out["quarterly"] == {}
    assert out["semiannual"] == {}
    assert "oneTime" not in out


def test_pending_subscriptions_due_this_month():
    out = pending_subscriptions(_models(), SHANGHAI, now=NOW)
    assert out == {"count": 1, "total_amount": {"USD": 5.0}}


def test_estimated_renewal_buckets():
    out = estimated_renewal_revenue(_models(), "Asia/Shanghai", now=NOW)
    assert out["current_month"] == {"count": 1, "revenue": {"USD": 5.0}}
    assert out["next_month"] == {"count": 1, "revenue": {"USD": 10.0}}


def test_estimated_renewal_wraps_year():
    sub = Subscription.model_validate(
        _sub("sub_x", created=_ts(2024, 6, 1), current_period_end=_ts(2025, 1, 10))
    )
    out = estimated_renewal_revenue([sub], SHANGHAI, now=datetime(2024, 12, 20, tzinfo=SHANGHAI))
    assert out["current_month"]["count"] == 0
    assert out["next_month"] == {"count": 1, "revenue": {"USD": 10.0}}


@pytest.mark.asyncio
async def test_subscription_overview_end_to_end():
    source = InMemoryPaymentsSource(subscriptions=SUBSCRIPTIONS, payouts=PAYOUTS)
    out = await subscription_overview(source, MARCH, SHANGHAI, now=NOW, limit=2)

    assert out["payouts"] == {"JPY": 7000, "USD": 500.0}
    assert out["subscription_revenue"]["created"] == {"USD": 10.0}
    assert out["pending_subscriptions"]["count"] == 1
    assert out["estimated_renewal"]["next_month"]["count"] == 1
    # created-up-to-range-end listing plus the active listing, two pages each
    assert source.calls["list_subscriptions"] == 4


@pytest.mark.asyncio
async def test_overview_for_past_month_still_sees_live_subscriptions():
    later = _sub(
        "sub_new",
        created=_ts(2024, 5, 1),
        current_period_end=_ts(2024, 6, 20),
        latest_invoice_amount_paid=1000,
        latest_invoice_created=_ts(2024, 5, 20),
    )
    source = InMemoryPaymentsSource(subscriptions=[later])
    now = datetime(2024, 6, 10, tzinfo=SHANGHAI)
    out = await subscription_overview(source, MARCH, SHANGHAI, now=now)

    assert out["pending_subscriptions"] == {"count": 1, "total_amount": {"USD": 10.0}}
    assert out["estimated_renewal"]["current_month"]["count"] == 1
    assert out["subscription_revenue"] == {"created": {}, "updated": {}}
    assert out["subscription_type_revenue"]["monthly"] == {}


@pytest.mark.asyncio
async def test_overview_totals_payouts_in_display_currency():
    source = InMemoryPaymentsSource(payouts=PAYOUTS)
    out = await subscription_overview(
        source,
        MARCH,
        SHANGHAI,
        now=NOW,
        display_currency="cny",
        rates={"CNY": 7.0, "USD": 1.0, "JPY": 140.0},
    )
    assert out["total_payouts"] == {"CNY": 3850.0}


@pytest.mark.asyncio
async def test_overview_without_display_currency_has_no_payout_total():
    out = await subscription_overview(InMemoryPaymentsSource(payouts=PAYOUTS), MARCH, SHANGHAI, now=NOW)
    assert "total_payouts" not in out
