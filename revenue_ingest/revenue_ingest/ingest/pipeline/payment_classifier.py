from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from revenue_ingest.api.schemas import Subscription, Transaction
from revenue_ingest.ingest.pipeline.cadence import Cadence


@dataclass(frozen=True)
class PaymentType:
    id: str
    name: str
    description: str
    interval: str | None = None


@dataclass(frozen=True)
class ClassificationResult:
    cadence: str
    interval_key: str | None
    matched: bool

    @property
    def is_subscription(self) -> bool:
        return self.cadence != Cadence.ONE_TIME.value


PAYMENT_TYPES: list[PaymentType] = [
    PaymentType(Cadence.ONE_TIME.value, "One-Time Payment", "Single payment transactions"),
    PaymentType(Cadence.MONTHLY.value, "Monthly Subscription", "Monthly recurring payments", "month"),
    PaymentType(Cadence.QUARTERLY.value, "Quarterly Subscription", "Quarterly recurring payments", "3-month"),
    PaymentType(Cadence.SEMIANNUAL.value, "Semi-Annual Subscription", "6-month recurring payments", "6-month"),
    PaymentType(Cadence.ANNUAL.value, "Annual Subscription", "Annual recurring payments", "year"),
]


def validate_payment_types(types: Iterable[PaymentType]) -> None:
    types = list(types)
    if not types or types[0].interval is not None:
        raise ValueError("first payment type must be the one-time entry (no interval)")
    ids = [t.id for t in types]
    if len(set(ids)) != len(ids):
        raise ValueError(f"duplicate payment type ids: {ids}")
    intervals = [t.interval for t in types[1:]]
    if any(i is None for i in intervals):
        raise ValueError("only the first payment type may omit an interval")
    if len(set(intervals)) != len(intervals):
        raise ValueError(f"duplicate payment type intervals: {intervals}")


validate_payment_types(PAYMENT_TYPES)


def register_payment_type(payment_type: PaymentType) -> None:
    """Append a cadence (e.g. "2-week"). Validated before the registry is touched."""
    validate_payment_types([*PAYMENT_TYPES, payment_type])
    PAYMENT_TYPES.append(payment_type)


def interval_key(interval: str | None, interval_count: int | None = 1) -> str | None:
    if not interval:
        return None
    unit = interval.strip().lower()
    count = interval_count or 1
    if count == 1:
        return unit
    return f"{count}-{unit}"


def payment_type_by_interval(key: str | None) -> PaymentType | None:
    if key is None:
        return PAYMENT_TYPES[0]
    for pt in PAYMENT_TYPES:
        if pt.interval == key:
            return pt
    return None


def subscription_cadence_ids() -> list[str]:
    return [pt.id for pt in PAYMENT_TYPES if pt.interval]


def classify_subscription(subscription: Subscription | None) -> ClassificationResult:
    if subscription is None:
        return ClassificationResult(cadence=Cadence.ONE_TIME.value, interval_key=None, matched=True)

    key = interval_key(subscription.interval, subscription.interval_count)
    pt = payment_type_by_interval(key)
    if pt is None:
        # unknown cadence counts as one-time
        return ClassificationResult(cadence=Cadence.ONE_TIME.value, interval_key=key, matched=False)
    return ClassificationResult(cadence=pt.id, interval_key=key, matched=True)


def classify_payment(
    transaction: Transaction,
    subscription: Subscription | None,
) -> ClassificationResult:
    """
    One-time vs. subscription cadence for a settled charge.
    A charge without a subscription id is one-time even if a subscription is passed.
    """
    if transaction.subscription_id is None:
        return classify_subscription(None)
    return classify_subscription(subscription)
