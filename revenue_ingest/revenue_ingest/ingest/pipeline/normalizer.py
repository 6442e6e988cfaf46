from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Mapping, Tuple, Type, TypeVar

import pandas as pd
from pydantic import BaseModel, ValidationError

from revenue_ingest.api.schemas import Payout, Subscription, Transaction

logger = logging.getLogger(__name__)

CHARGE_COLUMNS = ("id", "amount", "currency", "created", "status", "refunded", "subscription_id")

M = TypeVar("M", bound=BaseModel)


def _is_missing(val: object) -> bool:
    if val is None:
        return True
    try:
        if pd.isna(val):
            return True
    except (TypeError, ValueError):
        pass
    if isinstance(val, str) and val.strip() == "":
        return True
    return False


def _parse_boolish(val: object) -> bool:
    if _is_missing(val):
        return False
    if isinstance(val, bool):
        return val
    s = str(val).strip().lower()
    return s in {"1", "true", "t", "yes", "y"}


def _bump(breakdown: Dict[str, int], reason: str) -> None:
    breakdown[reason] = breakdown.get(reason, 0) + 1


def _to_epoch(numeric: object, raw: object) -> int | None:
    if not _is_missing(numeric):
        return int(numeric)
    # exports sometimes carry ISO timestamps instead of epoch seconds
    ts = pd.to_datetime(raw, errors="coerce", utc=True)
    if _is_missing(ts):
        return None
    return int(ts.timestamp())


def normalize_charge_records(
    records: Iterable[Mapping[str, object]],
) -> Tuple[List[Transaction], Dict[str, int]]:
    """
    Convert raw charge records (API pages or CSV rows) into Transaction objects.
    Returns (transactions, rejection_breakdown). Input order is preserved.
    """
    df = pd.DataFrame.from_records(list(records))
    if df.empty:
        return [], {}
    for col in CHARGE_COLUMNS:
        if col not in df.columns:
            df[col] = None

    df["_created_raw"] = df["created"]
    df["_amount_raw"] = df["amount"]
    df["amount"] = pd.to_numeric(df["amount"], errors="coerce")
    df["created"] = pd.to_numeric(df["created"], errors="coerce")

    transactions: List[Transaction] = []
    rejection_breakdown: Dict[str, int] = {}

    for _, row in df.iterrows():
        charge_id = row.get("id")
        if _is_missing(charge_id):
            _bump(rejection_breakdown, "MISSING_REQUIRED_FIELD")
            continue

        if _is_missing(row.get("_amount_raw")):
            _bump(rejection_breakdown, "MISSING_REQUIRED_FIELD")
            continue
        amt_val = row.get("amount")
        if _is_missing(amt_val) or float(amt_val) < 0 or float(amt_val) != int(amt_val):
            _bump(rejection_breakdown, "INVALID_AMOUNT")
            continue

        currency = row.get("currency")
        if _is_missing(currency):
            _bump(rejection_breakdown, "MISSING_REQUIRED_FIELD")
            continue
        currency = str(currency).strip().upper()
        if len(currency) != 3 or not currency.isalpha():
            _bump(rejection_breakdown, "INVALID_CURRENCY")
            continue

        if _is_missing(row.get("_created_raw")):
            _bump(rejection_breakdown, "MISSING_REQUIRED_FIELD")
            continue
        created = _to_epoch(row.get("created"), row.get("_created_raw"))
        if created is None:
            _bump(rejection_breakdown, "INVALID_TS")
            continue

        status = row.get("status")
        if _is_missing(status):
            _bump(rejection_breakdown, "MISSING_REQUIRED_FIELD")
            continue

        sub_id = row.get("subscription_id")
        transactions.append(
            Transaction(
                id=str(charge_id).strip(),
                amount=int(amt_val),
                currency=currency,
                created=created,
                status=str(status).strip().lower(),
                refunded=_parse_boolish(row.get("refunded")),
                subscription_id=None if _is_missing(sub_id) else str(sub_id).strip(),
            )
        )

    if rejection_breakdown:
        logger.warning("Rejected %d charge records: %s", sum(rejection_breakdown.values()), rejection_breakdown)
    return transactions, rejection_breakdown


def _validate_records(
    model: Type[M],
    records: Iterable[Mapping[str, object]],
    kind: str,
) -> Tuple[List[M], Dict[str, int]]:
    out: List[M] = []
    rejection_breakdown: Dict[str, int] = {}
    for rec in records:
        try:
            out.append(model.model_validate(rec))
        except ValidationError:
            _bump(rejection_breakdown, "INVALID_RECORD")
    if rejection_breakdown:
        logger.warning("Rejected %d %s records", rejection_breakdown["INVALID_RECORD"], kind)
    return out, rejection_breakdown


def normalize_subscription_records(
    records: Iterable[Mapping[str, object]],
) -> Tuple[List[Subscription], Dict[str, int]]:
    return _validate_records(Subscription, records, "subscription")


def normalize_payout_records(
    records: Iterable[Mapping[str, object]],
) -> Tuple[List[Payout], Dict[str, int]]:
    return _validate_records(Payout, records, "payout")
