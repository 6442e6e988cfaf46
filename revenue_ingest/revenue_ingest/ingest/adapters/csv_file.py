from __future__ import annotations

import io
from typing import List

import pandas as pd

from revenue_ingest.ingest.pipeline.source_port import Record


REQUIRED_COLUMNS = {"id", "amount", "currency", "created", "status"}
OPTIONAL_COLUMNS = {"refunded", "subscription_id"}


def read_charges_csv(csv_bytes: bytes, *, max_rows: int = 2_000_000) -> pd.DataFrame:
    """
    Parse a charges export into a DataFrame.
    Keeps required + optional charge columns, drops everything else.
    """
    df = pd.read_csv(
        io.BytesIO(csv_bytes),
        dtype=str,  # parse everything as str first; normalize later
        keep_default_na=False,
    )
    missing = REQUIRED_COLUMNS - set(df.columns)
    if missing:
        raise ValueError(f"missing required columns: {sorted(missing)}")

    if len(df) > max_rows:
        raise ValueError(f"too many rows: {len(df)} > {max_rows}")

    keep = [c for c in df.columns if c in REQUIRED_COLUMNS | OPTIONAL_COLUMNS]
    return df[keep].copy()


def charge_records_from_csv(csv_bytes: bytes, *, max_rows: int = 2_000_000) -> List[Record]:
    """Raw charge records, ready for normalize_charge_records or InMemoryPaymentsSource."""
    df = read_charges_csv(csv_bytes, max_rows=max_rows)
    return df.to_dict(orient="records")
