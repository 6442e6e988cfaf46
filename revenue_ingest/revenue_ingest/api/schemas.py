from __future__ import annotations

from datetime import datetime
from typing import Dict, List

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel


CurrencyMap = Dict[str, float]


def _upper_code(v: str) -> str:
    code = str(v).strip().upper()
    if not code:
        raise ValueError("currency must not be empty")
    return code


class Transaction(BaseModel):
    """
    Settled charge as returned by the payments API.
    Amount is kept in minor units; conversion happens at aggregation time.
    """
    model_config = ConfigDict(extra="ignore", frozen=True)

    id: str
    amount: int = Field(..., ge=0, description="Minor units (cents, or whole yen for JPY)")
    currency: str
    created: int = Field(..., description="Epoch seconds")
    status: str
    refunded: bool = False
    subscription_id: str | None = None

    @field_validator("currency")
    @classmethod
    def currency_upper(cls, v: str) -> str:
        return _upper_code(v)

    @property
    def is_revenue(self) -> bool:
        return self.status == "succeeded" and not self.refunded


class Subscription(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)

    id: str
    currency: str
    interval: str
    interval_count: int = Field(1, ge=1)
    current_period_end: int
    status: str
    created: int = 0
    unit_amount: int = 0
    latest_invoice_amount_paid: int | None = None
    latest_invoice_created: int | None = None

    @field_validator("currency")
    @classmethod
    def currency_upper(cls, v: str) -> str:
        return _upper_code(v)

    @field_validator("interval")
    @classmethod
    def interval_lower(cls, v: str) -> str:
        return str(v).strip().lower()


class Payout(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)

    id: str
    amount: int
    currency: str
    created: int
    status: str

    @field_validator("currency")
    @classmethod
    def currency_upper(cls, v: str) -> str:
        return _upper_code(v)


class DateRange(BaseModel):
    model_config = ConfigDict(frozen=True)

    start_date: datetime
    end_date: datetime

    @model_validator(mode="after")
    def check_bounds(self) -> DateRange:
        if self.start_date.tzinfo is None or self.end_date.tzinfo is None:
            raise ValueError("start_date and end_date must be timezone-aware")
        if self.start_date > self.end_date:
            raise ValueError("start_date must be <= end_date")
        return self

    @property
    def start_ts(self) -> int:
        return int(self.start_date.timestamp())

    @property
    def end_ts(self) -> int:
        return int(self.end_date.timestamp())


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class DailyStat(_CamelModel):
    date: str = Field(..., description="YYYY-MM-DD in the aggregation timezone")
    order_count: int = Field(0, ge=0)
    revenue: CurrencyMap = Field(default_factory=dict)


class RevenueBreakdown(_CamelModel):
    one_time: CurrencyMap = Field(default_factory=dict)
    subscription: Dict[str, CurrencyMap] = Field(default_factory=dict)


class MerchantRevenue(_CamelModel):
    merchant_name: str = "Unknown Merchant"
    revenue: CurrencyMap = Field(default_factory=dict)
    daily_stats: List[DailyStat] = Field(default_factory=list)
    revenue_breakdown: RevenueBreakdown = Field(default_factory=RevenueBreakdown)


class Period(_CamelModel):
    start: str
    end: str


class CombinedRevenue(_CamelModel):
    merchants: List[MerchantRevenue]
    total_revenue: CurrencyMap
    total_breakdown: RevenueBreakdown
    daily_totals: List[DailyStat]
    period: Period
    display_currency: str | None = None
    converted_revenue: CurrencyMap | None = None
    converted_by_currency: Dict[str, CurrencyMap] | None = None


class MerchantAccount(BaseModel):
    """
    Credentials for one merchant account.
    The key is never echoed back or logged.
    """
    model_config = ConfigDict(extra="ignore", frozen=True)

    api_key: str = Field(..., min_length=1, repr=False)
    name: str | None = Field(None, description="Optional display name hint")


class RevenueRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    accounts: list[MerchantAccount]
    year: int | None = Field(None, ge=1970, le=9999)
    month: int | None = Field(None, ge=1, le=12)
    timezone: str | None = None
    display_currency: str | None = None
    time_slices: int | None = Field(None, ge=1)

    @field_validator("display_currency")
    @classmethod
    def display_upper(cls, v: str | None) -> str | None:
        return _upper_code(v) if v else None
