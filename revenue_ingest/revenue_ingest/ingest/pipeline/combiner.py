from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Dict, List, Mapping, Sequence, TypeVar
from zoneinfo import ZoneInfo

from revenue_ingest.api.schemas import (
    CombinedRevenue,
    DailyStat,
    DateRange,
    MerchantAccount,
    MerchantRevenue,
    Period,
    RevenueBreakdown,
    Transaction,
)
from revenue_ingest.config import PipelineConfig, load_config
from revenue_ingest.ingest.pipeline.aggregates import aggregate_daily, merge_daily_stats, revenue_from_daily
from revenue_ingest.ingest.pipeline.breakdown import (
    aggregate_breakdown,
    build_subscription_lookup,
    merge_breakdowns,
    zeroed_breakdown,
)
from revenue_ingest.ingest.pipeline.currency import convert_revenue, convert_total_revenue
from revenue_ingest.ingest.pipeline.dates import resolve_timezone
from revenue_ingest.ingest.pipeline.errors import NoMerchantAccountsError
from revenue_ingest.ingest.pipeline.fetcher import fetch_charges
from revenue_ingest.ingest.pipeline.source_port import PaymentsSource, Record

logger = logging.getLogger(__name__)

UNKNOWN_MERCHANT = "Unknown Merchant"

SourceFactory = Callable[[MerchantAccount], PaymentsSource]
RatesProvider = Callable[[str], Awaitable[Mapping[str, float]]]

T = TypeVar("T")


def merchant_name_from_account(account: Record) -> str:
    profile = account.get("business_profile") or {}
    dashboard = (account.get("settings") or {}).get("dashboard") or {}
    for candidate in (profile.get("name"), dashboard.get("display_name"), account.get("email")):
        if candidate:
            return str(candidate)
    return UNKNOWN_MERCHANT


async def _or_default(label: str, merchant: str, coro: Awaitable[T], default: T) -> T:
    try:
        return await coro
    except Exception:
        logger.warning("%s failed for %s; using empty default", label, merchant, exc_info=True)
        return default


class RevenueCombiner:
    """
    Runs the per-merchant pipeline for every configured account and merges the results.

    Accounts are passed in explicitly; a source is built per account with source_factory
    and closed afterwards. Each merchant's name, revenue, daily stats and breakdown
    degrade to empty defaults independently.
    """

    def __init__(
        self,
        accounts: Sequence[MerchantAccount],
        source_factory: SourceFactory,
        config: PipelineConfig | None = None,
        *,
        rates_provider: RatesProvider | None = None,
    ) -> None:
        self.accounts = list(accounts)
        self.source_factory = source_factory
        self.config = config or load_config()
        self.rates_provider = rates_provider

    async def merchant_revenue(
        self,
        index: int,
        account: MerchantAccount,
        date_range: DateRange,
        zone: ZoneInfo,
        *,
        slices: int,
        gate: asyncio.Semaphore,
    ) -> MerchantRevenue:
        label = account.name or f"merchant[{index}]"
        try:
            source = self.source_factory(account)
        except Exception:
            logger.warning("Could not open payments source for %s", label, exc_info=True)
            return MerchantRevenue(merchant_name=UNKNOWN_MERCHANT, revenue_breakdown=zeroed_breakdown())

        try:
            charges = asyncio.ensure_future(
                fetch_charges(source, date_range, slices=slices, limit=self.config.page_size, gate=gate)
            )

            async def resolve_name() -> str:
                async with gate:
                    raw = await source.retrieve_account()
                name = merchant_name_from_account(raw)
                if name == UNKNOWN_MERCHANT and account.name:
                    return account.name
                return name

            async def daily() -> List[DailyStat]:
                return aggregate_daily(await charges, date_range, zone)

            async def revenue() -> Dict[str, float]:
                return revenue_from_daily(aggregate_daily(await charges, date_range, zone))

            async def breakdown() -> RevenueBreakdown:
                txns: List[Transaction] = await charges
                lookup = await build_subscription_lookup(source, txns, gate=gate)
                return aggregate_breakdown(txns, lookup)

            name, flat, stats, split = await asyncio.gather(
                _or_default("name resolution", label, resolve_name(), UNKNOWN_MERCHANT),
                _or_default("revenue", label, revenue(), {}),
                _or_default("daily stats", label, daily(), []),
                _or_default("breakdown", label, breakdown(), zeroed_breakdown()),
            )
        finally:
            await source.aclose()

        return MerchantRevenue(
            merchant_name=name,
            revenue=flat,
            daily_stats=stats,
            revenue_breakdown=split,
        )

    async def combine_all(
        self,
        date_range: DateRange,
        tz: str | ZoneInfo,
        *,
        display_currency: str | None = None,
        time_slices: int | None = None,
    ) -> CombinedRevenue:
        if not self.accounts:
            raise NoMerchantAccountsError()

        zone = resolve_timezone(tz)
        slices = time_slices or self.config.time_slices
        request_gate = asyncio.Semaphore(self.config.max_concurrent_requests)
        merchant_gate = asyncio.Semaphore(self.config.max_concurrent_merchants)

        async def one(index: int, account: MerchantAccount) -> MerchantRevenue:
            async with merchant_gate:
                return await self.merchant_revenue(
                    index, account, date_range, zone, slices=slices, gate=request_gate
                )

        logger.info("Aggregating revenue for %d merchants", len(self.accounts))
        merchants = await asyncio.gather(*(one(i, a) for i, a in enumerate(self.accounts)))

        daily_totals = merge_daily_stats([m.daily_stats for m in merchants])
        # totals come from the merged daily buckets, not from merchant flat totals
        total_revenue = revenue_from_daily(daily_totals)
        total_breakdown = merge_breakdowns([m.revenue_breakdown for m in merchants])

        result = CombinedRevenue(
            merchants=list(merchants),
            total_revenue=total_revenue,
            total_breakdown=total_breakdown,
            daily_totals=daily_totals,
            period=Period(
                start=date_range.start_date.astimezone(zone).date().isoformat(),
                end=date_range.end_date.astimezone(zone).date().isoformat(),
            ),
        )

        display = (display_currency or self.config.display_currency or "").upper()
        if display:
            rates = await self._rates(display)
            result.display_currency = display
            result.converted_revenue = convert_revenue(total_revenue, display, rates)
            if rates:
                result.converted_by_currency = convert_total_revenue(total_revenue, rates)
        return result

    async def _rates(self, base: str) -> Mapping[str, float]:
        if self.rates_provider is None:
            return {}
        try:
            return await self.rates_provider(base)
        except Exception:
            logger.warning("Exchange rates unavailable for %s; amounts left unconverted", base, exc_info=True)
            return {}
