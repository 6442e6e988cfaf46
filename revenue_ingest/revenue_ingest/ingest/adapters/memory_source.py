from __future__ import annotations

from typing import Callable, Dict, Iterable, List, Mapping

from revenue_ingest.ingest.pipeline.errors import UpstreamError
from revenue_ingest.ingest.pipeline.source_port import Page, PaymentsSource, Record


class InMemoryPaymentsSource(PaymentsSource):
    """
    Development / test source.
    Lists newest-first and paginates with starting_after exactly like the upstream API.
    fail_on: method names that raise UpstreamError; failing_subscription_ids likewise
    for retrieve_subscription.
    """

    def __init__(
        self,
        *,
        charges: Iterable[Mapping] = (),
        subscriptions: Iterable[Mapping] = (),
        payouts: Iterable[Mapping] = (),
        account: Mapping | None = None,
        fail_on: Iterable[str] = (),
        failing_subscription_ids: Iterable[str] = (),
    ) -> None:
        self._charges: List[Record] = [dict(c) for c in charges]
        self._subscriptions: List[Record] = [dict(s) for s in subscriptions]
        self._payouts: List[Record] = [dict(p) for p in payouts]
        self._account: Record = dict(account or {"id": "acct_memory"})
        self._fail_on = set(fail_on)
        self._failing_subscription_ids = set(failing_subscription_ids)
        self.calls: Dict[str, int] = {}
        self.closed = False

    def _enter(self, method: str) -> None:
        self.calls[method] = self.calls.get(method, 0) + 1
        if method in self._fail_on:
            raise UpstreamError(f"{method} failed (injected)", status_code=500)

    @staticmethod
    def _page(
        rows: List[Record],
        keep: Callable[[Record], bool],
        starting_after: str | None,
        limit: int,
    ) -> Page:
        matched = sorted(
            (r for r in rows if keep(r)),
            key=lambda r: (-int(r.get("created") or 0), str(r.get("id"))),
        )
        start = 0
        if starting_after is not None:
            ids = [str(r.get("id")) for r in matched]
            if starting_after not in ids:
                raise UpstreamError(f"unknown cursor: {starting_after}", status_code=400)
            start = ids.index(starting_after) + 1
        chunk = matched[start:start + limit]
        return Page(data=[dict(r) for r in chunk], has_more=start + limit < len(matched))

    async def list_charges(
        self,
        *,
        created_gte: int,
        created_lte: int,
        starting_after: str | None = None,
        limit: int = 100,
    ) -> Page:
        self._enter("list_charges")
        return self._page(
            self._charges,
            lambda r: created_gte <= int(r.get("created") or 0) <= created_lte,
            starting_after,
            limit,
        )

    async def list_subscriptions(
        self,
        *,
        status: str | None = None,
        created_gte: int | None = None,
        created_lte: int | None = None,
        current_period_end_lte: int | None = None,
        starting_after: str | None = None,
        limit: int = 100,
    ) -> Page:
        self._enter("list_subscriptions")

        def keep(r: Record) -> bool:
            created = int(r.get("created") or 0)
            if status is not None and r.get("status") != status:
                return False
            if created_gte is not None and created < created_gte:
                return False
            if created_lte is not None and created > created_lte:
                return False
            if current_period_end_lte is not None and int(r.get("current_period_end") or 0) > current_period_end_lte:
                return False
            return True

        return self._page(self._subscriptions, keep, starting_after, limit)

    async def list_payouts(
        self,
        *,
        created_gte: int,
        created_lte: int,
        status: str | None = None,
        starting_after: str | None = None,
        limit: int = 100,
    ) -> Page:
        self._enter("list_payouts")
        return self._page(
            self._payouts,
            lambda r: created_gte <= int(r.get("created") or 0) <= created_lte
            and (status is None or r.get("status") == status),
            starting_after,
            limit,
        )

    async def retrieve_subscription(self, subscription_id: str) -> Record:
        self._enter("retrieve_subscription")
        if subscription_id in self._failing_subscription_ids:
            raise UpstreamError(f"subscription {subscription_id} unavailable", status_code=503)
        for s in self._subscriptions:
            if s.get("id") == subscription_id:
                return dict(s)
        raise UpstreamError(f"no such subscription: {subscription_id}", status_code=404)

    async def retrieve_account(self) -> Record:
        self._enter("retrieve_account")
        return dict(self._account)

    async def aclose(self) -> None:
        self.closed = True
