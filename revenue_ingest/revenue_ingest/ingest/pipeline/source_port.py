from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List


Record = Dict[str, Any]


@dataclass(frozen=True)
class Page:
    data: List[Record] = field(default_factory=list)
    has_more: bool = False


class PaymentsSource(ABC):
    """
    Read-only view of one merchant's payments account.
    List calls are cursor-paginated: pass the last record's id as starting_after.
    Records are flat dicts using the Transaction / Subscription / Payout field names.
    """

    @abstractmethod
    async def list_charges(
        self,
        *,
        created_gte: int,
        created_lte: int,
        starting_after: str | None = None,
        limit: int = 100,
    ) -> Page:
        """Charges created in [created_gte, created_lte]"""

    @abstractmethod
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
        """Subscriptions matching every filter that is not None"""

    @abstractmethod
    async def list_payouts(
        self,
        *,
        created_gte: int,
        created_lte: int,
        status: str | None = None,
        starting_after: str | None = None,
        limit: int = 100,
    ) -> Page:
        """Payouts created in [created_gte, created_lte]"""

    @abstractmethod
    async def retrieve_subscription(self, subscription_id: str) -> Record:
        """Single subscription record; raises UpstreamError when missing"""

    @abstractmethod
    async def retrieve_account(self) -> Record:
        """Account identity: id plus optional business_profile / settings"""

    async def aclose(self) -> None:
        return None
