from __future__ import annotations


class RevenueIngestError(Exception):
    pass


class UpstreamError(RevenueIngestError):
    """Remote payments / exchange-rate call failed."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class InvalidDateRangeError(RevenueIngestError, ValueError):
    pass


class NoMerchantAccountsError(RevenueIngestError):
    def __init__(self, message: str = "no merchant accounts configured") -> None:
        super().__init__(message)


class ConfigurationError(RevenueIngestError):
    """Server-side setting is unusable; not the caller's fault."""
