from __future__ import annotations

from enum import Enum


class Cadence(str, Enum):
    ONE_TIME = "oneTime"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    SEMIANNUAL = "semiannual"
    ANNUAL = "annual"
