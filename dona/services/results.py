"""
Typed outcomes returned by the entitlement services.

Denials are ordinary values here; every result carries the numbers a
caller needs to render "3 of 3 used" without a second query.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Optional


STORE_STORED = "stored"
STORE_CAPACITY_EXCEEDED = "capacity_exceeded"

DAILY_ALLOWED = "allowed"
DAILY_ALREADY_USED = "already_used_today"
DAILY_NOT_ENTITLED = "not_entitled"


@dataclass(frozen=True)
class MilestoneGrant:
    milestone_type: str
    milestone_index: int
    reward_amount: int
    granted: bool  # False: the index was already rewarded (idempotent replay)
    balance_after: Optional[int] = None

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class StoreResult:
    status: str
    resource_kind: str
    count: int
    limit: Optional[int]  # None: unbounded
    record_id: Optional[int] = None
    reward: Optional[MilestoneGrant] = None

    @property
    def allowed(self) -> bool:
        return self.status == STORE_STORED

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class SpendResult:
    success: bool
    remaining: int
    amount: int

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class CreditResult:
    balance: int
    applied: int
    requested: int

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class DailyResult:
    status: str
    feature: str
    day: str
    used_today: int
    limit: Optional[int]

    @property
    def allowed(self) -> bool:
        return self.status == DAILY_ALLOWED

    @property
    def already_used_today(self) -> bool:
        return self.status == DAILY_ALREADY_USED

    def to_dict(self) -> dict:
        payload = asdict(self)
        payload["allowed"] = self.allowed
        payload["already_used_today"] = self.already_used_today
        return payload


@dataclass(frozen=True)
class CompletionResult:
    milestone_type: str
    count: int
    replayed: bool  # the subject was already recorded; count unchanged
    record_id: Optional[int] = None
    reward: Optional[MilestoneGrant] = None

    def to_dict(self) -> dict:
        return asdict(self)


__all__ = [
    "STORE_STORED",
    "STORE_CAPACITY_EXCEEDED",
    "DAILY_ALLOWED",
    "DAILY_ALREADY_USED",
    "DAILY_NOT_ENTITLED",
    "MilestoneGrant",
    "StoreResult",
    "SpendResult",
    "CreditResult",
    "DailyResult",
    "CompletionResult",
]
