"""
Canonical audit event type strings.
"""

EVENT_USAGE_STORED = "usage.stored"
EVENT_BALANCE_SPENT = "balance.spent"
EVENT_BALANCE_CREDITED = "balance.credited"
EVENT_DAILY_CONSUMED = "daily.consumed"
EVENT_MILESTONE_REWARDED = "milestone.rewarded"

__all__ = [
    "EVENT_USAGE_STORED",
    "EVENT_BALANCE_SPENT",
    "EVENT_BALANCE_CREDITED",
    "EVENT_DAILY_CONSUMED",
    "EVENT_MILESTONE_REWARDED",
]
