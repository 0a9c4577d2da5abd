"""
Root endpoint with service metadata.
"""

from __future__ import annotations

from fastapi import APIRouter

import dona.config as config
from dona import __version__
from dona.services.tier_policy import TIER_LIMITS


router = APIRouter()


@router.get("/")
async def root():
    """Root endpoint with service info."""
    return {
        "service": "DoNa Entitlements",
        "version": __version__,
        "description": "Tiered entitlements and usage metering",
        "reference_utc_offset_hours": config.REFERENCE_UTC_OFFSET_HOURS,
        "tiers": {
            tier.value: {kind.value: limit for kind, limit in limits.items()}
            for tier, limits in TIER_LIMITS.items()
        },
        "endpoints": {
            "health": "/health",
            "usage": "/entitlements/usage",
            "store": "/entitlements/store/{kind}",
            "spend": "/entitlements/spend",
            "daily": "/entitlements/daily/{feature}",
            "completions": "/entitlements/completions/{milestone_type}",
            "rewards": "/entitlements/rewards",
            "audit": "/entitlements/audit",
        },
    }
