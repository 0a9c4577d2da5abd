"""
Shared configuration for the DoNa entitlement core.
"""

from __future__ import annotations

import json
import logging
import os
from datetime import datetime, timezone

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("dona")


def _get_bool(env_name: str, default: bool) -> bool:
    value = os.environ.get(env_name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _get_int(env_name: str, default: int) -> int:
    value = os.environ.get(env_name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _get_json(env_name: str, default):
    value = os.environ.get(env_name)
    if value is None or not value.strip():
        return default
    try:
        return json.loads(value)
    except ValueError:
        logger.warning(f"{env_name} is not valid JSON; ignoring")
        return default


def _get_datetime(env_name: str):
    value = os.environ.get(env_name, "").strip()
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return value
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


# Database settings
DB_BACKEND = os.environ.get("DB_BACKEND", "postgres").strip().lower()
SQLITE_PATH = os.environ.get("SQLITE_PATH", "/data/dona.db")
DATABASE_URL = os.environ.get("DATABASE_URL")

# Database initialization controls
AUTO_MIGRATE_ON_STARTUP = _get_bool("AUTO_MIGRATE_ON_STARTUP", True)

# Daily gates are anchored to a fixed offset (KST), never UTC or server local time
REFERENCE_UTC_OFFSET_HOURS = _get_int("DONA_REFERENCE_UTC_OFFSET_HOURS", 9)

# Per-tier limit overrides: {"BASIC": {"stored_collage": 20}, "PREMIUM": {"stored_collage": null}}
TIER_LIMIT_OVERRIDES = _get_json("DONA_TIER_LIMITS", {})

# Milestones
COURSE_MILESTONE_STEP = _get_int("DONA_COURSE_MILESTONE_STEP", 5)
COURSE_MILESTONE_REWARD = _get_int("DONA_COURSE_MILESTONE_REWARD", 1)
MEMORY_MILESTONE_STEP = _get_int("DONA_MEMORY_MILESTONE_STEP", 10)
MEMORY_MILESTONE_REWARD = _get_int("DONA_MEMORY_MILESTONE_REWARD", 3)
MEMORY_MILESTONE_MAX_INDEX = _get_int("DONA_MEMORY_MILESTONE_MAX_INDEX", 1)

# Promotional tier for early sign-ups (disabled unless all three are set)
PROMO_TIER = os.environ.get("DONA_PROMO_TIER", "").strip().upper()
PROMO_SIGNUP_CUTOFF = _get_datetime("DONA_PROMO_SIGNUP_CUTOFF")
PROMO_END = _get_datetime("DONA_PROMO_END")

# Request/input limits
MAX_PAYLOAD_BYTES = _get_int("DONA_MAX_PAYLOAD_BYTES", 20000)
MAX_SPEND_AMOUNT = _get_int("DONA_MAX_SPEND_AMOUNT", 1000)
MAX_SHORT_TEXT_LENGTH = _get_int("DONA_MAX_SHORT_TEXT_LENGTH", 200)
MAX_RESULT_LIMIT = _get_int("DONA_MAX_RESULT_LIMIT", 100)


def promo_enabled() -> bool:
    return bool(PROMO_TIER) and isinstance(PROMO_SIGNUP_CUTOFF, datetime) and isinstance(PROMO_END, datetime)


def _tier_override_errors(overrides) -> list[str]:
    from dona.services.tier_policy import ResourceKind, Tier

    if not isinstance(overrides, dict):
        return ["DONA_TIER_LIMITS must be a JSON object"]
    errors = []
    tiers = {tier.value for tier in Tier}
    kinds = {kind.value for kind in ResourceKind}
    for tier_name, limits in overrides.items():
        if str(tier_name).upper() not in tiers:
            errors.append(f"DONA_TIER_LIMITS names unknown tier '{tier_name}'")
            continue
        if not isinstance(limits, dict):
            errors.append(f"DONA_TIER_LIMITS['{tier_name}'] must be an object")
            continue
        for kind_name, value in limits.items():
            if kind_name not in kinds:
                errors.append(f"DONA_TIER_LIMITS names unknown resource kind '{kind_name}'")
            elif value is not None and (isinstance(value, bool) or not isinstance(value, int) or value < 0):
                errors.append(f"DONA_TIER_LIMITS['{tier_name}']['{kind_name}'] must be a non-negative int or null")
    return errors


def validate_and_prepare_config() -> None:
    """Validate configuration and apply derived settings at startup."""
    global DATABASE_URL

    errors = []
    if DB_BACKEND not in {"postgres", "sqlite"}:
        errors.append("DB_BACKEND must be 'postgres' or 'sqlite'")

    if not DATABASE_URL:
        if DB_BACKEND == "sqlite":
            if not SQLITE_PATH:
                errors.append("SQLITE_PATH environment variable is required for sqlite")
            else:
                DATABASE_URL = f"sqlite:///{SQLITE_PATH}"
        else:
            errors.append("DATABASE_URL environment variable is required")
    else:
        is_sqlite_url = DATABASE_URL.lower().startswith("sqlite")
        if DB_BACKEND == "sqlite" and not is_sqlite_url:
            errors.append("DATABASE_URL must be a sqlite URL when DB_BACKEND=sqlite")
        if DB_BACKEND == "postgres" and is_sqlite_url:
            errors.append("DATABASE_URL must be a postgres URL when DB_BACKEND=postgres")

    if not -12 <= REFERENCE_UTC_OFFSET_HOURS <= 14:
        errors.append("DONA_REFERENCE_UTC_OFFSET_HOURS must be between -12 and 14")

    errors.extend(_tier_override_errors(TIER_LIMIT_OVERRIDES))

    if COURSE_MILESTONE_STEP < 1:
        errors.append("DONA_COURSE_MILESTONE_STEP must be >= 1")
    if MEMORY_MILESTONE_STEP < 1:
        errors.append("DONA_MEMORY_MILESTONE_STEP must be >= 1")
    if COURSE_MILESTONE_REWARD < 0 or MEMORY_MILESTONE_REWARD < 0:
        errors.append("milestone rewards must be >= 0")
    if MEMORY_MILESTONE_MAX_INDEX < 0:
        errors.append("DONA_MEMORY_MILESTONE_MAX_INDEX must be >= 0")

    promo_values = [PROMO_TIER, PROMO_SIGNUP_CUTOFF, PROMO_END]
    if any(promo_values) and not all(promo_values):
        errors.append("DONA_PROMO_TIER, DONA_PROMO_SIGNUP_CUTOFF and DONA_PROMO_END must be set together")
    for name, value in (("DONA_PROMO_SIGNUP_CUTOFF", PROMO_SIGNUP_CUTOFF), ("DONA_PROMO_END", PROMO_END)):
        if value is not None and not isinstance(value, datetime):
            errors.append(f"{name} must be an ISO-8601 timestamp")
    if PROMO_TIER:
        from dona.services.tier_policy import Tier

        if PROMO_TIER not in {tier.value for tier in Tier}:
            errors.append(f"DONA_PROMO_TIER '{PROMO_TIER}' is not a known tier")

    if MAX_SPEND_AMOUNT < 1:
        errors.append("DONA_MAX_SPEND_AMOUNT must be >= 1")

    if errors:
        raise RuntimeError("Configuration invalid: " + "; ".join(errors))
