from typing import Dict, Optional

# Merchant plan tiers, as written by the subscription billing bridge.
TRIAL = "trial"
BASIC_TIER = "basic_tier"
PRO_TIER = "pro_tier"
PAST_DUE = "past_due"
CANCELED = "canceled"

PLAN_TIERS = (TRIAL, BASIC_TIER, PRO_TIER, PAST_DUE, CANCELED)

# Monthly confirmed GMV cap per tier, in USD cents. None means uncapped.
# Tiers missing from this table get the default cap.
PLAN_LIMITS: Dict[str, Optional[int]] = {
    TRIAL: 1_000_000,
    BASIC_TIER: 1_000_000,
    PRO_TIER: None,
}

BLOCKED_TIERS = (PAST_DUE, CANCELED)

DEFAULT_GMV_LIMIT_CENTS = 1_000_000  # $10,000
DEFAULT_TRIAL_DAYS = 30


def get_gmv_limit_cents(plan_tier: str, override: Optional[int] = None) -> Optional[int]:
    """Monthly GMV cap (cents) for a tier; ``override`` replaces the default cap for capped tiers."""
    if plan_tier not in PLAN_LIMITS:
        return override if override is not None else DEFAULT_GMV_LIMIT_CENTS
    limit = PLAN_LIMITS[plan_tier]
    if limit is None:
        return None
    return override if override is not None else limit
