import os
from typing import Dict, Union

# Canonical balance unit for this deployment. Balances are plain integers in this unit;
# switching units requires convert_balance_units_migration.py, never a reinterpretation.
BALANCE_UNIT = "tokens"

# Token packages sold through checkout.
# price_cents is what the payment provider charges; tokens is what the ledger credits.
PLANS: Dict[str, Dict[str, Union[int, str]]] = {
    "micro": {
        "name": "Micro",
        "tokens": 200_000,
        "price_cents": 1000,
        "description": "200k tokens",
    },
    "tinker": {
        "name": "Tinker",
        "tokens": 500_000,
        "price_cents": 1500,
        "description": "500k tokens (Save 25%)",
    },
    "pro": {
        "name": "Pro",
        "tokens": 1_000_000,
        "price_cents": 2000,
        "description": "1M tokens (Save 50%)",
    },
}

# Tokens granted to an account created by its first login request (0 disables the bonus)
WELCOME_BONUS_TOKENS = int(os.getenv("WELCOME_BONUS_TOKENS", "0"))

# Compare-and-set attempts before a credit/debit gives up with LedgerConflict
LEDGER_MAX_RETRIES = int(os.getenv("LEDGER_MAX_RETRIES", "3"))

# Charged when the generation API does not report usage for a finished image
DEFAULT_GENERATION_COST = 100


def get_plan(plan_id: str) -> Dict[str, Union[int, str]]:
    """Return the plan definition or raise ValueError for an unknown plan id."""
    plan = PLANS.get((plan_id or "").strip().lower())
    if plan is None:
        raise ValueError(f"Invalid plan selected: {plan_id}")
    return plan


def get_plan_tokens(plan_id: str) -> int:
    return int(get_plan(plan_id)["tokens"])
