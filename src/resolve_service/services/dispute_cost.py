"""Dispute filing cost formula."""

from __future__ import annotations

from dataclasses import dataclass

FREE_VALUE_THRESHOLD_CENTS = 10_000
FREE_MONTHLY_DISPUTES = 5
BASE_COST = 500
VALUE_MULTIPLIER = 100
MAX_COST = 5_000


@dataclass(frozen=True)
class DisputePricing:
    """Pricing knobs, overridable from config."""

    free_value_threshold_cents: int = FREE_VALUE_THRESHOLD_CENTS
    free_monthly_disputes: int = FREE_MONTHLY_DISPUTES
    base_cost: int = BASE_COST
    value_multiplier: int = VALUE_MULTIPLIER
    max_cost: int = MAX_COST


@dataclass(frozen=True)
class DisputeCost:
    cost: int
    is_free: bool


def calculate_dispute_cost(
    stated_value_cents: int | None,
    disputes_this_month: int,
    pricing: DisputePricing | None = None,
) -> DisputeCost:
    """
    Credits charged for filing a dispute.

    Free when the stated value is under $100 or the claimant has filed
    fewer than five disputes this calendar month. Otherwise a base fee of
    500 plus 100 credits per $1000 of stated value, capped at 5000.
    A missing stated value counts as zero.
    """
    if pricing is None:
        pricing = DisputePricing()

    value_cents = stated_value_cents or 0
    if (
        value_cents < pricing.free_value_threshold_cents
        or disputes_this_month < pricing.free_monthly_disputes
    ):
        return DisputeCost(cost=0, is_free=True)

    # integer arithmetic: floor(cents / 100 / 1000 * multiplier)
    value_fee = value_cents * pricing.value_multiplier // 100_000
    return DisputeCost(cost=min(pricing.max_cost, pricing.base_cost + value_fee), is_free=False)
