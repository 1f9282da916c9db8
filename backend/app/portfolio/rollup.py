from __future__ import annotations

from collections import defaultdict
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Mapping, Optional

from backend.app.domain.time import as_utc
from backend.app.domain.types import (
    CustodianAllocation,
    PortfolioRollup,
    PortfolioSummary,
    RewardEvent,
    StateBuckets,
    ValidatorWithContext,
)

from .buckets import DEFAULT_BUCKET_MAPPING, BucketMapping

# Rated network average, used as the dashboard benchmark line.
NETWORK_BENCHMARK_APY = 0.038

TRAILING_WINDOW_DAYS = 30
SECONDS_PER_DAY = 24 * 60 * 60


def _in_window(ts: datetime, start: datetime, end: datetime) -> bool:
    return as_utc(start) <= as_utc(ts) <= as_utc(end)


def calculate_trailing_yield(
    events: Iterable[RewardEvent],
    principal: int,
    window_start: datetime,
    window_end: datetime,
) -> float:
    """
    Annualized trailing yield.

    Formula:
      total_rewards = sum(event.amount for events in [window_start, window_end])
      yield_ratio   = total_rewards / principal
      apy           = yield_ratio * (365 / window_days)

    window_days is fractional (seconds / 86400). The reward sum is exact; the
    division is IEEE-754 double, which is display-grade precision.

    Returns 0.0 for zero principal, an empty or inverted window, or when no
    event falls inside the window. Never raises.
    """
    if principal <= 0:
        return 0.0

    window_seconds = (as_utc(window_end) - as_utc(window_start)).total_seconds()
    if window_seconds <= 0:
        return 0.0

    in_window = [e for e in events if _in_window(e.timestamp, window_start, window_end)]
    if not in_window:
        return 0.0

    total_rewards = sum(e.amount for e in in_window)
    window_days = window_seconds / SECONDS_PER_DAY
    yield_ratio = total_rewards / principal
    return yield_ratio * (365 / window_days)


def aggregate_by_lifecycle_state(
    validators: Iterable[ValidatorWithContext],
    mapping: BucketMapping = DEFAULT_BUCKET_MAPPING,
) -> StateBuckets:
    """Sum balances into lifecycle buckets; unmapped states are skipped."""
    sums: Dict[str, int] = defaultdict(int)
    for validator in validators:
        bucket = mapping.bucket_for(validator.stake_state)
        if bucket is None:
            continue
        sums[bucket] += validator.balance
    return StateBuckets(
        active=sums["active"],
        in_transit=sums["in_transit"],
        rewards=sums["rewards"],
        exiting=sums["exiting"],
    )


def rollup_by_custodian(
    validators: Iterable[ValidatorWithContext],
    reward_events: Iterable[RewardEvent] = (),
    *,
    now: datetime,
) -> List[CustodianAllocation]:
    """
    Group validators by custodian and compute value, share and 30d yield.

    Validators without a custodian id are left out of every group and of the
    portfolio total. Output is ordered by value desc, then custodian id asc.
    """
    names: Dict[str, str] = {}
    members: Dict[str, List[ValidatorWithContext]] = {}
    for validator in validators:
        if not validator.custodian_id:
            continue
        names.setdefault(validator.custodian_id, validator.custodian_name)
        members.setdefault(validator.custodian_id, []).append(validator)

    totals = {cid: sum(v.balance for v in group) for cid, group in members.items()}
    portfolio_total = sum(totals.values())

    events = list(reward_events)
    window_start = now - timedelta(days=TRAILING_WINDOW_DAYS)

    allocations: List[CustodianAllocation] = []
    for custodian_id, group in members.items():
        value = totals[custodian_id]
        validator_ids = {v.id for v in group}
        custodian_events = [e for e in events if e.validator_id in validator_ids]
        allocations.append(
            CustodianAllocation(
                custodian_id=custodian_id,
                custodian_name=names[custodian_id],
                value=value,
                percentage=value / portfolio_total if portfolio_total > 0 else 0.0,
                trailing_apy_30d=calculate_trailing_yield(custodian_events, value, window_start, now),
                validator_count=len(group),
            )
        )

    allocations.sort(key=lambda a: (-a.value, a.custodian_id))
    return allocations


def rollup_to_portfolio(custodian_allocations: Iterable[CustodianAllocation]) -> PortfolioRollup:
    """
    Portfolio totals from custodian allocations.

    Formula:
      trailing_apy_30d = sum(a.trailing_apy_30d * a.value / total_value)
    """
    allocations = list(custodian_allocations)
    total_value = sum(a.value for a in allocations)
    validator_count = sum(a.validator_count for a in allocations)

    weighted_apy = 0.0
    if total_value > 0:
        for allocation in allocations:
            weighted_apy += allocation.trailing_apy_30d * (allocation.value / total_value)

    return PortfolioRollup(
        total_value=total_value,
        trailing_apy_30d=weighted_apy,
        validator_count=validator_count,
    )


def build_portfolio_summary(
    validators: Iterable[ValidatorWithContext],
    reward_events: Iterable[RewardEvent],
    *,
    now: datetime,
    network_benchmark_apy: float = NETWORK_BENCHMARK_APY,
    mapping: BucketMapping = DEFAULT_BUCKET_MAPPING,
) -> PortfolioSummary:
    """
    Buckets -> custodian rollup -> portfolio rollup, plus the rewards bucket
    (rewards in [now-30d, now]) and the previous month yield over
    [now-60d, now-30d). `now` is the only clock read.
    """
    validator_list = list(validators)
    events = list(reward_events)

    thirty_days_ago = now - timedelta(days=TRAILING_WINDOW_DAYS)
    sixty_days_ago = now - timedelta(days=2 * TRAILING_WINDOW_DAYS)

    buckets = aggregate_by_lifecycle_state(validator_list, mapping)
    recent_rewards = sum(e.amount for e in events if _in_window(e.timestamp, thirty_days_ago, now))
    buckets = replace(buckets, rewards=recent_rewards)

    custodian_breakdown = rollup_by_custodian(validator_list, events, now=now)
    rollup = rollup_to_portfolio(custodian_breakdown)

    # previous window excludes its right edge, which belongs to the current one
    previous_events = [e for e in events if as_utc(e.timestamp) < as_utc(thirty_days_ago)]
    previous_month_apy = calculate_trailing_yield(
        previous_events,
        rollup.total_value,
        sixty_days_ago,
        thirty_days_ago,
    )

    return PortfolioSummary(
        total_value=rollup.total_value,
        trailing_apy_30d=rollup.trailing_apy_30d,
        previous_month_apy=previous_month_apy,
        network_benchmark_apy=network_benchmark_apy,
        validator_count=rollup.validator_count,
        state_buckets=buckets,
        custodian_breakdown=custodian_breakdown,
        as_of_timestamp=now,
    )


def _relative_change(value: int, prior: Optional[int]) -> Optional[float]:
    if not prior:
        return None
    return (value - prior) / prior


def annotate_custodian_changes(
    allocations: Iterable[CustodianAllocation],
    prior_7d: Mapping[str, int],
    prior_30d: Mapping[str, int],
) -> List[CustodianAllocation]:
    """Fill change_7d / change_30d from prior custodian values, when known."""
    return [
        replace(
            allocation,
            change_7d=_relative_change(allocation.value, prior_7d.get(allocation.custodian_id)),
            change_30d=_relative_change(allocation.value, prior_30d.get(allocation.custodian_id)),
        )
        for allocation in allocations
    ]
