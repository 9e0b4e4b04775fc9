"""
FRESHNESS & LIQUIDITY FILTER

Decides which discovered pairs are "new enough to report".

Stages (in order, first failing stage wins):
1. MISSING_CREATED_AT  -> no (finite) creation timestamp, age unknown
2. FUTURE_CREATED_AT   -> created after `now` (clock skew / bad data)
3. TOO_OLD             -> age > max_age
4. LOW_LIQUIDITY       -> liquidity (missing or NaN = $0) < min_liquidity
5. Sort newest first (stable, ties keep input order)
6. OVER_LIMIT          -> beyond max_results after sorting

Invariant: sum(rejected.values()) + len(accepted) == len(input)
"""

import logging
import math
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from .models import TokenPair

logger = logging.getLogger(__name__)

MISSING_CREATED_AT = 'missing_created_at'
FUTURE_CREATED_AT = 'future_created_at'
TOO_OLD = 'too_old'
LOW_LIQUIDITY = 'low_liquidity'
OVER_LIMIT = 'over_limit'

REJECTION_CATEGORIES = (
    MISSING_CREATED_AT,
    FUTURE_CREATED_AT,
    TOO_OLD,
    LOW_LIQUIDITY,
    OVER_LIMIT,
)


@dataclass
class FilterResult:
    accepted: List[TokenPair] = field(default_factory=list)
    rejected: Dict[str, int] = field(
        default_factory=lambda: {category: 0 for category in REJECTION_CATEGORIES}
    )

    @property
    def total(self) -> int:
        return len(self.accepted) + sum(self.rejected.values())


def classify_pair(pair: TokenPair, now: float, max_age: float,
                  min_liquidity: float) -> Optional[str]:
    """Return the rejection category for a pair, or None if it passes."""
    if pair.created_at is None or not math.isfinite(pair.created_at):
        return MISSING_CREATED_AT
    if pair.created_at > now:
        return FUTURE_CREATED_AT
    if now - pair.created_at > max_age:
        return TOO_OLD
    if pair.liquidity < min_liquidity:
        return LOW_LIQUIDITY
    return None


def filter_pairs(pairs: List[TokenPair], now: float, max_age: float,
                 min_liquidity: float, max_results: Optional[int] = None) -> FilterResult:
    """
    Pure freshness/liquidity filter.

    Args:
        pairs: Raw snapshot, in source order
        now: Reference instant (seconds)
        max_age: Freshness window (seconds, inclusive)
        min_liquidity: Liquidity floor in USD (inclusive)
        max_results: Keep only the N newest survivors (None or 0 = no cap)

    Returns:
        FilterResult with the ordered survivors and per-category reject counts
    """
    result = FilterResult()
    survivors = []

    for pair in pairs:
        reason = classify_pair(pair, now, max_age, min_liquidity)
        if reason is None:
            survivors.append(pair)
        else:
            result.rejected[reason] += 1

    # sorted() is stable, so equal timestamps keep their input order
    survivors = sorted(survivors, key=lambda p: p.created_at, reverse=True)

    if max_results and len(survivors) > max_results:
        result.rejected[OVER_LIMIT] += len(survivors) - max_results
        survivors = survivors[:max_results]

    result.accepted = survivors
    return result


class PairFilter:
    """
    Configured filter used by the poll cycle.

    Wraps filter_pairs() with logging and lifetime stats.
    """

    def __init__(self, max_age_seconds: float, min_liquidity_usd: float,
                 max_results: Optional[int] = None, debug: bool = False):
        self.max_age_seconds = max_age_seconds
        self.min_liquidity_usd = min_liquidity_usd
        self.max_results = max_results or None
        self.debug = debug

        self.stats = {
            'total_evaluated': 0,
            'passed': 0,
            **{category: 0 for category in REJECTION_CATEGORIES},
        }

    def apply(self, pairs: List[TokenPair], now: float) -> FilterResult:
        if self.debug:
            for pair in pairs:
                self._log_verdict(pair, now)

        result = filter_pairs(
            pairs,
            now=now,
            max_age=self.max_age_seconds,
            min_liquidity=self.min_liquidity_usd,
            max_results=self.max_results,
        )

        rejected = result.rejected
        fresh = len(pairs) - rejected[MISSING_CREATED_AT] - rejected[FUTURE_CREATED_AT] - rejected[TOO_OLD]
        logger.info(
            f"⏱️  Time filter: {fresh} pairs within last {self.max_age_seconds:g}s"
            f" (no timestamp: {rejected[MISSING_CREATED_AT]}, future: {rejected[FUTURE_CREATED_AT]},"
            f" too old: {rejected[TOO_OLD]})"
        )
        logger.info(
            f"💧 Liquidity filter: {rejected[LOW_LIQUIDITY]} below ${self.min_liquidity_usd:,.0f}"
        )
        if result.accepted:
            logger.info(
                f"📦 Returning {len(result.accepted)} pairs"
                f" (max batch: {self.max_results or 'unbounded'}, over limit: {rejected[OVER_LIMIT]})"
            )

        self.stats['total_evaluated'] += len(pairs)
        self.stats['passed'] += len(result.accepted)
        for category, count in rejected.items():
            self.stats[category] += count

        return result

    def _log_verdict(self, pair: TokenPair, now: float):
        reason = classify_pair(pair, now, self.max_age_seconds, self.min_liquidity_usd)
        age = pair.age_seconds(now)
        age_str = f"{age:.0f}s old" if age is not None else "age unknown"
        verdict = "✅ PASS" if reason is None else f"❌ {reason.upper()}"
        logger.debug(
            f"  Token {pair.symbol}: {age_str}, liq=${pair.liquidity:,.0f} - {verdict}"
        )

    def get_stats(self) -> Dict:
        return dict(self.stats)
