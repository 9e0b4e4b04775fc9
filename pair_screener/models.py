"""
PAIR MODEL

A discovered trading pair, reduced to what the alert pipeline needs.

Only three fields drive the pipeline:
- id            -> dedup key (token contract, falls back to pair address)
- created_at    -> freshness window (seconds, None = unknown)
- liquidity_usd -> liquidity floor (None = treated as $0)

Everything else is display metadata passed through to the notifier.
"""

import math
from dataclasses import dataclass, field
from typing import Dict, Optional


@dataclass
class TokenPair:
    """Normalized pair event consumed by the filter, tracker and notifier."""

    id: str
    created_at: Optional[float] = None
    liquidity_usd: Optional[float] = None

    # Display metadata
    name: str = "Unknown"
    symbol: str = "???"
    chain: str = "solana"
    pair_address: str = ""
    dex_id: str = ""
    price_usd: Optional[float] = None
    fdv: Optional[float] = None
    url: str = ""
    raw: Dict = field(default_factory=dict, repr=False, compare=False)

    def age_seconds(self, now: float) -> Optional[float]:
        """Age relative to `now`, or None when the creation time is unknown."""
        if self.created_at is None:
            return None
        return now - self.created_at

    @property
    def liquidity(self) -> float:
        if self.liquidity_usd is None or not math.isfinite(self.liquidity_usd):
            return 0.0
        return self.liquidity_usd

    def short_id(self) -> str:
        return f"{self.id[:10]}..." if len(self.id) > 10 else self.id
