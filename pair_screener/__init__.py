"""
NEW PAIR SCREENER MODULE

Polls DexScreener for freshly created pairs and alerts each one once.

Architecture:
  DexScreener (search / boosted)
          ↓
  PAIR NORMALIZER  -> TokenPair
          ↓
  FRESHNESS & LIQUIDITY FILTER  (age window, liquidity floor, batch cap)
          ↓
  SENT-TOKEN TRACKER  (memory or file, TTL eviction)
          ↓
  TELEGRAM DISPATCH  (sequential, paced)
"""

from .models import TokenPair
from .normalizer import PairNormalizer
from .filters import FilterResult, PairFilter, filter_pairs
from .tracker import BaseTracker, FileTracker, MemoryTracker
from .dex_screener import DexScreenerAPI, FetchError
from .scheduler import CycleState, CycleSummary, PairAlertScheduler

__all__ = [
    'TokenPair',
    'PairNormalizer',
    'FilterResult',
    'PairFilter',
    'filter_pairs',
    'BaseTracker',
    'FileTracker',
    'MemoryTracker',
    'DexScreenerAPI',
    'FetchError',
    'CycleState',
    'CycleSummary',
    'PairAlertScheduler',
]
