"""
PAIR NORMALIZER

Converts raw DexScreener pair payloads into TokenPair events.

DexScreener quirks handled here:
- pairCreatedAt is epoch MILLISECONDS (converted to seconds)
- liquidity / priceUsd may be missing or strings
- baseToken.address may be missing on broken pairs (pair address used instead)
"""

import logging
import math
from typing import Dict, List, Optional

from .models import TokenPair

logger = logging.getLogger(__name__)

# Anything above this is an epoch in milliseconds (1e12 ms ~ year 2001)
MS_TIMESTAMP_THRESHOLD = 1e12


class PairNormalizer:
    """
    Normalizes DexScreener pair data into TokenPair.

    Pairs without any usable identifier are dropped (returned as None).
    """

    CHAIN_MAP = {
        'sol': 'solana',
        'solana': 'solana',
        'eth': 'ethereum',
        'ether': 'ethereum',
        'ethereum': 'ethereum',
        'base': 'base',
        'bsc': 'bsc',
        'arb': 'arbitrum',
        'arbitrum': 'arbitrum',
        'polygon': 'polygon',
        'matic': 'polygon',
    }

    def normalize_dexscreener(self, raw_pair: Dict) -> Optional[TokenPair]:
        """Normalize a single DexScreener pair. Returns None if it has no id."""
        if not isinstance(raw_pair, dict):
            return None

        base_token = raw_pair.get('baseToken') or {}
        pair_address = raw_pair.get('pairAddress') or ''
        token_address = base_token.get('address') or ''

        pair_id = token_address or pair_address
        if not pair_id:
            logger.debug("Dropping pair without token or pair address")
            return None

        liquidity = raw_pair.get('liquidity')
        liquidity_usd = None
        if isinstance(liquidity, dict):
            liquidity_usd = self._safe_float(liquidity.get('usd'), default=None)

        return TokenPair(
            id=pair_id,
            created_at=self._to_seconds(raw_pair.get('pairCreatedAt')),
            liquidity_usd=liquidity_usd,
            name=base_token.get('name') or 'Unknown',
            symbol=base_token.get('symbol') or '???',
            chain=self.normalize_chain(raw_pair.get('chainId') or 'unknown'),
            pair_address=pair_address,
            dex_id=raw_pair.get('dexId') or '',
            price_usd=self._safe_float(raw_pair.get('priceUsd'), default=None),
            fdv=self._safe_float(raw_pair.get('fdv'), default=None),
            url=raw_pair.get('url') or '',
            raw=raw_pair,
        )

    def normalize_many(self, raw_pairs: List[Dict]) -> List[TokenPair]:
        """Normalize a list, preserving input order and skipping unusable pairs."""
        pairs = []
        for raw_pair in raw_pairs or []:
            pair = self.normalize_dexscreener(raw_pair)
            if pair is not None:
                pairs.append(pair)
        return pairs

    def normalize_chain(self, chain_id: str) -> str:
        """Normalize chain identifier."""
        return self.CHAIN_MAP.get(chain_id.lower(), chain_id.lower())

    def _to_seconds(self, value) -> Optional[float]:
        ts = self._safe_float(value, default=None)
        if ts is None or ts <= 0:
            return None
        if ts > MS_TIMESTAMP_THRESHOLD:
            ts = ts / 1000.0
        return ts

    def _safe_float(self, value, default=0.0) -> Optional[float]:
        """Safely convert to float. NaN and infinity count as unparseable."""
        try:
            result = float(value) if value is not None else default
        except (ValueError, TypeError):
            return default
        if result is not None and not math.isfinite(result):
            return default
        return result
