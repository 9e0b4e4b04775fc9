"""
DEXSCREENER API CLIENT

Source of freshly created pairs (FREE, no API key required).

Endpoints used:
- /latest/dex/search?q=<query>         -> pairs matching a keyword
- /token-boosts/latest/v1              -> latest boosted tokens (all chains)
- /latest/dex/tokens/<addr1,addr2,...> -> pairs for up to 30 tokens

Never poll aggressively - a minimum interval is enforced between requests.
Any transport, HTTP or payload problem raises FetchError so the poll cycle
can abort and retry on its next tick.
"""

import asyncio
import logging
from datetime import datetime
from typing import Dict, List, Optional

import aiohttp

from .models import TokenPair
from .normalizer import PairNormalizer

logger = logging.getLogger(__name__)

# DexScreener caps /tokens/ lookups at 30 addresses per call
TOKENS_PER_LOOKUP = 30


class FetchError(Exception):
    """Upstream data could not be fetched or parsed."""


class DexScreenerAPI:
    """
    DexScreener API client.

    Rate limits: ~300 requests/minute (self-imposed to be respectful)
    """

    BASE_URL = "https://api.dexscreener.com"

    def __init__(self, config: Dict = None, normalizer: PairNormalizer = None):
        """
        Initialize DexScreener API client.

        Args:
            config: Optional config dict (timeout_seconds, rate_limit_per_minute,
                    min_request_interval_seconds)
            normalizer: Pair normalizer (default PairNormalizer())
        """
        self.config = config or {}
        self.normalizer = normalizer or PairNormalizer()

        self.timeout_seconds = self.config.get('timeout_seconds', 30)
        self.rate_limit_per_minute = self.config.get('rate_limit_per_minute', 300)
        self.min_request_interval = self.config.get('min_request_interval_seconds', 0.2)

        self.session: Optional[aiohttp.ClientSession] = None
        self.last_request_time: Optional[datetime] = None
        self.request_count = 0

    async def _ensure_session(self):
        """Ensure aiohttp session exists."""
        if self.session is None or self.session.closed:
            self.session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout_seconds),
                headers={'Accept': 'application/json'},
            )

    async def close(self):
        """Close aiohttp session."""
        if self.session:
            await self.session.close()
            self.session = None

    async def _request(self, path: str, params: Dict = None):
        """
        Make a rate-limited GET request and return the decoded JSON.

        Raises:
            FetchError: on timeout, connection error, non-200 status or bad JSON
        """
        await self._ensure_session()

        if self.last_request_time:
            elapsed = (datetime.now() - self.last_request_time).total_seconds()
            if elapsed < self.min_request_interval:
                await asyncio.sleep(self.min_request_interval - elapsed)

        url = f"{self.BASE_URL}{path}"
        try:
            async with self.session.get(url, params=params) as response:
                self.last_request_time = datetime.now()
                self.request_count += 1

                if response.status == 429:
                    raise FetchError(f"DexScreener rate limited (HTTP 429): {path}")
                if response.status != 200:
                    raise FetchError(f"DexScreener HTTP {response.status}: {path}")

                return await response.json(content_type=None)

        except asyncio.TimeoutError as e:
            raise FetchError(f"DexScreener timeout: {path}") from e
        except aiohttp.ClientError as e:
            raise FetchError(f"DexScreener request error: {e}") from e
        except ValueError as e:
            raise FetchError(f"DexScreener returned invalid JSON: {e}") from e

    def _chain_pairs(self, data, chain: str) -> List[Dict]:
        """Extract the pairs list from a response and keep only `chain`."""
        if not isinstance(data, dict):
            raise FetchError(f"Unexpected DexScreener payload: {type(data).__name__}")

        pairs = data.get('pairs')
        if not pairs:
            logger.warning("No pairs found in DexScreener response")
            return []

        return [
            p for p in pairs
            if isinstance(p, dict) and (p.get('chainId') or '').lower() == chain
        ]

    async def fetch_search_pairs(self, chain: str = "solana", query: str = None) -> List[TokenPair]:
        """
        Fetch pairs matching a search query, restricted to one chain.

        Args:
            chain: Chain id (solana, base, ethereum, ...)
            query: Search term (defaults to the chain name)

        Returns:
            Normalized pairs in API order
        """
        chain = self.normalizer.normalize_chain(chain)
        data = await self._request('/latest/dex/search', {'q': query or chain})
        raw_pairs = self._chain_pairs(data, chain)

        pairs = self.normalizer.normalize_many(raw_pairs)
        logger.info(f"📊 Found {len(pairs)} total {chain.capitalize()} pairs")
        return pairs

    async def fetch_boosted_pairs(self, chain: str = "solana") -> List[TokenPair]:
        """
        Fetch pairs of the latest boosted/promoted tokens on a chain.

        These are tokens being actively traded right now, which catches
        launches the keyword search misses.
        """
        chain = self.normalizer.normalize_chain(chain)
        boosts = await self._request('/token-boosts/latest/v1')

        if isinstance(boosts, dict):
            boosts = [boosts]
        if not isinstance(boosts, list):
            raise FetchError(f"Unexpected token-boosts payload: {type(boosts).__name__}")

        token_addresses = []
        for boost in boosts:
            if not isinstance(boost, dict):
                continue
            if (boost.get('chainId') or '').lower() != chain:
                continue
            address = boost.get('tokenAddress')
            if address and address not in token_addresses:
                token_addresses.append(address)

        if not token_addresses:
            logger.info(f"No boosted {chain} tokens right now")
            return []

        raw_pairs = []
        seen_pairs = set()
        for start in range(0, len(token_addresses), TOKENS_PER_LOOKUP):
            batch = token_addresses[start:start + TOKENS_PER_LOOKUP]
            data = await self._request(f"/latest/dex/tokens/{','.join(batch)}")
            for p in self._chain_pairs(data, chain):
                addr = p.get('pairAddress', '')
                if addr and addr not in seen_pairs:
                    seen_pairs.add(addr)
                    raw_pairs.append(p)

        pairs = self.normalizer.normalize_many(raw_pairs)
        logger.info(f"📊 Found {len(pairs)} boosted {chain.capitalize()} pairs ({len(token_addresses)} tokens)")
        return pairs

    async def fetch_new_pairs(self, chain: str = "solana", source: str = "search",
                              query: str = None) -> List[TokenPair]:
        """Fetch candidate pairs from the configured source."""
        if source == 'boosted':
            return await self.fetch_boosted_pairs(chain)
        if source == 'search':
            return await self.fetch_search_pairs(chain, query)
        raise ValueError(f"Unknown pair source: {source}")

    def get_rate_limit_info(self) -> Dict:
        """Get current rate limit status."""
        remaining = self.rate_limit_per_minute - self.request_count
        return {
            'remaining': max(0, remaining),
            'reset_time': None,
            'total_requests': self.request_count,
            'rate_limit': self.rate_limit_per_minute,
        }

    def get_stats(self) -> Dict:
        return {
            'request_count': self.request_count,
            'last_request': self.last_request_time.isoformat() if self.last_request_time else None,
            'source': self.__class__.__name__,
        }
