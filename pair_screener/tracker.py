"""
SENT-TOKEN TRACKER

Remembers which tokens were already alerted so each pair is reported once
per retention window.

Two interchangeable strategies:
- MemoryTracker: volatile, short retention (minutes), empty after restart.
  Safe because the freshness window is short too: a token that was alerted
  before a restart is usually too old to pass the filter again.
- FileTracker: persisted to JSON on every mark, long retention (a day).
  Upgrades the legacy file format (bare list of addresses) on load.

Expiry rule (both strategies):
  entry is live    while now - sent_at <= retention
  entry is evicted once  now - sent_at >  retention
A retention of None/0 disables expiry entirely.

Persistence errors are logged and never raised: the worst case is a
duplicate alert, not a crashed bot.
"""

import asyncio
import json
import logging
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional, Union

logger = logging.getLogger(__name__)

FILE_SCHEMA_VERSION = 2


class BaseTracker(ABC):
    """
    Shared in-memory bookkeeping for both tracker strategies.

    The mapping is guarded by a lock because the eviction loop runs as its own
    task and may interleave with has()/mark() from the poll cycle.
    """

    def __init__(self, retention_seconds: Optional[float] = None,
                 clock: Callable[[], float] = None):
        self.retention_seconds = retention_seconds or None
        self.clock = clock or time.time

        # {token_id: sent_at}, ordered by mark time (oldest first)
        self._entries: Dict[str, float] = {}
        self._lock = threading.Lock()

        self.stats = {
            'marks': 0,
            'evicted': 0,
        }

    def has(self, token_id: str, now: float = None) -> bool:
        """True if the token was alerted and the entry has not expired."""
        now = self.clock() if now is None else now
        with self._lock:
            sent_at = self._entries.get(token_id)
            if sent_at is None:
                return False
            return not self._is_expired(sent_at, now)

    def mark(self, token_id: str, now: float = None) -> None:
        """Record (or refresh) a token as alerted at `now`."""
        now = self.clock() if now is None else now
        with self._lock:
            # Re-insert so the store stays ordered by mark time
            self._entries.pop(token_id, None)
            self._entries[token_id] = now
            self.stats['marks'] += 1
            self._persist()

    def evict(self, now: float = None) -> int:
        """Remove expired entries. Returns how many were removed."""
        if self.retention_seconds is None:
            return 0

        now = self.clock() if now is None else now
        with self._lock:
            expired = [
                token_id for token_id, sent_at in self._entries.items()
                if self._is_expired(sent_at, now)
            ]
            for token_id in expired:
                del self._entries[token_id]

            if expired:
                self.stats['evicted'] += len(expired)
                self._persist()

        return len(expired)

    def count(self, now: float = None) -> int:
        """Number of live (unexpired) entries."""
        now = self.clock() if now is None else now
        with self._lock:
            return sum(
                1 for sent_at in self._entries.values()
                if not self._is_expired(sent_at, now)
            )

    def clear(self) -> None:
        """Forget every tracked token."""
        with self._lock:
            self._entries.clear()
            self._persist()
        logger.info("Cleared all sent tokens")

    def close(self) -> None:
        """Flush state before shutdown."""
        with self._lock:
            self._persist()

    async def run_eviction_loop(self, interval_seconds: float):
        """Evict expired entries every `interval_seconds` until cancelled."""
        logger.debug(f"[TRACKER] Eviction loop started (every {interval_seconds:g}s)")
        while True:
            await asyncio.sleep(interval_seconds)
            removed = self.evict()
            if removed:
                logger.info(f"🧹 Evicted {removed} expired token(s), {self.count()} still tracked")

    def get_stats(self) -> Dict:
        return {
            'strategy': self.__class__.__name__,
            'tracked': self.count(),
            'retention_seconds': self.retention_seconds,
            **self.stats,
        }

    def _is_expired(self, sent_at: float, now: float) -> bool:
        if self.retention_seconds is None:
            return False
        return now - sent_at > self.retention_seconds

    @abstractmethod
    def _persist(self) -> None:
        """Called with the lock held after every state change."""


class MemoryTracker(BaseTracker):
    """Volatile tracker. Nothing survives a restart."""

    def __init__(self, retention_seconds: Optional[float] = 600,
                 clock: Callable[[], float] = None):
        super().__init__(retention_seconds, clock)

    def _persist(self) -> None:
        pass


# ============================================================
# FILE FORMAT
# ============================================================

@dataclass
class LegacyPayload:
    """Old format: bare JSON list of token addresses, no timestamps."""
    token_ids: List[str] = field(default_factory=list)


@dataclass
class EntryPayload:
    """Current format: ordered entries with their send time."""
    entries: List[Dict] = field(default_factory=list)


def decode_payload(data) -> Optional[Union[LegacyPayload, EntryPayload]]:
    """
    Detect the file format from the shape of the decoded JSON.

    Accepted shapes:
        ["addr1", "addr2"]                                  -> LegacyPayload
        [{"id": "addr1", "sent_at": 1700000000.0}, ...]     -> EntryPayload
        {"version": 2, "tokens": [<either list above>]}     -> same as the list

    Returns None for anything else.
    """
    if isinstance(data, dict):
        tokens = data.get('tokens')
        return decode_payload(tokens) if isinstance(tokens, list) else None

    if not isinstance(data, list):
        return None

    if all(isinstance(item, str) for item in data):
        return LegacyPayload(token_ids=list(data))

    if all(isinstance(item, dict) and isinstance(item.get('id'), str) for item in data):
        return EntryPayload(entries=list(data))

    return None


class FileTracker(BaseTracker):
    """
    Durable tracker persisted to a JSON file.

    File layout:
    {
      "version": 2,
      "last_updated": "2025-01-01 12:00:00",
      "total_count": 2,
      "tokens": [{"id": "...", "sent_at": 1700000000.0}, ...]
    }
    """

    def __init__(self, file_path: Union[str, Path] = 'sent-tokens.json',
                 retention_seconds: Optional[float] = 86400,
                 clock: Callable[[], float] = None):
        super().__init__(retention_seconds, clock)
        self.file_path = Path(file_path)
        self.save_errors = 0
        self._load_from_file()

    def _load_from_file(self) -> None:
        """Load sent tokens from the persistence file."""
        if not self.file_path.exists():
            logger.info("No previous token history found, starting fresh")
            return

        try:
            with open(self.file_path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.error(f"Error loading sent tokens from {self.file_path}: {e}")
            return

        payload = decode_payload(data)
        now = self.clock()

        if isinstance(payload, LegacyPayload):
            with self._lock:
                for token_id in payload.token_ids:
                    self._entries[token_id] = now
                logger.warning(
                    f"Upgrading legacy token history ({len(payload.token_ids)} tokens) to v{FILE_SCHEMA_VERSION} format"
                )
                self._persist()
        elif isinstance(payload, EntryPayload):
            with self._lock:
                for entry in payload.entries:
                    self._entries.pop(entry['id'], None)
                    self._entries[entry['id']] = self._parse_sent_at(entry.get('sent_at'), now)
        else:
            logger.error(f"Unrecognized token history format in {self.file_path}, starting fresh")
            return

        logger.info(f"Loaded {len(self._entries)} previously sent tokens")

    def _persist(self) -> None:
        """Save sent tokens to the persistence file."""
        data = {
            'version': FILE_SCHEMA_VERSION,
            'last_updated': time.strftime('%Y-%m-%d %H:%M:%S'),
            'total_count': len(self._entries),
            'tokens': [
                {'id': token_id, 'sent_at': sent_at}
                for token_id, sent_at in self._entries.items()
            ],
        }

        try:
            self.file_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.file_path, 'w', encoding='utf-8') as f:
                json.dump(data, f, indent=2)
        except (OSError, TypeError, ValueError) as e:
            self.save_errors += 1
            logger.error(f"Error saving sent tokens to {self.file_path}: {e}")

    def get_stats(self) -> Dict:
        stats = super().get_stats()
        stats['file_path'] = str(self.file_path)
        stats['save_errors'] = self.save_errors
        return stats

    @staticmethod
    def _parse_sent_at(value, default: float) -> float:
        try:
            return float(value) if value is not None else default
        except (ValueError, TypeError):
            return default
