"""
POLL CYCLE SCHEDULER

Drives the alert pipeline on a fixed period:

  fetch -> filter -> dedup (tracker) -> dispatch (paced) -> mark sent

Rules:
- One cycle at a time. If a cycle overruns the period, the next one simply
  starts late; cycles never overlap.
- Dispatch is sequential and paced: N attempts -> exactly N-1 delays.
- A failed fetch aborts the cycle; the next tick is the retry.
- A failed dispatch is logged and the batch continues.
- An unexpected error is logged and the loop keeps running.

Two independently owned tasks are created by start():
- poll loop        (this scheduler)
- eviction loop    (tracker.run_eviction_loop, only if retention is enabled)

stop() cancels both deterministically: no new cycles, eviction cancelled,
at most the in-flight dispatch finishes, tracker flushed.
"""

import asyncio
import logging
import time
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Awaitable, Callable, Dict, List, Optional

from .filters import PairFilter, REJECTION_CATEGORIES
from .models import TokenPair
from .tracker import BaseTracker

logger = logging.getLogger(__name__)


class CycleState(Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    FILTERING = "filtering"
    DISPATCHING = "dispatching"
    STOPPED = "stopped"


@dataclass
class CycleSummary:
    """Per-cycle counters, emitted to the log and to summary listeners."""
    fetched: int = 0
    rejected: Dict[str, int] = field(
        default_factory=lambda: {category: 0 for category in REJECTION_CATEGORIES}
    )
    accepted: int = 0
    already_sent: int = 0
    sent: int = 0
    failed: int = 0
    skipped: int = 0
    fetch_failed: bool = False
    error: Optional[str] = None
    started_at: float = 0.0
    duration_seconds: float = 0.0

    @property
    def too_old(self) -> int:
        return self.rejected.get('too_old', 0)

    @property
    def low_liquidity(self) -> int:
        return self.rejected.get('low_liquidity', 0)

    def to_dict(self) -> Dict:
        return asdict(self)


FetchFn = Callable[[], Awaitable[List[TokenPair]]]
DispatchFn = Callable[[TokenPair, int], Awaitable[bool]]
SummaryListener = Callable[[CycleSummary], None]


class PairAlertScheduler:
    """
    Poll cycle controller.

    Usage:
        scheduler = PairAlertScheduler(fetch, dispatch, tracker, pair_filter,
                                       interval_seconds=20)
        await scheduler.run_forever()      # until stop() is called
    """

    def __init__(self, fetch: FetchFn, dispatch: DispatchFn, tracker: BaseTracker,
                 pair_filter: PairFilter, interval_seconds: float = 20,
                 send_delay_seconds: float = 1.5, cleanup_interval_seconds: float = 60,
                 clock: Callable[[], float] = None,
                 sleep: Callable[[float], Awaitable[None]] = None):
        self.fetch = fetch
        self.dispatch = dispatch
        self.tracker = tracker
        self.pair_filter = pair_filter

        self.interval_seconds = interval_seconds
        self.send_delay_seconds = send_delay_seconds
        self.cleanup_interval_seconds = cleanup_interval_seconds

        self.clock = clock or time.time
        self.sleep = sleep or asyncio.sleep

        self.state = CycleState.IDLE
        self._listeners: List[SummaryListener] = []
        self._stop_event: Optional[asyncio.Event] = None
        self._poll_task: Optional[asyncio.Task] = None
        self._eviction_task: Optional[asyncio.Task] = None
        self._closed = False
        self._stopped: Optional[asyncio.Event] = None

        # Stats
        self.cycles_run = 0
        self.total_sent = 0
        self.total_failed = 0
        self.last_summary: Optional[CycleSummary] = None

    # ------------------------------------------------------------------
    # Observability
    # ------------------------------------------------------------------

    def add_summary_listener(self, listener: SummaryListener):
        self._listeners.append(listener)

    def _emit(self, summary: CycleSummary):
        self.cycles_run += 1
        self.total_sent += summary.sent
        self.total_failed += summary.failed
        self.last_summary = summary

        if summary.fetch_failed:
            logger.warning(f"Cycle aborted: fetch failed ({summary.error})")
        else:
            rejected = ', '.join(f"{k}={v}" for k, v in summary.rejected.items() if v)
            logger.info(
                f"📊 Cycle complete: fetched={summary.fetched} accepted={summary.accepted}"
                f" already_sent={summary.already_sent} sent={summary.sent} failed={summary.failed}"
                + (f" skipped={summary.skipped}" if summary.skipped else "")
                + (f" | rejected: {rejected}" if rejected else "")
            )
            logger.info(f"Total tokens tracked: {self.tracker.count()}")

        for listener in self._listeners:
            try:
                listener(summary)
            except Exception as e:
                logger.error(f"Summary listener failed: {e}")

    # ------------------------------------------------------------------
    # One cycle
    # ------------------------------------------------------------------

    @property
    def stopping(self) -> bool:
        return self._stop_event is not None and self._stop_event.is_set()

    async def run_cycle(self) -> CycleSummary:
        """Run fetch -> filter -> dedup -> dispatch once and return its summary."""
        summary = CycleSummary(started_at=self.clock())
        started = time.monotonic()

        try:
            self.state = CycleState.FETCHING
            logger.info("🔍 Checking DexScreener...")
            try:
                pairs = await self.fetch()
            except Exception as e:
                logger.error(f"Error fetching pairs: {e}")
                summary.fetch_failed = True
                summary.error = str(e)
                return summary

            summary.fetched = len(pairs)

            self.state = CycleState.FILTERING
            now = self.clock()
            result = self.pair_filter.apply(pairs, now=now)
            summary.rejected = dict(result.rejected)
            summary.accepted = len(result.accepted)

            new_pairs = [p for p in result.accepted if not self.tracker.has(p.id, now=now)]
            summary.already_sent = len(result.accepted) - len(new_pairs)

            if result.accepted:
                logger.info(f"Already sent: {summary.already_sent}, New: {len(new_pairs)}")
            if not new_pairs:
                logger.info("No new tokens to report")
                return summary

            self.state = CycleState.DISPATCHING
            logger.info(f"✅ Sending {len(new_pairs)} token(s)")
            await self._dispatch_batch(new_pairs, summary)
            return summary

        except Exception as e:
            summary.error = str(e)
            raise

        finally:
            summary.duration_seconds = time.monotonic() - started
            if self.state != CycleState.STOPPED:
                self.state = CycleState.IDLE
            self._emit(summary)

    async def _dispatch_batch(self, pairs: List[TokenPair], summary: CycleSummary):
        for index, pair in enumerate(pairs):
            if self.stopping:
                summary.skipped = len(pairs) - index
                logger.info(f"Stop requested, skipping {summary.skipped} remaining token(s)")
                return

            if index > 0:
                await self.sleep(self.send_delay_seconds)
                # Stop may arrive during the pacing delay
                if self.stopping:
                    summary.skipped = len(pairs) - index
                    logger.info(f"Stop requested, skipping {summary.skipped} remaining token(s)")
                    return

            try:
                ok = await self.dispatch(pair, index)
            except Exception as e:
                logger.error(f"  ❌ Error sending token {index + 1}/{len(pairs)} ({pair.symbol}): {e}")
                ok = False

            if ok:
                self.tracker.mark(pair.id, self.clock())
                summary.sent += 1
            else:
                logger.warning(f"  ❌ Failed to send token {index + 1}/{len(pairs)} ({pair.symbol})")
                summary.failed += 1

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    async def _poll_loop(self):
        logger.info(f"[SCHEDULER] Poll task started (every {self.interval_seconds:g}s)")
        while not self.stopping:
            started = time.monotonic()
            try:
                await self.run_cycle()
            except Exception:
                logger.exception("Unexpected error in poll cycle")

            if self.stopping:
                break

            wait = max(0.0, self.interval_seconds - (time.monotonic() - started))
            logger.info(f"Next check in {wait:.0f} seconds.")
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=wait)
            except asyncio.TimeoutError:
                pass

    def start(self) -> List[asyncio.Task]:
        """Create the poll task and (if expiry is enabled) the eviction task."""
        if self._poll_task is not None and not self._poll_task.done():
            logger.warning("Scheduler is already running")
            return [t for t in (self._poll_task, self._eviction_task) if t]

        self._stop_event = asyncio.Event()
        self.state = CycleState.IDLE

        self._poll_task = asyncio.create_task(self._poll_loop(), name="pair-alerts-poll")
        tasks = [self._poll_task]

        if self.tracker.retention_seconds is not None:
            self._eviction_task = asyncio.create_task(
                self.tracker.run_eviction_loop(self.cleanup_interval_seconds),
                name="pair-alerts-eviction",
            )
            tasks.append(self._eviction_task)

        logger.info(f"[SCHEDULER] Started {len(tasks)} background task(s)")
        return tasks

    async def stop(self):
        """Stop scheduling, cancel eviction, let the in-flight dispatch finish, flush the tracker."""
        if self._closed:
            # A concurrent stop() is still running: wait for it, unless we are the poll task it waits on
            if self._stopped is not None and self._poll_task is not asyncio.current_task():
                await self._stopped.wait()
            return
        self._closed = True
        self._stopped = asyncio.Event()

        try:
            await self._shutdown()
        finally:
            self._stopped.set()

    async def _shutdown(self):
        logger.info("Stopping scheduler...")
        if self._stop_event is None:
            self._stop_event = asyncio.Event()
        self._stop_event.set()

        if self._eviction_task is not None:
            self._eviction_task.cancel()
            try:
                await self._eviction_task
            except asyncio.CancelledError:
                pass
            self._eviction_task = None

        if self._poll_task is not None and self._poll_task is not asyncio.current_task():
            try:
                await self._poll_task
            except asyncio.CancelledError:
                pass
            self._poll_task = None

        self.tracker.close()
        self.state = CycleState.STOPPED
        logger.info("✅ Scheduler stopped")

    async def run_forever(self):
        """Start and block until stop() is called."""
        tasks = self.start()
        try:
            await tasks[0]
        finally:
            await self.stop()

    def get_stats(self) -> Dict:
        return {
            'state': self.state.value,
            'cycles_run': self.cycles_run,
            'total_sent': self.total_sent,
            'total_failed': self.total_failed,
            'last_summary': self.last_summary.to_dict() if self.last_summary else None,
            'filter': self.pair_filter.get_stats(),
            'tracker': self.tracker.get_stats(),
        }
