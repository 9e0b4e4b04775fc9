import asyncio
import json
import os
import shutil
import tempfile
import unittest

from pair_screener.tracker import (
    EntryPayload,
    FileTracker,
    LegacyPayload,
    MemoryTracker,
    decode_payload,
)

T = 1_700_000_000.0


class FakeClock:
    def __init__(self, now=T):
        self.now = now

    def __call__(self):
        return self.now


class TestMemoryTracker(unittest.TestCase):

    def setUp(self):
        self.clock = FakeClock()
        self.tracker = MemoryTracker(retention_seconds=300, clock=self.clock)

    def test_mark_and_has(self):
        self.assertFalse(self.tracker.has("A"))
        self.tracker.mark("A")
        self.assertTrue(self.tracker.has("A"))
        self.assertEqual(self.tracker.count(), 1)

    def test_mark_is_idempotent(self):
        self.tracker.mark("A", T)
        count = self.tracker.count()
        self.tracker.mark("A", T)

        self.assertTrue(self.tracker.has("A"))
        self.assertEqual(self.tracker.count(), count)

    def test_eviction_boundary(self):
        self.tracker.mark("A", T)

        self.assertTrue(self.tracker.has("A", now=T + 299))
        self.assertEqual(self.tracker.evict(now=T + 299), 0)

        # Exactly at the retention boundary the entry is still live
        self.assertTrue(self.tracker.has("A", now=T + 300))
        self.assertEqual(self.tracker.evict(now=T + 300), 0)

        self.assertFalse(self.tracker.has("A", now=T + 301))
        self.assertEqual(self.tracker.evict(now=T + 301), 1)
        self.assertEqual(self.tracker.count(now=T + 301), 0)

    def test_expired_entry_not_counted_before_eviction(self):
        self.tracker.mark("A", T)
        self.tracker.mark("B", T + 200)

        self.assertEqual(self.tracker.count(now=T + 400), 1)

    def test_remark_refreshes_expiry(self):
        self.tracker.mark("A", T)
        self.tracker.mark("A", T + 250)

        self.assertTrue(self.tracker.has("A", now=T + 500))
        self.assertEqual(self.tracker.evict(now=T + 500), 0)

    def test_evict_returns_removed_count(self):
        for i in range(3):
            self.tracker.mark(f"old{i}", T)
        self.tracker.mark("fresh", T + 1000)

        self.assertEqual(self.tracker.evict(now=T + 1001), 3)
        self.assertEqual(self.tracker.get_stats()['evicted'], 3)

    def test_unbounded_retention_never_expires(self):
        tracker = MemoryTracker(retention_seconds=0, clock=self.clock)
        tracker.mark("A", T)

        self.assertIsNone(tracker.retention_seconds)
        self.assertTrue(tracker.has("A", now=T + 10 ** 9))
        self.assertEqual(tracker.evict(now=T + 10 ** 9), 0)

    def test_clear(self):
        self.tracker.mark("A")
        self.tracker.clear()
        self.assertFalse(self.tracker.has("A"))


class TestEvictionLoop(unittest.IsolatedAsyncioTestCase):

    async def test_loop_evicts_until_cancelled(self):
        clock = FakeClock()
        tracker = MemoryTracker(retention_seconds=10, clock=clock)
        tracker.mark("A", T)
        clock.now = T + 11

        task = asyncio.create_task(tracker.run_eviction_loop(0.01))
        await asyncio.sleep(0.05)
        task.cancel()
        with self.assertRaises(asyncio.CancelledError):
            await task

        self.assertEqual(tracker.get_stats()['evicted'], 1)


class TestDecodePayload(unittest.TestCase):

    def test_legacy_list(self):
        payload = decode_payload(["A", "B"])
        self.assertIsInstance(payload, LegacyPayload)
        self.assertEqual(payload.token_ids, ["A", "B"])

    def test_entry_list(self):
        payload = decode_payload([{"id": "A", "sent_at": T}])
        self.assertIsInstance(payload, EntryPayload)

    def test_versioned_document(self):
        payload = decode_payload({"version": 2, "tokens": [{"id": "A", "sent_at": T}]})
        self.assertIsInstance(payload, EntryPayload)
        self.assertEqual(payload.entries[0]["id"], "A")

    def test_unrecognized_shapes(self):
        for data in ({"foo": 1}, 42, "A", [1, 2], [{"sent_at": T}], None):
            self.assertIsNone(decode_payload(data))


class TestFileTracker(unittest.TestCase):

    def setUp(self):
        self.tmpdir = tempfile.mkdtemp()
        self.path = os.path.join(self.tmpdir, "sent-tokens.json")
        self.clock = FakeClock()

    def tearDown(self):
        shutil.rmtree(self.tmpdir, ignore_errors=True)

    def _read_file(self):
        with open(self.path) as f:
            return json.load(f)

    def test_starts_fresh_without_file(self):
        tracker = FileTracker(self.path, clock=self.clock)
        self.assertEqual(tracker.count(), 0)
        self.assertFalse(os.path.exists(self.path))

    def test_mark_persists_and_reloads(self):
        tracker = FileTracker(self.path, retention_seconds=86400, clock=self.clock)
        tracker.mark("A", T)
        tracker.mark("B", T + 5)

        data = self._read_file()
        self.assertEqual(data["version"], 2)
        self.assertEqual(data["total_count"], 2)
        self.assertEqual(data["tokens"], [{"id": "A", "sent_at": T}, {"id": "B", "sent_at": T + 5}])

        reloaded = FileTracker(self.path, retention_seconds=86400, clock=self.clock)
        self.assertTrue(reloaded.has("A"))
        self.assertTrue(reloaded.has("B"))
        self.assertFalse(reloaded.has("A", now=T + 86401))

    def test_legacy_file_is_upgraded(self):
        with open(self.path, "w") as f:
            json.dump(["A", "B"], f)

        tracker = FileTracker(self.path, clock=self.clock)

        self.assertTrue(tracker.has("A"))
        self.assertTrue(tracker.has("B"))

        data = self._read_file()
        self.assertEqual(data["version"], 2)
        self.assertEqual(data["tokens"], [{"id": "A", "sent_at": T}, {"id": "B", "sent_at": T}])

    def test_eviction_is_persisted(self):
        tracker = FileTracker(self.path, retention_seconds=100, clock=self.clock)
        tracker.mark("A", T)
        tracker.mark("B", T + 90)

        self.assertEqual(tracker.evict(now=T + 150), 1)
        self.assertEqual([e["id"] for e in self._read_file()["tokens"]], ["B"])

    def test_corrupt_file_starts_empty(self):
        with open(self.path, "w") as f:
            f.write("{not json")

        tracker = FileTracker(self.path, clock=self.clock)
        self.assertEqual(tracker.count(), 0)

        tracker.mark("A")
        self.assertTrue(tracker.has("A"))

    def test_unrecognized_format_starts_empty(self):
        with open(self.path, "w") as f:
            json.dump({"something": "else"}, f)

        tracker = FileTracker(self.path, clock=self.clock)
        self.assertEqual(tracker.count(), 0)

    def test_bad_sent_at_falls_back_to_now(self):
        with open(self.path, "w") as f:
            json.dump({"version": 2, "tokens": [{"id": "A", "sent_at": "later"}]}, f)

        tracker = FileTracker(self.path, retention_seconds=10, clock=self.clock)
        self.assertTrue(tracker.has("A", now=T + 10))

    def test_write_failure_degrades_to_memory(self):
        # A directory cannot be opened as a file: load and save both fail
        tracker = FileTracker(self.tmpdir, clock=self.clock)

        tracker.mark("A")

        self.assertTrue(tracker.has("A"))
        self.assertEqual(tracker.get_stats()['save_errors'], 1)

    def test_clear_persists_empty_list(self):
        tracker = FileTracker(self.path, clock=self.clock)
        tracker.mark("A")
        tracker.clear()

        self.assertEqual(self._read_file()["tokens"], [])


if __name__ == '__main__':
    unittest.main()
