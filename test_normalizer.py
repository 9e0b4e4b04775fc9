import unittest

from pair_screener.normalizer import PairNormalizer


class TestPairNormalizer(unittest.TestCase):

    def setUp(self):
        self.normalizer = PairNormalizer()

    def test_normalizes_full_pair(self):
        pair = self.normalizer.normalize_dexscreener({
            "chainId": "solana",
            "dexId": "raydium",
            "pairAddress": "PAIR1",
            "baseToken": {"address": "TOKEN1", "name": "Test Token", "symbol": "TEST"},
            "pairCreatedAt": 1_700_000_000_000,
            "liquidity": {"usd": 12345.6},
            "priceUsd": "0.000123",
            "fdv": 50000,
            "url": "https://dexscreener.com/solana/PAIR1",
        })

        self.assertEqual(pair.id, "TOKEN1")
        self.assertEqual(pair.created_at, 1_700_000_000.0)
        self.assertEqual(pair.liquidity_usd, 12345.6)
        self.assertEqual(pair.symbol, "TEST")
        self.assertEqual(pair.chain, "solana")
        self.assertEqual(pair.pair_address, "PAIR1")
        self.assertAlmostEqual(pair.price_usd, 0.000123)
        self.assertEqual(pair.fdv, 50000.0)

    def test_seconds_timestamp_kept(self):
        pair = self.normalizer.normalize_dexscreener({
            "pairAddress": "P", "pairCreatedAt": 1_700_000_000,
        })
        self.assertEqual(pair.created_at, 1_700_000_000.0)

    def test_missing_fields_become_none(self):
        pair = self.normalizer.normalize_dexscreener({"baseToken": {"address": "T"}})

        self.assertIsNone(pair.created_at)
        self.assertIsNone(pair.liquidity_usd)
        self.assertEqual(pair.liquidity, 0.0)
        self.assertEqual(pair.name, "Unknown")
        self.assertEqual(pair.symbol, "???")

    def test_bad_values_become_none(self):
        pair = self.normalizer.normalize_dexscreener({
            "pairAddress": "P",
            "pairCreatedAt": "soon",
            "liquidity": {"usd": "n/a"},
            "priceUsd": None,
        })
        self.assertIsNone(pair.created_at)
        self.assertIsNone(pair.liquidity_usd)
        self.assertIsNone(pair.price_usd)

    def test_non_finite_values_become_none(self):
        pair = self.normalizer.normalize_dexscreener({
            "pairAddress": "P",
            "pairCreatedAt": "nan",
            "liquidity": {"usd": "NaN"},
            "priceUsd": "inf",
            "fdv": float("-inf"),
        })
        self.assertIsNone(pair.created_at)
        self.assertIsNone(pair.liquidity_usd)
        self.assertIsNone(pair.price_usd)
        self.assertIsNone(pair.fdv)

    def test_non_positive_timestamp_is_unknown(self):
        pair = self.normalizer.normalize_dexscreener({"pairAddress": "P", "pairCreatedAt": 0})
        self.assertIsNone(pair.created_at)

    def test_falls_back_to_pair_address(self):
        pair = self.normalizer.normalize_dexscreener({"pairAddress": "PAIR", "baseToken": {}})
        self.assertEqual(pair.id, "PAIR")

    def test_drops_pair_without_id(self):
        self.assertIsNone(self.normalizer.normalize_dexscreener({"chainId": "solana"}))
        self.assertIsNone(self.normalizer.normalize_dexscreener("not a pair"))

    def test_normalize_many_preserves_order(self):
        pairs = self.normalizer.normalize_many([
            {"pairAddress": "B"},
            {"chainId": "solana"},
            {"pairAddress": "A"},
        ])
        self.assertEqual([p.id for p in pairs], ["B", "A"])

    def test_normalize_chain(self):
        self.assertEqual(self.normalizer.normalize_chain("SOL"), "solana")
        self.assertEqual(self.normalizer.normalize_chain("eth"), "ethereum")
        self.assertEqual(self.normalizer.normalize_chain("Sui"), "sui")


if __name__ == '__main__':
    unittest.main()
