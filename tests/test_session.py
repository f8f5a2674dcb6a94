"""Tests for meter.session -- active-run bookkeeping."""

import threading
import unittest

from meter.session import ActiveRunRegistry


class TestActiveRunRegistry(unittest.TestCase):
    def test_acquire_and_release(self):
        registry = ActiveRunRegistry()
        self.assertTrue(registry.try_acquire("a"))
        self.assertTrue(registry.is_active("a"))
        self.assertFalse(registry.try_acquire("a"))
        registry.release("a")
        self.assertFalse(registry.is_active("a"))
        self.assertTrue(registry.try_acquire("a"))

    def test_sessions_are_independent(self):
        registry = ActiveRunRegistry()
        self.assertTrue(registry.try_acquire("a"))
        self.assertTrue(registry.try_acquire("b"))
        self.assertEqual(len(registry), 2)

    def test_release_unknown_is_noop(self):
        registry = ActiveRunRegistry()
        registry.release("missing")
        self.assertEqual(len(registry), 0)

    def test_concurrent_acquire_single_winner(self):
        registry = ActiveRunRegistry()
        barrier = threading.Barrier(8)
        wins = []

        def worker():
            barrier.wait()
            if registry.try_acquire("shared"):
                wins.append(1)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        self.assertEqual(len(wins), 1)


if __name__ == "__main__":
    unittest.main()
