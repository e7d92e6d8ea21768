import unittest
from datetime import datetime, timedelta, timezone

from familytree import lockout

NOW = datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)


class RegisterFailureTests(unittest.TestCase):
    def test_counts_up_below_threshold(self):
        update = lockout.register_failure(2, None, NOW)
        self.assertEqual(update.attempts, 3)
        self.assertIsNone(update.lockout_until)
        self.assertFalse(update.locked)

    def test_reaching_threshold_locks_for_duration(self):
        update = lockout.register_failure(4, None, NOW)
        self.assertEqual(update.attempts, 5)
        self.assertEqual(update.lockout_until, NOW + timedelta(hours=24))
        self.assertTrue(update.locked)

    def test_custom_policy(self):
        policy = lockout.LockoutPolicy(threshold=2, duration=timedelta(minutes=15))
        update = lockout.register_failure(1, None, NOW, policy)
        self.assertEqual(update.lockout_until, NOW + timedelta(minutes=15))

    def test_expired_lockout_restarts_count(self):
        update = lockout.register_failure(5, NOW - timedelta(seconds=1), NOW)
        self.assertEqual(update.attempts, 1)
        self.assertIsNone(update.lockout_until)


class LockStateTests(unittest.TestCase):
    def test_is_locked(self):
        self.assertFalse(lockout.is_locked(None, NOW))
        self.assertFalse(lockout.is_locked(NOW, NOW))
        self.assertTrue(lockout.is_locked(NOW + timedelta(seconds=1), NOW))

    def test_hours_remaining_rounds_up(self):
        self.assertEqual(lockout.hours_remaining(NOW + timedelta(hours=24), NOW), 24)
        self.assertEqual(lockout.hours_remaining(NOW + timedelta(minutes=61), NOW), 2)
        self.assertEqual(lockout.hours_remaining(NOW + timedelta(seconds=5), NOW), 1)
        self.assertEqual(lockout.hours_remaining(NOW - timedelta(hours=1), NOW), 0)

    def test_needs_reset(self):
        self.assertFalse(lockout.needs_reset(0, None))
        self.assertTrue(lockout.needs_reset(3, None))
        self.assertTrue(lockout.needs_reset(0, NOW))


if __name__ == "__main__":
    unittest.main()
