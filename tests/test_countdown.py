"""
Unit tests for the countdown timers.
"""
import asyncio
import logging
import unittest
from unittest.mock import Mock

from category_quiz.countdown import AsyncioClock, Countdown, CountdownTimer, TimerLifecycleLogger
from tests.test_fixtures import VirtualClock


class TestCountdown(unittest.TestCase):
    """Test cases for Countdown on a virtual clock."""

    def setUp(self):
        """Set up test fixtures before each test method."""
        self.clock = VirtualClock()
        self.countdown = Countdown(self.clock, session_id="test")
        self.ticks = []
        self.expire = Mock()
        logging.disable(logging.CRITICAL)

    def tearDown(self):
        """Clean up after each test method."""
        logging.disable(logging.NOTSET)

    def test_ticks_down_then_expires_once(self):
        self.countdown.start(10, self.ticks.append, self.expire)

        self.clock.advance(9)
        self.assertEqual(self.ticks, [9, 8, 7, 6, 5, 4, 3, 2, 1])
        self.expire.assert_not_called()

        self.clock.advance(1)
        self.assertEqual(self.ticks[-1], 0)
        self.expire.assert_called_once_with()

        self.clock.advance(30)
        self.assertEqual(len(self.ticks), 10)
        self.expire.assert_called_once_with()
        self.assertEqual(self.clock.pending, 0)

    def test_no_tick_before_first_interval(self):
        self.countdown.start(10, self.ticks.append, self.expire)
        self.clock.advance(0.5)
        self.assertEqual(self.ticks, [])

    def test_cancel_silences_callbacks(self):
        timer = self.countdown.start(10, self.ticks.append, self.expire)
        self.clock.advance(3)

        self.assertTrue(self.countdown.cancel())
        self.clock.advance(20)

        self.assertEqual(self.ticks, [9, 8, 7])
        self.expire.assert_not_called()
        self.assertTrue(timer.is_cancelled)
        self.assertIsNone(self.countdown.active)

    def test_cancel_immediately_then_advance(self):
        self.countdown.start(10, self.ticks.append, self.expire)
        self.assertTrue(self.countdown.cancel())
        self.assertFalse(self.countdown.cancel())

        self.clock.advance(20)

        self.assertEqual(self.ticks, [])
        self.expire.assert_not_called()
        self.assertEqual(self.clock.pending, 0)

    def test_failing_tick_callback_is_logged_and_stops_timer(self):
        logging.disable(logging.NOTSET)
        tick = Mock(side_effect=RuntimeError("render failed"))
        timer = self.countdown.start(10, tick, self.expire)

        with self.assertLogs("category_quiz.countdown", level="ERROR") as logs:
            with self.assertRaises(RuntimeError):
                self.clock.advance(1)

        self.assertTrue(any("callback_error" in line and "render failed" in line for line in logs.output))
        self.assertFalse(timer.is_running)
        self.clock.advance(20)
        tick.assert_called_once_with(9)
        self.expire.assert_not_called()

    def test_failing_expire_callback_is_logged(self):
        logging.disable(logging.NOTSET)
        expire = Mock(side_effect=ValueError("bad state"))
        timer = self.countdown.start(1, self.ticks.append, expire)

        with self.assertLogs("category_quiz.countdown", level="ERROR"):
            with self.assertRaises(ValueError):
                self.clock.advance(1)

        self.assertTrue(timer.is_expired)
        self.assertEqual(self.ticks, [0])

    def test_cancel_after_expiry_returns_false(self):
        timer = self.countdown.start(1, self.ticks.append, self.expire)
        self.clock.advance(1)
        self.assertTrue(timer.is_expired)
        self.assertFalse(self.countdown.cancel(timer))

    def test_cancel_from_tick_callback(self):
        def tick(remaining):
            self.ticks.append(remaining)
            if remaining == 5:
                self.countdown.cancel()

        self.countdown.start(10, tick, self.expire)
        self.clock.advance(20)

        self.assertEqual(self.ticks, [9, 8, 7, 6, 5])
        self.expire.assert_not_called()

    def test_cancel_on_last_tick_prevents_expiry(self):
        def tick(remaining):
            self.ticks.append(remaining)
            if remaining == 0:
                self.countdown.cancel()

        self.countdown.start(2, tick, self.expire)
        self.clock.advance(5)

        self.assertEqual(self.ticks, [1, 0])
        self.expire.assert_not_called()

    def test_new_start_supersedes_live_countdown(self):
        old_ticks = []
        old_expire = Mock()
        first = self.countdown.start(10, old_ticks.append, old_expire)
        self.clock.advance(2)

        second = self.countdown.start(3, self.ticks.append, self.expire)
        self.clock.advance(10)

        self.assertTrue(first.is_cancelled)
        self.assertEqual(old_ticks, [9, 8])
        old_expire.assert_not_called()
        self.assertEqual(self.ticks, [2, 1, 0])
        self.expire.assert_called_once_with()
        self.assertTrue(second.is_expired)

    def test_rejects_duration_below_one(self):
        for seconds in (0, -3):
            with self.subTest(seconds=seconds):
                with self.assertRaises(ValueError):
                    self.countdown.start(seconds, self.ticks.append, self.expire)

    def test_timer_status(self):
        self.assertIsNone(self.countdown.get_timer_status())

        self.countdown.start(10, self.ticks.append, self.expire)
        self.clock.advance(4)

        status = self.countdown.get_timer_status()
        self.assertEqual(status['remaining_time'], 6)
        self.assertFalse(status['is_cancelled'])
        self.assertFalse(status['is_expired'])

    def test_cancel_without_countdown(self):
        self.assertFalse(self.countdown.cancel())


class TestCountdownTimer(unittest.TestCase):
    """Test cases for a single CountdownTimer run."""

    def setUp(self):
        self.clock = VirtualClock()
        logging.disable(logging.CRITICAL)

    def tearDown(self):
        logging.disable(logging.NOTSET)

    def test_custom_interval(self):
        ticks = []
        timer = CountdownTimer(self.clock, 3, ticks.append, Mock(), interval=0.5)
        timer.start()

        self.clock.advance(1)
        self.assertEqual(ticks, [2, 1])
        self.assertEqual(timer.remaining_time, 1)
        self.assertTrue(timer.is_running)


class TestTimerLifecycleLogger(unittest.TestCase):
    """Test cases for lifecycle logging."""

    def test_update_logging_is_throttled(self):
        with self.assertLogs("category_quiz.countdown", level="DEBUG") as logs:
            for remaining in range(9, -1, -1):
                TimerLifecycleLogger.log_timer_update("s1", remaining, 10)

        # Only the last three seconds and the zero mark are logged
        self.assertEqual(len(logs.output), 4)

    def test_completion_logged(self):
        with self.assertLogs("category_quiz.countdown", level="INFO") as logs:
            TimerLifecycleLogger.log_timer_completion("s1", "cancelled", 10)
        self.assertIn("cancelled", logs.output[0])


class TestAsyncioClock(unittest.IsolatedAsyncioTestCase):
    """Test cases for countdowns on the real event loop."""

    async def test_countdown_on_event_loop(self):
        countdown = Countdown(AsyncioClock(), interval=0.01, session_id="loop")
        ticks = []
        expired = asyncio.Event()

        countdown.start(3, ticks.append, expired.set)
        await asyncio.wait_for(expired.wait(), timeout=2.0)

        self.assertEqual(ticks, [2, 1, 0])

    async def test_cancel_on_event_loop(self):
        countdown = Countdown(AsyncioClock(), interval=0.01)
        ticks = []
        expire = Mock()

        countdown.start(5, ticks.append, expire)
        countdown.cancel()
        await asyncio.sleep(0.1)

        self.assertEqual(ticks, [])
        expire.assert_not_called()


if __name__ == '__main__':
    unittest.main()
