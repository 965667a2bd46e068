"""
Per-question countdown timers for quiz sessions.
Timers are driven by an injectable clock so they can run on the asyncio event
loop or on a simulated clock.
"""
import asyncio
import logging
import time
from typing import Any, Callable, Optional

# Set up logger for timer operations
logger = logging.getLogger(__name__)


class TimerLifecycleLogger:
    """Structured logging for countdown lifecycle events."""

    @staticmethod
    def log_countdown_start(session_id: str, duration: int) -> None:
        """Log countdown start."""
        logger.info(
            f"Timer lifecycle: COUNTDOWN_START - Session {session_id}, Duration {duration}s",
            extra={
                'event_type': 'timer_countdown_start',
                'session_id': session_id,
                'duration': duration,
                'timestamp': time.time()
            }
        )

    @staticmethod
    def log_timer_update(session_id: str, remaining_time: int, total_duration: int) -> None:
        """Log timer update events (throttled to avoid spam)."""
        if remaining_time % 10 == 0 or remaining_time <= 3:
            progress_percent = ((total_duration - remaining_time) / total_duration) * 100
            logger.debug(
                f"Timer lifecycle: UPDATE - Session {session_id}, Remaining {remaining_time}s ({progress_percent:.1f}% complete)",
                extra={
                    'event_type': 'timer_update',
                    'session_id': session_id,
                    'remaining_time': remaining_time,
                    'total_duration': total_duration,
                    'progress_percent': progress_percent,
                    'timestamp': time.time()
                }
            )

    @staticmethod
    def log_timer_completion(session_id: str, completion_type: str, total_duration: int) -> None:
        """Log timer completion (natural expiry or cancellation)."""
        logger.info(
            f"Timer lifecycle: COMPLETED - Session {session_id}, Type {completion_type}, Duration {total_duration}s",
            extra={
                'event_type': 'timer_completed',
                'session_id': session_id,
                'completion_type': completion_type,
                'total_duration': total_duration,
                'timestamp': time.time()
            }
        )

    @staticmethod
    def log_timer_state_transition(session_id: str, from_state: str, to_state: str, reason: str = None) -> None:
        """Log timer state transitions."""
        logger.debug(
            f"Timer lifecycle: STATE_TRANSITION - Session {session_id}, {from_state} -> {to_state}" +
            (f" ({reason})" if reason else ""),
            extra={
                'event_type': 'timer_state_transition',
                'session_id': session_id,
                'from_state': from_state,
                'to_state': to_state,
                'reason': reason,
                'timestamp': time.time()
            }
        )

    @staticmethod
    def log_timer_error(session_id: str, error_type: str, error_message: str, operation: str) -> None:
        """Log timer-related errors with context."""
        logger.error(
            f"Timer lifecycle: ERROR - Session {session_id}, Operation {operation}, Type {error_type}: {error_message}",
            extra={
                'event_type': 'timer_error',
                'session_id': session_id,
                'error_type': error_type,
                'error_message': error_message,
                'operation': operation,
                'timestamp': time.time()
            }
        )

    @staticmethod
    def log_stale_callback(session_id: str, details: str) -> None:
        """Log a callback that arrived for a timer that is no longer live."""
        logger.warning(
            f"Timer lifecycle: STALE_CALLBACK - Session {session_id}: {details}",
            extra={
                'event_type': 'timer_stale_callback',
                'session_id': session_id,
                'details': details,
                'timestamp': time.time()
            }
        )


class AsyncioClock:
    """Schedules callbacks on the running asyncio event loop."""

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        self._loop = loop

    def call_later(self, delay: float, callback: Callable[[], Any]) -> asyncio.TimerHandle:
        loop = self._loop or asyncio.get_running_loop()
        return loop.call_later(delay, callback)


class CountdownTimer:
    """A single countdown run; cancelling it silences all further callbacks."""

    def __init__(
        self,
        clock,
        duration: int,
        tick_callback: Callable[[int], Any],
        expire_callback: Callable[[], Any],
        interval: float = 1.0,
        session_id: str = None
    ):
        self._clock = clock
        self._interval = interval
        self._tick_callback = tick_callback
        self._expire_callback = expire_callback
        self._session_id = session_id
        self._total_duration = duration
        self._remaining_time = duration
        self._handle = None
        self._is_cancelled = False
        self._is_expired = False

    def start(self) -> None:
        TimerLifecycleLogger.log_countdown_start(self._session_id, self._total_duration)
        self._schedule_next()

    def _schedule_next(self) -> None:
        self._handle = self._clock.call_later(self._interval, self._step)

    def _step(self) -> None:
        self._handle = None
        if self._is_cancelled or self._is_expired:
            TimerLifecycleLogger.log_stale_callback(
                self._session_id,
                f"tick delivered after timer stopped (cancelled={self._is_cancelled}, expired={self._is_expired})"
            )
            return

        self._remaining_time -= 1
        TimerLifecycleLogger.log_timer_update(
            self._session_id,
            self._remaining_time,
            self._total_duration
        )
        self._run_callback(self._tick_callback, "tick", self._remaining_time)

        # The tick callback may have cancelled this timer
        if self._is_cancelled:
            return

        if self._remaining_time > 0:
            self._schedule_next()
            return

        self._is_expired = True
        TimerLifecycleLogger.log_timer_completion(
            self._session_id,
            "natural_expiry",
            self._total_duration
        )
        self._run_callback(self._expire_callback, "expire")

    def _run_callback(self, callback: Callable[..., Any], operation: str, *args) -> None:
        try:
            callback(*args)
        except Exception as e:
            # A failed callback ends the countdown
            if not self._is_expired:
                self._is_cancelled = True
            TimerLifecycleLogger.log_timer_error(
                self._session_id,
                "callback_error",
                str(e),
                operation
            )
            raise

    def cancel(self) -> bool:
        """
        Cancel the countdown.

        Returns:
            True if a running countdown was stopped, False if it had already
            expired or been cancelled
        """
        if self._is_cancelled or self._is_expired:
            return False

        self._is_cancelled = True
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

        TimerLifecycleLogger.log_timer_completion(
            self._session_id,
            "cancelled",
            self._total_duration
        )
        return True

    @property
    def is_cancelled(self) -> bool:
        return self._is_cancelled

    @property
    def is_expired(self) -> bool:
        return self._is_expired

    @property
    def is_running(self) -> bool:
        return not (self._is_cancelled or self._is_expired)

    @property
    def remaining_time(self) -> int:
        """Get remaining time in seconds."""
        return self._remaining_time


class Countdown:
    """Owns at most one live countdown per session."""

    def __init__(self, clock=None, interval: float = 1.0, session_id: str = None):
        """
        Initialize the countdown owner.

        Args:
            clock: Object with call_later(delay, callback) returning a
                cancellable handle; defaults to the asyncio event loop
            interval: Seconds between decrements
            session_id: Identifier used in lifecycle logs
        """
        self.clock = clock or AsyncioClock()
        self.interval = interval
        self.session_id = session_id
        self._active: Optional[CountdownTimer] = None

    def start(
        self,
        seconds: int,
        tick_callback: Callable[[int], Any],
        expire_callback: Callable[[], Any]
    ) -> CountdownTimer:
        """
        Start a countdown, cancelling any countdown that is still live.

        Args:
            seconds: Countdown length in whole intervals
            tick_callback: Called with the remaining value after each decrement
            expire_callback: Called once when the remaining value reaches 0

        Returns:
            Handle for the new countdown

        Raises:
            ValueError: If seconds is less than 1
        """
        if seconds < 1:
            raise ValueError(f"Countdown duration must be at least 1, got {seconds}")

        if self._active is not None and self._active.is_running:
            TimerLifecycleLogger.log_timer_state_transition(
                self.session_id,
                "running",
                "superseded",
                "new countdown started"
            )
            self._active.cancel()

        timer = CountdownTimer(
            self.clock,
            seconds,
            tick_callback,
            expire_callback,
            interval=self.interval,
            session_id=self.session_id
        )
        self._active = timer
        timer.start()
        return timer

    def cancel(self, handle: Optional[CountdownTimer] = None) -> bool:
        """
        Cancel the given countdown, or the live one if no handle is given.

        Returns:
            True if a running countdown was stopped
        """
        timer = handle or self._active
        if timer is None:
            logger.debug(f"No countdown to cancel for session {self.session_id}")
            return False

        cancelled = timer.cancel()
        if timer is self._active:
            self._active = None
        return cancelled

    @property
    def active(self) -> Optional[CountdownTimer]:
        if self._active is not None and self._active.is_running:
            return self._active
        return None

    def get_timer_status(self) -> Optional[dict]:
        """
        Get the status of the live countdown.

        Returns:
            Dictionary with timer status or None if no live countdown
        """
        timer = self.active
        if timer is None:
            return None
        return {
            'remaining_time': timer.remaining_time,
            'is_cancelled': timer.is_cancelled,
            'is_expired': timer.is_expired
        }
