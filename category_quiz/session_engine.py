"""
Quiz session engine.
Runs the category selection -> timed questions -> completion state machine for
a single player and publishes the final score.
"""
import logging
import math
import time
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from .countdown import AsyncioClock, Countdown
from .models import (
    TIMED_OUT,
    CategoryListView,
    CompletionView,
    QuestionView,
    QuizSettings,
    ScoreRecord,
    SessionState,
    ViewState,
)
from .question_bank import QuestionBank


class SessionPhase(Enum):
    """Enumeration of session engine phases."""
    CATEGORY_SELECT = "category_select"
    IN_QUESTION = "in_question"
    LOCKED = "locked"
    COMPLETED = "completed"


def score_percentage(score: int, total: int) -> int:
    """Whole percentage of correct answers, 0 when there were no questions."""
    if total <= 0:
        return 0
    return int(math.floor(score * 100 / total + 0.5))


def utc_timestamp(now: Optional[datetime] = None) -> str:
    """ISO-8601 UTC timestamp with millisecond precision, e.g. 2024-05-01T12:00:00.000Z"""
    now = now or datetime.now(timezone.utc)
    return now.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class SessionEngine:
    """
    Orchestrates one player's quiz session.

    Every operation is a no-op returning False when the engine is not in a
    phase that accepts it. After an answer is recorded the engine stays LOCKED
    for the settle delay before moving on, so the choice can be shown.
    """

    def __init__(
        self,
        question_bank: QuestionBank,
        remote_sync=None,
        settings: Optional[QuizSettings] = None,
        clock=None,
        session_id: str = "local"
    ):
        """
        Initialize the session engine.

        Args:
            question_bank: Bank the categories are read from
            remote_sync: Object providing subscribe(on_update) and
                publish(record); None runs without a remote store
            settings: Timing options, defaults to QuizSettings()
            clock: Scheduler with call_later(delay, callback)
            session_id: Identifier used in logs
        """
        self.logger = logging.getLogger(__name__)
        self.question_bank = question_bank
        self.remote_sync = remote_sync
        self.settings = settings or QuizSettings()
        self.clock = clock or AsyncioClock()
        self.session_id = session_id
        self.countdown = Countdown(self.clock, session_id=session_id)

        self.state = SessionState(time_left=self.settings.question_time_limit)
        self.last_record: Optional[ScoreRecord] = None
        self._phase = SessionPhase.CATEGORY_SELECT
        self._settle_handle = None
        self._question_generation = 0
        self._published = False
        self._listeners: List[Callable[[ViewState], Any]] = []

        self.question_bank.add_change_listener(self._on_bank_changed)
        self._subscription = None
        if remote_sync is not None:
            self._subscription = remote_sync.subscribe(self.question_bank.validate_and_adopt)

        self.logger.info(f"SessionEngine initialized for session {session_id}")

    @property
    def phase(self) -> SessionPhase:
        return self._phase

    @property
    def categories(self) -> List[str]:
        return self.question_bank.categories

    def select_category(self, name: str) -> bool:
        """
        Start a session on a category using a snapshot of its questions.

        Returns:
            True if the session started, False if the request was ignored
        """
        if self._phase is SessionPhase.LOCKED:
            self.logger.debug(f"Ignoring category selection '{name}' while answer is settling")
            return False

        questions = self.question_bank.get_questions(name)
        if questions is None:
            self.logger.warning(
                f"Ignoring selection of unknown category '{name}'",
                extra={
                    'event_type': 'category_unknown',
                    'session_id': self.session_id,
                    'category': name,
                    'timestamp': time.time()
                }
            )
            return False

        self._cancel_pending()
        self.state = SessionState(
            category=name,
            questions=questions,
            time_left=self.settings.question_time_limit
        )
        self.logger.info(f"Selected category '{name}' with {len(questions)} questions")
        self._begin()
        return True

    def submit_answer(self, option_index: Optional[int]) -> bool:
        """
        Record the answer for the current question.

        Args:
            option_index: Index of the chosen option, or None for no answer

        Returns:
            True if the answer was recorded, False if it was ignored
        """
        if self._phase is not SessionPhase.IN_QUESTION:
            self.logger.debug(f"Ignoring answer {option_index} in phase {self._phase.value}")
            return False

        state = self.state
        if len(state.answers) > state.cursor:
            self.logger.debug(f"Answer for question {state.cursor + 1} already recorded")
            return False

        question = state.questions[state.cursor]
        if option_index is None:
            recorded = TIMED_OUT
        elif (not isinstance(option_index, int) or isinstance(option_index, bool)
                or not 0 <= option_index < len(question.options)):
            self.logger.warning(f"Ignoring out-of-range option {option_index!r}")
            return False
        else:
            recorded = option_index

        self.countdown.cancel()
        state.answers.append(recorded)
        state.selected = option_index
        if question.is_correct(recorded):
            state.score += 1

        self._phase = SessionPhase.LOCKED
        self.logger.debug(
            f"Recorded answer {recorded} for question {state.cursor + 1}/{len(state.questions)}",
            extra={
                'event_type': 'answer_recorded',
                'session_id': self.session_id,
                'cursor': state.cursor,
                'answer': recorded,
                'correct': question.is_correct(recorded),
                'timestamp': time.time()
            }
        )

        delay = self.settings.answer_settle_delay_ms / 1000
        self._settle_handle = self.clock.call_later(delay, self._advance)
        self._notify()
        return True

    def timeout(self) -> bool:
        """Record that the current question ran out of time."""
        if self._phase is not SessionPhase.IN_QUESTION:
            return False
        self.logger.info(f"Question {self.state.cursor + 1} timed out")
        return self.submit_answer(None)

    def finalize_score(self) -> int:
        """
        Recount the score from the recorded answers.

        The recount overwrites the running score. The first call after a
        session completes publishes the result.

        Returns:
            Number of correctly answered questions
        """
        state = self.state
        recounted = sum(
            1 for i, question in enumerate(state.questions)
            if i < len(state.answers) and question.is_correct(state.answers[i])
        )
        if recounted != state.score:
            self.logger.warning(f"Running score {state.score} differs from recount {recounted}")
        state.score = recounted

        if state.completed and state.questions and not self._published:
            self._published = True
            record = ScoreRecord(
                category=state.category,
                score=recounted,
                total_questions=len(state.questions),
                date=utc_timestamp()
            )
            self.last_record = record
            self._publish(record)

        return recounted

    def restart(self) -> bool:
        """Restart the current category from its first question."""
        if self._phase not in (SessionPhase.IN_QUESTION, SessionPhase.COMPLETED):
            self.logger.debug(f"Ignoring restart in phase {self._phase.value}")
            return False

        self._cancel_pending()
        self.state = SessionState(
            category=self.state.category,
            questions=self.state.questions,
            time_left=self.settings.question_time_limit
        )
        self.logger.info(f"Restarted category '{self.state.category}'")
        self._begin()
        return True

    def back_to_categories(self) -> bool:
        """Abandon any session and return to category selection."""
        self._cancel_pending()
        self.state = SessionState(time_left=self.settings.question_time_limit)
        self._published = False
        self._phase = SessionPhase.CATEGORY_SELECT
        self.logger.debug("Returned to category selection")
        self._notify()
        return True

    @property
    def view_state(self) -> ViewState:
        """Read-only projection of the engine for rendering."""
        state = self.state
        if self._phase is SessionPhase.CATEGORY_SELECT:
            return CategoryListView(categories=self.question_bank.categories)

        if self._phase is SessionPhase.COMPLETED:
            total = len(state.questions)
            return CompletionView(
                category=state.category,
                score=state.score,
                total_questions=total,
                percentage=score_percentage(state.score, total)
            )

        question = state.questions[state.cursor]
        return QuestionView(
            category=state.category,
            question=question.question,
            options=question.options,
            cursor=state.cursor,
            total_questions=len(state.questions),
            time_left=state.time_left,
            selected=state.selected,
            locked=self._phase is SessionPhase.LOCKED
        )

    def get_session_progress(self) -> Dict[str, Any]:
        """Get progress information for logging and status displays."""
        state = self.state
        return {
            'phase': self._phase.value,
            'category': state.category,
            'current_question': state.cursor + 1 if state.questions else 0,
            'total_questions': len(state.questions),
            'answered': len(state.answers),
            'score': state.score,
            'time_left': state.time_left,
            'completed': state.completed
        }

    def add_listener(self, callback: Callable[[ViewState], Any]) -> None:
        """Register a callback invoked with the new view state after each change."""
        self._listeners.append(callback)

    def remove_listener(self, callback: Callable[[ViewState], Any]) -> None:
        if callback in self._listeners:
            self._listeners.remove(callback)

    def close(self) -> None:
        """Stop timers and detach from the bank and the remote store."""
        self._cancel_pending()
        self.question_bank.remove_change_listener(self._on_bank_changed)
        if self._subscription is not None:
            self._subscription.dispose()
            self._subscription = None
        self._listeners.clear()
        self.logger.info(f"SessionEngine closed for session {self.session_id}")

    def _begin(self) -> None:
        self._published = False
        if not self.state.questions:
            self.logger.warning(f"Category '{self.state.category}' has no questions")
            self.state.completed = True
            self._phase = SessionPhase.COMPLETED
            self._notify()
            return

        self._phase = SessionPhase.IN_QUESTION
        self._start_question_countdown()
        self._notify()

    def _advance(self) -> None:
        self._settle_handle = None
        if self._phase is not SessionPhase.LOCKED:
            self.logger.debug("Ignoring stale advance")
            return

        state = self.state
        if state.cursor < len(state.questions) - 1:
            state.cursor += 1
            state.time_left = self.settings.question_time_limit
            state.selected = None
            self._phase = SessionPhase.IN_QUESTION
            self._start_question_countdown()
        else:
            state.completed = True
            self._phase = SessionPhase.COMPLETED
            self.finalize_score()
            self.logger.info(
                f"Completed '{state.category}' with {state.score}/{len(state.questions)}",
                extra={
                    'event_type': 'session_completed',
                    'session_id': self.session_id,
                    'category': state.category,
                    'score': state.score,
                    'total_questions': len(state.questions),
                    'timestamp': time.time()
                }
            )
        self._notify()

    def _start_question_countdown(self) -> None:
        self._question_generation += 1
        generation = self._question_generation
        self.countdown.start(
            self.settings.question_time_limit,
            lambda remaining: self._on_tick(generation, remaining),
            lambda: self._on_expire(generation)
        )

    def _on_tick(self, generation: int, remaining: int) -> None:
        if generation != self._question_generation or self._phase is not SessionPhase.IN_QUESTION:
            return
        self.state.time_left = remaining
        self._notify()

    def _on_expire(self, generation: int) -> None:
        if generation != self._question_generation:
            return
        self.timeout()

    def _cancel_pending(self) -> None:
        # Invalidate callbacks of the previous question before cancelling
        self._question_generation += 1
        self.countdown.cancel()
        if self._settle_handle is not None:
            self._settle_handle.cancel()
            self._settle_handle = None

    def _publish(self, record: ScoreRecord) -> None:
        if self.remote_sync is None:
            self.logger.info("No remote store configured; score kept locally")
            return
        try:
            self.remote_sync.publish(record)
        except Exception as e:
            self.logger.error(f"Failed to schedule score publish: {e}")

    def _on_bank_changed(self, bank: QuestionBank) -> None:
        if self._phase is SessionPhase.CATEGORY_SELECT:
            self._notify()
        else:
            self.logger.info("Question bank updated; the running session keeps its questions")

    def _notify(self) -> None:
        if not self._listeners:
            return
        view = self.view_state
        for callback in list(self._listeners):
            try:
                callback(view)
            except Exception:
                self.logger.exception("View state listener failed")
