"""
Core data models for the category quiz.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple, Union

# Answer-log entry for a question whose countdown ran out
TIMED_OUT = -1

OPTION_COUNT = 4


@dataclass(frozen=True)
class Question:
    """Represents a single multiple-choice question."""
    question: str
    options: Tuple[str, ...]
    correct: int

    def is_correct(self, option_index: Optional[int]) -> bool:
        return option_index == self.correct

    def to_dict(self) -> Dict[str, Any]:
        return {
            "question": self.question,
            "options": list(self.options),
            "correct": self.correct,
        }


@dataclass(frozen=True)
class ScoreRecord:
    """Result of a completed session, written once to the remote store."""
    category: str
    score: int
    total_questions: int
    date: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "category": self.category,
            "score": self.score,
            "totalQuestions": self.total_questions,
            "date": self.date,
        }


@dataclass
class QuizSettings:
    """Timing options for a quiz session."""
    question_time_limit: int = 10
    answer_settle_delay_ms: int = 500


@dataclass
class RemoteSettings:
    """Connection options for the shared remote store."""
    database_url: Optional[str] = None
    auth_token: Optional[str] = None


@dataclass
class SessionState:
    """Mutable state of the session owned by the engine."""
    category: Optional[str] = None
    questions: List[Question] = field(default_factory=list)
    cursor: int = 0
    answers: List[int] = field(default_factory=list)
    score: int = 0
    completed: bool = False
    time_left: int = 10
    selected: Optional[int] = None


@dataclass(frozen=True)
class CategoryListView:
    categories: List[str]


@dataclass(frozen=True)
class QuestionView:
    category: str
    question: str
    options: Tuple[str, ...]
    cursor: int
    total_questions: int
    time_left: int
    selected: Optional[int]
    locked: bool = False


@dataclass(frozen=True)
class CompletionView:
    category: str
    score: int
    total_questions: int
    percentage: int


ViewState = Union[CategoryListView, QuestionView, CompletionView]
