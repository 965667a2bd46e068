"""
Question bank for category quizzes and shape validation of incoming bank data.
"""
import json
import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

from .models import OPTION_COUNT, Question

BUNDLED_BANK_PATH = Path(__file__).parent / "data" / "default_bank.json"

# Guard against loading extremely large bank files
MAX_BANK_FILE_SIZE = 10 * 1024 * 1024


class BankValidationError(ValueError):
    """Raised when bank data does not have the category -> questions shape."""
    pass


class BankPayloadKind(Enum):
    """Classification of bank data received from outside the process."""
    ABSENT = "absent"
    LEGACY = "legacy"
    MALFORMED = "malformed"
    VALID = "valid"


@dataclass(frozen=True)
class BankPayload:
    """Tagged result of classifying a raw payload."""
    kind: BankPayloadKind
    categories: Optional[Dict[str, List[Question]]] = None
    reason: str = ""


def parse_question(data: Any, label: str = "question") -> Question:
    """
    Parse one question object.

    Args:
        data: Raw decoded JSON value
        label: Name used in error messages

    Returns:
        Question built from the data

    Raises:
        BankValidationError: If the value is not a valid question
    """
    if not isinstance(data, Mapping):
        raise BankValidationError(f"{label} must be an object")

    text = data.get("question")
    if not isinstance(text, str) or not text.strip():
        raise BankValidationError(f"{label} 'question' field must be a non-empty string")

    options = data.get("options")
    if not isinstance(options, (list, tuple)):
        raise BankValidationError(f"{label} 'options' field must be an array")
    if len(options) != OPTION_COUNT:
        raise BankValidationError(
            f"{label} must have exactly {OPTION_COUNT} options, got {len(options)}"
        )
    if not all(isinstance(option, str) for option in options):
        raise BankValidationError(f"{label} options must all be strings")

    correct = data.get("correct")
    # bool is an int subclass; True/False are not answer indexes
    if not isinstance(correct, int) or isinstance(correct, bool):
        raise BankValidationError(f"{label} 'correct' field must be an integer")
    if not 0 <= correct < len(options):
        raise BankValidationError(
            f"{label} 'correct' index {correct} is outside the options range"
        )

    return Question(question=text, options=tuple(options), correct=correct)


def _child_key_order(key: Any):
    # Sparse array indexes sort numerically, push ids lexicographically
    text = str(key)
    return (0, int(text), "") if text.isdigit() else (1, 0, text)


def _question_items(raw_questions: Any, category: str) -> List[Any]:
    # The store returns pushed or sparse children as an object keyed by child id
    if isinstance(raw_questions, Mapping):
        keys = sorted(raw_questions, key=_child_key_order)
        return [raw_questions[key] for key in keys]
    if isinstance(raw_questions, (list, tuple)):
        return list(raw_questions)
    raise BankValidationError(f"Category '{category}' must map to an array of questions")


def parse_bank(data: Any) -> Dict[str, List[Question]]:
    """
    Parse a category -> questions mapping.

    Expected structure:
    {
        "<category>": [
            {"question": str, "options": [str, str, str, str], "correct": int}
        ]
    }

    Raises:
        BankValidationError: If any part of the structure is invalid
    """
    if not isinstance(data, Mapping):
        raise BankValidationError("Question bank must be a JSON object")
    if not data:
        raise BankValidationError("Question bank has no categories")

    categories: Dict[str, List[Question]] = {}
    for category, raw_questions in data.items():
        if not isinstance(category, str) or not category.strip():
            raise BankValidationError("Category names must be non-empty strings")

        items = _question_items(raw_questions, category)
        if not items:
            raise BankValidationError(f"Category '{category}' has no questions")

        categories[category] = [
            parse_question(item, f"Category '{category}' question {i}")
            for i, item in enumerate(items)
        ]

    return categories


class QuestionBank:
    """Holds the category -> questions mapping shown to the player."""

    def __init__(self, categories: Optional[Mapping[str, Sequence[Question]]] = None):
        """
        Initialize the bank.

        Args:
            categories: Ordered mapping of category name to questions.
                Insertion order is display order.
        """
        self.logger = logging.getLogger(__name__)
        self._categories: Dict[str, List[Question]] = {
            name: list(questions) for name, questions in (categories or {}).items()
        }
        self._change_listeners: List[Callable[["QuestionBank"], Any]] = []
        self.fallback_active = False

    @classmethod
    def from_file(cls, file_path) -> "QuestionBank":
        """
        Load a bank from a JSON file.

        Raises:
            BankValidationError: If the file content is not a valid bank
            OSError: If the file cannot be read
        """
        path = Path(file_path)
        file_size = path.stat().st_size
        if file_size > MAX_BANK_FILE_SIZE:
            raise BankValidationError(
                f"Bank file too large ({file_size / 1024 / 1024:.1f}MB). "
                f"Maximum size is {MAX_BANK_FILE_SIZE / 1024 / 1024}MB"
            )

        with open(path, "r", encoding="utf-8") as f:
            try:
                data = json.load(f)
            except json.JSONDecodeError as e:
                raise BankValidationError(f"Invalid JSON in {path}: {e}") from e

        bank = cls(parse_bank(data))
        bank.logger.info(f"Loaded {len(bank.categories)} categories from {path}")
        return bank

    @classmethod
    def load_bundled(cls, file_path=None) -> "QuestionBank":
        """
        Load the bank bundled with the package, falling back to a minimal
        in-memory bank when the file cannot be used.
        """
        path = Path(file_path) if file_path else BUNDLED_BANK_PATH
        try:
            return cls.from_file(path)
        except (OSError, BankValidationError) as e:
            logging.getLogger(__name__).error(f"Failed to load bundled question bank {path}: {e}")
            return cls._create_fallback_bank()

    @classmethod
    def _create_fallback_bank(cls) -> "QuestionBank":
        bank = cls({
            "General": [
                Question(
                    question="The bundled question bank could not be loaded. What should you check?",
                    options=(
                        "The bank file and its permissions",
                        "The screen brightness",
                        "The keyboard layout",
                        "Nothing, this is expected",
                    ),
                    correct=0,
                )
            ]
        })
        bank.fallback_active = True
        bank.logger.warning("Created fallback question bank due to loading failures")
        return bank

    @staticmethod
    def classify_payload(payload: Any) -> BankPayload:
        """
        Classify raw bank data received from the remote store.

        Sequences are the legacy categoryless format; mappings are checked
        against the bank shape.
        """
        if payload is None:
            return BankPayload(BankPayloadKind.ABSENT)

        if isinstance(payload, (list, tuple)):
            return BankPayload(
                BankPayloadKind.LEGACY,
                reason=f"legacy categoryless array with {len(payload)} entries",
            )

        if not isinstance(payload, Mapping):
            return BankPayload(
                BankPayloadKind.MALFORMED,
                reason=f"unsupported payload type {type(payload).__name__}",
            )

        try:
            categories = parse_bank(payload)
        except BankValidationError as e:
            return BankPayload(BankPayloadKind.MALFORMED, reason=str(e))

        return BankPayload(BankPayloadKind.VALID, categories=categories)

    def validate_and_adopt(self, payload: Any) -> bool:
        """
        Replace the whole bank with a valid remote payload.

        Absent payloads are ignored; legacy and malformed ones are rejected and
        the current bank is kept. There is no merge between the old and new bank.

        Returns:
            True if the payload was adopted, False otherwise
        """
        classified = self.classify_payload(payload)

        if classified.kind is BankPayloadKind.ABSENT:
            self.logger.debug("No remote question bank present, keeping current bank")
            return False

        if classified.kind is BankPayloadKind.LEGACY:
            self.logger.info(
                f"Legacy question bank found in remote store ({classified.reason}); "
                f"keeping current categories {self.categories}"
            )
            return False

        if classified.kind is BankPayloadKind.MALFORMED:
            self.logger.warning(f"Rejected malformed remote question bank: {classified.reason}")
            return False

        self._categories = classified.categories
        self.fallback_active = False
        self.logger.info(f"Adopted remote question bank with categories {self.categories}")
        self._notify_change()
        return True

    @property
    def categories(self) -> List[str]:
        """Category names in display order."""
        return list(self._categories.keys())

    def has_category(self, name: str) -> bool:
        return name in self._categories

    def get_questions(self, name: str) -> Optional[List[Question]]:
        """
        Get a copy of the questions for a category.

        Returns:
            New list of questions, or None if the category does not exist
        """
        questions = self._categories.get(name)
        return list(questions) if questions is not None else None

    def get_question_count(self, name: str) -> int:
        questions = self._categories.get(name)
        return len(questions) if questions else 0

    def to_dict(self) -> Dict[str, List[Dict[str, Any]]]:
        return {
            name: [question.to_dict() for question in questions]
            for name, questions in self._categories.items()
        }

    def add_change_listener(self, callback: Callable[["QuestionBank"], Any]) -> None:
        """Register a callback invoked after the bank is replaced."""
        self._change_listeners.append(callback)

    def remove_change_listener(self, callback: Callable[["QuestionBank"], Any]) -> None:
        if callback in self._change_listeners:
            self._change_listeners.remove(callback)

    def _notify_change(self) -> None:
        for callback in list(self._change_listeners):
            try:
                callback(self)
            except Exception as e:
                self.logger.error(f"Question bank change listener failed: {e}")

    def __len__(self) -> int:
        return len(self._categories)
