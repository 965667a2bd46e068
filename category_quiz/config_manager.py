"""
Configuration manager for quiz timing and remote store settings.
"""
import logging
import os
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

from .models import QuizSettings, RemoteSettings


class ConfigurationError(RuntimeError):
    """Raised when the configuration cannot be used to start the quiz."""
    pass


class ConfigManager:
    """Manages recognised quiz options and remote store settings."""

    # Default configuration values
    DEFAULT_QUESTION_TIME_LIMIT = 10
    DEFAULT_ANSWER_SETTLE_DELAY_MS = 500

    # Validation limits
    MIN_QUESTION_TIME_LIMIT = 3
    MAX_QUESTION_TIME_LIMIT = 300  # 5 minutes
    MIN_ANSWER_SETTLE_DELAY_MS = 0
    MAX_ANSWER_SETTLE_DELAY_MS = 5000

    # Environment variables that override the config file
    ENV_DATABASE_URL = "FIREBASE_DATABASE_URL"
    ENV_AUTH_TOKEN = "FIREBASE_AUTH_TOKEN"

    def __init__(self):
        """Initialize ConfigManager with default settings."""
        self.logger = logging.getLogger(__name__)
        self._quiz_settings = QuizSettings(
            question_time_limit=self.DEFAULT_QUESTION_TIME_LIMIT,
            answer_settle_delay_ms=self.DEFAULT_ANSWER_SETTLE_DELAY_MS
        )
        self._remote_settings = RemoteSettings()
        self._bank_file: Optional[str] = None

    def get_quiz_settings(self) -> QuizSettings:
        """
        Get current quiz settings.

        Returns:
            Copy of the current QuizSettings
        """
        return QuizSettings(
            question_time_limit=self._quiz_settings.question_time_limit,
            answer_settle_delay_ms=self._quiz_settings.answer_settle_delay_ms
        )

    def get_remote_settings(self) -> RemoteSettings:
        return RemoteSettings(
            database_url=self._remote_settings.database_url,
            auth_token=self._remote_settings.auth_token
        )

    def set_question_time_limit(self, seconds: int) -> Dict[str, Any]:
        """
        Set the time allowed for each question.

        Args:
            seconds: Time limit in seconds

        Returns:
            Dictionary with success status, error message, and user-friendly message
        """
        if not isinstance(seconds, int) or isinstance(seconds, bool):
            error_msg = f"Question time limit must be an integer, got {type(seconds).__name__}"
            self.logger.error(error_msg)
            return {
                'success': False,
                'error': error_msg,
                'user_message': f"❌ Invalid input: Expected a number, got {type(seconds).__name__}"
            }

        if seconds < self.MIN_QUESTION_TIME_LIMIT:
            error_msg = f"Question time limit must be at least {self.MIN_QUESTION_TIME_LIMIT} seconds"
            self.logger.error(error_msg)
            return {
                'success': False,
                'error': error_msg,
                'user_message': f"❌ Time limit too short: Minimum is {self.MIN_QUESTION_TIME_LIMIT} seconds"
            }

        if seconds > self.MAX_QUESTION_TIME_LIMIT:
            error_msg = f"Question time limit cannot exceed {self.MAX_QUESTION_TIME_LIMIT} seconds"
            self.logger.error(error_msg)
            return {
                'success': False,
                'error': error_msg,
                'user_message': f"❌ Time limit too long: Maximum is {self.MAX_QUESTION_TIME_LIMIT} seconds"
            }

        self._quiz_settings.question_time_limit = seconds
        self.logger.info(f"Question time limit set to {seconds} seconds")
        return {
            'success': True,
            'message': f"Question time limit set to {seconds} seconds",
            'user_message': f"✅ Each question now lasts {seconds} seconds"
        }

    def get_question_time_limit(self) -> int:
        return self._quiz_settings.question_time_limit

    def set_answer_settle_delay(self, milliseconds: int) -> Dict[str, Any]:
        """
        Set how long a chosen answer stays highlighted before the next question.

        Args:
            milliseconds: Delay in milliseconds

        Returns:
            Dictionary with success status, error message, and user-friendly message
        """
        if not isinstance(milliseconds, int) or isinstance(milliseconds, bool):
            error_msg = f"Answer settle delay must be an integer, got {type(milliseconds).__name__}"
            self.logger.error(error_msg)
            return {
                'success': False,
                'error': error_msg,
                'user_message': f"❌ Invalid input: Expected a number, got {type(milliseconds).__name__}"
            }

        if not self.MIN_ANSWER_SETTLE_DELAY_MS <= milliseconds <= self.MAX_ANSWER_SETTLE_DELAY_MS:
            error_msg = (
                f"Answer settle delay must be between {self.MIN_ANSWER_SETTLE_DELAY_MS} "
                f"and {self.MAX_ANSWER_SETTLE_DELAY_MS} ms"
            )
            self.logger.error(error_msg)
            return {
                'success': False,
                'error': error_msg,
                'user_message': f"❌ Delay out of range: {error_msg}"
            }

        self._quiz_settings.answer_settle_delay_ms = milliseconds
        self.logger.info(f"Answer settle delay set to {milliseconds} ms")
        return {
            'success': True,
            'message': f"Answer settle delay set to {milliseconds} ms",
            'user_message': f"✅ Answers are shown for {milliseconds} ms before moving on"
        }

    def get_answer_settle_delay(self) -> int:
        return self._quiz_settings.answer_settle_delay_ms

    def set_database_url(self, url: Optional[str]) -> Dict[str, Any]:
        """
        Set the remote database URL, or None to run without a remote store.

        Returns:
            Dictionary with success status, error message, and user-friendly message
        """
        if url is None or (isinstance(url, str) and not url.strip()):
            self._remote_settings.database_url = None
            self.logger.info("Remote database disabled")
            return {
                'success': True,
                'message': "Remote database disabled",
                'user_message': "✅ Scores will be kept locally only"
            }

        if not isinstance(url, str):
            error_msg = f"Database URL must be a string, got {type(url).__name__}"
            self.logger.error(error_msg)
            return {
                'success': False,
                'error': error_msg,
                'user_message': "❌ Invalid input: Expected a URL"
            }

        parsed = urlparse(url.strip())
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            error_msg = f"Database URL must be an http(s) URL, got {url!r}"
            self.logger.error(error_msg)
            return {
                'success': False,
                'error': error_msg,
                'user_message': f"❌ Invalid database URL: {url}"
            }

        self._remote_settings.database_url = url.strip().rstrip("/")
        self.logger.info(f"Remote database set to {self._remote_settings.database_url}")
        return {
            'success': True,
            'message': f"Remote database set to {self._remote_settings.database_url}",
            'user_message': "✅ Remote database configured"
        }

    def set_auth_token(self, token: Optional[str]) -> None:
        self._remote_settings.auth_token = token or None

    def set_bank_file(self, path: Optional[str]) -> None:
        """Use a JSON file instead of the bundled question bank."""
        self._bank_file = path or None

    def get_bank_file(self) -> Optional[str]:
        return self._bank_file

    def apply_config(self, config: Dict[str, Any]) -> List[str]:
        """
        Apply the 'quiz' and 'remote' sections of a configuration dictionary,
        then environment overrides. Invalid values are skipped and defaults kept.

        Returns:
            Error messages for the values that were rejected
        """
        errors: List[str] = []
        quiz_config = config.get('quiz', {}) or {}
        remote_config = config.get('remote', {}) or {}

        if 'question_time_limit' in quiz_config:
            result = self.set_question_time_limit(quiz_config['question_time_limit'])
            if not result['success']:
                errors.append(result['error'])

        if 'answer_settle_delay_ms' in quiz_config:
            result = self.set_answer_settle_delay(quiz_config['answer_settle_delay_ms'])
            if not result['success']:
                errors.append(result['error'])

        if quiz_config.get('bank_file'):
            self.set_bank_file(quiz_config['bank_file'])

        database_url = os.getenv(self.ENV_DATABASE_URL) or remote_config.get('database_url')
        if database_url:
            result = self.set_database_url(database_url)
            if not result['success']:
                errors.append(result['error'])

        auth_token = os.getenv(self.ENV_AUTH_TOKEN) or remote_config.get('auth_token')
        if auth_token:
            self.set_auth_token(auth_token)

        if errors:
            self.logger.warning(f"Ignored {len(errors)} invalid configuration values")
        else:
            self.logger.info("Configuration applied successfully")
        return errors

    def reset_to_defaults(self) -> None:
        """Reset all settings to their default values."""
        self._quiz_settings = QuizSettings(
            question_time_limit=self.DEFAULT_QUESTION_TIME_LIMIT,
            answer_settle_delay_ms=self.DEFAULT_ANSWER_SETTLE_DELAY_MS
        )
        self._remote_settings = RemoteSettings()
        self._bank_file = None
        self.logger.info("All settings reset to default values")

    def validate_settings(self) -> Dict[str, Any]:
        """
        Validate current settings and return validation results.

        Returns:
            Dictionary with validation results and any issues found
        """
        validation_result = {
            "valid": True,
            "issues": []
        }

        limit = self._quiz_settings.question_time_limit
        if (not isinstance(limit, int) or
                limit < self.MIN_QUESTION_TIME_LIMIT or
                limit > self.MAX_QUESTION_TIME_LIMIT):
            validation_result["valid"] = False
            validation_result["issues"].append(f"Invalid question time limit: {limit}")

        delay = self._quiz_settings.answer_settle_delay_ms
        if (not isinstance(delay, int) or
                delay < self.MIN_ANSWER_SETTLE_DELAY_MS or
                delay > self.MAX_ANSWER_SETTLE_DELAY_MS):
            validation_result["valid"] = False
            validation_result["issues"].append(f"Invalid answer settle delay: {delay}")

        if self._remote_settings.auth_token and not self._remote_settings.database_url:
            validation_result["issues"].append("Auth token set without a database URL")

        return validation_result

    def require_valid(self) -> None:
        """
        Raises:
            ConfigurationError: If the current settings are invalid
        """
        result = self.validate_settings()
        if not result["valid"]:
            raise ConfigurationError("; ".join(result["issues"]))

    def get_settings_summary(self) -> str:
        """
        Get a formatted summary of current settings.

        Returns:
            Human-readable string describing current settings
        """
        remote = self._remote_settings.database_url or "disabled (local only)"
        bank = self._bank_file or "bundled"
        return (
            f"Quiz Settings:\n"
            f"• Time per question: {self._quiz_settings.question_time_limit} seconds\n"
            f"• Answer highlight: {self._quiz_settings.answer_settle_delay_ms} ms\n"
            f"• Question bank: {bank}\n"
            f"• Remote database: {remote}"
        )
