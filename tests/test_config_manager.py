"""
Unit tests for ConfigManager class.
"""
import logging
import os
import unittest
from unittest.mock import patch

from category_quiz.config_manager import ConfigManager, ConfigurationError
from category_quiz.models import QuizSettings


class TestConfigManager(unittest.TestCase):
    """Test cases for ConfigManager functionality."""

    def setUp(self):
        """Set up test fixtures before each test method."""
        self.config_manager = ConfigManager()

        # Suppress logging during tests
        logging.disable(logging.CRITICAL)

    def tearDown(self):
        """Clean up after each test method."""
        logging.disable(logging.NOTSET)

    def test_initialization_with_defaults(self):
        """Test that ConfigManager initializes with correct default values."""
        settings = self.config_manager.get_quiz_settings()

        self.assertEqual(settings, QuizSettings(question_time_limit=10, answer_settle_delay_ms=500))
        self.assertIsNone(self.config_manager.get_remote_settings().database_url)
        self.assertIsNone(self.config_manager.get_bank_file())

    def test_get_quiz_settings_returns_copy(self):
        settings = self.config_manager.get_quiz_settings()
        settings.question_time_limit = 99

        self.assertEqual(self.config_manager.get_question_time_limit(), 10)

    def test_set_question_time_limit_valid_values(self):
        for seconds in (3, 10, 60, 300):
            with self.subTest(seconds=seconds):
                result = self.config_manager.set_question_time_limit(seconds)
                self.assertTrue(result['success'])
                self.assertIn('user_message', result)
                self.assertEqual(self.config_manager.get_question_time_limit(), seconds)

    def test_set_question_time_limit_invalid_values(self):
        for value in ("10", 10.5, None, True, 2, 0, -5, 301):
            with self.subTest(value=value):
                result = self.config_manager.set_question_time_limit(value)
                self.assertFalse(result['success'])
                self.assertIn('error', result)
                self.assertTrue(result['user_message'].startswith("❌"))

        self.assertEqual(self.config_manager.get_question_time_limit(), 10)

    def test_set_answer_settle_delay(self):
        result = self.config_manager.set_answer_settle_delay(0)
        self.assertTrue(result['success'])
        self.assertEqual(self.config_manager.get_answer_settle_delay(), 0)

        result = self.config_manager.set_answer_settle_delay(5000)
        self.assertTrue(result['success'])

        for value in (-1, 5001, "500", False):
            with self.subTest(value=value):
                self.assertFalse(self.config_manager.set_answer_settle_delay(value)['success'])
        self.assertEqual(self.config_manager.get_answer_settle_delay(), 5000)

    def test_set_database_url(self):
        result = self.config_manager.set_database_url("https://quiz-demo.firebaseio.com/")
        self.assertTrue(result['success'])
        self.assertEqual(
            self.config_manager.get_remote_settings().database_url,
            "https://quiz-demo.firebaseio.com"
        )

        result = self.config_manager.set_database_url("   ")
        self.assertTrue(result['success'])
        self.assertIsNone(self.config_manager.get_remote_settings().database_url)

    def test_set_database_url_invalid(self):
        for value in ("quiz-demo.firebaseio.com", "ftp://quiz-demo.firebaseio.com", "https://", 42):
            with self.subTest(value=value):
                result = self.config_manager.set_database_url(value)
                self.assertFalse(result['success'])
        self.assertIsNone(self.config_manager.get_remote_settings().database_url)

    @patch.dict(os.environ, {}, clear=True)
    def test_apply_config(self):
        errors = self.config_manager.apply_config({
            "quiz": {"question_time_limit": 20, "answer_settle_delay_ms": 250, "bank_file": "bank.json"},
            "remote": {"database_url": "https://quiz-demo.firebaseio.com", "auth_token": "secret"}
        })

        self.assertEqual(errors, [])
        self.assertEqual(
            self.config_manager.get_quiz_settings(),
            QuizSettings(question_time_limit=20, answer_settle_delay_ms=250)
        )
        self.assertEqual(self.config_manager.get_bank_file(), "bank.json")
        remote = self.config_manager.get_remote_settings()
        self.assertEqual(remote.database_url, "https://quiz-demo.firebaseio.com")
        self.assertEqual(remote.auth_token, "secret")

    @patch.dict(os.environ, {}, clear=True)
    def test_apply_config_keeps_defaults_for_invalid_values(self):
        errors = self.config_manager.apply_config({
            "quiz": {"question_time_limit": 1, "answer_settle_delay_ms": "slow"},
            "remote": {"database_url": "not a url"}
        })

        self.assertEqual(len(errors), 3)
        self.assertEqual(self.config_manager.get_question_time_limit(), 10)
        self.assertEqual(self.config_manager.get_answer_settle_delay(), 500)
        self.assertIsNone(self.config_manager.get_remote_settings().database_url)

    @patch.dict(os.environ, {}, clear=True)
    def test_apply_config_with_missing_sections(self):
        self.assertEqual(self.config_manager.apply_config({}), [])
        self.assertEqual(self.config_manager.apply_config({"quiz": None, "remote": None}), [])

    @patch.dict(os.environ, {
        "FIREBASE_DATABASE_URL": "https://env-db.firebaseio.com",
        "FIREBASE_AUTH_TOKEN": "env-token"
    }, clear=True)
    def test_environment_overrides_config(self):
        self.config_manager.apply_config({
            "remote": {"database_url": "https://file-db.firebaseio.com", "auth_token": "file-token"}
        })

        remote = self.config_manager.get_remote_settings()
        self.assertEqual(remote.database_url, "https://env-db.firebaseio.com")
        self.assertEqual(remote.auth_token, "env-token")

    def test_reset_to_defaults(self):
        self.config_manager.set_question_time_limit(30)
        self.config_manager.set_database_url("https://quiz-demo.firebaseio.com")
        self.config_manager.set_bank_file("bank.json")

        self.config_manager.reset_to_defaults()

        self.assertEqual(self.config_manager.get_question_time_limit(), 10)
        self.assertIsNone(self.config_manager.get_remote_settings().database_url)
        self.assertIsNone(self.config_manager.get_bank_file())

    def test_validate_settings(self):
        self.assertTrue(self.config_manager.validate_settings()['valid'])

        self.config_manager._quiz_settings.question_time_limit = 0
        result = self.config_manager.validate_settings()

        self.assertFalse(result['valid'])
        self.assertEqual(len(result['issues']), 1)
        with self.assertRaises(ConfigurationError):
            self.config_manager.require_valid()

    def test_auth_token_without_url_is_reported_but_valid(self):
        self.config_manager.set_auth_token("secret")
        result = self.config_manager.validate_settings()

        self.assertTrue(result['valid'])
        self.assertEqual(result['issues'], ["Auth token set without a database URL"])
        self.config_manager.require_valid()

    def test_settings_summary(self):
        self.config_manager.set_question_time_limit(15)
        summary = self.config_manager.get_settings_summary()

        self.assertIn("Time per question: 15 seconds", summary)
        self.assertIn("Answer highlight: 500 ms", summary)
        self.assertIn("Question bank: bundled", summary)
        self.assertIn("Remote database: disabled", summary)


if __name__ == '__main__':
    unittest.main()
