#!/usr/bin/env python3
"""
Category Quiz Bot - Main Entry Point

Loads the configuration file, checks the quiz and remote settings before
connecting, sets up logging and runs the Discord host.

Usage:
    python main.py

Environment Variables:
    QUIZ_CONFIG: Path of the configuration file (default: config.json)
    DISCORD_BOT_TOKEN: Discord bot token (overrides the config file)
    FIREBASE_DATABASE_URL: Remote database URL (overrides the config file)
    FIREBASE_AUTH_TOKEN: Remote database auth token (overrides the config file)
"""

import asyncio
import json
import logging
import os
import sys
from pathlib import Path
from typing import Any, Dict, Optional

from category_quiz.config_manager import ConfigManager, ConfigurationError

DEFAULT_CONFIG_PATH = "config.json"
TOKEN_PLACEHOLDER = "YOUR_DISCORD_BOT_TOKEN_HERE"
LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def load_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    """
    Read the JSON configuration file.

    Raises:
        ConfigurationError: If the file is missing, unreadable or not a JSON object
    """
    path = Path(config_path or os.getenv('QUIZ_CONFIG') or DEFAULT_CONFIG_PATH)

    if not path.exists():
        raise ConfigurationError(f"{path} not found. Copy config.json and set your Discord bot token.")

    try:
        with open(path, 'r', encoding='utf-8') as f:
            config = json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Invalid JSON in {path}: {e}") from e
    except OSError as e:
        raise ConfigurationError(f"Cannot read {path}: {e}") from e

    if not isinstance(config, dict):
        raise ConfigurationError(f"{path} must contain a JSON object")
    return config


def check_config(config: Dict[str, Any]) -> ConfigManager:
    """
    Apply the quiz and remote sections once before connecting, so unusable
    settings stop startup instead of failing inside the bot.

    Raises:
        ConfigurationError: If the resulting settings are invalid
    """
    config_manager = ConfigManager()
    for error in config_manager.apply_config(config):
        logging.getLogger(__name__).warning(f"Configuration value ignored: {error}")
    config_manager.require_valid()
    return config_manager


def get_bot_token(config: Dict[str, Any]) -> Optional[str]:
    """Bot token from DISCORD_BOT_TOKEN, then the config file; None if unset."""
    token = os.getenv('DISCORD_BOT_TOKEN') or (config.get('bot') or {}).get('token')
    if not token or token == TOKEN_PLACEHOLDER:
        return None
    return token


def setup_logging_from_config(config: Dict[str, Any]) -> None:
    """Console and bot.log at the configured level; errors.log for errors only."""
    log_config = config.get('logging') or {}
    log_level = getattr(logging, str(log_config.get('level', 'INFO')).upper(), logging.INFO)
    log_directory = Path(log_config.get('log_directory', './logs/'))
    log_directory.mkdir(parents=True, exist_ok=True)

    error_handler = logging.FileHandler(log_directory / "errors.log", encoding='utf-8')
    error_handler.setLevel(logging.ERROR)

    logging.basicConfig(
        level=log_level,
        format=LOG_FORMAT,
        handlers=[
            logging.StreamHandler(),
            logging.FileHandler(log_directory / "bot.log", encoding='utf-8'),
            error_handler
        ]
    )

    for noisy in ('discord', 'discord.http', 'httpx'):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def main() -> int:
    """Start the bot; returns the process exit code."""
    try:
        config = load_config()
        setup_logging_from_config(config)
        config_manager = check_config(config)
    except ConfigurationError as e:
        print(f"❌ Configuration error: {e}")
        return 1

    token = get_bot_token(config)
    if token is None:
        print("❌ Discord bot token not configured!")
        print("Set DISCORD_BOT_TOKEN or the 'bot.token' field in the config file.")
        return 1

    print("🤖 Starting Category Quiz Bot...")
    print(config_manager.get_settings_summary())

    from category_quiz.bot import run_bot
    try:
        asyncio.run(run_bot(token, config))
    except KeyboardInterrupt:
        print("\n👋 Bot stopped by user")
    return 0


if __name__ == "__main__":
    sys.exit(main())
