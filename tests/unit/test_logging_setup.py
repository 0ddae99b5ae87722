"""Unit tests for logging configuration."""
from __future__ import annotations

import logging

import pytest

from position_guard.logging_setup import LOG_FORMAT, configure_logging


class TestConfigureLogging:
    @pytest.mark.parametrize(
        ("name", "expected"),
        [("INFO", logging.INFO), ("debug", logging.DEBUG), ("Warning", logging.WARNING)],
    )
    def test_sets_root_level(self, name: str, expected: int) -> None:
        configure_logging(name)
        assert logging.getLogger().level == expected

    def test_unknown_level_falls_back_to_info(self) -> None:
        configure_logging("VERBOSE")
        assert logging.getLogger().level == logging.INFO

    @pytest.mark.parametrize("noisy", ["aiohttp", "asyncio"])
    def test_quiets_library_loggers(self, noisy: str) -> None:
        configure_logging("DEBUG")
        assert logging.getLogger(noisy).level == logging.WARNING

    def test_engine_loggers_follow_root(self) -> None:
        configure_logging("DEBUG")
        assert logging.getLogger("position_guard.engine.orders").getEffectiveLevel() == logging.DEBUG

    def test_root_handler_uses_timestamped_format(self) -> None:
        configure_logging("INFO")
        formats = [h.formatter._fmt for h in logging.getLogger().handlers if h.formatter]
        assert LOG_FORMAT in formats
