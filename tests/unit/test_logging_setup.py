"""Unit tests for logging configuration."""
from __future__ import annotations

import logging

import pytest

import leverage_engine
from leverage_engine.logging_setup import LOG_FORMAT, configure_logging


class TestConfigureLogging:
    @pytest.mark.parametrize(
        ("name", "level"),
        [("INFO", logging.INFO), ("debug", logging.DEBUG), ("Warning", logging.WARNING)],
    )
    def test_level_names_case_insensitive(self, name: str, level: int) -> None:
        configure_logging(name)
        assert logging.getLogger().level == level

    @pytest.mark.parametrize("noisy", ["aiohttp", "urllib3"])
    def test_http_libraries_pinned_to_warning(self, noisy: str) -> None:
        configure_logging("DEBUG")
        assert logging.getLogger(noisy).level == logging.WARNING

    def test_unknown_level_falls_back_to_info(self) -> None:
        configure_logging("CHATTY")
        assert logging.getLogger().level == logging.INFO

    def test_root_handler_uses_module_format(self) -> None:
        configure_logging()
        formats = [h.formatter._fmt for h in logging.getLogger().handlers if h.formatter]
        assert LOG_FORMAT in formats

    def test_exported_for_entry_points(self) -> None:
        assert leverage_engine.configure_logging is configure_logging
