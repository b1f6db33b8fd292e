"""
Tests for create_logger / parse_level
"""

import logging

import pytest

from chainreactor.logging_setup import create_logger, parse_level


class TestParseLevel:
    """Tests for level parsing"""

    def test_names_and_ints(self):
        """Test: names are case-insensitive; ints pass through"""
        assert parse_level("debug") == logging.DEBUG
        assert parse_level(" Warning ") == logging.WARNING
        assert parse_level(logging.ERROR) == logging.ERROR

    def test_unknown_name(self):
        """Test: an unknown name raises ValueError"""
        with pytest.raises(ValueError):
            parse_level("chatty")


class TestCreateLogger:
    """Tests for handler setup"""

    def test_file_logging(self, tmp_path):
        """Test: records reach the rotating file with the file format"""
        log_file = tmp_path / "logs" / "run.log"
        logger = create_logger("chainreactor.test.file", log_file, level="debug", console=False)
        logger.debug("written to file")
        for handler in logger.handlers:
            handler.flush()
        assert logger.level == logging.DEBUG
        assert "| DEBUG | chainreactor.test.file | written to file" in log_file.read_text()

    def test_repeated_calls_replace_handlers(self, tmp_path):
        """Test: calling twice does not duplicate handlers"""
        create_logger("chainreactor.test.twice", tmp_path / "a.log")
        logger = create_logger("chainreactor.test.twice", tmp_path / "a.log")
        assert len(logger.handlers) == 2

    def test_no_handlers_requested(self):
        """Test: no file and no console leaves a NullHandler"""
        logger = create_logger("chainreactor.test.quiet", console=False)
        assert [type(h) for h in logger.handlers] == [logging.NullHandler]
