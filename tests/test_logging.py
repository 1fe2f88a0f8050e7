"""Tests for tower_dal.logging_config."""

import logging

from tower_dal.logging_config import ROOT_LOGGER_NAME, setup_logging


class TestSetupLogging:
    """Tests for the package logging helper."""

    def test_idempotent(self):
        """Test that repeated calls install a single handler and update the level."""
        logger = setup_logging("DEBUG")
        handlers = list(logger.handlers)

        again = setup_logging(logging.WARNING)

        assert again is logger
        assert again.name == ROOT_LOGGER_NAME
        assert again.handlers == handlers
        assert again.level == logging.WARNING

    def test_children_propagate(self):
        """Test that module loggers inherit the package level."""
        setup_logging("ERROR")
        child = logging.getLogger("tower_dal.cursors")

        assert child.getEffectiveLevel() == logging.ERROR
