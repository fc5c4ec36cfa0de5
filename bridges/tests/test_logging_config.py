"""
Tests for the logging setup helpers.
"""

import json
import logging
import os
import tempfile
import unittest

from bridges.logging_config import setup_logging


class TestSetupLogging(unittest.TestCase):

    def setUp(self):
        self.logger = logging.getLogger("bridges")
        self._handlers = list(self.logger.handlers)
        self._level = self.logger.level

    def tearDown(self):
        for handler in list(self.logger.handlers):
            if handler not in self._handlers:
                self.logger.removeHandler(handler)
        # dictConfig drops the handlers of the loggers it configures
        for handler in self._handlers:
            self.logger.addHandler(handler)
        self.logger.setLevel(self._level)
        logging.getLogger("bridges.kernel.assembler").setLevel(logging.NOTSET)

    def test_default_configuration(self):
        """The default setup adds a stream handler and quiets the assembler."""
        setup_logging(level=logging.INFO)
        self.assertEqual(self.logger.level, logging.INFO)
        streams = [h for h in self.logger.handlers if type(h) is logging.StreamHandler]
        self.assertEqual(len(streams), 1)
        self.assertEqual(logging.getLogger("bridges.kernel.assembler").level, logging.WARNING)

    def test_repeated_setup_adds_one_handler(self):
        """Calling setup twice does not duplicate the handler."""
        setup_logging()
        setup_logging()
        streams = [h for h in self.logger.handlers if type(h) is logging.StreamHandler]
        self.assertEqual(len(streams), 1)

    def test_missing_file_falls_back(self):
        """A missing config file falls back to the defaults."""
        setup_logging(config_path="/nonexistent/logging.json", level=logging.DEBUG)
        self.assertEqual(self.logger.level, logging.DEBUG)

    def test_json_file(self):
        """A JSON dictConfig file is applied, and the level argument wins."""
        config = {
            "version": 1,
            "disable_existing_loggers": False,
            "loggers": {"bridges": {"level": "WARNING"}},
        }
        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, "logging.json")
            with open(path, "w") as f:
                json.dump(config, f)
            setup_logging(config_path=path)
            self.assertEqual(self.logger.level, logging.WARNING)
            setup_logging(config_path=path, level=logging.ERROR)
            self.assertEqual(self.logger.level, logging.ERROR)


if __name__ == "__main__":
    unittest.main()
