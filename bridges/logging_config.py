"""
Logging configuration helpers.

The library itself only ever calls ``logging.getLogger(__name__)``; the
functions below are for applications and scripts that want to see the
solver's progress messages.
"""

import json
import logging
import logging.config
import os
import sys
from typing import Optional


DEFAULT_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def setup_logging(config_path: Optional[str] = None, level: Optional[int] = None) -> None:
    """
    Configure logging from a JSON ``dictConfig`` file or use defaults.

    Args:
        config_path: Path to a logging config JSON file.  When missing or
                     unreadable the default stream configuration is used.
        level: Level for the ``bridges`` logger (overrides the file).
    """
    if config_path is not None and os.path.exists(config_path):
        try:
            with open(config_path, 'r') as f:
                config = json.load(f)
            logging.config.dictConfig(config)
            if level is not None:
                logging.getLogger('bridges').setLevel(level)
            return
        except (json.JSONDecodeError, ValueError, KeyError) as e:
            logging.getLogger(__name__).warning(
                "Failed to load logging config from %s: %s; using defaults", config_path, e
            )

    _setup_default_logging(logging.INFO if level is None else level)


def _setup_default_logging(level: int) -> None:
    """Stream handler on stdout for the ``bridges`` logger only."""
    logger = logging.getLogger('bridges')
    if not any(isinstance(h, logging.StreamHandler) and not isinstance(h, logging.NullHandler)
               for h in logger.handlers):
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(DEFAULT_FORMAT))
        logger.addHandler(handler)
    logger.setLevel(level)

    # The assembler is chatty at DEBUG; keep it quiet unless asked for.
    if level <= logging.DEBUG:
        return
    logging.getLogger('bridges.kernel.assembler').setLevel(logging.WARNING)

