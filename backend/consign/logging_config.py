"""
Logging setup for the consign app.

Flask names app.logger after the import package ("consign"), so module loggers
(consign.services.*, consign.audit, consign.scheduler) propagate into it. One
stream handler replaces Flask's default; level comes from LOG_LEVEL.
"""

import logging

from flask.logging import default_handler

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

_HANDLER_NAME = "consign-stream"


def configure_logging(app) -> logging.Logger:
    level = logging.getLevelName(str(app.config.get("LOG_LEVEL", "INFO")).upper())
    if not isinstance(level, int):
        level = logging.INFO

    logger = app.logger
    logger.removeHandler(default_handler)
    logger.setLevel(level)

    if not any(h.get_name() == _HANDLER_NAME for h in logger.handlers):
        handler = logging.StreamHandler()
        handler.set_name(_HANDLER_NAME)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(handler)

    return logger
