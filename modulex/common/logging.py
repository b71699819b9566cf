#  SPDX-License-Identifier: MPL-2.0
#  Copyright 2020-2022 John Mille <john@compose-x.io>


from __future__ import annotations

import logging as logthings
import sys

VALID_LEVELS = [
    "FATAL",
    "CRITICAL",
    "ERROR",
    "WARNING",
    "WARN",
    "INFO",
    "DEBUG",
]


class MyFormatter(logthings.Formatter):
    default_format = "%(asctime)s [%(levelname)8s] %(message)s"
    debug_format = "%(asctime)s [%(levelname)8s] (%(filename)s.%(lineno)d , %(funcName)s,) %(message)s"
    date_format = "%Y-%m-%d %H:%M:%S"

    def format(self, record) -> str:
        if record.levelno == logthings.DEBUG:
            formatter = logthings.Formatter(self.debug_format, self.date_format)
        else:
            formatter = logthings.Formatter(self.default_format, self.date_format)
        return formatter.format(record)


class InfoFilter(logthings.Filter):
    """Keeps DEBUG and INFO records for stdout"""

    def filter(self, rec):
        return rec.levelno in (logthings.DEBUG, logthings.INFO)


class ErrorFilter(logthings.Filter):
    """Keeps WARNING and above for stderr"""

    def filter(self, rec):
        return rec.levelno not in (logthings.DEBUG, logthings.INFO)


def setup_logging(logger_name: str = "modulex"):
    """
    Configures the application logger with a stdout handler for DEBUG/INFO records
    and a stderr handler for anything from WARNING.

    :param str logger_name:
    :return: the application logger
    :rtype: logging.Logger
    """
    root_logger = logthings.getLogger()
    for h in root_logger.handlers:
        root_logger.removeHandler(h)

    app_logger = logthings.getLogger(logger_name)

    for h in list(app_logger.handlers):
        app_logger.removeHandler(h)

    stdout_handler = logthings.StreamHandler(sys.stdout)
    stdout_handler.setFormatter(MyFormatter())
    stdout_handler.setLevel(logthings.INFO)
    stdout_handler.addFilter(InfoFilter())

    stderr_handler = logthings.StreamHandler(sys.stderr)
    stderr_handler.setFormatter(MyFormatter())
    stderr_handler.setLevel(logthings.WARNING)
    stderr_handler.addFilter(ErrorFilter())

    app_logger.addHandler(stdout_handler)
    app_logger.addHandler(stderr_handler)
    app_logger.setLevel(logthings.INFO)
    return app_logger


def set_log_level(logger, level: str) -> bool:
    """
    Sets the level of the logger and of its stdout handler.

    :param logging.Logger logger:
    :param str level: name of the level
    :return: whether the level was valid and applied
    """
    if not level or level.upper() not in VALID_LEVELS:
        return False
    logger.setLevel(logthings.getLevelName(level.upper()))
    logger.handlers[0].setLevel(logthings.getLevelName(level.upper()))
    return True


LOG = setup_logging()
