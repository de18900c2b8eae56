import logging
import os
import sys
from typing import Optional, TextIO


class ColorFormatter(logging.Formatter):
    """
    Logging formatter that colors each record according to its level.

    Examples:
        >>> handler = logging.StreamHandler()
        >>> handler.setFormatter(ColorFormatter())
        >>> logging.getLogger("gradfn").addHandler(handler)
    """

    grey = "\x1b[38;20m"
    yellow = "\x1b[33;20m"
    red = "\x1b[31;20m"
    bold_red = "\x1b[31;1m"
    cyan = "\x1b[36;20m"
    green = "\x1b[32;20m"
    reset = "\x1b[0m"

    COLORS = {
        logging.DEBUG: cyan,
        logging.INFO: green,
        logging.WARNING: yellow,
        logging.ERROR: red,
        logging.CRITICAL: bold_red,
    }

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelno, self.grey)
        formatter = logging.Formatter(
            f"{color}%(asctime)s - %(name)s - %(levelname)s - %(message)s{self.reset}"
        )
        return formatter.format(record)


def setup_logger(
    name: Optional[str] = "gradfn", stream: Optional[TextIO] = None
) -> logging.Logger:
    """
    Configure a logger with colored console output.

    The level is DEBUG when the ``DEBUG`` environment variable is set, INFO otherwise.
    Every module of the package logs through ``logging.getLogger(__name__)``, so configuring
    the ``gradfn`` logger is enough to see their messages. Calling this function twice on the
    same logger does not attach a second handler.

    Args:
        name (str, optional): Logger name. Defaults to "gradfn".
        stream (TextIO, optional): Where to write. Defaults to ``sys.stdout``.

    Returns:
        logging.Logger: The configured logger.
    """
    logger = logging.getLogger(name)
    logger.setLevel(logging.DEBUG if os.getenv("DEBUG") else logging.INFO)

    if not any(getattr(h, "_gradfn_console", False) for h in logger.handlers):
        console_handler = logging.StreamHandler(stream or sys.stdout)
        console_handler.setFormatter(ColorFormatter())
        console_handler._gradfn_console = True  # type: ignore[attr-defined]
        logger.addHandler(console_handler)

    return logger
