"""Console logging for Kiln.

All modules log through ``logging.getLogger(__name__)``; this module installs
a single handler on the ``kiln`` logger that writes through ``click.echo`` so
log lines share the terminal with the CLI's own output and colours.
"""

from __future__ import annotations

import logging

import click

LEVEL_STYLES = {
    logging.DEBUG: {"fg": "bright_black"},
    logging.WARNING: {"fg": "yellow"},
    logging.ERROR: {"fg": "red", "bold": True},
    logging.CRITICAL: {"fg": "red", "bold": True},
}


class ClickHandler(logging.Handler):
    """Logging handler that echoes records with click, styled by level."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            message = self.format(record)
            style = LEVEL_STYLES.get(record.levelno)
            if style:
                message = click.style(message, **style)
            click.echo(message, err=record.levelno >= logging.WARNING)
        except Exception:
            self.handleError(record)


def setup_logging(verbose: bool = False) -> logging.Logger:
    """Configure the ``kiln`` logger for console output.

    Args:
        verbose: Emit DEBUG records when True, INFO and above otherwise.

    Returns:
        The configured package logger.
    """
    logger = logging.getLogger("kiln")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
    handler = ClickHandler()
    handler.setFormatter(logging.Formatter("%(message)s"))
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG if verbose else logging.INFO)
    logger.propagate = False

    # watchdog is chatty at DEBUG
    logging.getLogger("watchdog").setLevel(logging.WARNING)
    return logger
