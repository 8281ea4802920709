"""
Logging configuration for Aircache.

Console output goes through rich's RichHandler; an optional plain file
handler can be added for long-running service deployments.
"""

import logging
from pathlib import Path
from typing import Any

from rich.console import Console
from rich.logging import RichHandler


class FileFormatter(logging.Formatter):
    """Formatter for file logs - clean and parseable."""

    def __init__(self) -> None:
        super().__init__(fmt="%(asctime)s [%(levelname)-8s] %(name)s: %(message)s", datefmt="%Y-%m-%d %H:%M:%S")


# Map string level names to logging constants
LEVEL_MAP = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}


def _parse_level(level: str | int) -> int:
    """
    Parse logging level from string or int.

    Args:
        level: Logging level as string (DEBUG, INFO, etc.) or int

    Returns:
        Logging level constant, INFO when the value is not recognised
    """
    if isinstance(level, int):
        return level
    if isinstance(level, str):
        return LEVEL_MAP.get(level.upper(), logging.INFO)
    return logging.INFO


def setup_logging(
    level: str | int = logging.INFO,
    log_file: str | Path | None = None,
    file_mode: str = "a",
    console: Console | None = None,
    console_enabled: bool = True,
    use_rich: bool = True,
) -> logging.Logger:
    """
    Setup logging configuration for Aircache.

    Args:
        level: Logging level as string (DEBUG, INFO, etc.) or int (default: INFO)
        log_file: Optional file path to write logs to (default: None, console only)
        file_mode: File mode for file handler - 'a' for append, 'w' for overwrite
        console: Optional Rich Console instance to log to (default: stderr)
        console_enabled: Whether to enable console logging (default: True)
        use_rich: Use RichHandler for console output; plain StreamHandler otherwise

    Returns:
        The configured ``aircache`` logger
    """
    logger = logging.getLogger("aircache")

    # Only clear handlers from this specific logger, not root or child loggers
    logger.handlers.clear()
    level_int = _parse_level(level)
    logger.setLevel(level_int)

    if console_enabled:
        if use_rich:
            logger.addHandler(
                RichHandler(
                    level=level_int,
                    console=console or Console(stderr=True),
                    show_time=True,
                    show_path=False,
                    markup=False,
                    rich_tracebacks=True,
                    log_time_format="[%X]",
                    omit_repeated_times=False,
                )
            )
        else:
            handler = logging.StreamHandler()
            handler.setLevel(level_int)
            handler.setFormatter(logging.Formatter("%(levelname)s: %(asctime)s - %(message)s", "%Y-%m-%d %H:%M:%S"))
            logger.addHandler(handler)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path, mode=file_mode, encoding="utf-8")
        file_handler.setLevel(level_int)
        file_handler.setFormatter(FileFormatter())
        logger.addHandler(file_handler)

    return logger


def setup_logging_from_config(config: dict[str, Any] | None, verbose: bool = False) -> logging.Logger:
    """
    Setup logging from the ``logging`` section of config.yaml.

    Config schema::

        logging:
          level: INFO
          file: logs/aircache.log
          file_mode: a
          rich: true

    Args:
        config: The ``logging`` config section (may be None)
        verbose: Force DEBUG level regardless of config
    """
    config = config or {}
    level: str | int = "DEBUG" if verbose else config.get("level", "INFO")
    return setup_logging(
        level=level,
        log_file=config.get("file"),
        file_mode=config.get("file_mode", "a"),
        use_rich=bool(config.get("rich", True)),
    )


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance for a module.

    Args:
        name: Logger name, conventionally ``aircache.<module>``

    Returns:
        Logger instance
    """
    return logging.getLogger(name)
