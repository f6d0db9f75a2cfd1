"""
Logging Configuration
Sets up the 'tabflow' logger with console and file output.
"""
import logging
from datetime import datetime
from pathlib import Path
from typing import Optional, Union

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def setup_logging(level: Union[int, str] = logging.INFO, log_dir: Optional[str] = "logs") -> logging.Logger:
    """
    Configures the logger for the 'tabflow' namespace.

    Args:
        level: Logging level (e.g. logging.DEBUG, "INFO")
        log_dir: Directory for the timestamped log file. None disables the file handler.
    """
    logger = logging.getLogger("tabflow")
    logger.setLevel(level)

    # Avoid duplicate handlers when called more than once
    if logger.hasHandlers():
        for handler in list(logger.handlers):
            handler.close()
        logger.handlers.clear()

    formatter = logging.Formatter(LOG_FORMAT)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if log_dir:
        path = Path(log_dir)
        path.mkdir(parents=True, exist_ok=True)
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        file_handler = logging.FileHandler(path / f"tabflow_{timestamp}.log", encoding='utf-8')
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    logger.info("Logging initialized.")
    return logger
