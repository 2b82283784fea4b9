"""Logging configuration for fapiao parsing."""
import logging
import logging.config
from pathlib import Path
from typing import Dict, Any

# Third-party loggers and the level they are held at
LIBRARY_LEVELS = {
    "aiohttp": "WARNING",
    "uvicorn": "INFO",
    "uvicorn.error": "INFO",
    "uvicorn.access": "WARNING",
}


def get_logging_config(
    logs_folder: Path,
    log_filename: str = "fapiao_parser.log",
    level: str = "INFO",
) -> Dict[str, Any]:
    """
    Get logging configuration dictionary.

    The console shows ``level`` and above; the log file always receives DEBUG
    output from the ``fapiao_parser`` package, including raw reply excerpts.
    Library loggers (aiohttp, uvicorn) share the same handlers so the proxy
    writes one log.
    """
    logs_folder = Path(logs_folder)
    logs_folder.mkdir(parents=True, exist_ok=True)
    log_file_path = logs_folder / log_filename

    loggers: Dict[str, Any] = {
        "fapiao_parser": {
            "level": "DEBUG",
            "handlers": ["console", "file"],
            "propagate": False,
        }
    }
    for name, library_level in LIBRARY_LEVELS.items():
        loggers[name] = {"level": library_level, "handlers": ["console", "file"], "propagate": False}

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "standard": {
                "format": "%(asctime)s - %(levelname)s - %(message)s"
            },
            "detailed": {
                "format": "%(asctime)s - %(name)s - %(levelname)s - %(funcName)s:%(lineno)d - %(message)s"
            }
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "level": level,
                "formatter": "standard",
                # stdout is left to the CLI progress bar
                "stream": "ext://sys.stderr"
            },
            "file": {
                "class": "logging.FileHandler",
                "level": "DEBUG",
                "formatter": "detailed",
                "filename": str(log_file_path),
                "mode": "a",
                "encoding": "utf-8"
            }
        },
        "root": {
            "level": "WARNING",
            "handlers": ["console", "file"]
        },
        "loggers": loggers,
    }


def setup_logging(logs_folder: Path, log_filename: str = "fapiao_parser.log", level: str = "INFO") -> None:
    """Set up logging with the specified configuration."""
    config = get_logging_config(logs_folder, log_filename, level)

    # Clear any existing handlers to prevent duplicate logs
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    logging.config.dictConfig(config)
    logging.getLogger(__name__).debug(f"Logging to {config['handlers']['file']['filename']}")
