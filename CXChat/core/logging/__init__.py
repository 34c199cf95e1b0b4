"""
Logging setup for CXChat.

Every module logs through the standard library:

    import logging
    logger = logging.getLogger(__name__)

and the process entry points call ``auto_configure()`` (or
``configure_logging(LogConfig(...))``) once to install handlers:

- coloured console output
- rotating ``cxchat.log`` plus an errors-only ``cxchat_errors.log``
- optional JSON lines for log shippers
- per-component levels (``websockets``, ``uvicorn.access``)
"""

import json
import logging
import logging.handlers
import os
import sys
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Union


@dataclass
class LogConfig:
    """
    Configuration for the logging system.

    Attributes:
        level: Minimum log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_dir: Directory for log files
        console_output: Whether to output to console
        file_output: Whether to output to file
        json_output: Emit file records as JSON lines instead of text
        max_bytes: Maximum size of log file before rotation (bytes)
        backup_count: Number of backup files to keep
        format_string: Custom format string for log messages
        date_format: Custom date format string
        component_levels: Dict mapping logger names to log levels
    """
    level: str = "INFO"
    log_dir: str = "./logs"
    console_output: bool = True
    file_output: bool = True
    json_output: bool = False
    max_bytes: int = 10 * 1024 * 1024  # 10MB
    backup_count: int = 5
    format_string: Optional[str] = None
    date_format: str = "%Y-%m-%d %H:%M:%S"
    component_levels: Dict[str, str] = field(default_factory=dict)


class ColoredFormatter(logging.Formatter):
    """Formatter that colours the level name on ANSI terminals."""

    COLORS = {
        'DEBUG': '\033[36m',
        'INFO': '\033[32m',
        'WARNING': '\033[33m',
        'ERROR': '\033[31m',
        'CRITICAL': '\033[35m',
    }
    RESET = '\033[0m'

    def __init__(self, fmt: str, datefmt: str = None, use_colors: bool = True):
        super().__init__(fmt, datefmt)
        self.use_colors = use_colors and sys.platform != 'win32'

    def format(self, record: logging.LogRecord) -> str:
        if not self.use_colors or record.levelname not in self.COLORS:
            return super().format(record)
        original = record.levelname
        record.levelname = f"{self.COLORS[original]}{original}{self.RESET}"
        try:
            return super().format(record)
        finally:
            record.levelname = original


class JsonFormatter(logging.Formatter):
    """Formatter that outputs log records as one JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            'timestamp': datetime.fromtimestamp(record.created).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno,
        }
        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)
        if hasattr(record, 'extra_data'):
            log_data.update(record.extra_data)
        return json.dumps(log_data, default=str)


def get_default_format() -> str:
    """Get the default log format string."""
    return "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def get_detailed_format() -> str:
    """Get a detailed log format string with more context."""
    return (
        "%(asctime)s - %(name)s - %(levelname)s - "
        "[%(filename)s:%(lineno)d - %(funcName)s] - %(message)s"
    )


class LoggingManager:
    """
    Owns the handlers installed on the root logger.

    Re-configuring replaces the previously installed handlers, so tests
    and entry points can call ``configure`` more than once.
    """

    def __init__(self):
        self._config: Optional[LogConfig] = None
        self._handlers: List[logging.Handler] = []

    @property
    def config(self) -> Optional[LogConfig]:
        return self._config

    def configure(self, config: LogConfig) -> None:
        """
        Configure the logging system.

        Args:
            config: Logging configuration
        """
        self._config = config
        level = getattr(logging, config.level.upper())

        root_logger = logging.getLogger()
        root_logger.setLevel(level)
        for handler in self._handlers:
            root_logger.removeHandler(handler)
            handler.close()
        self._handlers = []

        if config.console_output:
            console_handler = logging.StreamHandler(sys.stdout)
            console_handler.setLevel(level)
            console_handler.setFormatter(ColoredFormatter(
                config.format_string or get_default_format(),
                config.date_format
            ))
            self._add(console_handler)

        if config.file_output:
            Path(config.log_dir).mkdir(parents=True, exist_ok=True)
            if config.json_output:
                formatter = JsonFormatter()
            else:
                formatter = logging.Formatter(
                    config.format_string or get_detailed_format(),
                    config.date_format
                )

            file_handler = logging.handlers.RotatingFileHandler(
                os.path.join(config.log_dir, "cxchat.log"),
                maxBytes=config.max_bytes,
                backupCount=config.backup_count,
                encoding='utf-8'
            )
            file_handler.setLevel(level)
            file_handler.setFormatter(formatter)
            self._add(file_handler)

            error_handler = logging.handlers.RotatingFileHandler(
                os.path.join(config.log_dir, "cxchat_errors.log"),
                maxBytes=config.max_bytes,
                backupCount=config.backup_count,
                encoding='utf-8'
            )
            error_handler.setLevel(logging.ERROR)
            error_handler.setFormatter(formatter)
            self._add(error_handler)

        for component, component_level in config.component_levels.items():
            logging.getLogger(component).setLevel(getattr(logging, component_level.upper()))

        logging.getLogger(__name__).info("Logging system configured with level: %s", config.level)

    def _add(self, handler: logging.Handler) -> None:
        logging.getLogger().addHandler(handler)
        self._handlers.append(handler)

    def set_level(self, level: Union[str, int]) -> None:
        """Set the global log level on the root logger and our handlers."""
        if isinstance(level, str):
            level = getattr(logging, level.upper())
        logging.getLogger().setLevel(level)
        for handler in self._handlers:
            if handler.level != logging.ERROR:
                handler.setLevel(level)

    def shutdown(self) -> None:
        """Flush and close the installed handlers."""
        for handler in self._handlers:
            logging.getLogger().removeHandler(handler)
            handler.close()
        self._handlers = []


_logging_manager = LoggingManager()


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance (thin alias of ``logging.getLogger``)."""
    return logging.getLogger(name)


def configure_logging(config: LogConfig) -> None:
    """Configure the process-wide logging system."""
    _logging_manager.configure(config)


def get_logging_manager() -> LoggingManager:
    """Get the process-wide logging manager."""
    return _logging_manager


def create_development_config() -> LogConfig:
    """Verbose console plus rotating files under ./logs/dev."""
    return LogConfig(
        level="DEBUG",
        log_dir="./logs/dev",
        max_bytes=5 * 1024 * 1024,
        backup_count=3,
        format_string=get_detailed_format(),
        component_levels={
            "websockets": "WARNING",
            "uvicorn.access": "WARNING",
        }
    )


def create_production_config() -> LogConfig:
    """File-only JSON logs under ./logs/prod."""
    return LogConfig(
        level="INFO",
        log_dir="./logs/prod",
        console_output=False,
        json_output=True,
        max_bytes=50 * 1024 * 1024,
        backup_count=10,
        component_levels={
            "websockets": "ERROR",
            "uvicorn.access": "WARNING",
        }
    )


def create_testing_config() -> LogConfig:
    """Console only, terse format."""
    return LogConfig(
        level="DEBUG",
        console_output=True,
        file_output=False,
        format_string="%(levelname)s - %(name)s - %(message)s",
        component_levels={
            "websockets": "ERROR",
        }
    )


_PRESETS = {
    "development": create_development_config,
    "dev": create_development_config,
    "production": create_production_config,
    "prod": create_production_config,
    "testing": create_testing_config,
    "test": create_testing_config,
}


def auto_configure(env: Optional[str] = None) -> None:
    """
    Configure logging from an environment name.

    Args:
        env: development, production or testing. Falls back to the
             ``CXCHAT_ENV`` environment variable, then development.
    """
    if env is None:
        env = os.environ.get("CXCHAT_ENV", "development")
    env = env.lower()
    configure_logging(_PRESETS.get(env, create_development_config)())
    logging.getLogger(__name__).info("Logging auto-configured for environment: %s", env)


__all__ = [
    'LogConfig',
    'LoggingManager',
    'ColoredFormatter',
    'JsonFormatter',
    'get_logger',
    'configure_logging',
    'get_logging_manager',
    'create_development_config',
    'create_production_config',
    'create_testing_config',
    'auto_configure',
    'get_default_format',
    'get_detailed_format',
]
