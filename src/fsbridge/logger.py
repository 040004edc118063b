"""
Logging for fsbridge.

Everything logs under the 'fsbridge' namespace. Being a library, fsbridge is
quiet by default: WARNING and above go to stderr, and log files are only
written when asked for.

Features:
- TRACE level below DEBUG for raw protocol chatter (LIST output, replies)
- Text, colored and JSON formatters
- Daily rotated log files (opt-in)
- Per-module log levels
- Context enrichment (host, path, operation...)
- Operation timing with slow operation warnings

Environment:
    FSBRIDGE_LOG_LEVEL       default WARNING
    FSBRIDGE_LOG_DIR         default ./logs, created only when a file is enabled
    FSBRIDGE_LOG_CONSOLE     stderr output, default true
    FSBRIDGE_LOG_COLORED     ANSI colors on a terminal, default true
    FSBRIDGE_LOG_FILE        fsbridge.log, default false
    FSBRIDGE_LOG_DEBUG       fsbridge_debug.log at TRACE, default false
    FSBRIDGE_LOG_JSON        fsbridge.json, default false
    FSBRIDGE_SLOW_THRESHOLD  milliseconds, default 1000
    FSBRIDGE_SUPPRESS_LOGS   drop every handler, default false

Usage:
    from fsbridge.logger import get_logger

    logger = get_logger(__name__)
    logger.info("Adapter ready", extra={'root': '/srv/data'})

    with logger.context(adapter="ftp", host="ftp.example.com"):
        logger.debug("Listing directory")

    with logger.timer("list_contents(reports)"):
        entries = list(adapter.list_contents("reports", recursive=True))
"""

import json
import logging
import logging.handlers
import os
import sys
import time
import traceback
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from threading import Lock
from typing import Any, Dict, List, Optional

TRACE_LEVEL = 5
logging.addLevelName(TRACE_LEVEL, "TRACE")

ROOT_LOGGER_NAME = 'fsbridge'

TEXT_FORMAT = '[{asctime}] {levelname:8} {name:30} {message}'
DEBUG_FORMAT = '[{asctime}] {levelname:8} {name:30} {funcName:20} {filename}:{lineno} - {message}'
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'

# Extra keys the adapters attach to records, copied into JSON output
STRUCTURED_FIELDS = ('path', 'root', 'host', 'operation', 'link_handling')


def _env_flag(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.lower() in ('1', 'true', 'yes')


def _qualified(name: str) -> str:
    if name == ROOT_LOGGER_NAME or name.startswith(ROOT_LOGGER_NAME + '.'):
        return name
    return f'{ROOT_LOGGER_NAME}.{name}'


class ColoredFormatter(logging.Formatter):
    """Text formatter that colors the level name on a terminal."""

    COLORS = {
        'TRACE': '\033[36m',
        'DEBUG': '\033[34m',
        'INFO': '\033[32m',
        'WARNING': '\033[33m',
        'ERROR': '\033[31m',
        'CRITICAL': '\033[35m',
    }
    RESET = '\033[0m'

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname)
        if color is None or not sys.stderr.isatty():
            return super().format(record)

        levelname = record.levelname
        record.levelname = f"{color}{levelname:8}{self.RESET}"
        try:
            return super().format(record)
        finally:
            record.levelname = levelname


class JSONFormatter(logging.Formatter):
    """One JSON object per record."""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            'timestamp': datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno,
        }

        for key in STRUCTURED_FIELDS + ('context', 'duration_ms'):
            if hasattr(record, key):
                entry[key] = getattr(record, key)

        if record.exc_info:
            exc_type, exc_value, _ = record.exc_info
            entry['exception'] = {
                'type': exc_type.__name__,
                'message': str(exc_value),
                'traceback': traceback.format_exception(*record.exc_info),
            }

        return json.dumps(entry, default=str)


class ContextEnrichedLogger(logging.LoggerAdapter):
    """
    LoggerAdapter carrying a stack of context dicts.

    While a context() block is open every record gets a 'context' attribute
    holding the merged dicts, innermost keys winning.
    """

    def __init__(self, logger: logging.Logger, extra: Optional[Dict[str, Any]] = None):
        super().__init__(logger, extra or {})
        self._contexts: List[Dict[str, Any]] = []
        self._lock = Lock()

    def process(self, msg, kwargs):
        if self._contexts:
            merged: Dict[str, Any] = {}
            for ctx in self._contexts:
                merged.update(ctx)
            kwargs.setdefault('extra', {})['context'] = merged
        return msg, kwargs

    @contextmanager
    def context(self, **values):
        with self._lock:
            self._contexts.append(values)
        try:
            yield self
        finally:
            with self._lock:
                self._contexts.pop()

    @contextmanager
    def timer(self, operation: str, slow_threshold_ms: Optional[int] = None):
        """
        Time the enclosed block and log its duration.

        The record is DEBUG ("Completed: ...") or WARNING ("Slow operation:
        ...") once the threshold is reached. It is emitted even when the
        block raises.

        Args:
            operation: Label for the timed work, e.g. "delete_dir(cache)"
            slow_threshold_ms: Defaults to FSBRIDGE_SLOW_THRESHOLD
        """
        threshold = _manager.slow_threshold_ms if slow_threshold_ms is None else slow_threshold_ms
        started = time.perf_counter()
        try:
            yield
        finally:
            duration_ms = (time.perf_counter() - started) * 1000
            extra = {'duration_ms': round(duration_ms, 3), 'operation': operation}
            if duration_ms >= threshold:
                self.warning(f"Slow operation: {operation}", extra=extra)
            else:
                self.debug(f"Completed: {operation}", extra=extra)

    def trace(self, msg, *args, **kwargs):
        self.log(TRACE_LEVEL, msg, *args, **kwargs)


@dataclass(frozen=True)
class _LogSettings:
    """Snapshot of the FSBRIDGE_LOG_* environment."""
    level: str
    log_dir: Path
    console: bool
    colored: bool
    file: bool
    debug_file: bool
    json: bool
    slow_threshold_ms: int
    suppress: bool
    backup_count: int = 7
    debug_backup_count: int = 3

    @classmethod
    def from_env(cls, log_dir: Optional[str] = None) -> '_LogSettings':
        return cls(
            level=os.getenv('FSBRIDGE_LOG_LEVEL', 'WARNING').upper(),
            log_dir=Path(log_dir or os.getenv('FSBRIDGE_LOG_DIR', 'logs')).expanduser().resolve(),
            console=_env_flag('FSBRIDGE_LOG_CONSOLE', True),
            colored=_env_flag('FSBRIDGE_LOG_COLORED', True),
            file=_env_flag('FSBRIDGE_LOG_FILE', False),
            debug_file=_env_flag('FSBRIDGE_LOG_DEBUG', False),
            json=_env_flag('FSBRIDGE_LOG_JSON', False),
            slow_threshold_ms=int(os.getenv('FSBRIDGE_SLOW_THRESHOLD', '1000')),
            suppress=_env_flag('FSBRIDGE_SUPPRESS_LOGS', False),
        )

    @property
    def writes_files(self) -> bool:
        return self.file or self.debug_file or self.json


class LoggerManager:
    """
    Process-wide owner of the 'fsbridge' handlers and adapter cache.

    Settings are read from the environment at import time and again on every
    reconfigure().
    """

    _instance = None
    _lock = Lock()

    def __new__(cls):
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = super().__new__(cls)
                    cls._instance._initialized = False
        return cls._instance

    def __init__(self):
        if self._initialized:
            return

        self._initialized = True
        self._loggers: Dict[str, ContextEnrichedLogger] = {}
        self.settings = _LogSettings.from_env()
        self._install_handlers()

    @property
    def slow_threshold_ms(self) -> int:
        return self.settings.slow_threshold_ms

    @property
    def log_dir(self) -> Path:
        return self.settings.log_dir

    def _rotating_file(self, filename: str, level: int, backups: int, fmt: str) -> logging.Handler:
        handler = logging.handlers.TimedRotatingFileHandler(
            filename=self.settings.log_dir / filename,
            when='midnight',
            backupCount=backups,
            encoding='utf-8'
        )
        handler.setLevel(level)
        handler.setFormatter(logging.Formatter(fmt=fmt, datefmt=DATE_FORMAT, style='{'))
        return handler

    def _build_handlers(self) -> List[logging.Handler]:
        settings = self.settings
        handlers: List[logging.Handler] = []

        if settings.console:
            console = logging.StreamHandler(sys.stderr)
            console.setLevel(logging.getLevelName(settings.level))
            formatter_class = ColoredFormatter if settings.colored else logging.Formatter
            console.setFormatter(formatter_class(fmt=TEXT_FORMAT, datefmt=DATE_FORMAT, style='{'))
            handlers.append(console)

        if settings.writes_files:
            settings.log_dir.mkdir(parents=True, exist_ok=True)

        if settings.file:
            handlers.append(self._rotating_file(
                'fsbridge.log', logging.DEBUG, settings.backup_count, TEXT_FORMAT
            ))

        if settings.debug_file:
            handlers.append(self._rotating_file(
                'fsbridge_debug.log', TRACE_LEVEL, settings.debug_backup_count, DEBUG_FORMAT
            ))

        if settings.json:
            json_handler = logging.FileHandler(settings.log_dir / 'fsbridge.json', encoding='utf-8')
            json_handler.setLevel(logging.DEBUG)
            json_handler.setFormatter(JSONFormatter())
            handlers.append(json_handler)

        return handlers

    def _install_handlers(self):
        root_logger = logging.getLogger(ROOT_LOGGER_NAME)
        # Handlers do the filtering
        root_logger.setLevel(TRACE_LEVEL)

        for handler in root_logger.handlers[:]:
            handler.close()
            root_logger.removeHandler(handler)

        if self.settings.suppress:
            return

        for handler in self._build_handlers():
            root_logger.addHandler(handler)

    def get_logger(self, name: str) -> ContextEnrichedLogger:
        name = _qualified(name)
        if name not in self._loggers:
            self._loggers[name] = ContextEnrichedLogger(logging.getLogger(name))
        return self._loggers[name]

    def set_level(self, level: str, module: Optional[str] = None):
        level_value = logging.getLevelName(level.upper())
        if not isinstance(level_value, int):
            level_value = logging.INFO

        target = _qualified(module) if module else ROOT_LOGGER_NAME
        logging.getLogger(target).setLevel(level_value)

    def reconfigure(self, log_dir: Optional[str] = None):
        """Re-read the environment and rebuild every handler."""
        self.settings = _LogSettings.from_env(log_dir)
        self._install_handlers()
        self.get_logger('logger').debug(f"Logger reconfigured with log_dir: {self.settings.log_dir}")


_manager = LoggerManager()


def get_logger(name: str = __name__) -> ContextEnrichedLogger:
    """
    Get the logger for a module, namespaced under 'fsbridge'.

    Example:
        >>> logger = get_logger(__name__)
        >>> with logger.timer("delete_dir(cache)"):
        ...     adapter.delete_dir("cache")
    """
    return _manager.get_logger(name)


def set_level(level: str, module: Optional[str] = None):
    """
    Set the level of the whole 'fsbridge' tree or of one module.

    Example:
        >>> set_level('DEBUG')
        >>> set_level('TRACE', 'adapters.ftp')
    """
    _manager.set_level(level, module)


def reconfigure_logger(log_dir: Optional[str] = None):
    _manager.reconfigure(log_dir)


def init_logging(
    level: str = 'INFO',
    log_dir: Optional[str] = None,
    console: bool = True,
    file: bool = False
):
    """
    Configure logging in one call.

    The values are written to the FSBRIDGE_LOG_* environment so that a later
    reconfigure_logger() keeps them.

    Args:
        level: Console level
        log_dir: Directory for log files
        console: Log to stderr
        file: Write fsbridge.log
    """
    if log_dir:
        os.environ['FSBRIDGE_LOG_DIR'] = log_dir

    os.environ['FSBRIDGE_LOG_LEVEL'] = level.upper()
    os.environ['FSBRIDGE_LOG_CONSOLE'] = 'true' if console else 'false'
    os.environ['FSBRIDGE_LOG_FILE'] = 'true' if file else 'false'

    _manager.reconfigure(log_dir)
