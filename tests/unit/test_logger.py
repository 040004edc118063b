"""Unit tests for fsbridge.logger module."""

import json
import logging
import os
import sys
import time
from pathlib import Path

import pytest

from fsbridge.logger import (
    TRACE_LEVEL,
    ColoredFormatter,
    ContextEnrichedLogger,
    JSONFormatter,
    get_logger,
    init_logging,
    reconfigure_logger,
    set_level,
)


@pytest.fixture(autouse=True)
def restore_logging():
    """Put FSBRIDGE_* variables and handlers back after each test."""
    saved = {key: value for key, value in os.environ.items() if key.startswith('FSBRIDGE_')}
    yield
    for key in [key for key in os.environ if key.startswith('FSBRIDGE_')]:
        del os.environ[key]
    os.environ.update(saved)
    reconfigure_logger()


def _last_json_entry(log_dir) -> dict:
    json_files = list(Path(log_dir).glob('*.json'))
    assert len(json_files) == 1
    with open(json_files[0], 'r') as f:
        return json.loads(f.readlines()[-1])


class TestLoggerBasics:
    """Test basic logger functionality."""

    def test_get_logger_returns_context_logger(self):
        """Test that get_logger returns ContextEnrichedLogger."""
        logger = get_logger('adapters.local')
        assert isinstance(logger, ContextEnrichedLogger)

    def test_logger_name_namespace(self):
        """Test that logger names are namespaced under 'fsbridge'."""
        logger = get_logger('config')
        assert logger.logger.name == 'fsbridge.config'

    def test_logger_already_namespaced(self):
        """Test that already namespaced names are not double-prefixed."""
        logger = get_logger('fsbridge.adapters.local')
        assert logger.logger.name == 'fsbridge.adapters.local'

    def test_same_name_same_logger(self):
        assert get_logger('cached') is get_logger('cached')

    def test_trace_level_exists(self):
        """Test that TRACE custom level is registered."""
        assert TRACE_LEVEL == 5
        assert logging.getLevelName(TRACE_LEVEL) == 'TRACE'


class TestLogLevels:
    """Test logging at different levels."""

    def test_log_levels(self, tmp_path, capsys):
        """Test logging at all levels goes to stderr."""
        init_logging(level='DEBUG', log_dir=str(tmp_path), console=True, file=False)

        logger = get_logger('adapters.ftp')
        logger.trace("LIST -aln /srv returned 12 lines")
        logger.debug("Created directory reports")
        logger.info("Adapter ready")
        logger.warning("Upload failed: 552")
        logger.error("Could not connect to host")

        captured = capsys.readouterr()
        assert "LIST -aln /srv returned 12 lines" not in captured.err
        assert "Created directory reports" in captured.err
        assert "Adapter ready" in captured.err
        assert "Upload failed: 552" in captured.err
        assert "Could not connect to host" in captured.err
        assert captured.out == ""

    def test_level_filters_messages(self, tmp_path, capsys):
        """Test that the configured level filters messages."""
        init_logging(level='INFO', log_dir=str(tmp_path), console=True, file=False)

        logger = get_logger('adapters.local')
        logger.debug("Listing reports")
        logger.info("Root created")

        captured = capsys.readouterr()
        assert "Listing reports" not in captured.err
        assert "Root created" in captured.err

    def test_default_level_is_warning(self, tmp_path, capsys):
        """Test that a library import stays quiet below WARNING."""
        os.environ.pop('FSBRIDGE_LOG_LEVEL', None)
        reconfigure_logger(str(tmp_path))

        logger = get_logger('test_default')
        logger.info("Quiet")
        logger.warning("Loud")

        captured = capsys.readouterr()
        assert "Quiet" not in captured.err
        assert "Loud" in captured.err

    def test_suppress_logs(self, tmp_path):
        os.environ['FSBRIDGE_SUPPRESS_LOGS'] = 'true'
        reconfigure_logger(str(tmp_path))

        get_logger("test_suppress").error("Hidden")

        assert logging.getLogger('fsbridge').handlers == []


class TestContextEnrichment:
    """Test context manager functionality."""

    def test_context_manager_adds_context(self, tmp_path):
        """Test that context manager adds context to logs."""
        os.environ['FSBRIDGE_LOG_JSON'] = 'true'
        init_logging(level='DEBUG', log_dir=str(tmp_path), console=False, file=False)

        logger = get_logger('adapters.ftp.adapter')
        with logger.context(adapter="ftp", host="ftp.example.com"):
            logger.info("Downloading")

        entry = _last_json_entry(tmp_path)
        assert entry['context']['adapter'] == 'ftp'
        assert entry['context']['host'] == 'ftp.example.com'

    def test_nested_context(self, tmp_path):
        """Test nested context managers."""
        os.environ['FSBRIDGE_LOG_JSON'] = 'true'
        init_logging(level='DEBUG', log_dir=str(tmp_path), console=False, file=False)

        logger = get_logger('adapters.local.delete')
        with logger.context(operation="delete_dir"):
            with logger.context(path="cache/tmp"):
                logger.info("Removing entry")

        entry = _last_json_entry(tmp_path)
        assert entry['context'] == {'operation': 'delete_dir', 'path': 'cache/tmp'}

    def test_context_removed_on_exit(self, tmp_path):
        os.environ['FSBRIDGE_LOG_JSON'] = 'true'
        init_logging(level='DEBUG', log_dir=str(tmp_path), console=False, file=False)

        logger = get_logger('test_exit')
        with logger.context(path="a.txt"):
            pass
        logger.info("Outside")

        assert 'context' not in _last_json_entry(tmp_path)


class TestPerformanceTimer:
    """Test performance timing functionality."""

    def test_timer_logs_duration(self, tmp_path):
        """Test that timer logs operation duration."""
        os.environ['FSBRIDGE_LOG_JSON'] = 'true'
        init_logging(level='DEBUG', log_dir=str(tmp_path), console=False, file=False)

        logger = get_logger('adapters.ftp.listing')
        with logger.timer("list_contents(reports)", slow_threshold_ms=5000):
            time.sleep(0.01)

        entry = _last_json_entry(tmp_path)
        assert entry['level'] == 'DEBUG'
        assert entry['duration_ms'] >= 10
        assert 'Completed: list_contents(reports)' in entry['message']

    def test_timer_warns_on_slow_operation(self, tmp_path):
        """Test that timer warns for slow operations."""
        os.environ['FSBRIDGE_LOG_JSON'] = 'true'
        init_logging(level='DEBUG', log_dir=str(tmp_path), console=False, file=False)

        logger = get_logger('adapters.ftp.delete')
        with logger.timer("delete_dir(cache)", slow_threshold_ms=10):
            time.sleep(0.02)

        entry = _last_json_entry(tmp_path)
        assert entry['level'] == 'WARNING'
        assert 'Slow operation' in entry['message']
        assert entry['duration_ms'] >= 20

    def test_timer_logs_even_when_block_raises(self, tmp_path):
        os.environ['FSBRIDGE_LOG_JSON'] = 'true'
        init_logging(level='DEBUG', log_dir=str(tmp_path), console=False, file=False)

        logger = get_logger('test_timer_error')
        with pytest.raises(RuntimeError):
            with logger.timer("failing", slow_threshold_ms=5000):
                raise RuntimeError("boom")

        assert 'Completed: failing' in _last_json_entry(tmp_path)['message']


class TestFormatters:
    """Test log formatters."""

    def test_colored_formatter_plain_without_tty(self):
        """Test that ColoredFormatter formats when output is not a TTY."""
        formatter = ColoredFormatter(fmt='{levelname} {message}', style='{')
        record = logging.LogRecord(
            name='test', level=logging.INFO, pathname='', lineno=0,
            msg='Renamed a.txt to b.txt', args=(), exc_info=None
        )
        assert 'Renamed a.txt to b.txt' in formatter.format(record)

    def test_json_formatter_produces_valid_json(self):
        """Test that JSONFormatter produces valid JSON."""
        formatter = JSONFormatter()
        record = logging.LogRecord(
            name='fsbridge.adapters.ftp', level=logging.INFO, pathname='adapter.py',
            lineno=42, msg='Uploaded', args=(), exc_info=None
        )
        record.context = {'path': 'a.txt'}
        record.duration_ms = 123.45

        parsed = json.loads(formatter.format(record))

        assert parsed['level'] == 'INFO'
        assert parsed['logger'] == 'fsbridge.adapters.ftp'
        assert parsed['message'] == 'Uploaded'
        assert parsed['line'] == 42
        assert parsed['context'] == {'path': 'a.txt'}
        assert parsed['duration_ms'] == 123.45
        assert parsed['timestamp'].endswith('+00:00')

    def test_json_formatter_includes_exception(self):
        formatter = JSONFormatter()
        try:
            raise ValueError("bad path")
        except ValueError:
            exc_info = sys.exc_info()

        record = logging.LogRecord(
            name='test', level=logging.ERROR, pathname='', lineno=0,
            msg='Failed', args=(), exc_info=exc_info
        )
        parsed = json.loads(formatter.format(record))
        assert parsed['exception']['type'] == 'ValueError'
        assert parsed['exception']['message'] == 'bad path'

    def test_json_entry_carries_adapter_fields(self, tmp_path):
        """Test that path/host extras from the adapters reach the JSON file."""
        os.environ['FSBRIDGE_LOG_JSON'] = 'true'
        init_logging(level='DEBUG', log_dir=str(tmp_path), console=False, file=False)

        get_logger('adapters.ftp.adapter').warning(
            "Upload failed: 552", extra={'path': 'reports/q1.csv', 'host': 'ftp.example.com'}
        )

        entry = _last_json_entry(tmp_path)
        assert entry['path'] == 'reports/q1.csv'
        assert entry['host'] == 'ftp.example.com'
        assert 'root' not in entry


class TestLogFiles:
    """Test log file handling."""

    def test_log_files_created(self, tmp_path):
        """Test that log files are created in specified directory."""
        init_logging(level='INFO', log_dir=str(tmp_path), console=False, file=True)

        get_logger('adapters.local').info("Deleted reports/q1.csv")

        log_file = tmp_path / 'fsbridge.log'
        assert log_file.exists()
        assert 'Deleted reports/q1.csv' in log_file.read_text()

    def test_log_dir_not_created_without_file_handlers(self, tmp_path):
        log_dir = tmp_path / 'logs'
        init_logging(level='INFO', log_dir=str(log_dir), console=True, file=False)
        assert not log_dir.exists()


class TestModuleSpecificLevels:
    """Test module-specific log level configuration."""

    def test_set_level_for_specific_module(self, tmp_path, capsys):
        """Test setting log level for specific module only."""
        init_logging(level='DEBUG', log_dir=str(tmp_path), console=True, file=False)

        set_level('ERROR', 'test_quiet_module')
        try:
            get_logger('test_quiet_module').warning("Warning from quiet")
            get_logger('test_loud_module').warning("Warning from loud")
        finally:
            set_level('NOTSET', 'test_quiet_module')

        captured = capsys.readouterr()
        assert "Warning from quiet" not in captured.err
        assert "Warning from loud" in captured.err
