"""Tests for disk_provision/logging_utils.py: rotating logger, service logger, command results."""

from __future__ import annotations

import io
import logging
import os
import subprocess
import sys
import tempfile
import unittest
from contextlib import redirect_stderr, redirect_stdout

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from disk_provision.logging_utils import (
    FALLBACK_HANDLER_NAME,
    get_rotating_logger,
    get_service_logger,
    get_standard_formatter,
    log_subprocess_result,
    summarize_stderr,
)


class TestGetStandardFormatter(unittest.TestCase):
    def test_returns_formatter(self):
        fmt = get_standard_formatter()
        self.assertIsInstance(fmt, logging.Formatter)

    def test_format_string(self):
        fmt = get_standard_formatter()
        self.assertIn('%(asctime)s', fmt._fmt)
        self.assertIn('%(levelname)', fmt._fmt)


class TestGetRotatingLogger(unittest.TestCase):
    def test_creates_logger(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            log_file = os.path.join(tmpdir, 'test.log')
            logger = get_rotating_logger('test_logger_1', log_file)
            self.assertIsInstance(logger, logging.Logger)
            self.assertGreater(len(logger.handlers), 0)

    def test_idempotent(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            log_file = os.path.join(tmpdir, 'test.log')
            logger1 = get_rotating_logger('test_logger_idempotent', log_file)
            handler_count = len(logger1.handlers)
            logger2 = get_rotating_logger('test_logger_idempotent', log_file)
            self.assertEqual(len(logger2.handlers), handler_count)

    def test_writes_to_file(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            log_file = os.path.join(tmpdir, 'test.log')
            logger = get_rotating_logger('test_logger_write', log_file)
            logger.info('test message')
            for h in logger.handlers:
                h.flush()
            with open(log_file, 'r') as f:
                content = f.read()
            self.assertIn('test message', content)

    def test_fallback_on_bad_path(self):
        # /proc is not writable, so the logger should fallback to stderr
        with redirect_stderr(io.StringIO()):
            logger = get_rotating_logger('test_logger_fallback', '/proc/nonexistent/test.log')
        self.assertIsInstance(logger, logging.Logger)
        self.assertEqual([h.get_name() for h in logger.handlers], [FALLBACK_HANDLER_NAME])


class TestGetServiceLogger(unittest.TestCase):
    def _fresh(self, name):
        logger = logging.getLogger(name)
        logger.handlers.clear()
        self.addCleanup(logger.handlers.clear)
        return name

    def test_console_split_by_level(self):
        name = self._fresh('test_service_console')
        out, err = io.StringIO(), io.StringIO()
        with redirect_stdout(out), redirect_stderr(err):
            logger = get_service_logger(name)
            logger.info('step one')
            logger.warning('careful')
            logger.error('broken')
        self.assertEqual(out.getvalue(), 'step one\ncareful\n')
        self.assertEqual(err.getvalue(), 'broken\n')

    def test_file_log_written_with_timestamps(self):
        name = self._fresh('test_service_file')
        with tempfile.TemporaryDirectory() as tmpdir:
            with redirect_stdout(io.StringIO()):
                logger = get_service_logger(name, tmpdir)
                logger.info('written to file')
            for h in logger.handlers:
                h.flush()
            with open(os.path.join(tmpdir, f'{name}.log')) as f:
                content = f.read()
            self.assertIn(' - INFO     - test_service_file - written to file', content)

    def test_no_duplicate_console_handlers(self):
        name = self._fresh('test_service_repeat')
        with redirect_stdout(io.StringIO()), redirect_stderr(io.StringIO()):
            count = len(get_service_logger(name).handlers)
            self.assertEqual(len(get_service_logger(name).handlers), count)

    def test_fallback_replaced_by_console(self):
        name = self._fresh('test_service_fallback')
        with redirect_stdout(io.StringIO()), redirect_stderr(io.StringIO()):
            logger = get_service_logger(name, '/proc/nonexistent')
        names = [h.get_name() for h in logger.handlers]
        self.assertNotIn(FALLBACK_HANDLER_NAME, names)
        self.assertEqual(len(logger.handlers), 2)

    def test_without_console(self):
        name = self._fresh('test_service_quiet')
        with redirect_stderr(io.StringIO()):
            logger = get_service_logger(name, console_output=False)
        self.assertEqual([h.get_name() for h in logger.handlers], [FALLBACK_HANDLER_NAME])


class TestLogSubprocessResult(unittest.TestCase):
    def test_success(self):
        logger = logging.getLogger('test_log_subprocess_result_success')
        with self.assertLogs(logger, level='INFO') as logs:
            ok = log_subprocess_result(
                logger,
                "mount /var/lib/data",
                subprocess.CompletedProcess(args=['mount'], returncode=0, stdout='', stderr='')
            )
        self.assertTrue(ok)
        self.assertIn("✓ mount /var/lib/data", logs.output[0])

    def test_failure_uses_stderr(self):
        logger = logging.getLogger('test_log_subprocess_result_failure')
        with self.assertLogs(logger, level='WARNING') as logs:
            ok = log_subprocess_result(
                logger,
                "mount /var/lib/data",
                subprocess.CompletedProcess(args=['mount'], returncode=32, stdout='', stderr='error line\nmore\nthird\nfourth')
            )
        self.assertFalse(ok)
        self.assertIn("⚠ mount /var/lib/data failed: error line | more | third | ...", logs.output[0])


class TestSummarizeStderr(unittest.TestCase):
    def test_empty_stderr_reports_exit_code(self):
        result = subprocess.CompletedProcess(args=['x'], returncode=5, stdout='', stderr='')
        self.assertEqual(summarize_stderr(result), 'exit code 5')

    def test_bytes_stderr(self):
        result = subprocess.CompletedProcess(args=['x'], returncode=1, stdout=b'', stderr=b'bad superblock\n')
        self.assertEqual(summarize_stderr(result), 'bad superblock')


if __name__ == '__main__':
    unittest.main()
