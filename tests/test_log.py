"""Tests for gitbak.lib.log module."""

import io
import logging

import pytest
from rich.console import Console

from gitbak.lib.log import SessionLogger


def consoles():
    out, err = io.StringIO(), io.StringIO()
    return out, err, Console(file=out, width=200), Console(file=err, width=200)


@pytest.fixture
def make_logger():
    created = []

    def make(**kwargs):
        out, err, stdout, stderr = consoles()
        session_log = SessionLogger(stdout=stdout, stderr=stderr, **kwargs)
        created.append(session_log)
        return session_log, out, err

    yield make
    for session_log in created:
        session_log.close()


class TestUserChannel:
    """Terminal output."""

    def test_info_to_user_when_verbose(self, make_logger):
        session_log, out, _ = make_logger(verbose=True)
        session_log.info_to_user("hello")
        assert "hello" in out.getvalue()

    def test_info_to_user_suppressed_when_quiet(self, make_logger):
        session_log, out, _ = make_logger(verbose=False)
        session_log.info_to_user("hello")
        assert out.getvalue() == ""

    def test_success_and_status_always_shown(self, make_logger):
        session_log, out, _ = make_logger(verbose=False)
        session_log.success("Commit #1 created")
        session_log.status("plain line")
        assert "✅ Commit #1 created" in out.getvalue()
        assert "plain line" in out.getvalue()

    def test_warning_to_user_always_shown(self, make_logger):
        session_log, out, _ = make_logger(verbose=False)
        session_log.warning_to_user("careful")
        assert "careful" in out.getvalue()

    def test_brackets_are_printed_literally(self, make_logger):
        session_log, out, _ = make_logger()
        session_log.status("[gitbak] Automatic checkpoint #1 [bold]x[/bold]")
        assert "[gitbak] Automatic checkpoint #1 [bold]x[/bold]" in out.getvalue()


class TestInternalChannel:
    """Log records and their echoes."""

    def test_error_goes_to_stderr(self, make_logger):
        session_log, out, err = make_logger(verbose=False)
        session_log.error("it broke")
        assert "❌ it broke" in err.getvalue()
        assert out.getvalue() == ""

    def test_warning_echoed_only_when_verbose(self, make_logger):
        session_log, out, _ = make_logger(verbose=False)
        session_log.warning("quiet warning")
        assert out.getvalue() == ""
        loud, loud_out, _ = make_logger(verbose=True)
        loud.warning("loud warning")
        assert "loud warning" in loud_out.getvalue()

    def test_info_is_not_shown(self, make_logger, caplog):
        caplog.set_level(logging.INFO, logger="gitbak")
        session_log, out, _ = make_logger()
        session_log.info("internal detail")
        assert out.getvalue() == ""
        assert "internal detail" in caplog.text


class TestDebugFile:
    """File-backed logging in debug mode."""

    def test_writes_log_file(self, make_logger, tmp_path):
        log_file = tmp_path / "logs" / "gitbak.log"
        session_log, out, _ = make_logger(debug=True, log_file=log_file)
        session_log.info("checkpoint detail")
        session_log.close()
        text = log_file.read_text()
        assert "checkpoint detail" in text
        assert "level=INFO" in text
        assert (log_file.parent.stat().st_mode & 0o777) == 0o700
        assert str(log_file) in out.getvalue()

    def test_falls_back_to_stderr_when_unwritable(self, make_logger, tmp_path):
        # A directory cannot be opened as the log file
        session_log, _, err = make_logger(debug=True, log_file=tmp_path)
        assert "Failed to open log file" in err.getvalue()

    def test_close_detaches_handler(self, make_logger, tmp_path):
        session_log, _, _ = make_logger(debug=True, log_file=tmp_path / "x.log")
        handler = session_log._handler
        session_log.close()
        assert handler not in logging.getLogger("gitbak").handlers
        session_log.close()
