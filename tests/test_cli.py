"""Tests for gitbak.cli module."""

from unittest.mock import patch

import pytest

from gitbak.cli import build_parser, main, render_logo
from gitbak.lib.constants import EXIT_CONFIG, TAGLINE

ENV_KEYS = [
    "INTERVAL_MINUTES", "BRANCH_NAME", "COMMIT_PREFIX", "CREATE_BRANCH", "VERBOSE",
    "NON_INTERACTIVE", "SHOW_NO_CHANGES", "REPO_PATH", "CONTINUE_SESSION", "DEBUG",
    "LOG_FILE", "MAX_RETRIES",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    for key in ENV_KEYS:
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path / "xdg"))


class TestParser:
    """Test flag parsing."""

    def test_single_dash_flags(self):
        ns = build_parser().parse_args(["-interval", "0.5", "-prefix", "[x]", "-no-branch", "-continue"])
        assert ns.interval == 0.5
        assert ns.prefix == "[x]"
        assert ns.no_branch is True
        assert ns.continue_session is True

    def test_double_dash_flags(self):
        ns = build_parser().parse_args(["--interval", "2", "--show-no-changes", "--log-file", "/tmp/x.log"])
        assert ns.interval == 2.0
        assert ns.show_no_changes is True
        assert ns.log_file == "/tmp/x.log"

    def test_unset_flags_are_absent(self):
        ns = build_parser().parse_args(["-quiet"])
        assert vars(ns) == {"quiet": True}

    def test_no_abbreviations(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["-interv", "3"])

    def test_max_retries_is_int(self):
        assert build_parser().parse_args(["-max-retries", "0"]).max_retries == 0


class TestMain:
    """Test the entry point."""

    def test_version(self, capsys):
        assert main(["-version"]) == 0
        assert capsys.readouterr().out.startswith("gitbak ")

    def test_logo(self, capsys):
        assert main(["-logo"]) == 0
        assert TAGLINE in capsys.readouterr().out

    def test_invalid_interval(self, capsys):
        assert main(["-interval", "0"]) == EXIT_CONFIG
        assert "❌ Error" in capsys.readouterr().err

    def test_runs_supervisor_with_resolved_config(self, tmp_path):
        with patch("gitbak.cli.Supervisor") as mock_supervisor:
            mock_supervisor.return_value.run.return_value = 0
            code = main(["-repo", str(tmp_path), "-interval", "0.25", "-quiet", "-non-interactive"])
        assert code == 0
        config = mock_supervisor.call_args[0][0]
        assert config.repo_path == tmp_path
        assert config.interval_minutes == 0.25
        assert config.verbose is False
        assert config.non_interactive is True

    def test_supervisor_exit_code_is_returned(self, tmp_path):
        with patch("gitbak.cli.Supervisor") as mock_supervisor:
            mock_supervisor.return_value.run.return_value = 3
            assert main(["-repo", str(tmp_path)]) == 3

    def test_env_used_when_flag_absent(self, tmp_path, monkeypatch):
        monkeypatch.setenv("COMMIT_PREFIX", "[env]")
        with patch("gitbak.cli.Supervisor") as mock_supervisor:
            mock_supervisor.return_value.run.return_value = 0
            main(["-repo", str(tmp_path)])
        assert mock_supervisor.call_args[0][0].commit_prefix == "[env]"


class TestLogo:
    """Test logo rendering."""

    def test_tagline_centred_under_art(self):
        lines = render_logo().splitlines()
        tagline = lines[-1]
        assert tagline.strip() == TAGLINE
        width = max(len(line) for line in lines[:-2])
        left = len(tagline) - len(tagline.lstrip())
        assert abs(left - (width - len(TAGLINE)) // 2) <= 1
