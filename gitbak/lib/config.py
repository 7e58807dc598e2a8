"""
Configuration for gitbak.

A single resolver merges defaults, then environment variables, then
command-line flags. finalize() validates the result and hands out an
immutable Config; the resolver refuses changes from then on.
"""

import dataclasses
import hashlib
import logging
import math
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping, Optional

from gitbak.lib import envparse
from gitbak.lib import validate
from gitbak.lib.constants import (
    APP_NAME,
    DEFAULT_COMMIT_PREFIX,
    DEFAULT_INTERVAL_MINUTES,
    DEFAULT_MAX_RETRIES,
    LOG_HASH_BYTES,
)
from gitbak.lib.errors import ConfigError, InternalError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Config:
    """Fully resolved, validated settings. Immutable once built."""
    repo_path: Path
    interval_minutes: float
    branch_name: str  # "" = generate (fresh) or adopt current (continue)
    commit_prefix: str
    create_branch: bool
    continue_session: bool
    verbose: bool
    show_no_changes: bool
    non_interactive: bool
    debug: bool
    log_file: Path
    max_retries: int  # 0 = retry forever

    def to_dict(self) -> dict:
        data = dataclasses.asdict(self)
        data["repo_path"] = str(self.repo_path)
        data["log_file"] = str(self.log_file)
        return data


DEFAULTS: dict[str, Any] = {
    "repo_path": "",
    "interval_minutes": DEFAULT_INTERVAL_MINUTES,
    "branch_name": "",
    "commit_prefix": DEFAULT_COMMIT_PREFIX,
    "create_branch": True,
    "continue_session": False,
    "verbose": True,
    "show_no_changes": False,
    "non_interactive": False,
    "debug": False,
    "log_file": "",
    "max_retries": DEFAULT_MAX_RETRIES,
}

# Flag destinations that map onto a config key with inverted meaning
INVERTED_FLAGS = {
    "no_branch": "create_branch",
    "quiet": "verbose",
}

FLAG_KEYS = {
    "interval": "interval_minutes",
    "branch": "branch_name",
    "prefix": "commit_prefix",
    "continue_session": "continue_session",
    "show_no_changes": "show_no_changes",
    "repo": "repo_path",
    "debug": "debug",
    "log_file": "log_file",
    "non_interactive": "non_interactive",
    "max_retries": "max_retries",
}


def repo_hash(repo_path: Path, nbytes: int) -> str:
    """Hex of the first nbytes of SHA-256 over the absolute repo path."""
    return hashlib.sha256(str(repo_path).encode()).hexdigest()[:nbytes * 2]


def default_log_file(repo_path: Path, env: Optional[Mapping[str, str]] = None) -> Path:
    """
    Follow the XDG base-directory convention:
    ${XDG_DATA_HOME:-$HOME/.local/share}/gitbak/logs/gitbak-<hash>.log
    """
    env = os.environ if env is None else env
    data_home = env.get("XDG_DATA_HOME")
    if data_home:
        base = Path(data_home)
    else:
        try:
            base = Path.home() / ".local" / "share"
        except RuntimeError:
            base = Path(tempfile.gettempdir())
    return base / APP_NAME / "logs" / f"{APP_NAME}-{repo_hash(repo_path, LOG_HASH_BYTES)}.log"


class ConfigResolver:
    """Merges defaults, environment, and flags into one Config."""

    def __init__(self):
        self._values = dict(DEFAULTS)
        self._ready = False
        self.warnings: list[str] = []

    @property
    def ready(self) -> bool:
        return self._ready

    def set(self, key: str, value: Any) -> None:
        if self._ready:
            raise InternalError(f"configuration is final; refusing to set {key}")
        if key not in self._values:
            raise InternalError(f"unknown configuration key: {key}")
        self._values[key] = value

    def get(self, key: str) -> Any:
        return self._values[key]

    def load_env(self, env: Optional[Mapping[str, str]] = None) -> "ConfigResolver":
        """Apply INTERVAL_MINUTES, BRANCH_NAME, ... over the current values."""
        env = os.environ if env is None else env
        v = self._values
        w = self.warnings
        self.set("interval_minutes", envparse.get_float(env, "INTERVAL_MINUTES", v["interval_minutes"], w))
        self.set("branch_name", envparse.get_str(env, "BRANCH_NAME", v["branch_name"]))
        self.set("commit_prefix", envparse.get_str(env, "COMMIT_PREFIX", v["commit_prefix"]))
        self.set("create_branch", envparse.get_bool(env, "CREATE_BRANCH", v["create_branch"], w))
        self.set("verbose", envparse.get_bool(env, "VERBOSE", v["verbose"], w))
        self.set("non_interactive", envparse.get_bool(env, "NON_INTERACTIVE", v["non_interactive"], w))
        self.set("show_no_changes", envparse.get_bool(env, "SHOW_NO_CHANGES", v["show_no_changes"], w))
        self.set("repo_path", envparse.get_str(env, "REPO_PATH", v["repo_path"]))
        self.set("continue_session", envparse.get_bool(env, "CONTINUE_SESSION", v["continue_session"], w))
        self.set("debug", envparse.get_bool(env, "DEBUG", v["debug"], w))
        self.set("log_file", envparse.get_str(env, "LOG_FILE", v["log_file"]))
        self.set("max_retries", envparse.get_int(env, "MAX_RETRIES", v["max_retries"], w))
        return self

    def apply_flags(self, flags: Mapping[str, Any]) -> "ConfigResolver":
        """
        Apply parsed command-line flags. Only flags the user actually
        passed should be present in the mapping.
        """
        for dest, value in flags.items():
            if dest in INVERTED_FLAGS:
                if value:
                    self.set(INVERTED_FLAGS[dest], False)
            elif dest in FLAG_KEYS:
                self.set(FLAG_KEYS[dest], value)
        return self

    def finalize(self, cwd: Optional[Path] = None, env: Optional[Mapping[str, str]] = None) -> Config:
        """
        Validate, fill derived values, and freeze.

        Raises:
            ConfigError: if any value is invalid
        """
        if self._ready:
            raise InternalError("configuration already finalized")

        for warning in self.warnings:
            logger.warning(warning)

        v = dict(self._values)

        try:
            interval = float(v["interval_minutes"])
        except (TypeError, ValueError):
            raise ConfigError("interval", "must be a number", v["interval_minutes"]) from None
        if not math.isfinite(interval):
            raise ConfigError("interval", "must be a finite number of minutes", interval)
        if not interval > 0:
            raise ConfigError("interval", f"invalid interval: {interval:.2f} (must be greater than 0)", interval)

        if not v["commit_prefix"]:
            raise ConfigError("prefix", "commit prefix must not be empty")

        if int(v["max_retries"]) < 0:
            raise ConfigError("maxRetries", "cannot be negative", v["max_retries"])

        base = Path(cwd) if cwd else Path.cwd()
        repo = Path(os.path.expanduser(str(v["repo_path"]))) if v["repo_path"] else base
        if not repo.is_absolute():
            repo = base / repo
        repo = Path(os.path.normpath(repo))

        if v["log_file"]:
            log_file = Path(os.path.abspath(os.path.expanduser(str(v["log_file"]))))
        else:
            log_file = default_log_file(repo, env)

        continue_session = bool(v["continue_session"])
        config = Config(
            repo_path=repo,
            interval_minutes=interval,
            branch_name=str(v["branch_name"]).strip(),
            commit_prefix=str(v["commit_prefix"]),
            create_branch=bool(v["create_branch"]) and not continue_session,
            continue_session=continue_session,
            verbose=bool(v["verbose"]),
            show_no_changes=bool(v["show_no_changes"]),
            non_interactive=bool(v["non_interactive"]),
            debug=bool(v["debug"]),
            log_file=log_file,
            max_retries=int(v["max_retries"]),
        )

        validate.validate_config(config.to_dict())

        self._ready = True
        return config


def load_config(
    flags: Optional[Mapping[str, Any]] = None,
    env: Optional[Mapping[str, str]] = None,
    cwd: Optional[Path] = None,
) -> Config:
    """defaults -> environment -> flags -> validated Config."""
    resolver = ConfigResolver()
    resolver.load_env(env)
    resolver.apply_flags(flags or {})
    return resolver.finalize(cwd=cwd, env=env)
