"""Shared constants for gitbak."""

APP_NAME = "gitbak"

# Configuration defaults
DEFAULT_INTERVAL_MINUTES = 5.0
DEFAULT_COMMIT_PREFIX = "[gitbak] Automatic checkpoint"
DEFAULT_MAX_RETRIES = 3

# Tick period never drops below this many seconds
MIN_TICK_SECONDS = 1.0

# Fresh branch names: gitbak-20240131-154501
BRANCH_PREFIX = APP_NAME
BRANCH_TIMESTAMP_FORMAT = "%Y%m%d-%H%M%S"
COMMIT_TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"

LOCK_EXTENSION = "lock"
LOCK_HASH_LEN = 16
LOG_HASH_BYTES = 8

MANUAL_PRE_SESSION_MESSAGE = "Manual commit before starting gitbak session"

# Exit codes
EXIT_OK = 0
EXIT_INTERNAL = 1
EXIT_CONFIG = 2
EXIT_LOCK_CONTENTION = 3
EXIT_LOCK_FAILURE = 4
EXIT_NOT_A_REPO = 5
EXIT_VCS_FAILURE = 6
EXIT_PLATFORM = 7
EXIT_IO = 8
EXIT_FORCED = 130

TAGLINE = "Automatic Commit Safety Net"

LOGO = r"""
        _ _   _           _
   __ _(_) |_| |__   __ _| | __
  / _` | | __| '_ \ / _` | |/ /
 | (_| | | |_| |_) | (_| |   <
  \__, |_|\__|_.__/ \__,_|_|\_\
  |___/
"""
