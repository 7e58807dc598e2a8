#!/usr/bin/env python3
"""gitbak CLI entrypoint."""

import argparse
import sys
from importlib.metadata import PackageNotFoundError, version as dist_version
from typing import Optional

from rich.console import Console

from gitbak.lib.config import load_config
from gitbak.lib.constants import APP_NAME, EXIT_FORCED, LOGO, TAGLINE
from gitbak.lib.errors import ConfigError
from gitbak.lib.log import SessionLogger
from gitbak.workflow.supervisor import Supervisor


def get_version() -> str:
    try:
        return dist_version(APP_NAME)
    except PackageNotFoundError:
        return "dev"


def render_logo() -> str:
    """ASCII logo with the tagline centred beneath it."""
    art = LOGO.strip("\n")
    width = max(len(line) for line in art.splitlines())
    return f"{art}\n\n{TAGLINE.center(width).rstrip()}\n"


def build_parser() -> argparse.ArgumentParser:
    # Only flags the user actually passed end up in the namespace, so the
    # environment keeps its say for everything else
    parser = argparse.ArgumentParser(
        prog=APP_NAME,
        description="Automatic commit safety net: checkpoint a git working tree on an interval.",
        allow_abbrev=False,
        argument_default=argparse.SUPPRESS,
    )
    parser.add_argument('-interval', '--interval', type=float, metavar='N',
                        help='Minutes between commit checks (default: 5)')
    parser.add_argument('-branch', '--branch', metavar='NAME',
                        help='Branch to use or create')
    parser.add_argument('-prefix', '--prefix', metavar='TEXT',
                        help='Commit message prefix')
    parser.add_argument('-no-branch', '--no-branch', dest='no_branch', action='store_true',
                        help='Stay on the current branch instead of creating one')
    parser.add_argument('-continue', '--continue', dest='continue_session', action='store_true',
                        help='Continue numbering from an existing session')
    parser.add_argument('-quiet', '--quiet', action='store_true',
                        help='Suppress informational output')
    parser.add_argument('-show-no-changes', '--show-no-changes', dest='show_no_changes', action='store_true',
                        help='Report ticks that found nothing to commit')
    parser.add_argument('-repo', '--repo', metavar='PATH',
                        help='Repository path (default: current directory)')
    parser.add_argument('-debug', '--debug', action='store_true',
                        help='Write a debug log')
    parser.add_argument('-log-file', '--log-file', dest='log_file', metavar='PATH',
                        help='Debug log path')
    parser.add_argument('-non-interactive', '--non-interactive', dest='non_interactive', action='store_true',
                        help='Never prompt; take the safe default')
    parser.add_argument('-max-retries', '--max-retries', dest='max_retries', type=int, metavar='N',
                        help='Identical consecutive failures before giving up (0 = never, default: 3)')
    parser.add_argument('-version', '--version', action='store_true',
                        help='Print version and exit')
    parser.add_argument('-logo', '--logo', action='store_true',
                        help='Print the logo and exit')
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    flags = vars(args)

    stdout = Console(highlight=False)
    stderr = Console(stderr=True, highlight=False)

    if flags.pop('version', False):
        stdout.print(f"{APP_NAME} {get_version()}", markup=False)
        return 0
    if flags.pop('logo', False):
        stdout.print(render_logo(), markup=False)
        return 0

    try:
        config = load_config(flags)
    except ConfigError as e:
        stderr.print(f"❌ Error: {e}", markup=False)
        return e.exit_code

    session_log = SessionLogger(
        debug=config.debug,
        log_file=config.log_file,
        verbose=config.verbose,
        stdout=stdout,
        stderr=stderr,
    )
    try:
        return Supervisor(config, session_log).run()
    except KeyboardInterrupt:
        # Ctrl+C before stop handlers were installed (e.g. at a prompt)
        stderr.print("Interrupted", markup=False)
        return EXIT_FORCED


if __name__ == '__main__':
    sys.exit(main())
