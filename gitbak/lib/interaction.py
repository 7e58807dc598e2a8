"""Yes/no prompts for the few decisions gitbak asks about at startup."""

import logging
from typing import Optional

from rich.console import Console
from rich.prompt import Confirm

logger = logging.getLogger(__name__)


class Interactor:
    """Asks the user on the terminal."""

    def __init__(self, console: Optional[Console] = None):
        self.console = console or Console()

    def confirm(self, question: str, default: bool = False) -> bool:
        try:
            return Confirm.ask(question, default=default, console=self.console)
        except EOFError:
            logger.info(f"No answer to {question!r} (stdin closed), using default {default}")
            return default


class NonInteractiveInteractor(Interactor):
    """Answers every question with its default."""

    def confirm(self, question: str, default: bool = False) -> bool:
        logger.info(f"Non-interactive mode: answering {question!r} with {default}")
        return default


def create_interactor(non_interactive: bool, console: Optional[Console] = None) -> Interactor:
    if non_interactive:
        return NonInteractiveInteractor(console)
    return Interactor(console)
