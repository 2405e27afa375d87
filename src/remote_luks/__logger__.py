# pyright: standard

"""remote-luks: remote_luks/__logger__.py
A common logger for displaying through a rich console.
"""

import logging

from rich.console import Console
from rich.logging import RichHandler

# Initialize basic console and handler
cons = Console()
rich_handler = RichHandler(console=cons, show_path=False)


def create_logger(level: str = "INFO", use_colors: bool = True) -> None:
    """Helper function to setup logging depending on display options."""
    # pylint: disable=global-statement
    global cons, rich_handler

    cons = Console(no_color=not use_colors, highlight=use_colors)
    rich_handler = RichHandler(console=cons, show_path=False, show_time=False)

    logging.basicConfig(
        format="%(message)s",
        datefmt="%H:%M:%S",
        level=getattr(logging, level, logging.INFO),
        handlers=[rich_handler],
        force=True,
    )


def get_console() -> Console:
    """Return the console created by the last call to create_logger."""
    return cons
