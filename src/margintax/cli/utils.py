"""
Shared CLI utilities for margintax commands.

Provides common functionality used across CLI modules.
"""

from __future__ import annotations

import logging
from collections.abc import Generator
from contextlib import contextmanager
from typing import Any

from rich.console import Console
from rich.logging import RichHandler
from rich.progress import (
    Progress,
    SpinnerColumn,
    TextColumn,
    TimeElapsedColumn,
)


def setup_logging(verbose: bool = False, console: Console | None = None) -> None:
    """Route package logging through a Rich handler.

    Args:
        verbose: Log at INFO instead of WARNING.
        console: Console the handler writes to (stderr by default).
    """
    handler = RichHandler(
        console=console or Console(stderr=True),
        show_path=False,
        rich_tracebacks=True,
    )
    handler.setFormatter(logging.Formatter("%(message)s"))

    package_logger = logging.getLogger("margintax")
    for existing in list(package_logger.handlers):
        if isinstance(existing, RichHandler):
            package_logger.removeHandler(existing)
    package_logger.addHandler(handler)
    package_logger.setLevel(logging.INFO if verbose else logging.WARNING)


@contextmanager
def spinner_progress(
    description: str,
    console: Console | None = None,
    quiet: bool = False,
) -> Generator[Progress, None, None]:
    """Context manager for spinner-style progress display.

    The spinner is suppressed when quiet mode is enabled.

    Args:
        description: Task description to display.
        console: Rich Console instance. If None and not quiet, creates one.
        quiet: If True, suppress the progress display entirely.

    Yields:
        Progress instance (even when quiet, for API consistency).
    """
    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        TimeElapsedColumn(),
        console=console if not quiet else None,
        disable=quiet,
    ) as progress:
        progress.add_task(description=description, total=None)
        yield progress


class QuietConsole:
    """Console wrapper that suppresses output in quiet mode.

    Wraps a Rich Console and drops ``print`` output when quiet mode is
    enabled. All other console methods are delegated to the wrapped instance.

    Example:
        >>> console = Console()
        >>> qc = QuietConsole(console, quiet=True)
        >>> qc.print("This won't be shown")
    """

    def __init__(self, console: Console, quiet: bool = False):
        self._console = console
        self._quiet = quiet

    @property
    def console(self) -> Console:
        """The wrapped Console, for output that must appear even in quiet mode."""
        return self._console

    def print(self, *args: Any, **kwargs: Any) -> None:
        if not self._quiet:
            self._console.print(*args, **kwargs)

    def __getattr__(self, name: str) -> Any:
        return getattr(self._console, name)
