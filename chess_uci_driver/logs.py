"""Logging setup for applications embedding the driver."""

from __future__ import annotations

import logging
from typing import Optional, Union

from rich.console import Console
from rich.logging import RichHandler

from .core.models import Config


def setup_logging(
    level: Union[int, str, None] = None,
    use_rich: bool = True,
    console: Optional[Console] = None,
    config: Optional[Config] = None,
) -> logging.Logger:
    """
    Configure the root logger.

    Existing root handlers are removed first. With use_rich the records go to
    a RichHandler; otherwise a NullHandler keeps the library quiet so it does
    not interfere with a live display.

    Args:
        level: Logging level or level name such as "DEBUG"; defaults to
            config.log_level, or INFO without a config
        use_rich: Render log records on the console with rich
        console: Console to write to; a stderr console by default
        config: Settings supplying the default level

    Returns:
        The root logger
    """
    if level is None:
        level = config.log_level if config is not None else logging.INFO
    if isinstance(level, str):
        name = level
        level = logging.getLevelName(name.upper())
        if not isinstance(level, int):
            raise ValueError(f"Unknown log level {name!r}")

    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    if use_rich:
        handler = RichHandler(
            console=console or Console(stderr=True),
            show_path=False,
            rich_tracebacks=True,
            markup=False,
        )
        handler.setFormatter(logging.Formatter("%(name)s: %(message)s"))
    else:
        handler = logging.NullHandler()
    root_logger.addHandler(handler)
    root_logger.setLevel(level)
    return root_logger
