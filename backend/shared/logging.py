"""Logging configuration shared by the API server and the Discord bot."""

import logging
import sys

try:
    from rich.console import Console
    from rich.logging import RichHandler

    RICH_AVAILABLE = True
except ImportError:
    RICH_AVAILABLE = False

_STANDARD_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
_NOISY_LOGGERS = ("discord", "discord.http", "httpx", "httpcore", "uvicorn.access")


def _standard_logging(level: int) -> None:
    logging.basicConfig(
        level=level,
        format=_STANDARD_FORMAT,
        datefmt="%Y-%m-%d %H:%M:%S",
        force=True,
    )


def setup_logging(log_level: str = "INFO") -> None:
    """Configure application logging with Rich handler"""
    level = getattr(logging, log_level.upper(), logging.INFO)

    if RICH_AVAILABLE:
        try:
            # Enable UTF-8 output on Windows
            if sys.platform == "win32":
                import codecs

                sys.stdout = codecs.getwriter("utf-8")(sys.stdout.buffer, errors="replace")
                sys.stderr = codecs.getwriter("utf-8")(sys.stderr.buffer, errors="replace")

            console = Console(force_terminal=True, width=120)

            rich_handler = RichHandler(
                console=console,
                show_time=True,
                show_level=True,
                show_path=False,
                markup=False,
                rich_tracebacks=True,
                tracebacks_show_locals=False,
                tracebacks_width=120,
            )
            rich_handler.setFormatter(
                logging.Formatter(fmt="%(message)s", datefmt="[%Y-%m-%d %H:%M:%S]")
            )

            # force=True: uvicorn configures the root logger before us
            logging.basicConfig(
                level=level,
                format="%(message)s",
                datefmt="[%Y-%m-%d %H:%M:%S]",
                handlers=[rich_handler],
                force=True,
            )
        except Exception as e:
            _standard_logging(level)
            logging.getLogger(__name__).warning(
                f"Rich logging setup failed: {e}, using standard logging"
            )
    else:
        _standard_logging(level)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
