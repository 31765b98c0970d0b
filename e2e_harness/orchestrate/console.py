"""Rich console logging for e2e runs."""

from __future__ import annotations

import logging

from rich.console import Console, ConsoleRenderable
from rich.logging import RichHandler
from rich.text import Text


LOG_PREFIX_STYLES: dict[str, str] = {
    "RUN": "bold cyan",
    "SERVER": "bold blue",
    "BUILD": "bold magenta",
    "DRIVER": "bold",
    "RUNNER": "bold yellow",
    "SHUTDOWN": "bold red",
}

LOG_EVENT_STYLES: dict[str, str] = {
    "started": "cyan",
    "start": "cyan",
    "complete": "bold green",
    "exited": "bold",
    "requested": "bold red",
}


def format_log_message(message: str) -> Text:
    text = Text(message)
    parts = message.split(" ", maxsplit=2)
    prefix = parts[0]
    prefix_style = LOG_PREFIX_STYLES.get(prefix)
    if prefix_style:
        text.stylize(prefix_style, 0, len(prefix))
        if len(parts) >= 2:
            event = parts[1].split("=", 1)[0]
            event_style = LOG_EVENT_STYLES.get(event)
            if event_style:
                start = len(prefix) + 1
                text.stylize(event_style, start, start + len(event))
    return text


class RunLogHandler(RichHandler):
    """RichHandler that highlights the leading event word of run log lines."""

    def render_message(self, record: logging.LogRecord, message: str) -> ConsoleRenderable:
        return format_log_message(message)


def setup_logging(*, verbose: bool = False, console: Console | None = None) -> RunLogHandler:
    # Keep logs human-readable: no source file/line prefixes and no automatic syntax highlighting.
    console = console or Console(stderr=True, highlight=False)
    handler = RunLogHandler(console=console, show_path=False, markup=False, rich_tracebacks=True)
    handler.setFormatter(logging.Formatter("%(message)s"))
    root = logging.getLogger()
    for existing in list(root.handlers):
        if isinstance(existing, RunLogHandler):
            root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(logging.DEBUG if verbose else logging.INFO)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    return handler


__all__ = ["RunLogHandler", "format_log_message", "setup_logging"]
