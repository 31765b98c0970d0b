"""Local port discovery for the web server and helper processes."""

from __future__ import annotations

import socket


class PortError(RuntimeError):
    """Raised when no local port can be reserved."""


def parse_port_range(expr: str) -> tuple[int, int]:
    """Parse "8000-8999" (or a single "8000") into an inclusive range."""
    text = expr.strip()
    if not text:
        raise ValueError("Port range must not be empty.")
    if "-" in text:
        start_str, end_str = text.split("-", maxsplit=1)
        start, end = int(start_str), int(end_str)
    else:
        start = end = int(text)
    if start > end:
        start, end = end, start
    if start < 1 or end > 65535:
        raise ValueError(f"Port range is out of bounds: {expr!r}.")
    return start, end


def find_free_port(port_range: tuple[int, int], *, host: str = "127.0.0.1") -> int:
    start, end = port_range
    for port in range(start, end + 1):
        if port_is_available(port, host=host):
            return port
    raise PortError(f"No free ports available in range {start}-{end}.")


def port_is_available(port: int, *, host: str = "127.0.0.1") -> bool:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            sock.bind((host, port))
        except OSError:
            return False
    return True


__all__ = ["PortError", "find_free_port", "parse_port_range", "port_is_available"]
