"""Small helpers shared by the test suites."""

from __future__ import annotations

import secrets


def random_hex(num_bytes: int) -> str:
    """Return num_bytes random bytes as a lowercase hex string."""
    if num_bytes < 1:
        raise ValueError("num_bytes must be at least 1")
    return secrets.token_hex(num_bytes)


def sanitise_error_message(err: BaseException | str) -> str:
    """Flatten an error message onto one line.

    Terraform wraps diagnostics to the console width, so a long validation
    message can be split over several lines.
    """
    return str(err).replace("\r\n", " ").replace("\n", " ")
