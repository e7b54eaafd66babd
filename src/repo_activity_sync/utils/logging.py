"""Helpers for safe log output.

Usernames, repository names and upstream error messages are user-controlled;
they pass through ``sanitize_for_log`` so a crafted value cannot forge log lines.
"""

from __future__ import annotations

from typing import Any


def sanitize_for_log(value: Any, max_length: int = 500) -> str:
    """Strip CR/LF and control characters and truncate long values."""
    if value is None:
        return ""
    text = str(value)
    text = text.replace("\r\n", " ").replace("\r", " ").replace("\n", " ")
    text = "".join(ch for ch in text if ch >= " " and ch != "\x7f")
    if len(text) > max_length:
        return text[:max_length] + "...[truncated]"
    return text
