"""Utility helpers to construct report file names."""
from __future__ import annotations

import re
import unicodedata


def _sanitize_token(raw: str | None) -> str:
    if not raw:
        return ""
    normalized = unicodedata.normalize("NFKD", raw).encode("ascii", "ignore").decode("ascii")
    return re.sub(r"[^A-Za-z0-9]+", "-", normalized).strip("-_")


def build_report_filename(title: str | None, suffix: str = ".pdf") -> str:
    """Return an ASCII file name derived from the dashboard title."""

    stem = _sanitize_token(title) or "report"
    return f"{stem}{suffix}"


__all__ = ["build_report_filename"]
