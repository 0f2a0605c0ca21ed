"""
Common utilities shared across module_audit modules.
"""

from __future__ import annotations

import os
import re
import sys

# Characters that are invalid in a path component on at least one of the
# platforms the extraction root may live on.
_INVALID_NAME_CHARS = re.compile(r'[<>:"/\\|?*\x00-\x1f]+')


def available_parallelism() -> int:
    """
    Get the number of CPUs usable by this process.

    Returns:
        CPU count honouring the scheduler affinity mask when available, at least 1.
    """
    if hasattr(os, "sched_getaffinity"):
        try:
            return max(1, len(os.sched_getaffinity(0)))
        except OSError:
            pass
    return max(1, os.cpu_count() or 1)


def sanitize_directory_name(name: str) -> str:
    """
    Build a filesystem-safe directory name from an archive file name.

    Runs of invalid characters are replaced by a single underscore. Distinct
    names that sanitize to the same value are not de-duplicated.

    Args:
        name: Archive file name (no directory part)

    Returns:
        Sanitized directory name, "_" if nothing usable remains
    """
    parts = [p for p in _INVALID_NAME_CHARS.split(name) if p]
    cleaned = "_".join(parts).strip()
    if cleaned in ("", ".", ".."):
        return "_"
    return cleaned


def has_suffix(name: str, suffixes) -> bool:
    """Case-insensitive multi-part suffix match (handles ".tar.gz")."""
    lowered = name.lower()
    return any(lowered.endswith(s.lower()) for s in suffixes)


def vlog(msg: str, verbose: bool = False) -> None:
    """
    Log verbose message using structured logging.

    Args:
        msg: Message to log
        verbose: Whether verbose mode is enabled
    """
    if verbose or os.environ.get("MODULE_AUDIT_DEBUG", "0") == "1":
        try:
            from .logging_config import get_logger
            logger = get_logger()
            logger.info(msg)
        except Exception:
            # Fallback to stderr if logging fails
            try:
                print(f"[module_audit] {msg}", file=sys.stderr)
            except Exception:
                pass
