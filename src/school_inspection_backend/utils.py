"""
Utility functions for identifier validation and blob naming.

This module provides helper functions for:
- Checking UDISE codes against the required digit pattern
- Sanitizing user-provided file names for safe object keys
- Building unique blob names for uploaded files
"""

from __future__ import annotations

import re
from pathlib import Path
from typing import Optional
from uuid import uuid4

from .models import UDISE_CODE_PATTERN

UDISE_CODE_RE = re.compile(UDISE_CODE_PATTERN)

# Pattern to match characters that are not safe inside an object key
# Allows: alphanumeric characters, dots, underscores, and hyphens
SANITIZE_PATTERN = re.compile(r"[^a-zA-Z0-9._-]+")


def is_valid_udise_code(value: Optional[str]) -> bool:
    """
    Check whether a value is a UDISE code: six or more ASCII digits, nothing else.

    Example:
        >>> is_valid_udise_code("1234567")
        True
        >>> is_valid_udise_code("12345a")
        False
    """
    return bool(value) and UDISE_CODE_RE.fullmatch(value) is not None


def sanitize_filename(filename: str, fallback: str = "file") -> str:
    """
    Generate an object-key-safe file name from user input.

    Args:
        filename: The original file name (may include a client-side path)
        fallback: Stem to use if sanitization leaves nothing

    Returns:
        A file name containing only safe characters, extension preserved

    Example:
        >>> sanitize_filename("Front Wall #1.JPG")
        "Front-Wall-1.jpg"
    """
    path = Path(filename.replace("\\", "/"))
    stem = SANITIZE_PATTERN.sub("-", path.stem.strip()).strip("-_.") or fallback
    suffix = SANITIZE_PATTERN.sub("", path.suffix.lower())
    return f"{stem}{suffix}"


def build_blob_name(original_name: Optional[str]) -> str:
    """Prefix the sanitized name with a UUID so every upload gets its own key."""
    return f"{uuid4()}-{sanitize_filename(original_name or '')}"
