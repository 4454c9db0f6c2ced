"""
cuepoint.io - JSON read/write helpers, atomic file writes.

Centralized I/O utilities for all pipeline stages.
"""

from __future__ import annotations

import json
import tempfile
from pathlib import Path
from typing import Any


def read_json(path: Path) -> Any:
    """Read JSON file with UTF-8 encoding.

    Args:
        path: Path to JSON file

    Returns:
        Parsed JSON data

    Raises:
        FileNotFoundError: If file doesn't exist
        json.JSONDecodeError: If file contains invalid JSON
    """
    with open(path, encoding="utf-8") as f:
        return json.load(f)


def write_json(path: Path, data: Any, indent: int | None = 2) -> None:
    """Write JSON file atomically.

    Writes to a temp file first, then replaces the destination so readers
    never observe a half-written file, even with several writers racing on
    the same path.

    Args:
        path: Destination path for JSON file
        data: Data to write
        indent: Indentation level for pretty printing (None for compact)
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    with tempfile.NamedTemporaryFile(
        mode="w",
        encoding="utf-8",
        dir=path.parent,
        delete=False,
        suffix=".tmp",
    ) as tmp:
        tmp_path = Path(tmp.name)
        try:
            json.dump(data, tmp, indent=indent, ensure_ascii=False)
        except Exception:
            tmp.close()
            tmp_path.unlink(missing_ok=True)
            raise
    tmp_path.replace(path)


def remove_file(path: Path) -> bool:
    """Delete a file if present.

    Returns:
        True if a file was removed
    """
    if path.exists():
        path.unlink()
        return True
    return False
