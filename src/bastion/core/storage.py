"""Whole-document JSON persistence with atomic replace.

Each write goes to a sibling ``.tmp`` file which is then ``os.replace``-d over
the target, so a crash mid-write leaves the previous document intact.
"""

from __future__ import annotations

import json
import logging
import os
import pathlib
from typing import Any

logger = logging.getLogger(__name__)


def write_json_atomic(path: pathlib.Path, payload: Any) -> None:
    """Serialize *payload* to *path*. Raises OSError on failure."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    with open(tmp, "w", encoding="utf-8") as f:
        json.dump(payload, f, ensure_ascii=False, indent=2)
        f.flush()
        os.fsync(f.fileno())
    os.replace(tmp, path)


def read_json(path: pathlib.Path, default: Any) -> Any:
    """Load *path*, returning *default* when it is missing or unreadable."""
    if not path.exists():
        return default
    try:
        with open(path, encoding="utf-8") as f:
            return json.load(f)
    except (OSError, json.JSONDecodeError):
        logger.exception("storage_read_failed path=%s", path)
        return default
