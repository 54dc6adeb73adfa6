"""Flat per-session files shared by the counter store and the ack controller."""

from __future__ import annotations

import hashlib
import logging
import os
import re
import tempfile
from pathlib import Path
from typing import Optional

from plan_review.core.exceptions import StateError

logger = logging.getLogger("plan_review.state.storage")

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]")


def session_path(directory: Path, prefix: str, session_id: str) -> Path:
    """Path of a session's record; the id can never escape ``directory``.

    Ids that needed rewriting get a short digest of the original id, so two
    distinct ids never share a file.
    """
    safe_id = _UNSAFE_CHARS.sub("_", session_id)
    if safe_id in (".", ".."):
        safe_id = safe_id.replace(".", "_")
    if safe_id != session_id:
        digest = hashlib.sha256(session_id.encode("utf-8", errors="surrogatepass")).hexdigest()[:12]
        safe_id = f"{safe_id}-{digest}"
    return directory / f"{prefix}{safe_id}"


def read_text(path: Path) -> Optional[str]:
    """File contents, or None when missing or unreadable."""
    try:
        return path.read_text(encoding="utf-8", errors="replace")
    except FileNotFoundError:
        return None
    except OSError as e:
        logger.debug("Unreadable state file %s: %s", path, e)
        return None


def write_text_atomic(path: Path, content: str) -> None:
    """Replace ``path`` with ``content`` via a temp file in the same directory.

    Raises:
        StateError: If the directory or file cannot be written.
    """
    tmp_name = None
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
        os.replace(tmp_name, path)
        tmp_name = None
    except OSError as e:
        raise StateError(f"Failed to write {path}: {e}") from e
    finally:
        if tmp_name is not None:
            try:
                os.unlink(tmp_name)
            except OSError:
                pass


def remove(path: Path) -> bool:
    """Delete ``path`` if present. Returns True when a file was removed.

    Raises:
        StateError: If the file exists but cannot be removed.
    """
    try:
        path.unlink()
        return True
    except FileNotFoundError:
        return False
    except OSError as e:
        raise StateError(f"Failed to remove {path}: {e}") from e
