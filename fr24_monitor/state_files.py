"""Small JSON state-file helpers shared by the config store and the notification ledger."""

from __future__ import annotations

import json
import os
import stat
import tempfile
from pathlib import Path
from typing import Any, Mapping

from .errors import ConfigParseError, PersistenceError


def dumps_document(payload: Mapping[str, Any]) -> str:
    return json.dumps(payload, ensure_ascii=False, sort_keys=True, indent=2) + "\n"


def read_json_object(path: Path) -> dict[str, Any]:
    """
    Read a JSON object from ``path``.

    FileNotFoundError propagates unchanged so callers can tell "never written" apart
    from "written but broken"; everything else is a ConfigParseError.
    """
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        raise
    except (OSError, UnicodeDecodeError) as exc:
        raise ConfigParseError(f"Cannot read {path}: {exc}") from exc

    if not text.strip():
        raise ConfigParseError(f"Empty document: {path}")
    try:
        raw = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ConfigParseError(f"Malformed JSON in {path}: {exc}") from exc
    if not isinstance(raw, dict):
        raise ConfigParseError(f"Document root must be an object: {path}")
    return raw


def write_json_atomic(path: Path, payload: Mapping[str, Any]) -> None:
    """
    Write ``payload`` next to ``path`` in a temp file, fsync it, then rename it over ``path``.

    Readers observe either the previous document or the new one, never a partial write.
    """
    path = Path(path)
    text = dumps_document(payload)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=str(path.parent))
    except OSError as exc:
        raise PersistenceError(f"Cannot write {path}: {exc}") from exc

    tmp = Path(tmp_name)
    try:
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(text)
                f.flush()
                os.fsync(f.fileno())
            try:
                os.chmod(tmp, stat.S_IMODE(path.stat().st_mode))
            except FileNotFoundError:
                pass
            os.replace(tmp, path)
        except BaseException:
            tmp.unlink(missing_ok=True)
            raise
    except OSError as exc:
        raise PersistenceError(f"Cannot write {path}: {exc}") from exc
