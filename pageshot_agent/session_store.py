from __future__ import annotations

import contextlib
import json
import logging
import os
import re
import tempfile
from pathlib import Path
from typing import Protocol

from pydantic import ValidationError

from .errors import PersistenceWarning
from .models import SessionState

logger = logging.getLogger(__name__)

_SAFE_KEY_RE = re.compile(r"[^a-zA-Z0-9_.-]+")


class SessionStore(Protocol):
    def load(self, key: str) -> SessionState | None: ...

    def save(self, key: str, state: SessionState) -> None: ...


class FileSessionStore:
    """One JSON cookie jar per hook, kept in ephemeral storage.

    A missing, empty or unreadable file reads as "no session": the hook then
    logs in again. Writes land in a temp file that is renamed over the old
    one, so concurrent writers never leave a half-written jar behind; the
    last writer wins.
    """

    def __init__(self, directory: str | Path):
        self.directory = Path(directory)

    def path_for(self, key: str) -> Path:
        safe = _SAFE_KEY_RE.sub("_", key).strip("._") or "default"
        return self.directory / f"{safe}_cookies.json"

    def load(self, key: str) -> SessionState | None:
        path = self.path_for(key)
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as e:
            logger.warning("could not read session file %s: %s", path, e)
            return None

        try:
            state = SessionState.model_validate({"cookies": json.loads(raw)})
        except (json.JSONDecodeError, ValidationError) as e:
            logger.warning("ignoring unreadable session file %s: %s", path, e)
            return None

        if state.is_empty():
            return None
        logger.info("loaded %d stored cookies for %s", len(state.cookies), key)
        return state

    def save(self, key: str, state: SessionState) -> None:
        path = self.path_for(key)
        payload = json.dumps([c.to_browser() for c in state.cookies], ensure_ascii=False)
        tmp_name: str | None = None
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=self.directory, prefix=path.name, suffix=".tmp")
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(payload)
            os.replace(tmp_name, path)
        except OSError as e:
            if tmp_name:
                with contextlib.suppress(OSError):
                    os.unlink(tmp_name)
            raise PersistenceWarning(f"could not write session file {path}: {e}") from e
        logger.info("saved %d cookies for %s", len(state.cookies), key)
