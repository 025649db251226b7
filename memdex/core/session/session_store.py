"""File-backed storage for session transcripts."""

import os
import re
from pathlib import Path

from loguru import logger
from pydantic import ValidationError

from ..exceptions import FileAccessError
from ..schema import SessionSummary, SessionTranscript

SESSION_SUFFIX = ".json"
_UNSAFE_CHARS_RE = re.compile(r'[<>:"/\\|?*\x00-\x1f]')


def safe_session_key(session_key: str) -> str:
    """Turn a session key into a file-name-safe stem."""
    key = _UNSAFE_CHARS_RE.sub("_", session_key.strip())
    if not key.strip(". "):
        raise ValueError(f"Invalid session key: {session_key!r}")
    return key


class SessionStore:
    """Stores one camelCase JSON file per session under ``sessions_dir``."""

    def __init__(self, sessions_dir: str | Path):
        self.sessions_dir = Path(sessions_dir)

    def path_for(self, session_key: str) -> Path:
        return self.sessions_dir / f"{safe_session_key(session_key)}{SESSION_SUFFIX}"

    def list_paths(self) -> list[Path]:
        """All transcript files, sorted by name."""
        if not self.sessions_dir.is_dir():
            return []
        return sorted(p for p in self.sessions_dir.iterdir() if p.is_file() and p.suffix == SESSION_SUFFIX)

    @staticmethod
    def read_file(path: str | Path) -> SessionTranscript:
        """Parse a transcript file.

        Raises:
            FileAccessError: If the file cannot be read or is not a transcript
        """
        try:
            raw = Path(path).read_text(encoding="utf-8")
            return SessionTranscript.model_validate_json(raw)
        except (OSError, UnicodeDecodeError, ValidationError) as e:
            raise FileAccessError(str(path), f"unreadable session transcript: {e}") from e

    async def save(self, transcript: SessionTranscript) -> Path:
        """Write a transcript, replacing any previous version atomically."""
        path = self.path_for(transcript.session_key)
        self.sessions_dir.mkdir(parents=True, exist_ok=True)

        # Readers never observe a half-written file
        tmp_path = path.with_name(path.name + ".tmp")
        try:
            tmp_path.write_text(transcript.model_dump_json(by_alias=True, indent=2), encoding="utf-8")
            os.replace(tmp_path, path)
        except OSError as e:
            raise FileAccessError(str(path), f"failed to save session: {e}") from e

        logger.debug(f"Saved session {transcript.session_key} to {path}")
        return path

    async def load(self, session_key: str) -> SessionTranscript | None:
        path = self.path_for(session_key)
        if not path.exists():
            return None
        return self.read_file(path)

    async def list_summaries(self) -> list[SessionSummary]:
        """Summaries of every stored session, most recent first."""
        summaries: list[SessionSummary] = []
        for path in self.list_paths():
            try:
                summaries.append(self.read_file(path).to_summary())
            except FileAccessError as e:
                logger.warning(f"Skipping session file: {e}")
        summaries.sort(key=lambda s: s.started_at, reverse=True)
        return summaries

    async def delete(self, session_key: str) -> bool:
        path = self.path_for(session_key)
        if not path.exists():
            return False
        path.unlink()
        logger.debug(f"Deleted session {session_key}")
        return True

    async def export(self, session_key: str, output_path: str | Path) -> Path:
        """Write the plain-text rendering of a session to ``output_path``."""
        transcript = await self.load(session_key)
        if transcript is None:
            raise FileAccessError(str(self.path_for(session_key)), "session not found")

        output_path = Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        output_path.write_text(transcript.to_plain_text(), encoding="utf-8")
        logger.debug(f"Exported session {session_key} to {output_path}")
        return output_path
