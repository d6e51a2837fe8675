"""
Cold-start transcript cache.

One JSON file per session id. The hub stays the source of truth: the cache
only lets a restarted client render the last transcript before its first
snapshot arrives, and it is dropped once the session is resolved.
"""
import json
import logging
import os
from pathlib import Path
from typing import Optional, Union

from pydantic import ValidationError

from ..models.chat import check_session_id
from .reconciler import Transcript

logger = logging.getLogger(__name__)


class TranscriptCache:
    """File-backed transcript cache keyed by session id."""

    def __init__(self, cache_dir: Union[str, Path]):
        self.cache_dir = Path(cache_dir)
        self.cache_dir.mkdir(parents=True, exist_ok=True)

    def _path(self, session_id: str) -> Path:
        return self.cache_dir / f"{check_session_id(session_id)}.json"

    def load(self, session_id: str) -> Optional[Transcript]:
        """Cached transcript, or None when absent or unreadable."""
        path = self._path(session_id)
        if not path.exists():
            return None

        try:
            transcript = Transcript.from_dict(json.loads(path.read_text(encoding="utf-8")))
        except (OSError, ValueError, KeyError, ValidationError) as e:
            logger.warning(f"Discarding unreadable transcript cache for {session_id}: {e}")
            self.invalidate(session_id)
            return None

        if transcript.session_id != session_id or transcript.is_resolved:
            self.invalidate(session_id)
            return None
        return transcript

    def save(self, transcript: Transcript) -> None:
        """Write the transcript; a resolved transcript invalidates instead."""
        if transcript.is_resolved:
            self.invalidate(transcript.session_id)
            return

        path = self._path(transcript.session_id)
        tmp_path = path.with_suffix(".json.tmp")
        tmp_path.write_text(json.dumps(transcript.to_dict()), encoding="utf-8")
        os.replace(tmp_path, path)

    def invalidate(self, session_id: str) -> bool:
        """Drop the cached transcript. Returns True if one existed."""
        path = self._path(session_id)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        logger.debug(f"Invalidated transcript cache for {session_id}")
        return True


__all__ = ['TranscriptCache']
