"""
Atomic token storage for the CastBreeze OAuth session.

Stores the whole TokenState in one JSON file. Writes are atomic (temp file +
rename) so access and refresh tokens are always persisted together and a
crash mid-write never corrupts the file.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path

from pydantic import ValidationError

from ..models import TokenState

logger = logging.getLogger(__name__)


class TokenStore:
    """File-backed store for a single account's TokenState."""

    def __init__(self, path: Path | str):
        self.path = Path(path)

    def load(self) -> TokenState | None:
        """Load tokens from disk. Returns None if missing or unreadable."""
        try:
            with open(self.path) as f:
                data = json.load(f)
        except FileNotFoundError:
            return None
        except json.JSONDecodeError as e:
            logger.error(f"Invalid JSON in token file {self.path}: {e}")
            return None

        try:
            return TokenState.model_validate(data)
        except ValidationError as e:
            logger.warning(f"Token file {self.path} is incomplete: {e}")
            return None

    def save(self, state: TokenState) -> Path:
        """Atomically write the token state to disk."""
        d = self.path.parent
        d.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=d, suffix=".tmp")
        try:
            with os.fdopen(fd, "w") as f:
                f.write(state.model_dump_json(indent=2))
                f.write("\n")
            os.replace(tmp, self.path)
        except Exception:
            try:
                os.unlink(tmp)
            except OSError:
                pass
            raise

        logger.info(f"Tokens saved to {self.path}")
        return self.path

    def delete(self) -> bool:
        """Delete the token file. Returns True if a file was removed."""
        if self.path.exists():
            self.path.unlink()
            logger.info(f"Tokens deleted from {self.path}")
            return True
        return False
