"""Checkpoint Store

Persists run progress so an interrupted run can resume. Saves are atomic:
the checkpoint is written to a temporary file in the same directory,
fsynced, then renamed over the previous checkpoint.
"""

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Optional

from pydantic import ValidationError

from .models import Checkpoint

logger = logging.getLogger(__name__)


class CheckpointStore:
    def __init__(self, path: Path):
        self.path = Path(path)

    def load(self) -> Optional[Checkpoint]:
        """Return the stored checkpoint, or None if absent or unreadable."""
        if not self.path.exists():
            logger.info("No previous checkpoint at %s", self.path)
            return None
        try:
            with self.path.open("r", encoding="utf-8") as f:
                return Checkpoint.model_validate(json.load(f))
        except (OSError, json.JSONDecodeError, ValidationError):
            logger.warning("Could not read checkpoint %s; ignoring it", self.path, exc_info=True)
            return None

    def save(self, checkpoint: Checkpoint) -> Path:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{self.path.name}.", suffix=".tmp", dir=self.path.parent
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(checkpoint.model_dump(), f, ensure_ascii=False, indent=2)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, self.path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise

        logger.info("Checkpoint saved: page %d", checkpoint.last_successful_page)
        return self.path
