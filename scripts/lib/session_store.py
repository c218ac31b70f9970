"""
Local persistence for the dashboard: the session snapshot of the current
record set, the durable chart-comment map, and the upload session that
ties loading, errors and the snapshot together.

Files:
    data/session/deals_snapshot.json   normalized deals of the last good upload
    data/chart_comments.json           chart id -> {id, content, updated_at}

Usage:
    session = UploadSession()
    await session.upload("exports/deals.xlsx")
    if session.error: ...
"""
from __future__ import annotations

import asyncio
import json
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional

from pydantic import ValidationError

from models.deal_models import ChartComment, Deal
from scripts.lib.deal_loader import load_deals
from scripts.lib.errors import HubError
from scripts.lib.logger import setup_logger
from scripts.lib.utils import atomic_write_json

logger = setup_logger(__name__)

BASE_DIR = Path(__file__).resolve().parent.parent.parent
DATA_DIR = Path(os.getenv("DEALS_DATA_DIR", str(BASE_DIR / "data")))
SESSION_DIR = DATA_DIR / "session"

SNAPSHOT_FILE = "deals_snapshot.json"
COMMENTS_FILE = "chart_comments.json"


# ---------------------------------------------------------------------------
# Session snapshot
# ---------------------------------------------------------------------------

class SessionSnapshot:
    """Opaque cache of the active record set so a restart skips re-upload."""

    def __init__(self, path: Optional[Path] = None):
        self.path = Path(path) if path else SESSION_DIR / SNAPSHOT_FILE

    def save(self, deals: List[Deal]) -> bool:
        payload = [deal.model_dump(by_alias=True) for deal in deals]
        return atomic_write_json(payload, self.path)

    def load(self) -> List[Deal]:
        """Cached deals, or an empty list when missing or unreadable."""
        if not self.path.exists():
            return []
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                payload = json.load(f)
            return [Deal.model_validate(item) for item in payload]
        except (OSError, json.JSONDecodeError, TypeError, ValidationError) as e:
            logger.error("Failed to restore session snapshot %s: %s", self.path, e)
            return []

    def clear(self) -> None:
        self.path.unlink(missing_ok=True)

    @property
    def exists(self) -> bool:
        return self.path.exists()


# ---------------------------------------------------------------------------
# Chart comments
# ---------------------------------------------------------------------------

class ChartCommentStore:
    """Durable chart id -> comment map, independent of the record set."""

    def __init__(self, path: Optional[Path] = None):
        self.path = Path(path) if path else DATA_DIR / COMMENTS_FILE
        self._comments: Dict[str, ChartComment] = self._read()

    def _read(self) -> Dict[str, ChartComment]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                raw = json.load(f)
            return {key: ChartComment.model_validate(val) for key, val in raw.items()}
        except (OSError, json.JSONDecodeError, AttributeError, ValidationError) as e:
            logger.error("Failed to parse chart comments from %s: %s", self.path, e)
            return {}

    def _write(self) -> None:
        payload = {key: c.model_dump() for key, c in self._comments.items()}
        if not atomic_write_json(payload, self.path):
            logger.error("Failed to save chart comments to %s", self.path)

    def get(self, chart_id: str) -> Optional[ChartComment]:
        return self._comments.get(chart_id)

    def update(self, chart_id: str, content: str) -> ChartComment:
        comment = ChartComment(
            id=chart_id,
            content=content,
            updated_at=datetime.now(timezone.utc).isoformat(),
        )
        self._comments[chart_id] = comment
        self._write()
        return comment

    def delete(self, chart_id: str) -> bool:
        if chart_id not in self._comments:
            return False
        del self._comments[chart_id]
        self._write()
        return True

    def all(self) -> Dict[str, ChartComment]:
        return dict(self._comments)


# ---------------------------------------------------------------------------
# Upload session
# ---------------------------------------------------------------------------

class UploadSession:
    """Current record set plus the state of the last upload.

    An upload either replaces the record set (and refreshes the snapshot) or
    fails with a single message, leaving the record set empty and the snapshot
    removed. Starting a new upload supersedes one still in flight: only the
    latest upload's outcome is applied.
    """

    def __init__(self, snapshot: Optional[SessionSnapshot] = None):
        self.snapshot = snapshot or SessionSnapshot()
        self._deals: List[Deal] = self.snapshot.load()
        self._generation = 0
        self.is_loading = False
        self.error: Optional[str] = None
        if self._deals:
            logger.info("Restored %d deals from session snapshot", len(self._deals))

    @property
    def deals(self) -> List[Deal]:
        return list(self._deals)

    async def upload(self, path: str | Path) -> bool:
        """Parse ``path`` off the event loop and apply the outcome.

        Returns True when the record set was replaced.
        """
        self._generation += 1
        generation = self._generation
        self.is_loading = True
        self.error = None
        try:
            deals = await asyncio.to_thread(load_deals, path)
        except HubError as e:
            if generation != self._generation:
                return False
            logger.warning("Upload of %s failed: %s", path, e.message)
            self.error = e.message
            self._deals = []
            self.snapshot.clear()
            return False
        finally:
            if generation == self._generation:
                self.is_loading = False

        if generation != self._generation:
            logger.info("Discarding superseded upload of %s", path)
            return False
        self._deals = deals
        self.snapshot.save(deals)
        logger.info("Upload of %s loaded %d deals", path, len(deals))
        return True

    def reset(self) -> None:
        """Drop the record set and its snapshot."""
        self._deals = []
        self.error = None
        self.snapshot.clear()
