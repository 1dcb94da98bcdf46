"""Structured sync outcomes, logged and kept in the sync_log table."""

import json
import logging
from typing import Optional

from pydantic import BaseModel, Field

from caldesk.database import get_database
from caldesk.models import CalendarDocument

logger = logging.getLogger(__name__)


class SyncOutcome(BaseModel):
    """Counts of what one reconcile or pull-sync did remotely and locally."""
    action: str
    status: str = "success"
    created: int = 0
    updated: int = 0
    deleted: int = 0
    unchanged: int = 0
    failed: int = 0
    deferred: int = 0
    pruned: int = 0
    imported: int = 0
    relinked: int = 0
    errors: list[str] = Field(default_factory=list)

    def record_failure(self, record_id: str, error: Exception) -> None:
        self.failed += 1
        self.errors.append(f"{record_id}: {error}")

    def finalize(self) -> "SyncOutcome":
        """Downgrade a clean status to partial when some work did not land."""
        if self.status == "success" and (self.failed or self.deferred):
            self.status = "partial"
        return self


class SyncResult(BaseModel):
    """A persisted document together with the outcome that produced it."""
    document: CalendarDocument
    outcome: SyncOutcome


class SyncLogEntry(BaseModel):
    """Sync log entry."""
    id: int
    action: str
    status: str
    details: Optional[dict] = None
    created_at: str


async def record_outcome(owner_id: str, outcome: SyncOutcome) -> None:
    """Emit an outcome to the log and persist it for diagnostics."""
    details = outcome.model_dump(exclude={"action", "status"})
    logger.info(
        f"{outcome.action} for owner {owner_id}: {outcome.status} "
        f"{json.dumps({k: v for k, v in details.items() if k != 'errors'})}"
    )
    for error in outcome.errors:
        logger.warning(f"{outcome.action} for owner {owner_id}: {error}")

    db = await get_database()
    await db.execute(
        """INSERT INTO sync_log (owner_id, action, status, details)
           VALUES (?, ?, ?, ?)""",
        (owner_id, outcome.action, outcome.status, json.dumps(details)),
    )
    await db.commit()


async def get_sync_log(
    owner_id: str,
    page: int = 1,
    page_size: int = 50,
) -> tuple[list[SyncLogEntry], int]:
    """Return a page of an owner's sync outcomes, newest first, and the total count."""
    db = await get_database()

    cursor = await db.execute(
        "SELECT COUNT(*) FROM sync_log WHERE owner_id = ?", (owner_id,)
    )
    total = (await cursor.fetchone())[0]

    cursor = await db.execute(
        """SELECT * FROM sync_log WHERE owner_id = ?
           ORDER BY created_at DESC, id DESC LIMIT ? OFFSET ?""",
        (owner_id, page_size, (page - 1) * page_size),
    )
    rows = await cursor.fetchall()

    entries = [
        SyncLogEntry(
            id=row["id"],
            action=row["action"],
            status=row["status"],
            details=json.loads(row["details"]) if row["details"] else None,
            created_at=str(row["created_at"]),
        )
        for row in rows
    ]
    return entries, total
