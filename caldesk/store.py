"""Persistence of per-owner calendar documents."""

import json
import logging
from datetime import datetime

from caldesk.database import get_database
from caldesk.models import CalendarDocument, Event, Range

logger = logging.getLogger(__name__)


def _dump(records: list) -> str:
    return json.dumps([r.model_dump(mode="json", by_alias=True) for r in records])


def _row_to_document(row) -> CalendarDocument:
    return CalendarDocument(
        owner_id=row["owner_id"],
        events=[Event.model_validate(e) for e in json.loads(row["events"])],
        ranges=[Range.model_validate(r) for r in json.loads(row["ranges"])],
    )


async def get_or_create_document(owner_id: str) -> CalendarDocument:
    """Load an owner's document, creating an empty one on first access."""
    db = await get_database()
    await db.execute(
        """INSERT INTO calendar_documents (owner_id, updated_at)
           VALUES (?, ?)
           ON CONFLICT(owner_id) DO NOTHING""",
        (owner_id, datetime.utcnow().isoformat()),
    )
    await db.commit()

    cursor = await db.execute(
        "SELECT * FROM calendar_documents WHERE owner_id = ?", (owner_id,)
    )
    row = await cursor.fetchone()
    return _row_to_document(row)


async def replace_document(
    owner_id: str,
    events: list[Event],
    ranges: list[Range],
) -> CalendarDocument:
    """Replace an owner's events and ranges wholesale (upsert)."""
    document = CalendarDocument(owner_id=owner_id, events=events, ranges=ranges)

    db = await get_database()
    await db.execute(
        """INSERT INTO calendar_documents (owner_id, events, ranges, updated_at)
           VALUES (?, ?, ?, ?)
           ON CONFLICT(owner_id) DO UPDATE SET
           events = excluded.events,
           ranges = excluded.ranges,
           updated_at = excluded.updated_at""",
        (owner_id, _dump(document.events), _dump(document.ranges), datetime.utcnow().isoformat()),
    )
    await db.commit()

    logger.debug(
        f"Stored calendar for owner {owner_id}: "
        f"{len(document.events)} events, {len(document.ranges)} ranges"
    )
    return document
