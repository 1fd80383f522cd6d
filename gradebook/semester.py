import logging
from datetime import date
from typing import Any, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase

from gradebook.database import SETTINGS
from gradebook.dates import iso_now, to_calendar_date, today
from gradebook.errors import storage_errors
from gradebook.models import SemesterWindow

logger = logging.getLogger(__name__)

SEMESTER_DOC_ID = "semester"


def default_window(current_day: Optional[date] = None) -> SemesterWindow:
    """Fallback when no administrator ever set a window: January 1st through today."""
    current_day = current_day or today()
    return SemesterWindow(start_date=date(current_day.year, 1, 1), end_date=current_day)


async def set_semester_window(
    db: AsyncIOMotorDatabase, start: Any, end: Any, actor_id: Optional[str] = None
) -> SemesterWindow:
    window = SemesterWindow(
        start_date=to_calendar_date(start),
        end_date=to_calendar_date(end),
        updated_at=iso_now(),
        updated_by=actor_id,
    )
    if window.is_empty:
        logger.warning(
            "Semester window %s..%s is inverted; statistics will treat it as empty",
            window.start_date,
            window.end_date,
        )
    with storage_errors("set_semester_window"):
        await db[SETTINGS].update_one(
            {"id": SEMESTER_DOC_ID},
            {"$set": window.model_dump(mode="json")},
            upsert=True,
        )
    return window


async def get_stored_semester_window(db: AsyncIOMotorDatabase) -> Optional[SemesterWindow]:
    with storage_errors("get_semester_window"):
        doc = await db[SETTINGS].find_one({"id": SEMESTER_DOC_ID}, {"_id": 0})
    if not doc:
        return None
    return SemesterWindow(**doc)


async def get_semester_window(db: AsyncIOMotorDatabase) -> SemesterWindow:
    return await get_stored_semester_window(db) or default_window()
