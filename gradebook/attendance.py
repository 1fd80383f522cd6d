"""
Attendance ledger: one entry per (group, subject, lesson variant, date).

An entry's ``records`` map holds missed hours per student. Saving replaces the whole
map in one atomic write; concurrent editors are last-writer-wins unless the caller
passes the ``expected_version`` it loaded, in which case a stale write is rejected.
"""
import logging
import uuid
from datetime import date
from typing import Any, Dict, Iterable, List, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from gradebook.database import ATTENDANCE
from gradebook.dates import DateRange, iso_now
from gradebook.errors import AttendanceNotFoundError, StaleWriteError, storage_errors
from gradebook.models import (
    AttendanceEntry,
    AttendanceKey,
    LessonVariant,
    clamp_missed_hours,
    normalize_records,
)

logger = logging.getLogger(__name__)


def _entries(docs: Iterable[Dict[str, Any]]) -> List[AttendanceEntry]:
    entries = [AttendanceEntry(**doc) for doc in docs]
    return sorted(entries, key=lambda e: e.date, reverse=True)


async def _insert_attendance(
    db: AsyncIOMotorDatabase, key: AttendanceKey, records: Optional[Dict[str, Any]], actor_id: str
) -> AttendanceEntry:
    entry = AttendanceEntry(
        **key.model_dump(),
        records=normalize_records(records),
        teacher_id=actor_id,
        updated_by=actor_id,
    )
    with storage_errors("upsert_attendance"):
        try:
            await db[ATTENDANCE].insert_one(entry.model_dump(mode="json"))
        except DuplicateKeyError:
            current = await db[ATTENDANCE].find_one(key.as_query(), {"_id": 0, "version": 1})
            stored_version = current.get("version") if current else None
            logger.warning("Rejected attendance create for %s by %s: entry already exists", key.describe(), actor_id)
            raise StaleWriteError(key.describe(), 0, stored_version)
    return entry


async def _update_if_version(
    db: AsyncIOMotorDatabase,
    key: AttendanceKey,
    update: Dict[str, Any],
    actor_id: str,
    expected_version: int,
) -> AttendanceEntry:
    """Apply ``update`` only while the stored entry is still at ``expected_version``."""
    with storage_errors("upsert_attendance"):
        result = await db[ATTENDANCE].update_one({**key.as_query(), "version": expected_version}, update)
        doc = await db[ATTENDANCE].find_one(key.as_query(), {"_id": 0})
    if not result.matched_count:
        stored_version = doc.get("version") if doc else None
        logger.warning(
            "Rejected stale attendance write for %s by %s (expected v%s, stored v%s)",
            key.describe(),
            actor_id,
            expected_version,
            stored_version,
        )
        raise StaleWriteError(key.describe(), expected_version, stored_version)
    return AttendanceEntry(**doc)


async def upsert_attendance(
    db: AsyncIOMotorDatabase,
    key: AttendanceKey,
    records: Optional[Dict[str, Any]],
    actor_id: str,
    expected_version: Optional[int] = None,
) -> AttendanceEntry:
    """
    Create the entry for ``key`` or replace its ``records`` wholesale.

    Calling twice with the same records leaves one entry. With ``expected_version``
    set, the write only applies if the stored entry still has that version
    (0 means "must not exist yet"); otherwise ``StaleWriteError`` is raised.
    """
    if expected_version == 0:
        return await _insert_attendance(db, key, records, actor_id)

    now = iso_now()
    update: Dict[str, Any] = {
        "$set": {
            "records": normalize_records(records),
            "updated_at": now,
            "updated_by": actor_id,
        },
        "$inc": {"version": 1},
    }
    if expected_version is not None:
        return await _update_if_version(db, key, update, actor_id, expected_version)

    update["$setOnInsert"] = {
        "id": str(uuid.uuid4()),
        "teacher_id": actor_id,
        "created_at": now,
    }
    with storage_errors("upsert_attendance"):
        try:
            doc = await db[ATTENDANCE].find_one_and_update(
                key.as_query(),
                update,
                projection={"_id": 0},
                upsert=True,
                return_document=ReturnDocument.AFTER,
            )
        except DuplicateKeyError:
            # a concurrent upsert created the entry first
            current = await db[ATTENDANCE].find_one(key.as_query(), {"_id": 0, "version": 1})
            stored_version = current.get("version") if current else None
            logger.warning("Concurrent create of attendance for %s by %s", key.describe(), actor_id)
            raise StaleWriteError(key.describe(), None, stored_version)

    entry = AttendanceEntry(**doc)
    if entry.version > 1:
        logger.info(
            "Replaced attendance records for %s (v%s) by %s without a version check",
            key.describe(),
            entry.version,
            actor_id,
        )
    return entry


async def set_student_attendance(
    db: AsyncIOMotorDatabase,
    key: AttendanceKey,
    student_id: str,
    missed_hours: Any,
    actor_id: str,
) -> AttendanceEntry:
    """Edit a single student's cell; 0 or empty marks the student present."""
    existing = await get_attendance(db, key)
    records = dict(existing.records) if existing else {}
    hours = clamp_missed_hours(missed_hours)
    if hours:
        records[student_id] = hours
    else:
        records.pop(student_id, None)
    return await upsert_attendance(
        db, key, records, actor_id, expected_version=existing.version if existing else None
    )


async def get_attendance(db: AsyncIOMotorDatabase, key: AttendanceKey) -> Optional[AttendanceEntry]:
    with storage_errors("get_attendance"):
        doc = await db[ATTENDANCE].find_one(key.as_query(), {"_id": 0})
    return AttendanceEntry(**doc) if doc else None


async def get_attendance_for_group(db: AsyncIOMotorDatabase, group_id: str) -> List[AttendanceEntry]:
    with storage_errors("get_attendance_for_group"):
        docs = await db[ATTENDANCE].find({"group_id": group_id}, {"_id": 0}).to_list(None)
    return _entries(docs)


async def get_attendance_for_student(
    db: AsyncIOMotorDatabase, student_id: str, group_id: Optional[str] = None
) -> List[AttendanceEntry]:
    """Entries in which the student has missed hours recorded."""
    query: Dict[str, Any] = {f"records.{student_id}": {"$exists": True}}
    if group_id:
        query["group_id"] = group_id
    with storage_errors("get_attendance_for_student"):
        docs = await db[ATTENDANCE].find(query, {"_id": 0}).to_list(None)
    return _entries(docs)


async def get_attendance_for_teacher(db: AsyncIOMotorDatabase, teacher_id: str) -> List[AttendanceEntry]:
    with storage_errors("get_attendance_for_teacher"):
        docs = await db[ATTENDANCE].find({"teacher_id": teacher_id}, {"_id": 0}).to_list(None)
    return _entries(docs)


async def get_attendance_in_range(
    db: AsyncIOMotorDatabase,
    group_id: str,
    subject_id: str,
    lesson_variant: LessonVariant,
    date_range: DateRange,
) -> List[AttendanceEntry]:
    if date_range.is_empty:
        return []
    query = {
        "group_id": group_id,
        "subject_id": subject_id,
        "lesson_variant": lesson_variant.value,
        "date": {"$gte": date_range.start.isoformat(), "$lte": date_range.end.isoformat()},
    }
    with storage_errors("get_attendance_in_range"):
        docs = await db[ATTENDANCE].find(query, {"_id": 0}).to_list(None)
    return _entries(docs)


async def get_attendance_for_dates(
    db: AsyncIOMotorDatabase,
    group_id: str,
    subject_id: str,
    lesson_variant: LessonVariant,
    dates: Iterable[date],
) -> List[AttendanceEntry]:
    """Entries for a set of lesson dates in one read."""
    keys = sorted({d.isoformat() for d in dates})
    if not keys:
        return []
    query = {
        "group_id": group_id,
        "subject_id": subject_id,
        "lesson_variant": lesson_variant.value,
        "date": {"$in": keys},
    }
    with storage_errors("get_attendance_for_dates"):
        docs = await db[ATTENDANCE].find(query, {"_id": 0}).to_list(None)
    return _entries(docs)


async def delete_attendance(db: AsyncIOMotorDatabase, entry_id: str) -> None:
    with storage_errors("delete_attendance"):
        result = await db[ATTENDANCE].delete_one({"id": entry_id})
    if not result.deleted_count:
        raise AttendanceNotFoundError(entry_id)
    logger.info("Deleted attendance entry %s", entry_id)
