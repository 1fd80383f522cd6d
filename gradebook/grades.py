import logging
import uuid
from typing import Any, Dict, Iterable, List

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import DeleteOne, ReturnDocument, UpdateOne

from gradebook.database import GRADES
from gradebook.dates import iso_now
from gradebook.errors import GradeNotFoundError, storage_errors
from gradebook.models import (
    GradeCellKey,
    GradeCreate,
    GradeEntry,
    GradeSheetPayload,
    GradeSheetResult,
    GradeUpdate,
)

logger = logging.getLogger(__name__)


def _grades(docs: Iterable[Dict[str, Any]]) -> List[GradeEntry]:
    grades = [GradeEntry(**doc) for doc in docs]
    return sorted(grades, key=lambda g: g.date, reverse=True)


async def _find(db: AsyncIOMotorDatabase, operation: str, query: Dict[str, Any]) -> List[GradeEntry]:
    with storage_errors(operation):
        docs = await db[GRADES].find(query, {"_id": 0}).to_list(None)
    return _grades(docs)


async def create_grade(db: AsyncIOMotorDatabase, payload: GradeCreate) -> GradeEntry:
    grade = GradeEntry(**payload.model_dump())
    with storage_errors("create_grade"):
        await db[GRADES].insert_one(grade.model_dump(mode="json"))
    return grade


async def update_grade(db: AsyncIOMotorDatabase, grade_id: str, payload: GradeUpdate) -> GradeEntry:
    update_data = {k: v for k, v in payload.model_dump(exclude_unset=True).items() if v is not None}
    update_data["updated_at"] = iso_now()
    with storage_errors("update_grade"):
        doc = await db[GRADES].find_one_and_update(
            {"id": grade_id},
            {"$set": update_data},
            projection={"_id": 0},
            return_document=ReturnDocument.AFTER,
        )
    if not doc:
        raise GradeNotFoundError(grade_id)
    return GradeEntry(**doc)


async def delete_grade(db: AsyncIOMotorDatabase, grade_id: str) -> None:
    with storage_errors("delete_grade"):
        result = await db[GRADES].delete_one({"id": grade_id})
    if not result.deleted_count:
        raise GradeNotFoundError(grade_id)


async def get_grades_by_student_and_subject(
    db: AsyncIOMotorDatabase, student_id: str, subject_id: str
) -> List[GradeEntry]:
    return await _find(
        db, "get_grades_by_student_and_subject", {"student_id": student_id, "subject_id": subject_id}
    )


async def get_grades_by_group_and_subject(
    db: AsyncIOMotorDatabase, group_id: str, subject_id: str
) -> List[GradeEntry]:
    return await _find(db, "get_grades_by_group_and_subject", {"group_id": group_id, "subject_id": subject_id})


async def get_grades_by_student(db: AsyncIOMotorDatabase, student_id: str) -> List[GradeEntry]:
    return await _find(db, "get_grades_by_student", {"student_id": student_id})


async def get_grades_by_subject(db: AsyncIOMotorDatabase, subject_id: str) -> List[GradeEntry]:
    return await _find(db, "get_grades_by_subject", {"subject_id": subject_id})


async def get_grades_by_teacher(db: AsyncIOMotorDatabase, teacher_id: str) -> List[GradeEntry]:
    return await _find(db, "get_grades_by_teacher", {"teacher_id": teacher_id})


async def save_grade_sheet(db: AsyncIOMotorDatabase, payload: GradeSheetPayload) -> GradeSheetResult:
    """
    Apply one teacher edit session in a single bulk write.

    A cell set to 0 or left empty deletes the stored grade for that student and
    date instead of storing a zero; any other value creates or replaces it.
    """
    now = iso_now()
    operations = []
    cleared = 0
    for cell in payload.cells:
        key = GradeCellKey(
            group_id=payload.group_id,
            subject_id=payload.subject_id,
            student_id=cell.student_id,
            date=cell.date,
        )
        if cell.is_cleared:
            operations.append(DeleteOne(key.as_query()))
            cleared += 1
            continue
        set_dict = {
            "grade": cell.grade,
            "teacher_id": payload.teacher_id,
            "updated_at": now,
        }
        if payload.teacher_name:
            set_dict["teacher_name"] = payload.teacher_name
        on_insert = {
            "id": str(uuid.uuid4()),
            "student_name": cell.student_name,
            "subject_name": payload.subject_name,
            "lesson_variant": payload.lesson_variant.value if payload.lesson_variant else None,
            "comment": "",
            "lesson_topic": "",
            "created_at": now,
        }
        if not payload.teacher_name:
            on_insert["teacher_name"] = ""
        operations.append(UpdateOne(key.as_query(), {"$set": set_dict, "$setOnInsert": on_insert}, upsert=True))

    if not operations:
        return GradeSheetResult()
    with storage_errors("save_grade_sheet"):
        result = await db[GRADES].bulk_write(operations, ordered=True)
    summary = GradeSheetResult(
        created=result.upserted_count or 0,
        updated=result.matched_count or 0,
        deleted=result.deleted_count or 0,
    )
    logger.info(
        "Saved grade sheet for %s/%s: %s created, %s updated, %s deleted (%s cleared cells)",
        payload.group_id,
        payload.subject_id,
        summary.created,
        summary.updated,
        summary.deleted,
        cleared,
    )
    return summary
