import logging
from typing import Dict, Iterable, List, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase

from gradebook.database import GROUPS, USERS
from gradebook.errors import GroupNotFoundError, storage_errors
from gradebook.models import (
    AssignmentKey,
    GroupRecord,
    LessonVariant,
    SubjectAssignment,
    SubjectAssignmentBase,
)

logger = logging.getLogger(__name__)


async def get_group(db: AsyncIOMotorDatabase, group_id: str) -> GroupRecord:
    with storage_errors("get_group"):
        doc = await db[GROUPS].find_one({"id": group_id}, {"_id": 0})
    if not doc:
        raise GroupNotFoundError(group_id)
    return GroupRecord(**doc)


async def resolve_user_names(db: AsyncIOMotorDatabase, user_ids: Iterable[str]) -> Dict[str, str]:
    """Display names for ``user_ids`` in a single ``$in`` read."""
    ids = sorted({uid for uid in user_ids if uid})
    if not ids:
        return {}
    with storage_errors("resolve_user_names"):
        users = await db[USERS].find(
            {"id": {"$in": ids}}, {"_id": 0, "id": 1, "display_name": 1}
        ).to_list(None)
    return {user["id"]: user.get("display_name") or "" for user in users}


async def _save_assignments(db: AsyncIOMotorDatabase, group_id: str, assignments: List[SubjectAssignment]) -> None:
    teacher_ids = sorted({a.teacher_id for a in assignments})
    with storage_errors("save_subject_assignments"):
        await db[GROUPS].update_one(
            {"id": group_id},
            {
                "$set": {
                    "subject_teachers": [a.model_dump(mode="json") for a in assignments],
                    "teacher_ids": teacher_ids,
                }
            },
        )


async def set_subject_assignment(
    db: AsyncIOMotorDatabase, group_id: str, payload: SubjectAssignmentBase
) -> SubjectAssignment:
    """Insert or replace the assignment with the same (subject, variant, teacher) identity."""
    group = await get_group(db, group_id)
    assignment = SubjectAssignment(**payload.model_dump())
    assignments = [a for a in group.subject_teachers if a.key != assignment.key]
    replaced = len(assignments) != len(group.subject_teachers)
    assignments.append(assignment)
    await _save_assignments(db, group_id, assignments)
    logger.info(
        "%s subject assignment %s/%s/%s in group %s",
        "Updated" if replaced else "Added",
        assignment.subject_id,
        assignment.lesson_variant.value,
        assignment.teacher_id,
        group_id,
    )
    return assignment


async def remove_subject_assignment(
    db: AsyncIOMotorDatabase,
    group_id: str,
    subject_id: str,
    teacher_id: str,
    lesson_variant: LessonVariant,
) -> bool:
    group = await get_group(db, group_id)
    key = AssignmentKey(subject_id=subject_id, lesson_variant=lesson_variant, teacher_id=teacher_id)
    assignments = [a for a in group.subject_teachers if a.key != key]
    if len(assignments) == len(group.subject_teachers):
        return False
    await _save_assignments(db, group_id, assignments)
    return True


async def list_group_subjects(db: AsyncIOMotorDatabase, group_id: str) -> List[SubjectAssignment]:
    """Assignments of a group with teacher names joined from the users collection."""
    group = await get_group(db, group_id)
    names = await resolve_user_names(db, (a.teacher_id for a in group.subject_teachers))
    return [
        a.model_copy(update={"teacher_name": names.get(a.teacher_id) or a.teacher_name})
        for a in group.subject_teachers
    ]


def matching_assignments(
    group: GroupRecord,
    subject_id: str,
    lesson_variant: LessonVariant,
    teacher_id: Optional[str] = None,
) -> List[SubjectAssignment]:
    return [
        a
        for a in group.subject_teachers
        if a.subject_id == subject_id
        and a.lesson_variant == lesson_variant
        and (teacher_id is None or a.teacher_id == teacher_id)
    ]


def schedule_days_for(
    group: GroupRecord,
    subject_id: str,
    lesson_variant: LessonVariant,
    teacher_id: Optional[str] = None,
) -> List[int]:
    """Weekdays a subject variant meets; several teachers on one variant share the union."""
    days = set()
    for assignment in matching_assignments(group, subject_id, lesson_variant, teacher_id):
        days.update(assignment.schedule_days)
    return sorted(days)
