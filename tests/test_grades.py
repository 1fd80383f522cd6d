from datetime import date

import pytest
from pydantic import ValidationError

from gradebook import grades
from gradebook.database import GRADES
from gradebook.errors import GradeNotFoundError
from gradebook.models import GradeCell, GradeCreate, GradeSheetPayload, GradeUpdate

pytestmark = pytest.mark.anyio


def grade_payload(grade=4, day="2024-01-01", student_id="s1", subject_id="math", group_id="g1"):
    return GradeCreate(
        group_id=group_id,
        subject_id=subject_id,
        student_id=student_id,
        teacher_id="t1",
        grade=grade,
        date=day,
    )


def sheet(*cells):
    return GradeSheetPayload(
        group_id="g1",
        subject_id="math",
        teacher_id="t1",
        subject_name="Math",
        cells=[GradeCell(**cell) for cell in cells],
    )


def test_grade_must_be_between_one_and_five():
    with pytest.raises(ValidationError):
        grade_payload(grade=0)
    with pytest.raises(ValidationError):
        grade_payload(grade=6)


async def test_create_update_delete(db):
    created = await grades.create_grade(db, grade_payload())
    stored = await db[GRADES].find_one({"id": created.id}, {"_id": 0})
    assert stored["date"] == "2024-01-01"
    assert stored["grade"] == 4

    updated = await grades.update_grade(db, created.id, GradeUpdate(grade=5))
    assert updated.grade == 5

    await grades.delete_grade(db, created.id)
    assert await db[GRADES].count_documents({}) == 0
    with pytest.raises(GradeNotFoundError):
        await grades.update_grade(db, created.id, GradeUpdate(grade=3))
    with pytest.raises(GradeNotFoundError):
        await grades.delete_grade(db, created.id)


async def test_grade_history_queries(db):
    await grades.create_grade(db, grade_payload(grade=4, day="2024-01-01"))
    await grades.create_grade(db, grade_payload(grade=5, day="2024-01-08"))
    await grades.create_grade(db, grade_payload(grade=3, day="2024-01-03", subject_id="physics"))
    await grades.create_grade(db, grade_payload(grade=2, day="2024-01-03", student_id="s2"))

    history = await grades.get_grades_by_student_and_subject(db, "s1", "math")
    assert [g.date for g in history] == [date(2024, 1, 8), date(2024, 1, 1)]
    assert len(await grades.get_grades_by_student(db, "s1")) == 3
    assert len(await grades.get_grades_by_group_and_subject(db, "g1", "math")) == 3
    assert len(await grades.get_grades_by_subject(db, "physics")) == 1
    assert len(await grades.get_grades_by_teacher(db, "t1")) == 4


async def test_sheet_creates_and_updates_cells(db):
    first = await grades.save_grade_sheet(db, sheet({"student_id": "s1", "date": "2024-01-01", "grade": 4}))
    assert first.created == 1

    second = await grades.save_grade_sheet(
        db,
        sheet(
            {"student_id": "s1", "date": "2024-01-01", "grade": 5},
            {"student_id": "s2", "date": "2024-01-01", "grade": 3},
        ),
    )
    assert second.created == 1
    assert second.updated == 1

    stored = await grades.get_grades_by_student_and_subject(db, "s1", "math")
    assert [g.grade for g in stored] == [5]
    assert stored[0].subject_name == "Math"


async def test_clearing_a_cell_deletes_the_grade(db):
    await grades.save_grade_sheet(db, sheet({"student_id": "s1", "date": "2024-01-01", "grade": 4}))

    result = await grades.save_grade_sheet(db, sheet({"student_id": "s1", "date": "2024-01-01", "grade": 0}))
    assert result.deleted == 1
    assert await db[GRADES].count_documents({}) == 0

    await grades.save_grade_sheet(db, sheet({"student_id": "s1", "date": "2024-01-03", "grade": 2}))
    result = await grades.save_grade_sheet(db, sheet({"student_id": "s1", "date": "2024-01-03", "grade": ""}))
    assert result.deleted == 1
    assert await db[GRADES].count_documents({"grade": 0}) == 0
    assert await db[GRADES].count_documents({}) == 0


async def test_empty_sheet_is_a_no_op(db):
    result = await grades.save_grade_sheet(db, sheet())
    assert result.created == result.updated == result.deleted == 0
