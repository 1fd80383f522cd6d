from datetime import date

import pytest

from gradebook import attendance, grades, groups, stats
from gradebook.database import GROUPS, USERS, ensure_indexes
from gradebook.dates import DateRange
from gradebook.models import (
    AttendanceEntry,
    AttendanceKey,
    GradeCreate,
    GradeEntry,
    LessonVariant,
    SemesterWindow,
    StudentAverage,
    SubjectAssignmentBase,
)
from gradebook.semester import set_semester_window

from tests.factories import make_assignment, make_group

LECTURE = LessonVariant.lecture
WINDOW = SemesterWindow(start_date=date(2024, 1, 1), end_date=date(2024, 1, 10))


def entry(day, records, subject_id="math", variant=LECTURE):
    return AttendanceEntry(group_id="g1", subject_id=subject_id, lesson_variant=variant, date=day, records=records)


def grade(value, subject_id="math", student_id="s1", day="2024-01-01"):
    return GradeEntry(
        group_id="g1", subject_id=subject_id, student_id=student_id, teacher_id="t1", grade=value, date=day
    )


def test_monday_wednesday_semester_hours():
    result = stats.compute_attendance_stats("g1", "math", LECTURE, {1, 3}, WINDOW, [], roster=["s1"])
    assert result.total_lessons == 4
    assert result.total_hours == 8
    assert result.per_student["s1"].missed_hours == 0
    assert result.per_student["s1"].percent == 0


def test_missed_hours_percent():
    entries = [entry(date(2024, 1, 1), {"s1": 2}), entry(date(2024, 1, 8), {"s1": 1})]
    result = stats.compute_attendance_stats("g1", "math", LECTURE, {1, 3}, WINDOW, entries, roster=["s1", "s2"])

    assert result.per_student["s1"].missed_hours == 3
    assert result.per_student["s1"].percent == 37.5
    assert result.per_student["s1"].high_absence is True
    assert result.per_student["s2"].percent == 0


def test_entries_outside_window_or_other_variant_do_not_count():
    entries = [
        entry(date(2023, 12, 27), {"s1": 2}),
        entry(date(2024, 1, 3), {"s1": 2}, variant=LessonVariant.practical),
        entry(date(2024, 1, 3), {"s1": 2}, subject_id="physics"),
        entry(date(2024, 1, 3), {"s1": 1}),
    ]
    result = stats.compute_attendance_stats("g1", "math", LECTURE, {1, 3}, WINDOW, entries)
    assert result.per_student["s1"].missed_hours == 1


def test_zero_total_hours_gives_zero_percent():
    entries = [entry(date(2024, 1, 1), {"s1": 2})]
    result = stats.compute_attendance_stats("g1", "math", LECTURE, [], WINDOW, entries)
    assert result.total_hours == 0
    assert result.per_student["s1"].percent == 0
    assert stats.missed_percent(5, 0) == 0


def test_inverted_window_reports_no_lessons():
    window = SemesterWindow(start_date="2024-06-01", end_date="2024-01-01")
    entries = [entry(date(2024, 3, 4), {"s1": 2})]
    result = stats.compute_attendance_stats("g1", "math", LECTURE, {1, 3}, window, entries, roster=["s1"])
    assert result.total_lessons == 0
    assert result.per_student["s1"].missed_hours == 0
    assert result.per_student["s1"].percent == 0


def test_overall_average_weights_subjects_equally():
    student_grades = [grade(4, "a"), grade(5, "a", day="2024-01-02"), grade(3, "b")]
    assert stats.overall_average(student_grades) == 3.75

    result = stats.compute_student_grade_stats("s1", student_grades)
    assert result.overall_average == 3.75
    assert {s.subject_id: s.average for s in result.subjects} == {"a": 4.5, "b": 3.0}


def test_overall_average_uses_unrounded_subject_means():
    student_grades = [grade(4, "a"), grade(4, "a"), grade(5, "a"), grade(2, "b")]
    # (13/3 + 2) / 2 = 3.1666..; weighting by grade count would give 3.75
    assert stats.overall_average(student_grades) == 3.17
    result = stats.compute_student_grade_stats("s1", student_grades)
    assert {s.subject_id: s.average for s in result.subjects} == {"a": 4.33, "b": 2.0}


def test_no_grades_is_no_data_not_zero():
    assert stats.subject_average([]) is None
    assert stats.overall_average([]) is None
    result = stats.compute_student_grade_stats("s1", [])
    assert result.overall_average is None
    assert result.subjects == []
    group_result = stats.compute_group_subject_grade_stats("g1", "math", [])
    assert group_result.group_average is None


def test_group_subject_average_weights_students_equally():
    group_grades = [
        grade(5, student_id="s1"),
        grade(5, student_id="s1", day="2024-01-02"),
        grade(5, student_id="s1", day="2024-01-03"),
        grade(2, student_id="s2"),
    ]
    result = stats.compute_group_subject_grade_stats("g1", "math", group_grades)
    assert result.group_average == 3.5
    assert result.total_grades == 4
    assert {s.student_id: s.grades_count for s in result.student_averages} == {"s1": 3, "s2": 1}


def test_averages_round_half_up():
    days = [f"2024-01-0{n}" for n in range(1, 9)]
    subject_grades = [grade(value, day=day) for value, day in zip([5, 5, 5, 5, 4, 4, 3, 2], days)]
    # 33 / 8 = 4.125
    result = stats.compute_student_grade_stats("s1", subject_grades)
    assert result.subjects[0].average == 4.13
    assert result.overall_average == 4.13

    # (4.5 + 3.75) / 2 = 4.125
    mixed = [grade(4, "a"), grade(5, "a"), grade(4, "b"), grade(4, "b"), grade(4, "b"), grade(3, "b")]
    assert stats.overall_average(mixed) == 4.13

    assert stats.round_half_up(2.675) == 2.68
    assert stats.display_average(None) is None


def test_group_average_rounds_half_up():
    averages = [
        StudentAverage(student_id="s1", average=4.25, grades_count=4),
        StudentAverage(student_id="s2", average=4.0, grades_count=1),
    ]
    assert stats.group_subject_average(averages) == 4.13


def test_student_total_missed_hours_across_subjects():
    entries = [
        entry(date(2024, 1, 1), {"s1": 2}),
        entry(date(2024, 1, 2), {"s1": 1, "s2": 2}, subject_id="physics"),
        entry(date(2024, 1, 3), {"s2": 1}),
        entry(date(2024, 2, 1), {"s1": 2}),
        AttendanceEntry(
            group_id="g2", subject_id="math", lesson_variant=LECTURE, date=date(2024, 1, 4), records={"s1": 1}
        ),
    ]

    everything = stats.compute_student_total_missed_hours("s1", entries)
    assert everything.total_missed_hours == 6
    assert everything.days_count == 4

    january = DateRange(start=date(2024, 1, 1), end=date(2024, 1, 31))
    in_group = stats.compute_student_total_missed_hours("s1", entries, january, group_id="g1")
    assert in_group.total_missed_hours == 3
    assert in_group.days_count == 2
    assert [e.date for e in in_group.records] == [date(2024, 1, 1), date(2024, 1, 2)]

    inverted = DateRange(start=date(2024, 2, 1), end=date(2024, 1, 1))
    assert stats.compute_student_total_missed_hours("s1", entries, inverted).total_missed_hours == 0


def test_group_attendance_stats_counts_missed_days():
    entries = [
        entry(date(2024, 1, 1), {"s1": 2}),
        entry(date(2024, 1, 2), {"s1": 1, "s2": 2}, subject_id="physics"),
        entry(date(2024, 1, 3), {}),
        entry(date(2024, 2, 1), {"s2": 2}),
    ]

    result = stats.compute_group_attendance_stats("g1", entries, DateRange.month(2024, 1))
    assert result.total_days == 3
    assert result.per_student["s1"].total_missed_hours == 3
    assert result.per_student["s1"].missed_days == 2
    assert result.per_student["s2"].missed_days == 1

    all_time = stats.compute_group_attendance_stats("g1", entries)
    assert all_time.total_days == 4
    assert all_time.per_student["s2"].total_missed_hours == 4


async def _seed(db):
    await ensure_indexes(db)
    await db[GROUPS].insert_one(
        make_group(
            subject_teachers=[
                make_assignment("math", "t1", "lecture", [1, 3]),
                make_assignment("math", "t2", "laboratory", [5]),
            ]
        )
    )
    await db[USERS].insert_many(
        [{"id": "t1", "display_name": "Aziza Karimova"}, {"id": "t2", "display_name": "Bekzod Aliyev"}]
    )
    await set_semester_window(db, "2024-01-01", "2024-01-10", actor_id="admin")
    await attendance.upsert_attendance(
        db, AttendanceKey(group_id="g1", subject_id="math", lesson_variant=LECTURE, date=date(2024, 1, 1)),
        {"s1": 2}, "t1",
    )
    await attendance.upsert_attendance(
        db, AttendanceKey(group_id="g1", subject_id="math", lesson_variant=LECTURE, date=date(2024, 1, 8)),
        {"s1": 1, "s2": 2}, "t1",
    )


@pytest.mark.anyio
async def test_attendance_stats_from_store(db):
    await _seed(db)
    result = await stats.get_attendance_stats(db, "g1", "math", LECTURE)

    assert result.total_lessons == 4
    assert result.total_hours == 8
    assert result.per_student["s1"].missed_hours == 3
    assert result.per_student["s1"].percent == 37.5
    assert result.per_student["s3"].missed_hours == 0


@pytest.mark.anyio
async def test_malformed_semester_window_reports_zero_lessons(db):
    await _seed(db)
    await set_semester_window(db, "2024-06-01", "2024-01-01")

    lecture = await stats.get_attendance_stats(db, "g1", "math", LECTURE)
    lab = await stats.get_attendance_stats(db, "g1", "math", LessonVariant.laboratory)
    assert lecture.total_lessons == 0
    assert lab.total_lessons == 0
    assert all(s.percent == 0 for s in lecture.per_student.values())


@pytest.mark.anyio
async def test_student_summary_matches_teacher_figures(db):
    await _seed(db)
    await grades.create_grade(
        db,
        GradeCreate(group_id="g1", subject_id="math", student_id="s1", teacher_id="t1", grade=4, date="2024-01-01"),
    )

    teacher_view = await stats.get_attendance_stats(db, "g1", "math", LECTURE, teacher_id="t1")
    summary = await stats.get_student_summary(db, "s1", "g1")

    lecture = next(a for a in summary.attendance if a.lesson_variant == LECTURE)
    assert lecture.stat == teacher_view.per_student["s1"]
    assert lecture.total_lessons == teacher_view.total_lessons
    assert lecture.teacher_name == "Aziza Karimova"

    lab = next(a for a in summary.attendance if a.lesson_variant == LessonVariant.laboratory)
    assert lab.total_lessons == 1
    assert lab.stat.missed_hours == 0
    assert summary.grades.overall_average == 4.0


@pytest.mark.anyio
async def test_attendance_sheet_dates_and_stats(db):
    await _seed(db)
    sheet = await stats.get_attendance_sheet(
        db, "g1", "math", LECTURE, 2024, 1, current_day=date(2024, 1, 8)
    )

    assert sheet.dates == [date(2024, 1, 1), date(2024, 1, 3), date(2024, 1, 8)]
    assert [e.date for e in sheet.entries] == [date(2024, 1, 8), date(2024, 1, 1)]
    assert sheet.stats.total_lessons == 4
    assert sheet.stats.per_student["s2"].missed_hours == 2


@pytest.mark.anyio
async def test_group_subject_grade_stats_from_store(db):
    for student_id, value in (("s1", 5), ("s1", 4), ("s2", 3)):
        await grades.create_grade(
            db,
            GradeCreate(
                group_id="g1", subject_id="math", student_id=student_id, teacher_id="t1", grade=value, date="2024-01-01"
            ),
        )
    result = await stats.get_group_subject_grade_stats(db, "g1", "math")
    assert result.group_average == 3.75
    assert result.total_grades == 3

    student = await stats.get_grade_stats(db, "s1")
    assert student.subjects[0].average == 4.5


@pytest.mark.anyio
async def test_schedule_days_union_without_teacher(db):
    await db[GROUPS].insert_one(
        make_group(
            subject_teachers=[
                make_assignment("math", "t1", "practical", [1]),
                make_assignment("math", "t2", "practical", [1, 3]),
            ]
        )
    )
    group = await groups.get_group(db, "g1")
    assert groups.schedule_days_for(group, "math", LessonVariant.practical) == [1, 3]
    assert groups.schedule_days_for(group, "math", LessonVariant.practical, teacher_id="t1") == [1]
    assert groups.schedule_days_for(group, "math", LECTURE) == []


@pytest.mark.anyio
async def test_assignment_identity_is_subject_variant_teacher(db):
    await db[GROUPS].insert_one(make_group())
    base = dict(subject_id="math", teacher_id="t1", lesson_variant="lecture")
    await groups.set_subject_assignment(db, "g1", SubjectAssignmentBase(**base, schedule_days=[1, 1, 3]))
    await groups.set_subject_assignment(db, "g1", SubjectAssignmentBase(**base, schedule_days=[2]))
    await groups.set_subject_assignment(
        db, "g1", SubjectAssignmentBase(subject_id="math", teacher_id="t2", lesson_variant="laboratory")
    )

    group = await groups.get_group(db, "g1")
    assert len(group.subject_teachers) == 2
    assert group.subject_teachers[0].schedule_days == [2]
    assert group.teacher_ids == ["t1", "t2"]

    removed = await groups.remove_subject_assignment(db, "g1", "math", "t2", LessonVariant.laboratory)
    assert removed
    assert not await groups.remove_subject_assignment(db, "g1", "math", "t2", LessonVariant.laboratory)
    group = await groups.get_group(db, "g1")
    assert [a.teacher_id for a in group.subject_teachers] == ["t1"]
    assert group.teacher_ids == ["t1"]


@pytest.mark.anyio
async def test_student_total_and_group_attendance_from_store(db):
    await _seed(db)
    await attendance.upsert_attendance(
        db, AttendanceKey(group_id="g1", subject_id="math", lesson_variant="laboratory", date=date(2024, 1, 5)),
        {"s1": 2}, "t2",
    )

    total = await stats.get_student_total_missed_hours(db, "s1", group_id="g1")
    assert total.total_missed_hours == 5
    assert total.days_count == 3
    assert [e.date for e in total.records] == [date(2024, 1, 8), date(2024, 1, 5), date(2024, 1, 1)]

    first_week = DateRange(start=date(2024, 1, 1), end=date(2024, 1, 7))
    partial = await stats.get_student_total_missed_hours(db, "s1", date_range=first_week)
    assert partial.total_missed_hours == 4

    group_stats = await stats.get_group_attendance_stats(db, "g1")
    assert group_stats.total_days == 3
    assert group_stats.per_student["s2"].total_missed_hours == 2
    assert group_stats.per_student["s2"].missed_days == 1

    inverted = DateRange(start=date(2024, 1, 10), end=date(2024, 1, 1))
    empty = await stats.get_group_attendance_stats(db, "g1", inverted)
    assert empty.total_days == 0
    assert empty.per_student == {}
