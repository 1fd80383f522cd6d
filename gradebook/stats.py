"""
Attendance and grade statistics.

The pure ``compute_*``/``*_average`` functions take an already-loaded ledger
snapshot; the async functions load that snapshot (reads issued concurrently) and
hand it to them. Teacher screens and student screens both go through the same
functions, so they always show the same figures for the same ledger state.
"""
import asyncio
from collections import defaultdict
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, Iterable, List, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase

from gradebook.attendance import (
    get_attendance_for_dates,
    get_attendance_for_group,
    get_attendance_for_student,
    get_attendance_in_range,
)
from gradebook.config import HIGH_ABSENCE_PERCENT, HOURS_PER_LESSON
from gradebook.dates import DateRange, today
from gradebook.grades import get_grades_by_group_and_subject, get_grades_by_student
from gradebook.groups import get_group, list_group_subjects, schedule_days_for
from gradebook.models import (
    AttendanceEntry,
    AttendanceSheet,
    AttendanceStat,
    AttendanceStats,
    GradeEntry,
    GroupAttendanceStats,
    GroupSubjectGradeStats,
    LessonVariant,
    SemesterWindow,
    StudentAverage,
    StudentGradeStats,
    StudentMissedHours,
    StudentMissedTotal,
    StudentSummary,
    SubjectAttendanceSummary,
    SubjectAverage,
)
from gradebook.occurrences import editable_occurrences, semester_occurrences
from gradebook.semester import get_semester_window


def missed_percent(missed_hours: float, total_hours: float) -> float:
    if not total_hours:
        return 0.0
    return missed_hours / total_hours * 100


def attendance_stat(missed_hours: int, total_hours: int) -> AttendanceStat:
    percent = missed_percent(missed_hours, total_hours)
    return AttendanceStat(
        missed_hours=missed_hours,
        total_hours=total_hours,
        percent=percent,
        high_absence=percent > HIGH_ABSENCE_PERCENT,
    )


def compute_attendance_stats(
    group_id: str,
    subject_id: str,
    lesson_variant: LessonVariant,
    schedule_days: Iterable[int],
    window: SemesterWindow,
    entries: Iterable[AttendanceEntry],
    roster: Iterable[str] = (),
) -> AttendanceStats:
    """
    Semester-wide missed hours for one (group, subject, variant).

    Only entries for that subject variant dated inside the window count. Every
    rostered student gets a row, as does anyone who appears in the ledger.
    """
    total_lessons = len(semester_occurrences(schedule_days, window))
    total_hours = total_lessons * HOURS_PER_LESSON
    date_range = window.as_range()

    missed: Dict[str, int] = {student_id: 0 for student_id in roster}
    for entry in entries:
        if entry.subject_id != subject_id or entry.lesson_variant != lesson_variant:
            continue
        if entry.group_id != group_id or not date_range.contains(entry.date):
            continue
        for student_id, hours in entry.records.items():
            missed[student_id] = missed.get(student_id, 0) + hours

    return AttendanceStats(
        group_id=group_id,
        subject_id=subject_id,
        lesson_variant=lesson_variant,
        window=date_range,
        total_lessons=total_lessons,
        total_hours=total_hours,
        per_student={sid: attendance_stat(hours, total_hours) for sid, hours in missed.items()},
    )


def _in_range(entry: AttendanceEntry, date_range: Optional[DateRange]) -> bool:
    return date_range is None or date_range.contains(entry.date)


def compute_student_total_missed_hours(
    student_id: str,
    entries: Iterable[AttendanceEntry],
    date_range: Optional[DateRange] = None,
    group_id: Optional[str] = None,
) -> StudentMissedHours:
    """Missed hours across all subjects; ``days_count`` counts the entries the student is absent in."""
    records = [
        entry
        for entry in entries
        if student_id in entry.records
        and (group_id is None or entry.group_id == group_id)
        and _in_range(entry, date_range)
    ]
    return StudentMissedHours(
        student_id=student_id,
        group_id=group_id,
        window=date_range,
        total_missed_hours=sum(entry.records[student_id] for entry in records),
        days_count=len(records),
        records=records,
    )


def compute_group_attendance_stats(
    group_id: str,
    entries: Iterable[AttendanceEntry],
    date_range: Optional[DateRange] = None,
) -> GroupAttendanceStats:
    entries = [e for e in entries if e.group_id == group_id and _in_range(e, date_range)]
    per_student: Dict[str, StudentMissedTotal] = {}
    for entry in entries:
        for student_id, hours in entry.records.items():
            total = per_student.setdefault(student_id, StudentMissedTotal())
            total.total_missed_hours += hours
            total.missed_days += 1
    return GroupAttendanceStats(
        group_id=group_id,
        window=date_range,
        total_days=len(entries),
        per_student=per_student,
    )


def subject_average(grades: Iterable[GradeEntry]) -> Optional[float]:
    """Unrounded mean; None when there is nothing to average."""
    values = [g.grade for g in grades]
    if not values:
        return None
    return sum(values) / len(values)


def round_half_up(value: float) -> float:
    """Two decimals, halves rounded away from zero (4.125 -> 4.13)."""
    return float(Decimal(str(value)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def display_average(value: Optional[float]) -> Optional[float]:
    if value is None:
        return None
    return round_half_up(value)


def _group_by(grades: Iterable[GradeEntry], field: str) -> Dict[str, List[GradeEntry]]:
    grouped: Dict[str, List[GradeEntry]] = defaultdict(list)
    for grade in grades:
        grouped[getattr(grade, field)].append(grade)
    return grouped


def overall_average(grades: Iterable[GradeEntry]) -> Optional[float]:
    """
    Mean of the per-subject means, each subject weighted equally.

    Intermediate subject means stay unrounded; only the final figure is rounded
    to two decimals.
    """
    subject_means = [subject_average(items) for items in _group_by(grades, "subject_id").values()]
    if not subject_means:
        return None
    return round_half_up(sum(subject_means) / len(subject_means))


def compute_student_grade_stats(student_id: str, grades: Iterable[GradeEntry]) -> StudentGradeStats:
    grades = [g for g in grades if g.student_id == student_id]
    subjects = []
    for subject_id, items in _group_by(grades, "subject_id").items():
        subject_name = next((g.subject_name for g in items if g.subject_name), "")
        subjects.append(
            SubjectAverage(
                subject_id=subject_id,
                subject_name=subject_name,
                average=display_average(subject_average(items)),
                grades_count=len(items),
            )
        )
    subjects.sort(key=lambda s: (s.subject_name or s.subject_id))
    return StudentGradeStats(
        student_id=student_id,
        subjects=subjects,
        overall_average=overall_average(grades),
    )


def group_subject_average(student_averages: Iterable[StudentAverage]) -> Optional[float]:
    averages = [s.average for s in student_averages]
    if not averages:
        return None
    return round_half_up(sum(averages) / len(averages))


def compute_group_subject_grade_stats(
    group_id: str, subject_id: str, grades: Iterable[GradeEntry]
) -> GroupSubjectGradeStats:
    grades = [g for g in grades if g.group_id == group_id and g.subject_id == subject_id]
    student_averages = [
        StudentAverage(
            student_id=student_id,
            average=display_average(subject_average(items)),
            grades_count=len(items),
        )
        for student_id, items in _group_by(grades, "student_id").items()
    ]
    return GroupSubjectGradeStats(
        group_id=group_id,
        subject_id=subject_id,
        group_average=group_subject_average(student_averages),
        student_averages=student_averages,
        total_grades=len(grades),
    )


async def get_attendance_stats(
    db: AsyncIOMotorDatabase,
    group_id: str,
    subject_id: str,
    lesson_variant: LessonVariant,
    window: Optional[SemesterWindow] = None,
    teacher_id: Optional[str] = None,
) -> AttendanceStats:
    if window is None:
        group, window = await asyncio.gather(get_group(db, group_id), get_semester_window(db))
    else:
        group = await get_group(db, group_id)
    entries = await get_attendance_in_range(db, group_id, subject_id, lesson_variant, window.as_range())
    return compute_attendance_stats(
        group_id,
        subject_id,
        lesson_variant,
        schedule_days_for(group, subject_id, lesson_variant, teacher_id),
        window,
        entries,
        roster=group.student_ids,
    )


async def get_attendance_sheet(
    db: AsyncIOMotorDatabase,
    group_id: str,
    subject_id: str,
    lesson_variant: LessonVariant,
    year: int,
    month: int,
    teacher_id: Optional[str] = None,
    current_day: Optional[date] = None,
) -> AttendanceSheet:
    """Editing grid for one month plus the semester figures from the same snapshot."""
    group, window = await asyncio.gather(get_group(db, group_id), get_semester_window(db))
    schedule_days = schedule_days_for(group, subject_id, lesson_variant, teacher_id)
    dates = editable_occurrences(schedule_days, window, year, month, not_after=current_day or today())
    month_entries, semester_entries = await asyncio.gather(
        get_attendance_for_dates(db, group_id, subject_id, lesson_variant, dates),
        get_attendance_in_range(db, group_id, subject_id, lesson_variant, window.as_range()),
    )
    stats = compute_attendance_stats(
        group_id, subject_id, lesson_variant, schedule_days, window, semester_entries, roster=group.student_ids
    )
    return AttendanceSheet(
        group_id=group_id,
        subject_id=subject_id,
        lesson_variant=lesson_variant,
        year=year,
        month=month,
        dates=dates,
        entries=month_entries,
        stats=stats,
    )


async def get_grade_stats(db: AsyncIOMotorDatabase, student_id: str) -> StudentGradeStats:
    grades = await get_grades_by_student(db, student_id)
    return compute_student_grade_stats(student_id, grades)


async def get_group_subject_grade_stats(
    db: AsyncIOMotorDatabase, group_id: str, subject_id: str
) -> GroupSubjectGradeStats:
    grades = await get_grades_by_group_and_subject(db, group_id, subject_id)
    return compute_group_subject_grade_stats(group_id, subject_id, grades)


async def get_student_summary(db: AsyncIOMotorDatabase, student_id: str, group_id: str) -> StudentSummary:
    """Student dashboard: attendance per subject assignment and grade averages."""
    assignments, window, grades = await asyncio.gather(
        list_group_subjects(db, group_id),
        get_semester_window(db),
        get_grades_by_student(db, student_id),
    )
    entry_sets = await asyncio.gather(
        *(
            get_attendance_in_range(db, group_id, a.subject_id, a.lesson_variant, window.as_range())
            for a in assignments
        )
    )
    attendance = []
    for assignment, entries in zip(assignments, entry_sets):
        stats = compute_attendance_stats(
            group_id,
            assignment.subject_id,
            assignment.lesson_variant,
            assignment.schedule_days,
            window,
            entries,
            roster=[student_id],
        )
        attendance.append(
            SubjectAttendanceSummary(
                subject_id=assignment.subject_id,
                subject_name=assignment.subject_name,
                lesson_variant=assignment.lesson_variant,
                teacher_id=assignment.teacher_id,
                teacher_name=assignment.teacher_name,
                total_lessons=stats.total_lessons,
                stat=stats.per_student[student_id],
            )
        )
    return StudentSummary(
        student_id=student_id,
        group_id=group_id,
        attendance=attendance,
        grades=compute_student_grade_stats(student_id, grades),
    )


async def get_student_total_missed_hours(
    db: AsyncIOMotorDatabase,
    student_id: str,
    group_id: Optional[str] = None,
    date_range: Optional[DateRange] = None,
) -> StudentMissedHours:
    if date_range is not None and date_range.is_empty:
        return StudentMissedHours(student_id=student_id, group_id=group_id, window=date_range)
    entries = await get_attendance_for_student(db, student_id, group_id)
    return compute_student_total_missed_hours(student_id, entries, date_range, group_id)


async def get_group_attendance_stats(
    db: AsyncIOMotorDatabase, group_id: str, date_range: Optional[DateRange] = None
) -> GroupAttendanceStats:
    if date_range is not None and date_range.is_empty:
        return GroupAttendanceStats(group_id=group_id, window=date_range)
    entries = await get_attendance_for_group(db, group_id)
    return compute_group_attendance_stats(group_id, entries, date_range)
