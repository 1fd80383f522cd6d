import uuid
from datetime import date
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from gradebook.config import HOURS_PER_LESSON, MAX_GRADE, MIN_GRADE
from gradebook.dates import DateRange, iso_now, to_calendar_date


class LessonVariant(str, Enum):
    lecture = "lecture"
    practical = "practical"
    laboratory = "laboratory"


def normalize_schedule_days(days: Optional[List[Any]]) -> List[int]:
    """Weekday set (0=Sunday..6=Saturday), sorted, without duplicates."""
    if not days:
        return []
    normalized = set()
    for day in days:
        value = int(day)
        if not 0 <= value <= 6:
            raise ValueError(f"Weekday must be between 0 and 6, got {day}")
        normalized.add(value)
    return sorted(normalized)


def clamp_missed_hours(value: Any) -> int:
    try:
        hours = int(value)
    except (TypeError, ValueError):
        return 0
    return min(max(hours, 0), HOURS_PER_LESSON)


def normalize_records(records: Optional[Dict[str, Any]]) -> Dict[str, int]:
    """Clamp every value to [0, HOURS_PER_LESSON]; present students (0) are left out."""
    normalized = {}
    for student_id, value in (records or {}).items():
        hours = clamp_missed_hours(value)
        if hours > 0:
            normalized[str(student_id)] = hours
    return normalized


# --- composite keys ---


class AssignmentKey(BaseModel):
    """Identity of a subject assignment inside one group."""

    model_config = ConfigDict(frozen=True)

    subject_id: str
    lesson_variant: LessonVariant
    teacher_id: str


class AttendanceKey(BaseModel):
    model_config = ConfigDict(frozen=True)

    group_id: str
    subject_id: str
    lesson_variant: LessonVariant
    date: date

    @field_validator("date", mode="before")
    @classmethod
    def _calendar_date(cls, value: Any) -> date:
        return to_calendar_date(value)

    def as_query(self) -> Dict[str, Any]:
        return {
            "group_id": self.group_id,
            "subject_id": self.subject_id,
            "lesson_variant": self.lesson_variant.value,
            "date": self.date.isoformat(),
        }

    def describe(self) -> str:
        return f"{self.group_id}/{self.subject_id}/{self.lesson_variant.value}/{self.date.isoformat()}"


class GradeCellKey(BaseModel):
    """One cell of a teacher's grade grid."""

    model_config = ConfigDict(frozen=True)

    group_id: str
    subject_id: str
    student_id: str
    date: date

    def as_query(self) -> Dict[str, Any]:
        return {
            "group_id": self.group_id,
            "subject_id": self.subject_id,
            "student_id": self.student_id,
            "date": self.date.isoformat(),
        }


# --- stored records ---


class SemesterWindow(BaseModel):
    model_config = ConfigDict(extra="ignore")
    id: str = "semester"
    start_date: date
    end_date: date
    updated_at: str = Field(default_factory=iso_now)
    updated_by: Optional[str] = None

    @field_validator("start_date", "end_date", mode="before")
    @classmethod
    def _calendar_date(cls, value: Any) -> date:
        return to_calendar_date(value)

    @property
    def is_empty(self) -> bool:
        return self.start_date > self.end_date

    def as_range(self) -> DateRange:
        return DateRange(start=self.start_date, end=self.end_date)


class SubjectAssignmentBase(BaseModel):
    subject_id: str
    subject_name: str = ""
    teacher_id: str
    teacher_name: str = ""
    lesson_variant: LessonVariant
    schedule_days: List[int] = Field(default_factory=list)
    location: Optional[str] = None

    @field_validator("schedule_days", mode="before")
    @classmethod
    def _weekday_set(cls, value: Any) -> List[int]:
        return normalize_schedule_days(value)


class SubjectAssignment(SubjectAssignmentBase):
    model_config = ConfigDict(extra="ignore")

    @property
    def key(self) -> AssignmentKey:
        return AssignmentKey(
            subject_id=self.subject_id,
            lesson_variant=self.lesson_variant,
            teacher_id=self.teacher_id,
        )


class GroupRecord(BaseModel):
    model_config = ConfigDict(extra="ignore")
    id: str
    name: str = ""
    student_ids: List[str] = Field(default_factory=list)
    teacher_ids: List[str] = Field(default_factory=list)
    subject_teachers: List[SubjectAssignment] = Field(default_factory=list)


class AttendanceEntry(BaseModel):
    model_config = ConfigDict(extra="ignore")
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    group_id: str
    subject_id: str
    lesson_variant: LessonVariant
    date: date
    records: Dict[str, int] = Field(default_factory=dict)
    teacher_id: Optional[str] = None
    created_at: str = Field(default_factory=iso_now)
    updated_at: str = Field(default_factory=iso_now)
    updated_by: Optional[str] = None
    version: int = 1

    @field_validator("date", mode="before")
    @classmethod
    def _calendar_date(cls, value: Any) -> date:
        return to_calendar_date(value)

    @property
    def key(self) -> AttendanceKey:
        return AttendanceKey(
            group_id=self.group_id,
            subject_id=self.subject_id,
            lesson_variant=self.lesson_variant,
            date=self.date,
        )

    def missed_hours(self, student_id: str) -> int:
        return self.records.get(student_id, 0)


class AttendanceUpsert(BaseModel):
    group_id: str
    subject_id: str
    lesson_variant: LessonVariant
    date: date
    records: Dict[str, int] = Field(default_factory=dict)
    actor_id: str
    expected_version: Optional[int] = Field(default=None, ge=0)

    @field_validator("date", mode="before")
    @classmethod
    def _calendar_date(cls, value: Any) -> date:
        return to_calendar_date(value)


class GradeBase(BaseModel):
    group_id: str
    subject_id: str
    student_id: str
    teacher_id: str
    grade: int = Field(ge=MIN_GRADE, le=MAX_GRADE)
    date: date
    lesson_variant: Optional[LessonVariant] = None
    student_name: str = ""
    subject_name: str = ""
    teacher_name: str = ""
    comment: str = ""
    lesson_topic: str = ""

    @field_validator("date", mode="before")
    @classmethod
    def _calendar_date(cls, value: Any) -> date:
        return to_calendar_date(value)


class GradeEntry(GradeBase):
    model_config = ConfigDict(extra="ignore")
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    created_at: str = Field(default_factory=iso_now)
    updated_at: str = Field(default_factory=iso_now)


class GradeCreate(GradeBase):
    pass


class GradeUpdate(BaseModel):
    grade: int = Field(ge=MIN_GRADE, le=MAX_GRADE)
    comment: Optional[str] = None


class GradeCell(BaseModel):
    student_id: str
    date: date
    # 0 or empty clears the cell
    grade: Optional[int] = Field(default=None, ge=0, le=MAX_GRADE)
    student_name: str = ""

    @field_validator("date", mode="before")
    @classmethod
    def _calendar_date(cls, value: Any) -> date:
        return to_calendar_date(value)

    @field_validator("grade", mode="before")
    @classmethod
    def _blank_is_empty(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @property
    def is_cleared(self) -> bool:
        return not self.grade


class GradeSheetPayload(BaseModel):
    group_id: str
    subject_id: str
    teacher_id: str
    subject_name: str = ""
    teacher_name: str = ""
    lesson_variant: Optional[LessonVariant] = None
    cells: List[GradeCell]


class GradeSheetResult(BaseModel):
    created: int = 0
    updated: int = 0
    deleted: int = 0


# --- derived, never stored ---


class AttendanceStat(BaseModel):
    missed_hours: int = 0
    total_hours: int = 0
    percent: float = 0.0
    high_absence: bool = False


class AttendanceStats(BaseModel):
    group_id: str
    subject_id: str
    lesson_variant: LessonVariant
    window: DateRange
    total_lessons: int
    total_hours: int
    per_student: Dict[str, AttendanceStat] = Field(default_factory=dict)


class StudentMissedHours(BaseModel):
    """Missed hours of one student summed over every subject."""

    student_id: str
    group_id: Optional[str] = None
    window: Optional[DateRange] = None
    total_missed_hours: int = 0
    days_count: int = 0
    records: List[AttendanceEntry] = Field(default_factory=list)


class StudentMissedTotal(BaseModel):
    total_missed_hours: int = 0
    missed_days: int = 0


class GroupAttendanceStats(BaseModel):
    group_id: str
    window: Optional[DateRange] = None
    total_days: int = 0
    per_student: Dict[str, StudentMissedTotal] = Field(default_factory=dict)


class SubjectAverage(BaseModel):
    subject_id: str
    subject_name: str = ""
    average: float
    grades_count: int


class StudentGradeStats(BaseModel):
    student_id: str
    subjects: List[SubjectAverage] = Field(default_factory=list)
    # None means the student has no grades at all
    overall_average: Optional[float] = None


class StudentAverage(BaseModel):
    student_id: str
    average: float
    grades_count: int


class GroupSubjectGradeStats(BaseModel):
    group_id: str
    subject_id: str
    group_average: Optional[float] = None
    student_averages: List[StudentAverage] = Field(default_factory=list)
    total_grades: int = 0


class AttendanceSheet(BaseModel):
    group_id: str
    subject_id: str
    lesson_variant: LessonVariant
    year: int
    month: int
    dates: List[date] = Field(default_factory=list)
    entries: List[AttendanceEntry] = Field(default_factory=list)
    stats: AttendanceStats


class SubjectAttendanceSummary(BaseModel):
    subject_id: str
    subject_name: str = ""
    lesson_variant: LessonVariant
    teacher_id: str
    teacher_name: str = ""
    total_lessons: int
    stat: AttendanceStat


class StudentSummary(BaseModel):
    student_id: str
    group_id: str
    attendance: List[SubjectAttendanceSummary] = Field(default_factory=list)
    grades: StudentGradeStats
