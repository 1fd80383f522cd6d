import asyncio
import io
import logging
from datetime import date
from typing import Any, List, Optional

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Query, Request
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from motor.motor_asyncio import AsyncIOMotorDatabase
from pydantic import BaseModel, field_validator
from starlette.middleware.cors import CORSMiddleware

# Setup logging early
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

from gradebook import attendance, grades, groups, reports, semester, stats
from gradebook.config import get_cors_origins
from gradebook.database import create_client, ensure_indexes, get_database
from gradebook.dates import DateRange, today
from gradebook.errors import (
    AttendanceNotFoundError,
    GradeNotFoundError,
    GroupNotFoundError,
    StaleWriteError,
    StorageError,
)
from gradebook.models import (
    AttendanceEntry,
    AttendanceKey,
    AttendanceSheet,
    AttendanceStats,
    AttendanceUpsert,
    GradeCreate,
    GradeEntry,
    GradeSheetPayload,
    GradeSheetResult,
    GradeUpdate,
    GroupAttendanceStats,
    GroupSubjectGradeStats,
    LessonVariant,
    SemesterWindow,
    StudentGradeStats,
    StudentMissedHours,
    StudentSummary,
    SubjectAssignment,
    SubjectAssignmentBase,
)
from gradebook.occurrences import editable_occurrences

app = FastAPI()
api_router = APIRouter(prefix="/api")


def get_db(request: Request) -> AsyncIOMotorDatabase:
    return request.app.state.db


class SemesterWindowPayload(BaseModel):
    start_date: date
    end_date: date
    actor_id: Optional[str] = None


class StudentAttendancePayload(BaseModel):
    group_id: str
    subject_id: str
    lesson_variant: LessonVariant
    date: date
    student_id: str
    missed_hours: Optional[int] = None
    actor_id: str

    @field_validator("missed_hours", mode="before")
    @classmethod
    def _blank_is_present(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value


@app.exception_handler(StorageError)
async def storage_error_handler(request: Request, exc: StorageError):
    return JSONResponse(
        status_code=503,
        content={"status": "unavailable", "operation": exc.operation, "detail": str(exc.cause)},
    )


@app.exception_handler(StaleWriteError)
async def stale_write_handler(request: Request, exc: StaleWriteError):
    return JSONResponse(
        status_code=409,
        content={"detail": str(exc), "current_version": exc.current_version},
    )


@app.exception_handler(GroupNotFoundError)
@app.exception_handler(GradeNotFoundError)
@app.exception_handler(AttendanceNotFoundError)
async def not_found_handler(request: Request, exc: Exception):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.get("/health")
async def health_check():
    return {"status": "ok"}


# --- semester window ---


@api_router.get("/settings/semester", response_model=SemesterWindow)
async def fetch_semester_window(db: AsyncIOMotorDatabase = Depends(get_db)):
    return await semester.get_semester_window(db)


@api_router.put("/settings/semester", response_model=SemesterWindow)
async def update_semester_window(payload: SemesterWindowPayload, db: AsyncIOMotorDatabase = Depends(get_db)):
    return await semester.set_semester_window(db, payload.start_date, payload.end_date, payload.actor_id)


# --- subject assignments ---


@api_router.get("/groups/{group_id}/subjects", response_model=List[SubjectAssignment])
async def get_group_subjects(group_id: str, db: AsyncIOMotorDatabase = Depends(get_db)):
    return await groups.list_group_subjects(db, group_id)


@api_router.put("/groups/{group_id}/subjects", response_model=SubjectAssignment)
async def put_group_subject(
    group_id: str, payload: SubjectAssignmentBase, db: AsyncIOMotorDatabase = Depends(get_db)
):
    return await groups.set_subject_assignment(db, group_id, payload)


@api_router.delete("/groups/{group_id}/subjects")
async def delete_group_subject(
    group_id: str,
    subject_id: str = Query(...),
    teacher_id: str = Query(...),
    lesson_variant: LessonVariant = Query(...),
    db: AsyncIOMotorDatabase = Depends(get_db),
):
    removed = await groups.remove_subject_assignment(db, group_id, subject_id, teacher_id, lesson_variant)
    if not removed:
        raise HTTPException(status_code=404, detail="Subject assignment not found")
    return {"status": "deleted"}


@api_router.get("/groups/{group_id}/occurrences", response_model=List[date])
async def get_editable_dates(
    group_id: str,
    subject_id: str = Query(...),
    lesson_variant: LessonVariant = Query(...),
    year: int = Query(...),
    month: int = Query(..., ge=1, le=12),
    teacher_id: Optional[str] = Query(default=None),
    db: AsyncIOMotorDatabase = Depends(get_db),
):
    """Lesson dates of one month that a teacher may fill in (inside the semester, not in the future)."""
    group, window = await asyncio.gather(groups.get_group(db, group_id), semester.get_semester_window(db))
    days = groups.schedule_days_for(group, subject_id, lesson_variant, teacher_id)
    return editable_occurrences(days, window, year, month, not_after=today())


# --- attendance ledger ---


@api_router.put("/attendance", response_model=AttendanceEntry)
async def save_attendance(payload: AttendanceUpsert, db: AsyncIOMotorDatabase = Depends(get_db)):
    key = AttendanceKey(
        group_id=payload.group_id,
        subject_id=payload.subject_id,
        lesson_variant=payload.lesson_variant,
        date=payload.date,
    )
    return await attendance.upsert_attendance(
        db, key, payload.records, payload.actor_id, expected_version=payload.expected_version
    )


@api_router.put("/attendance/student", response_model=AttendanceEntry)
async def save_student_attendance(payload: StudentAttendancePayload, db: AsyncIOMotorDatabase = Depends(get_db)):
    key = AttendanceKey(
        group_id=payload.group_id,
        subject_id=payload.subject_id,
        lesson_variant=payload.lesson_variant,
        date=payload.date,
    )
    return await attendance.set_student_attendance(db, key, payload.student_id, payload.missed_hours, payload.actor_id)


@api_router.get("/attendance", response_model=Optional[AttendanceEntry])
async def fetch_attendance(
    group_id: str = Query(...),
    subject_id: str = Query(...),
    lesson_variant: LessonVariant = Query(...),
    date: date = Query(...),
    db: AsyncIOMotorDatabase = Depends(get_db),
):
    key = AttendanceKey(group_id=group_id, subject_id=subject_id, lesson_variant=lesson_variant, date=date)
    return await attendance.get_attendance(db, key)


@api_router.get("/attendance/sheet", response_model=AttendanceSheet)
async def fetch_attendance_sheet(
    group_id: str = Query(...),
    subject_id: str = Query(...),
    lesson_variant: LessonVariant = Query(...),
    year: int = Query(...),
    month: int = Query(..., ge=1, le=12),
    teacher_id: Optional[str] = Query(default=None),
    db: AsyncIOMotorDatabase = Depends(get_db),
):
    return await stats.get_attendance_sheet(db, group_id, subject_id, lesson_variant, year, month, teacher_id)


@api_router.delete("/attendance/{entry_id}")
async def remove_attendance(entry_id: str, db: AsyncIOMotorDatabase = Depends(get_db)):
    await attendance.delete_attendance(db, entry_id)
    return {"status": "deleted"}


@api_router.get("/groups/{group_id}/attendance", response_model=List[AttendanceEntry])
async def fetch_group_attendance(group_id: str, db: AsyncIOMotorDatabase = Depends(get_db)):
    return await attendance.get_attendance_for_group(db, group_id)


@api_router.get("/students/{student_id}/attendance", response_model=List[AttendanceEntry])
async def fetch_student_attendance(
    student_id: str,
    group_id: Optional[str] = Query(default=None),
    db: AsyncIOMotorDatabase = Depends(get_db),
):
    return await attendance.get_attendance_for_student(db, student_id, group_id)


def _optional_range(start_date: Optional[date], end_date: Optional[date]) -> Optional[DateRange]:
    if start_date is None and end_date is None:
        return None
    return DateRange(start=start_date or date.min, end=end_date or date.max)


@api_router.get("/students/{student_id}/attendance/total", response_model=StudentMissedHours)
async def fetch_student_total_missed_hours(
    student_id: str,
    group_id: Optional[str] = Query(default=None),
    start_date: Optional[date] = Query(default=None),
    end_date: Optional[date] = Query(default=None),
    db: AsyncIOMotorDatabase = Depends(get_db),
):
    return await stats.get_student_total_missed_hours(db, student_id, group_id, _optional_range(start_date, end_date))


@api_router.get("/groups/{group_id}/attendance/stats", response_model=GroupAttendanceStats)
async def fetch_group_attendance_stats(
    group_id: str,
    start_date: Optional[date] = Query(default=None),
    end_date: Optional[date] = Query(default=None),
    db: AsyncIOMotorDatabase = Depends(get_db),
):
    return await stats.get_group_attendance_stats(db, group_id, _optional_range(start_date, end_date))


@api_router.get("/teachers/{teacher_id}/attendance", response_model=List[AttendanceEntry])
async def fetch_teacher_attendance(teacher_id: str, db: AsyncIOMotorDatabase = Depends(get_db)):
    return await attendance.get_attendance_for_teacher(db, teacher_id)


# --- grade ledger ---


@api_router.post("/grades", response_model=GradeEntry)
async def add_grade(payload: GradeCreate, db: AsyncIOMotorDatabase = Depends(get_db)):
    return await grades.create_grade(db, payload)


@api_router.put("/grades/{grade_id}", response_model=GradeEntry)
async def change_grade(grade_id: str, payload: GradeUpdate, db: AsyncIOMotorDatabase = Depends(get_db)):
    return await grades.update_grade(db, grade_id, payload)


@api_router.delete("/grades/{grade_id}")
async def remove_grade(grade_id: str, db: AsyncIOMotorDatabase = Depends(get_db)):
    await grades.delete_grade(db, grade_id)
    return {"status": "deleted"}


@api_router.post("/grades/sheet", response_model=GradeSheetResult)
async def save_grade_sheet(payload: GradeSheetPayload, db: AsyncIOMotorDatabase = Depends(get_db)):
    return await grades.save_grade_sheet(db, payload)


@api_router.get("/grades", response_model=List[GradeEntry])
async def list_grades(
    student_id: Optional[str] = Query(default=None),
    group_id: Optional[str] = Query(default=None),
    subject_id: Optional[str] = Query(default=None),
    teacher_id: Optional[str] = Query(default=None),
    db: AsyncIOMotorDatabase = Depends(get_db),
):
    if student_id and subject_id:
        return await grades.get_grades_by_student_and_subject(db, student_id, subject_id)
    if group_id and subject_id:
        return await grades.get_grades_by_group_and_subject(db, group_id, subject_id)
    if student_id:
        return await grades.get_grades_by_student(db, student_id)
    if subject_id:
        return await grades.get_grades_by_subject(db, subject_id)
    if teacher_id:
        return await grades.get_grades_by_teacher(db, teacher_id)
    raise HTTPException(status_code=400, detail="Provide student_id, subject_id or teacher_id")


# --- statistics ---


@api_router.get("/stats/attendance", response_model=AttendanceStats)
async def fetch_attendance_stats(
    group_id: str = Query(...),
    subject_id: str = Query(...),
    lesson_variant: LessonVariant = Query(...),
    teacher_id: Optional[str] = Query(default=None),
    start_date: Optional[date] = Query(default=None),
    end_date: Optional[date] = Query(default=None),
    db: AsyncIOMotorDatabase = Depends(get_db),
):
    window = None
    if start_date and end_date:
        window = SemesterWindow(start_date=start_date, end_date=end_date)
    return await stats.get_attendance_stats(db, group_id, subject_id, lesson_variant, window, teacher_id)


@api_router.get("/stats/grades/students/{student_id}", response_model=StudentGradeStats)
async def fetch_student_grade_stats(student_id: str, db: AsyncIOMotorDatabase = Depends(get_db)):
    return await stats.get_grade_stats(db, student_id)


@api_router.get("/stats/grades/groups/{group_id}/subjects/{subject_id}", response_model=GroupSubjectGradeStats)
async def fetch_group_subject_grade_stats(group_id: str, subject_id: str, db: AsyncIOMotorDatabase = Depends(get_db)):
    return await stats.get_group_subject_grade_stats(db, group_id, subject_id)


@api_router.get("/students/{student_id}/summary", response_model=StudentSummary)
async def fetch_student_summary(
    student_id: str, group_id: str = Query(...), db: AsyncIOMotorDatabase = Depends(get_db)
):
    return await stats.get_student_summary(db, student_id, group_id)


# --- reports ---


@api_router.get("/reports/attendance/export")
async def export_attendance_report(
    group_id: str = Query(...),
    subject_id: str = Query(...),
    lesson_variant: LessonVariant = Query(...),
    format: str = Query("excel"),
    teacher_id: Optional[str] = Query(default=None),
    db: AsyncIOMotorDatabase = Depends(get_db),
):
    attendance_stats = await stats.get_attendance_stats(db, group_id, subject_id, lesson_variant, teacher_id=teacher_id)
    names = await groups.resolve_user_names(db, attendance_stats.per_student.keys())
    if format == "excel":
        grade_stats = await stats.get_group_subject_grade_stats(db, group_id, subject_id)
        content = reports.generate_attendance_excel(attendance_stats, names, grade_stats)
        filename = f"attendance_{group_id}_{subject_id}.xlsx"
        media_type = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
    else:
        content = reports.generate_attendance_pdf(attendance_stats, names)
        filename = f"attendance_{group_id}_{subject_id}.pdf"
        media_type = "application/pdf"
    headers = {"Content-Disposition": f"attachment; filename={filename}"}
    return StreamingResponse(io.BytesIO(content), media_type=media_type, headers=headers)


@app.on_event("startup")
async def connect_db():
    client = create_client()
    app.state.client = client
    app.state.db = get_database(client)
    try:
        await client.admin.command('ping')
        logger.info("MongoDB connection successful")
    except Exception as e:
        logger.error(f"MongoDB connection failed: {e}")
        logger.error("Please check your MONGO_URL in .env file and ensure MongoDB is accessible")
        return
    try:
        await ensure_indexes(app.state.db)
    except Exception as e:
        logger.error(f"Error creating indexes: {e}")


app.include_router(api_router)

app.add_middleware(
    CORSMiddleware,
    allow_credentials=True,
    allow_origins=get_cors_origins(),
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(GZipMiddleware, minimum_size=1024)


@app.on_event("shutdown")
async def shutdown_db_client():
    client = getattr(app.state, "client", None)
    if client is not None:
        client.close()
