import io
from typing import Dict, List, Optional

import pandas as pd
from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import getSampleStyleSheet
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from gradebook.models import AttendanceStats, GroupSubjectGradeStats


def _student_label(student_id: str, names: Dict[str, str]) -> str:
    return names.get(student_id) or student_id


def attendance_rows(stats: AttendanceStats, names: Dict[str, str]) -> List[Dict[str, object]]:
    rows = [
        {
            "Student": _student_label(student_id, names),
            "Missed Hours": stat.missed_hours,
            "Total Hours": stat.total_hours,
            "Missed %": round(stat.percent, 1),
            "High Absence": "yes" if stat.high_absence else "",
        }
        for student_id, stat in stats.per_student.items()
    ]
    return sorted(rows, key=lambda row: row["Student"])


def grade_rows(grade_stats: GroupSubjectGradeStats, names: Dict[str, str]) -> List[Dict[str, object]]:
    rows = [
        {
            "Student": _student_label(item.student_id, names),
            "Average": item.average,
            "Grades": item.grades_count,
        }
        for item in grade_stats.student_averages
    ]
    return sorted(rows, key=lambda row: row["Student"])


def generate_attendance_excel(
    stats: AttendanceStats,
    names: Dict[str, str],
    grade_stats: Optional[GroupSubjectGradeStats] = None,
) -> bytes:
    buffer = io.BytesIO()
    summary_df = pd.DataFrame([
        {
            "Group": stats.group_id,
            "Subject": stats.subject_id,
            "Lesson": stats.lesson_variant.value,
            "Semester Start": stats.window.start.isoformat(),
            "Semester End": stats.window.end.isoformat(),
            "Total Lessons": stats.total_lessons,
            "Total Hours": stats.total_hours,
            "Group Average": grade_stats.group_average if grade_stats else None,
        }
    ])
    attendance_df = pd.DataFrame(
        attendance_rows(stats, names),
        columns=["Student", "Missed Hours", "Total Hours", "Missed %", "High Absence"],
    )
    with pd.ExcelWriter(buffer, engine="openpyxl") as writer:
        summary_df.to_excel(writer, sheet_name="Summary", index=False)
        attendance_df.to_excel(writer, sheet_name="Attendance", index=False)
        if grade_stats is not None:
            grades_df = pd.DataFrame(grade_rows(grade_stats, names), columns=["Student", "Average", "Grades"])
            grades_df.to_excel(writer, sheet_name="Grades", index=False)
    buffer.seek(0)
    return buffer.getvalue()


def generate_attendance_pdf(stats: AttendanceStats, names: Dict[str, str], title: str = "") -> bytes:
    buffer = io.BytesIO()
    styles = getSampleStyleSheet()
    doc = SimpleDocTemplate(buffer, pagesize=A4)
    heading = title or f"Attendance: {stats.subject_id} ({stats.lesson_variant.value})"
    elements = [
        Paragraph(heading, styles["Title"]),
        Paragraph(
            f"Semester {stats.window.start.isoformat()} - {stats.window.end.isoformat()}, "
            f"{stats.total_lessons} lessons / {stats.total_hours} hours",
            styles["Normal"],
        ),
        Spacer(1, 12),
    ]
    table_data = [["Student", "Missed Hours", "Total Hours", "Missed %"]]
    for row in attendance_rows(stats, names):
        table_data.append([row["Student"], row["Missed Hours"], row["Total Hours"], f"{row['Missed %']}%"])
    table = Table(table_data, hAlign="LEFT")
    style = [
        ("BACKGROUND", (0, 0), (-1, 0), colors.lightgrey),
        ("GRID", (0, 0), (-1, -1), 0.5, colors.grey),
    ]
    for index, row in enumerate(attendance_rows(stats, names), start=1):
        if row["High Absence"]:
            style.append(("TEXTCOLOR", (0, index), (-1, index), colors.red))
    table.setStyle(TableStyle(style))
    elements.append(table)
    doc.build(elements)
    pdf_value = buffer.getvalue()
    buffer.close()
    return pdf_value
