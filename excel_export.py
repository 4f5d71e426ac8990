"""
Excel downloads of stored scores and report tables.
"""

from io import BytesIO

import pandas as pd
from openpyxl.styles import Alignment, Font, PatternFill
from openpyxl.utils import get_column_letter

from assessment_config import get_assessment
from config import TOTAL_SUBJECT
from errors import ValidationError
from helpers import class_number, student_number_key
from models import ClassModel, SchoolModel, ScoreModel, StudentModel, SubjectModel, db

XLSX_MIMETYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"

WIDE_COLUMNS = {"学校": 24, "班级": 14, "姓名": 14, "学号": 16, "班主任": 14}


def export_to_excel(rows, sheet_name="Sheet1", title=None):
    """Write a list of row dicts to an in-memory workbook with a styled header."""
    if not rows:
        raise ValidationError("Nothing to export")

    df = pd.DataFrame(rows)
    startrow = 2 if title else 0
    header_row = startrow + 1

    output = BytesIO()
    with pd.ExcelWriter(output, engine='openpyxl') as writer:
        df.to_excel(writer, sheet_name=sheet_name, index=False, startrow=startrow)
        worksheet = writer.sheets[sheet_name]

        if title:
            worksheet.cell(row=1, column=1, value=title).font = Font(bold=True, size=14)

        header_font = Font(bold=True)
        header_fill = PatternFill(start_color="EAEAEA", end_color="EAEAEA", fill_type="solid")
        for col_idx, column_header in enumerate(df.columns, start=1):
            cell = worksheet.cell(row=header_row, column=col_idx)
            cell.font = header_font
            cell.fill = header_fill
            cell.alignment = Alignment(horizontal='center')
            worksheet.column_dimensions[get_column_letter(col_idx)].width = WIDE_COLUMNS.get(column_header, 12)

        for row in worksheet.iter_rows(min_row=header_row + 1, max_row=worksheet.max_row):
            for cell in row:
                cell.alignment = Alignment(horizontal='center')

    output.seek(0)
    return output


def score_sheet_rows(assessment_id):
    """One row per student: school, class, number, name, each subject, total."""
    get_assessment(assessment_id)
    subjects = {s.id: s.name for s in SubjectModel.query.order_by(SubjectModel.id).all()}

    query = (db.session.query(ScoreModel, StudentModel, ClassModel, SchoolModel)
             .join(StudentModel, StudentModel.id == ScoreModel.student_id)
             .join(ClassModel, ClassModel.id == StudentModel.class_id)
             .join(SchoolModel, SchoolModel.id == ClassModel.school_id)
             .filter(ScoreModel.assessment_id == assessment_id))

    students = {}
    present = set()
    for score, student, c, school in query.all():
        row = students.setdefault(student.id, {
            "_class_number": class_number(c.name, 999),
            "学校": school.name,
            "班级": c.name,
            "学号": student.student_number,
            "姓名": student.name,
            "_scores": {},
        })
        row["_scores"][score.subject_id] = score.score_value
        present.add(score.subject_id)

    subject_ids = [sid for sid in subjects if sid in present]
    rows = []
    ordered = sorted(students.values(),
                     key=lambda r: (r["学校"], r["_class_number"], student_number_key(r["学号"])))
    for entry in ordered:
        row = {k: v for k, v in entry.items() if not k.startswith("_")}
        for sid in subject_ids:
            row[subjects[sid]] = entry["_scores"].get(sid)
        row[TOTAL_SUBJECT] = sum(v for v in entry["_scores"].values() if v is not None)
        rows.append(row)
    return rows


def class_rates_rows(report):
    return [{
        "班级": c["class_name"],
        "班主任": c["homeroom_teacher"],
        "人数": c["student_count"],
        "平均分": c["average_score"],
        "优秀率(%)": c["excellent_rate"],
        "优秀人数": c["excellent_count"],
        "及格率(%)": c["pass_rate"],
        "低分率(%)": c["poor_rate"],
    } for c in report["classes"]]
