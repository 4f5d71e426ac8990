"""
Score sheet import

Parses an exam score workbook and upserts schools, assessments, classes,
subjects, students and individual scores.

Workbook structure (first sheet):
- Row 1: Title (ignored)
- Row 2: Subject names from column E; a merged subject cell spans its metric columns
- Row 3: Metric names (成绩, 班名次, 校名次, ...)
- Rows 4+: School, Student Name, Class, Student Number, metric values

Only 成绩 columns are imported, and the 总分 (total) subject is skipped since
totals are recomputed from the subject scores.
"""

import io
from collections import OrderedDict
from dataclasses import asdict, dataclass, field
from typing import Dict, List, Tuple

import pandas as pd
from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from config import FIRST_SCORE_COLUMN, IMPORT_CHUNK_SIZE, SCORE_METRIC, TOTAL_SUBJECT, UPLOAD_EXTENSIONS
from errors import GradedeskError, ValidationError
from helpers import cell_text, is_blank, parse_score
from models import (AssessmentModel, ClassModel, SchoolModel, ScoreModel, StudentModel,
                    SubjectModel, db)


@dataclass
class ParsedRecord:
    """One subject score of one student."""
    student_number: str
    student_name: str
    class_name: str
    subject_name: str
    score_value: float
    school_name: str


@dataclass
class UploadMetadata:
    academic_year: str
    grade_level: str
    month: int
    assessment_type: str

    @classmethod
    def from_form(cls, form):
        month = form.get('month', '')
        try:
            month = int(str(month).strip())
        except ValueError:
            raise ValidationError("month must be a number between 1 and 12")
        return cls(
            academic_year=str(form.get('academic_year', '')).strip(),
            grade_level=str(form.get('grade_level', '')).strip(),
            month=month,
            assessment_type=str(form.get('assessment_type', '')).strip(),
        )

    def validate(self):
        missing = [name for name in ('academic_year', 'grade_level', 'assessment_type')
                   if not getattr(self, name)]
        if missing:
            raise ValidationError("Missing upload fields: {}".format(", ".join(missing)))
        if not 1 <= self.month <= 12:
            raise ValidationError("month must be a number between 1 and 12")


@dataclass
class ImportSummary:
    record_count: int
    new_score_count: int
    updated_score_count: int
    student_count: int
    school_names: List[str] = field(default_factory=list)
    assessment_ids: List[int] = field(default_factory=list)

    def to_dict(self):
        return asdict(self)


def _read_csv(file):
    content = file.read()
    if isinstance(content, bytes):
        content = content.decode('utf-8-sig')
    # Rows are ragged (the title row has one cell), so name enough columns for the widest line
    width = max([line.count(',') + 1 for line in content.splitlines()] or [1])
    return pd.read_csv(io.StringIO(content), header=None, names=range(width), dtype=object,
                       skip_blank_lines=False, engine='python')


def read_sheet_rows(file, filename):
    """Raw cell grid of the first sheet, blanks as None."""
    lower = (filename or "").lower()
    if not lower.endswith(UPLOAD_EXTENSIONS):
        raise ValidationError("Only Excel or CSV files are supported")
    try:
        if lower.endswith('.csv'):
            df = _read_csv(file)
        else:
            engine = 'xlrd' if lower.endswith('.xls') else 'openpyxl'
            df = pd.read_excel(file, sheet_name=0, header=None, engine=engine)
    except Exception as e:
        raise ValidationError("Could not read the uploaded file: {}".format(e))
    df = df.astype(object)
    return df.where(pd.notna(df), None).values.tolist()


def build_column_mapping(subject_row, metric_row) -> Dict[int, Tuple[str, str]]:
    """Map column index -> (subject, metric), carrying merged subject cells right."""
    mapping = {}
    current_subject = ""
    for col in range(FIRST_SCORE_COLUMN, len(metric_row)):
        if col < len(subject_row) and not is_blank(subject_row[col]):
            current_subject = cell_text(subject_row[col])
        metric = cell_text(metric_row[col])
        if current_subject and metric:
            mapping[col] = (current_subject, metric)
    return mapping


def parse_rows(rows) -> List[ParsedRecord]:
    if len(rows) < 4:
        raise ValidationError("Invalid file format: at least 4 rows are required")

    mapping = build_column_mapping(rows[1], rows[2])
    score_columns = [(col, subject) for col, (subject, metric) in mapping.items()
                     if metric == SCORE_METRIC and subject != TOTAL_SUBJECT]

    records = []
    for row in rows[3:]:
        if not row or len(row) < 4:
            continue
        school_name, student_name, class_name, student_number = [cell_text(v) for v in row[:4]]
        if not (school_name and student_name and class_name and student_number):
            continue

        for col, subject in score_columns:
            if col >= len(row):
                continue
            score = parse_score(row[col])
            if score is None:
                continue
            records.append(ParsedRecord(
                student_number=student_number,
                student_name=student_name,
                class_name=class_name,
                subject_name=subject,
                score_value=score,
                school_name=school_name,
            ))

    if not records:
        raise ValidationError("No valid score data found")
    return records


def parse_score_sheet(file, filename) -> List[ParsedRecord]:
    records = parse_rows(read_sheet_rows(file, filename))
    _log_parsed(records)
    return records


def _log_parsed(records):
    logger = current_app.logger
    logger.info("Parsed {} subject scores from score sheet".format(len(records)))
    grouped = OrderedDict()
    for r in records:
        key = "{} ({})".format(r.student_name, r.student_number)
        grouped.setdefault(key, []).append("{}={:g}".format(r.subject_name, r.score_value))
    for student, scores in grouped.items():
        logger.debug("  {}: {}".format(student, ", ".join(scores)))


# === DATABASE SYNC ===

def _upsert_schools(names):
    existing = {s.name: s for s in SchoolModel.query.filter(SchoolModel.name.in_(names)).all()}
    for name in names:
        if name not in existing:
            school = SchoolModel(name=name)
            db.session.add(school)
            existing[name] = school
    db.session.flush()
    return existing


def _upsert_assessment(school_id, metadata):
    assessment = AssessmentModel.query.filter_by(
        school_id=school_id,
        academic_year=metadata.academic_year,
        grade_level=metadata.grade_level,
        month=metadata.month,
        type=metadata.assessment_type,
    ).first()
    if not assessment:
        assessment = AssessmentModel(
            school_id=school_id,
            academic_year=metadata.academic_year,
            grade_level=metadata.grade_level,
            month=metadata.month,
            type=metadata.assessment_type,
        )
        db.session.add(assessment)
    return assessment


def _upsert_class(name, school_id, metadata):
    c = ClassModel.query.filter_by(
        school_id=school_id,
        academic_year=metadata.academic_year,
        grade_level=metadata.grade_level,
        name=name,
    ).first()
    if not c:
        c = ClassModel(name=name, school_id=school_id,
                       academic_year=metadata.academic_year, grade_level=metadata.grade_level)
        db.session.add(c)
    return c


def _upsert_subjects(names):
    existing = {s.name: s for s in SubjectModel.query.filter(SubjectModel.name.in_(names)).all()}
    for name in names:
        if name not in existing:
            subject = SubjectModel(name=name)
            db.session.add(subject)
            existing[name] = subject
    return existing


def _upsert_students(records, class_map):
    class_ids = [c.id for c in class_map.values()]
    existing = {(s.student_number, s.class_id): s
                for s in StudentModel.query.filter(StudentModel.class_id.in_(class_ids)).all()}
    students = {}
    for r in records:
        class_id = class_map[(r.class_name, r.school_name)].id
        key = (r.student_number, class_id)
        student = existing.get(key)
        if student is None:
            student = StudentModel(student_number=r.student_number, name=r.student_name, class_id=class_id)
            db.session.add(student)
            existing[key] = student
        else:
            student.name = r.student_name
        students[key] = student
    db.session.flush()
    return students


def _upsert_scores(records, assessment_map, class_map, subject_map, student_map):
    assessment_ids = [a.id for a in assessment_map.values()]
    existing = {(s.assessment_id, s.student_id, s.subject_id): s
                for s in ScoreModel.query.filter(ScoreModel.assessment_id.in_(assessment_ids)).all()}
    created = 0
    updated = 0
    pending = 0
    for r in records:
        class_id = class_map[(r.class_name, r.school_name)].id
        student = student_map[(r.student_number, class_id)]
        key = (assessment_map[r.school_name].id, student.id, subject_map[r.subject_name].id)
        score = existing.get(key)
        if score is None:
            score = ScoreModel(assessment_id=key[0], student_id=key[1], subject_id=key[2],
                               score_value=r.score_value)
            db.session.add(score)
            existing[key] = score
            created += 1
        else:
            score.score_value = r.score_value
            updated += 1
        pending += 1
        if pending >= IMPORT_CHUNK_SIZE:
            db.session.flush()
            pending = 0
    return created, updated


def save_records(records: List[ParsedRecord], metadata: UploadMetadata) -> ImportSummary:
    """Upsert parsed records; re-uploading the same sheet updates scores in place."""
    metadata.validate()
    school_names = sorted({r.school_name for r in records})
    class_keys = sorted({(r.class_name, r.school_name) for r in records})
    subject_names = sorted({r.subject_name for r in records})

    try:
        school_map = _upsert_schools(school_names)
        assessment_map = {name: _upsert_assessment(school.id, metadata) for name, school in school_map.items()}
        class_map = {(class_name, school_name): _upsert_class(class_name, school_map[school_name].id, metadata)
                     for class_name, school_name in class_keys}
        subject_map = _upsert_subjects(subject_names)
        db.session.flush()

        student_map = _upsert_students(records, class_map)
        created, updated = _upsert_scores(records, assessment_map, class_map, subject_map, student_map)
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        current_app.logger.exception("Saving score sheet failed")
        raise GradedeskError("Failed to save scores: {}".format(e))

    return ImportSummary(
        record_count=len(records),
        new_score_count=created,
        updated_score_count=updated,
        student_count=len(student_map),
        school_names=school_names,
        assessment_ids=sorted(a.id for a in assessment_map.values()),
    )


def import_score_file(file, filename, metadata: UploadMetadata) -> ImportSummary:
    metadata.validate()
    records = parse_score_sheet(file, filename)
    summary = save_records(records, metadata)
    current_app.logger.info("Imported {} scores for {} students ({})".format(
        summary.record_count, summary.student_count, ", ".join(summary.school_names)))
    return summary
