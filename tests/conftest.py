import os
from io import BytesIO
from types import SimpleNamespace

import pytest
from openpyxl import Workbook

os.environ["DATABASE_URL"] = "sqlite://"

from app import app as flask_app  # noqa: E402
from assessment_config import save_assessment_config  # noqa: E402
from excel_import import ParsedRecord, UploadMetadata, save_records  # noqa: E402
from models import AssessmentModel, ClassModel, SchoolModel, SubjectModel, db  # noqa: E402

METADATA = UploadMetadata(academic_year="2024-2025", grade_level="初中一年级", month=3, assessment_type="月考")

# (school, student name, class, student number, {subject: score})
SAMPLE_ROWS = [
    ("一中", "张三", "初一(1)班", "S1", {"语文": 90, "数学": 80}),
    ("一中", "李四", "初一(1)班", "S2", {"语文": 70, "数学": 50}),
    ("一中", "王五", "初一(2)班", "S3", {"语文": 60, "数学": 95}),
    ("二中", "赵六", "初一(1)班", "S4", {"语文": 50, "数学": 70}),
]


def to_records(rows):
    return [ParsedRecord(student_number=number, student_name=name, class_name=class_name,
                         subject_name=subject, score_value=float(score), school_name=school)
            for school, name, class_name, number, scores in rows
            for subject, score in scores.items()]


@pytest.fixture
def app_ctx():
    flask_app.config['TESTING'] = True
    with flask_app.app_context():
        db.drop_all()
        db.create_all()
        yield flask_app
        db.session.remove()


@pytest.fixture
def client(app_ctx):
    return app_ctx.test_client()


@pytest.fixture
def seeded(app_ctx):
    """SAMPLE_ROWS saved as one exam sat by two schools."""
    summary = save_records(to_records(SAMPLE_ROWS), METADATA)
    schools = {s.name: s.id for s in SchoolModel.query.all()}
    return SimpleNamespace(
        summary=summary,
        schools=schools,
        assessments={a.school.name: a.id for a in AssessmentModel.query.all()},
        subjects={s.name: s.id for s in SubjectModel.query.all()},
        classes={(c.school_id, c.name): c.id for c in ClassModel.query.all()},
    )


@pytest.fixture
def configure(app_ctx):
    """Store thresholds for the given subjects of an assessment."""
    def _configure(assessment_id, subject_ids, full_score=100, excellent=85, passing=60, poor=30):
        return save_assessment_config(assessment_id, [{
            "subject_id": subject_id,
            "full_score": full_score,
            "excellent_threshold": excellent,
            "pass_threshold": passing,
            "poor_threshold": poor,
        } for subject_id in subject_ids])
    return _configure


@pytest.fixture
def make_workbook():
    """Score workbook in the upload layout: title, subject row, metric row, data rows."""
    def _make(rows, subjects=("语文", "数学"), with_total=True):
        wb = Workbook()
        ws = wb.active
        ws.append(["2024-2025学年 初一 三月月考成绩"])

        subject_row = [None, None, None, None]
        metric_row = ["学校", "姓名", "班级", "学号"]
        for subject in subjects:
            subject_row += [subject, None]
            metric_row += ["成绩", "班名次"]
        if with_total:
            subject_row.append("总分")
            metric_row.append("成绩")
        ws.append(subject_row)
        ws.append(metric_row)

        for school, name, class_name, number, scores in rows:
            line = [school, name, class_name, number]
            for subject in subjects:
                line += [scores.get(subject), 1]
            if with_total:
                line.append(sum(v for v in scores.values() if isinstance(v, (int, float))))
            ws.append(line)

        output = BytesIO()
        wb.save(output)
        output.seek(0)
        return output
    return _make
