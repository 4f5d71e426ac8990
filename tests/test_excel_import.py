from io import BytesIO

import pandas as pd
import pytest
from sqlalchemy.exc import SQLAlchemyError

import excel_import
from conftest import METADATA, SAMPLE_ROWS, to_records
from errors import GradedeskError, ValidationError
from excel_import import UploadMetadata, build_column_mapping, parse_rows, read_sheet_rows, save_records
from models import AssessmentModel, ClassModel, SchoolModel, ScoreModel, StudentModel, SubjectModel, db

SUBJECT_ROW = [None, None, None, None, "语文", None, "数学", None, "总分"]
METRIC_ROW = ["学校", "姓名", "班级", "学号", "成绩", "班名次", "成绩", "班名次", "成绩"]


def _form(**overrides):
    form = {"academic_year": "2024-2025", "grade_level": "初中一年级", "month": "3", "assessment_type": "月考"}
    form.update(overrides)
    return form


def test_column_mapping_carries_merged_subjects():
    mapping = build_column_mapping(SUBJECT_ROW, METRIC_ROW)
    assert mapping[4] == ("语文", "成绩")
    assert mapping[5] == ("语文", "班名次")
    assert mapping[7] == ("数学", "班名次")
    assert mapping[8] == ("总分", "成绩")
    assert 3 not in mapping


def test_parse_rows_reads_score_columns_only():
    rows = [
        ["成绩单"],
        SUBJECT_ROW,
        METRIC_ROW,
        ["一中", "张三", "初一(1)班", 20240101.0, 90, 1, "80分", 2, 170],
        ["一中", None, "初一(1)班", "S9", 50, 1, 50, 1, 100],
        ["一中", "李四", "初一(1)班", "S2", "缺考", 2, 60, 3, 60],
        ["一中"],
    ]
    records = parse_rows(rows)

    assert [(r.student_name, r.subject_name, r.score_value) for r in records] == [
        ("张三", "语文", 90.0),
        ("张三", "数学", 80.0),
        ("李四", "数学", 60.0),
    ]
    assert records[0].student_number == "20240101"
    assert records[0].school_name == "一中"
    assert all(r.subject_name != "总分" for r in records)


def test_parse_rows_requires_four_rows():
    with pytest.raises(ValidationError, match="at least 4 rows"):
        parse_rows([["title"], SUBJECT_ROW, METRIC_ROW])


def test_parse_rows_without_scores():
    rows = [["title"], SUBJECT_ROW, METRIC_ROW, ["一中", "张三", "初一(1)班", "S1", None, 1, "", 2, None]]
    with pytest.raises(ValidationError, match="No valid score data"):
        parse_rows(rows)


def test_read_sheet_rows_from_workbook(make_workbook):
    rows = read_sheet_rows(make_workbook(SAMPLE_ROWS), "scores.xlsx")
    assert rows[0][0] == "2024-2025学年 初一 三月月考成绩"
    assert rows[0][1] is None
    assert rows[1][4] == "语文"
    assert rows[2][:4] == ["学校", "姓名", "班级", "学号"]
    assert rows[3][:4] == ["一中", "张三", "初一(1)班", "S1"]
    assert len(rows) == 3 + len(SAMPLE_ROWS)


def test_read_sheet_rows_from_csv():
    content = "成绩单\n,,,,语文,\n学校,姓名,班级,学号,成绩,班名次\n一中,张三,初一(1)班,S1,88,1\n"
    rows = read_sheet_rows(BytesIO(content.encode("utf-8-sig")), "scores.csv")
    assert rows[0][0] == "成绩单"
    assert rows[0][1:] == [None] * 5
    assert rows[1][4] == "语文"
    assert rows[1][0] is None
    records = parse_rows(rows)
    assert len(records) == 1
    assert records[0].score_value == 88.0


def test_read_sheet_rows_rejects_other_files():
    with pytest.raises(ValidationError, match="Only Excel or CSV"):
        read_sheet_rows(BytesIO(b"hello"), "scores.txt")


def test_upload_metadata_validation():
    with pytest.raises(ValidationError):
        UploadMetadata.from_form(_form(month="March"))
    with pytest.raises(ValidationError, match="between 1 and 12"):
        UploadMetadata.from_form(_form(month="13")).validate()
    with pytest.raises(ValidationError, match="grade_level"):
        UploadMetadata.from_form(_form(grade_level=" ")).validate()


def test_upload_creates_reference_rows(client, make_workbook):
    response = client.post("/api/upload-scores", data=dict(_form(), file=(make_workbook(SAMPLE_ROWS), "scores.xlsx")),
                           content_type="multipart/form-data")
    assert response.status_code == 200
    summary = response.get_json()["summary"]
    assert summary["record_count"] == 8
    assert summary["new_score_count"] == 8
    assert summary["updated_score_count"] == 0
    assert summary["student_count"] == 4
    assert summary["school_names"] == ["一中", "二中"]
    assert len(summary["assessment_ids"]) == 2

    assert SchoolModel.query.count() == 2
    assert AssessmentModel.query.count() == 2
    # 初一(1)班 exists in both schools
    assert ClassModel.query.count() == 3
    assert sorted(s.name for s in SubjectModel.query.all()) == sorted(["语文", "数学"])
    assert StudentModel.query.count() == 4
    assert ScoreModel.query.count() == 8


def test_reupload_updates_scores_in_place(client, make_workbook):
    client.post("/api/upload-scores", data=dict(_form(), file=(make_workbook(SAMPLE_ROWS), "scores.xlsx")),
                content_type="multipart/form-data")

    changed = [("一中", "张三丰", "初一(1)班", "S1", {"语文": 99, "数学": 80})]
    response = client.post("/api/upload-scores", data=dict(_form(), file=(make_workbook(changed), "scores.xlsx")),
                           content_type="multipart/form-data")
    summary = response.get_json()["summary"]
    assert summary["new_score_count"] == 0
    assert summary["updated_score_count"] == 2

    assert ScoreModel.query.count() == 8
    student = StudentModel.query.filter_by(student_number="S1").one()
    assert student.name == "张三丰"
    subject = SubjectModel.query.filter_by(name="语文").one()
    score = ScoreModel.query.filter_by(student_id=student.id, subject_id=subject.id).one()
    assert score.score_value == 99


def test_upload_requires_file(client):
    response = client.post("/api/upload-scores", data=_form(), content_type="multipart/form-data")
    assert response.status_code == 400
    assert response.get_json()["error"] == "No file provided"


def test_upload_rejects_bad_month(client, make_workbook):
    response = client.post("/api/upload-scores",
                           data=dict(_form(month="0"), file=(make_workbook(SAMPLE_ROWS), "scores.xlsx")),
                           content_type="multipart/form-data")
    assert response.status_code == 400
    assert AssessmentModel.query.count() == 0


def test_csv_keeps_blank_lines_and_quoted_commas():
    content = '成绩单\n\n学校,姓名,班级\n"一中, 本部",张三,初一(1)班\n'
    rows = read_sheet_rows(BytesIO(content.encode("utf-8")), "scores.csv")
    assert len(rows) == 4
    assert all(cell is None for cell in rows[1])
    assert rows[3][:3] == ["一中, 本部", "张三", "初一(1)班"]


def test_legacy_xls_is_read_with_xlrd(monkeypatch):
    engines = []

    def fake_read_excel(file, **kwargs):
        engines.append(kwargs.get("engine"))
        return pd.DataFrame([["成绩单", None]])

    monkeypatch.setattr(excel_import.pd, "read_excel", fake_read_excel)
    assert read_sheet_rows(BytesIO(b""), "scores.XLS") == [["成绩单", None]]
    read_sheet_rows(BytesIO(b""), "scores.xlsx")
    assert engines == ["xlrd", "openpyxl"]


def _table_counts():
    return [m.query.count() for m in (SchoolModel, AssessmentModel, ClassModel, SubjectModel, StudentModel,
                                      ScoreModel)]


def test_failed_save_rolls_back_the_whole_sheet(seeded, monkeypatch):
    before = _table_counts()
    original_flush = db.session.flush
    calls = []

    def failing_flush(*args, **kwargs):
        calls.append(1)
        if len(calls) == 2:
            raise SQLAlchemyError("disk I/O error")
        return original_flush(*args, **kwargs)

    monkeypatch.setattr(db.session, "flush", failing_flush)
    records = to_records([("三中", "钱七", "初一(3)班", "S9", {"语文": 88, "物理": 70})])
    with pytest.raises(GradedeskError, match="Failed to save scores"):
        save_records(records, METADATA)
    monkeypatch.undo()

    assert _table_counts() == before
    assert SchoolModel.query.filter_by(name="三中").count() == 0


def test_large_sheet_is_flushed_in_chunks(app_ctx, monkeypatch):
    original_flush = db.session.flush
    calls = []

    def counting_flush(*args, **kwargs):
        calls.append(1)
        return original_flush(*args, **kwargs)

    monkeypatch.setattr(db.session, "flush", counting_flush)
    rows = [("一中", "学生{}".format(i), "初一({})班".format(i % 4 + 1), str(i), {"语文": i % 101})
            for i in range(1, 1101)]
    summary = save_records(to_records(rows), METADATA)

    assert summary.record_count == 1100
    assert summary.new_score_count == 1100
    assert summary.student_count == 1100
    assert ScoreModel.query.count() == 1100
    # schools, reference rows, students, then one full chunk of scores
    assert len(calls) == 4
