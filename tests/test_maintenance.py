import pytest
from sqlalchemy.exc import SQLAlchemyError

from errors import ConflictError, GradedeskError, NotFoundError, ValidationError
from maintenance import add_teacher, class_roster, list_teachers, set_course_teacher, set_homeroom_teacher
from models import CourseAssignmentModel, TeacherModel, db

YEAR = "2024-2025"


@pytest.fixture
def school_id(seeded):
    school_id = seeded.schools["一中"]
    add_teacher(school_id, "Wang Fang", "T001")
    add_teacher(school_id, "Li Lei")
    return school_id


def test_add_and_list_teachers(school_id):
    teachers = list_teachers(school_id)
    assert [t["name"] for t in teachers] == ["Li Lei", "Wang Fang"]
    assert teachers[1]["employee_number"] == "T001"

    with pytest.raises(ConflictError):
        add_teacher(school_id, " Wang Fang ")
    with pytest.raises(ValidationError):
        add_teacher(school_id, "  ")
    with pytest.raises(NotFoundError):
        list_teachers(9999)


def test_failed_teacher_insert_is_rolled_back(school_id, monkeypatch):
    def failing_commit():
        raise SQLAlchemyError("database is locked")

    monkeypatch.setattr(db.session, "commit", failing_commit)
    with pytest.raises(GradedeskError, match="Failed to save teacher"):
        add_teacher(school_id, "Zhao Min")
    monkeypatch.undo()

    assert TeacherModel.query.filter_by(school_id=school_id).count() == 2
    assert TeacherModel.query.filter_by(name="Zhao Min").count() == 0


def test_roster_lists_classes_and_subjects(seeded, school_id):
    roster = class_roster(school_id, YEAR)
    assert [c["name"] for c in roster] == ["初一(1)班", "初一(2)班"]
    first = roster[0]
    assert first["homeroom_teacher_name"] == ""
    assert {a["subject_name"] for a in first["course_assignments"]} == set(seeded.subjects)
    assert all(a["teacher_name"] == "" for a in first["course_assignments"])

    assert class_roster(school_id, YEAR, "高中一年级") == []
    assert len(class_roster(school_id, YEAR, "all")) == 2
    with pytest.raises(ValidationError):
        class_roster(school_id, "")


def test_set_homeroom_teacher(seeded, school_id):
    class_id = seeded.classes[(school_id, "初一(2)班")]
    result = set_homeroom_teacher(class_id, "  Wang Fang ")
    assert result["homeroom_teacher_name"] == "Wang Fang"

    roster = {c["name"]: c for c in class_roster(school_id, YEAR)}
    assert roster["初一(2)班"]["homeroom_teacher_name"] == "Wang Fang"

    with pytest.raises(ValidationError):
        set_homeroom_teacher(class_id, "")


def test_unknown_teacher_gets_suggestions(seeded, school_id):
    class_id = seeded.classes[(school_id, "初一(1)班")]
    with pytest.raises(NotFoundError) as excinfo:
        set_homeroom_teacher(class_id, "Wang Fan")
    assert "Wang Fang" in excinfo.value.payload["suggestions"]


def test_teacher_must_belong_to_the_class_school(seeded, school_id):
    other_class = seeded.classes[(seeded.schools["二中"], "初一(1)班")]
    with pytest.raises(NotFoundError):
        set_homeroom_teacher(other_class, "Wang Fang")


def test_set_and_clear_course_teacher(seeded, school_id):
    class_id = seeded.classes[(school_id, "初一(1)班")]
    math_id = seeded.subjects["数学"]

    set_course_teacher(class_id, math_id, YEAR, "Li Lei")
    set_course_teacher(class_id, math_id, YEAR, "Wang Fang")
    assert CourseAssignmentModel.query.count() == 1

    roster = {c["name"]: c for c in class_roster(school_id, YEAR)}
    maths = next(a for a in roster["初一(1)班"]["course_assignments"] if a["subject_id"] == math_id)
    assert maths["teacher_name"] == "Wang Fang"
    # Assignments are per academic year
    assert all(a["teacher_name"] == "" for c in class_roster(school_id, "2025-2026") for a in c["course_assignments"])

    result = set_course_teacher(class_id, math_id, YEAR, " ")
    assert result["teacher_name"] == ""
    assert CourseAssignmentModel.query.count() == 0


def test_maintenance_endpoints(client, seeded, school_id):
    class_id = seeded.classes[(school_id, "初一(1)班")]
    response = client.put("/api/maintenance/classes/{}/homeroom".format(class_id), json={"teacher_name": "Li Lei"})
    assert response.status_code == 200
    assert response.get_json()["homeroom_teacher_name"] == "Li Lei"

    response = client.put("/api/maintenance/classes/{}/homeroom".format(class_id), json={"teacher_name": "Nobody"})
    assert response.status_code == 404
    assert "suggestions" in response.get_json()

    response = client.put("/api/maintenance/classes/{}/courses/{}".format(class_id, seeded.subjects["语文"]),
                          json={"academic_year": YEAR, "teacher_name": "Wang Fang"})
    assert response.status_code == 200

    response = client.get("/api/maintenance/classes", query_string={"school_id": school_id, "academic_year": YEAR})
    first = response.get_json()[0]
    assert first["homeroom_teacher_name"] == "Li Lei"

    response = client.post("/api/teachers", json={"school_id": school_id, "name": "Zhao Min"})
    assert response.status_code == 201
    response = client.post("/api/teachers", json={"school_id": school_id, "name": "Zhao Min"})
    assert response.status_code == 409
    names = [t["name"] for t in client.get("/api/teachers", query_string={"school_id": school_id}).get_json()]
    assert "Zhao Min" in names
