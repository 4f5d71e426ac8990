"""
Teacher and class maintenance

Homeroom and course teachers are entered by name. A name must match a
teacher of the class's school exactly; when it does not, close names are
suggested so the user can correct a typo.
"""

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError
from thefuzz import fuzz, process

from errors import ConflictError, GradedeskError, NotFoundError, ValidationError
from helpers import class_number
from models import ClassModel, CourseAssignmentModel, SchoolModel, SubjectModel, TeacherModel, db

SUGGESTION_CUTOFF = 60


def _get_school(school_id):
    school = db.session.get(SchoolModel, school_id)
    if not school:
        raise NotFoundError("School not found")
    return school


def _get_class(class_id):
    c = db.session.get(ClassModel, class_id)
    if not c:
        raise NotFoundError("Class not found")
    return c


def suggest_teachers(name, teachers, limit=3):
    names = [t.name for t in teachers]
    if not names:
        return []
    matches = process.extract(name, names, scorer=fuzz.token_set_ratio, limit=limit)
    return [match for match, score in matches if score >= SUGGESTION_CUTOFF]


def find_teacher(school_id, teacher_name):
    """Exact (stripped) name match within the school."""
    name = teacher_name.strip()
    teachers = TeacherModel.query.filter_by(school_id=school_id).all()
    for t in teachers:
        if t.name == name:
            return t
    raise NotFoundError(
        "Teacher '{}' does not exist; ask the system administrator to add them".format(name),
        payload={"suggestions": suggest_teachers(name, teachers)},
    )


def list_teachers(school_id):
    _get_school(school_id)
    teachers = TeacherModel.query.filter_by(school_id=school_id).order_by(TeacherModel.name).all()
    return [{"id": t.id, "name": t.name, "employee_number": t.employee_number} for t in teachers]


def add_teacher(school_id, name, employee_number=None):
    _get_school(school_id)
    name = (name or "").strip()
    if not name:
        raise ValidationError("Teacher name is required")
    existing = TeacherModel.query.filter_by(school_id=school_id, name=name).first()
    if existing:
        raise ConflictError("Teacher '{}' already exists in this school.".format(name),
                            payload={"teacher": {"id": existing.id, "name": existing.name}})
    t = TeacherModel(school_id=school_id, name=name, employee_number=(employee_number or "").strip() or None)
    try:
        db.session.add(t)
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        raise GradedeskError("Failed to save teacher: {}".format(e))
    current_app.logger.info("Added teacher {} to school {}".format(name, school_id))
    return {"id": t.id, "name": t.name, "employee_number": t.employee_number}


def class_roster(school_id, academic_year, grade_level=None):
    """Classes with their homeroom teacher and per-subject course teachers."""
    _get_school(school_id)
    if not academic_year:
        raise ValidationError("academic_year is required")

    query = ClassModel.query.filter_by(school_id=school_id)
    if grade_level and grade_level != "all":
        query = query.filter_by(grade_level=grade_level)
    classes = query.all()

    subjects = SubjectModel.query.order_by(SubjectModel.id).all()
    class_ids = [c.id for c in classes]
    assignments = {}
    for a in (CourseAssignmentModel.query
              .filter(CourseAssignmentModel.class_id.in_(class_ids))
              .filter_by(academic_year=academic_year).all()):
        assignments[(a.class_id, a.subject_id)] = a.teacher.name if a.teacher else ""

    roster = []
    for c in sorted(classes, key=lambda c: class_number(c.name, 999)):
        roster.append({
            "id": c.id,
            "name": c.name,
            "grade_level": c.grade_level,
            "homeroom_teacher_name": c.homeroom_teacher.name if c.homeroom_teacher else "",
            "course_assignments": [{
                "subject_id": s.id,
                "subject_name": s.name,
                "teacher_name": assignments.get((c.id, s.id), ""),
            } for s in subjects],
        })
    return roster


def set_homeroom_teacher(class_id, teacher_name):
    c = _get_class(class_id)
    if not (teacher_name or "").strip():
        raise ValidationError("Homeroom teacher name cannot be empty")
    teacher = find_teacher(c.school_id, teacher_name)
    try:
        c.homeroom_teacher_id = teacher.id
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        raise GradedeskError("Failed to save homeroom teacher: {}".format(e))
    current_app.logger.info("Class {} homeroom teacher set to {}".format(c.name, teacher.name))
    return {"class_id": c.id, "homeroom_teacher_name": teacher.name}


def set_course_teacher(class_id, subject_id, academic_year, teacher_name):
    """Assign a subject teacher; a blank name clears the assignment."""
    c = _get_class(class_id)
    subject = db.session.get(SubjectModel, subject_id)
    if not subject:
        raise NotFoundError("Subject not found")
    if not academic_year:
        raise ValidationError("academic_year is required")

    existing = CourseAssignmentModel.query.filter_by(
        class_id=class_id, subject_id=subject_id, academic_year=academic_year).first()

    if not (teacher_name or "").strip():
        if existing:
            db.session.delete(existing)
            db.session.commit()
        current_app.logger.info("Cleared {} teacher of class {}".format(subject.name, c.name))
        return {"class_id": c.id, "subject_id": subject.id, "subject_name": subject.name, "teacher_name": ""}

    teacher = find_teacher(c.school_id, teacher_name)
    try:
        if existing:
            existing.teacher_id = teacher.id
        else:
            db.session.add(CourseAssignmentModel(class_id=class_id, subject_id=subject_id,
                                                 teacher_id=teacher.id, academic_year=academic_year))
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        raise GradedeskError("Failed to save course teacher: {}".format(e))

    current_app.logger.info("Class {} {} teacher set to {}".format(c.name, subject.name, teacher.name))
    return {"class_id": c.id, "subject_id": subject.id, "subject_name": subject.name, "teacher_name": teacher.name}
