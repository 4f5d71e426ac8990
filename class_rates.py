"""
Class rates analysis (一分三率)

For one school and one assessment: per class the average score and the
excellent / pass / poor rates, either on the total score or on one subject.
"""

from collections import OrderedDict

from assessment_config import get_assessment, subject_thresholds
from config import TOTAL_SUBJECT, TOTAL_SUBJECT_KEY, UNASSIGNED_TEACHER
from errors import NotFoundError, ValidationError
from helpers import assessment_label, class_number, percent, round2
from models import ClassModel, SchoolModel, ScoreModel, StudentModel, SubjectModel, TeacherModel, db


def _resolve_subject(subject, subjects):
    if subject in (None, "", TOTAL_SUBJECT_KEY):
        return None
    try:
        subject_id = int(subject)
    except (TypeError, ValueError):
        raise ValidationError("subject must be 'total' or a subject id")
    if subject_id not in {s.id for s in subjects}:
        raise ValidationError("Unknown subject: {}".format(subject_id))
    return subject_id


def class_rates(school_id, assessment_id, subject=TOTAL_SUBJECT_KEY):
    school = db.session.get(SchoolModel, school_id)
    if not school:
        raise NotFoundError("School not found")
    assessment = get_assessment(assessment_id)

    subjects = SubjectModel.query.order_by(SubjectModel.id).all()
    subject_id = _resolve_subject(subject, subjects)
    is_total = subject_id is None

    classes = {c.id: c for c in ClassModel.query.filter_by(school_id=school_id).all()}
    teacher_ids = [c.homeroom_teacher_id for c in classes.values() if c.homeroom_teacher_id]
    teachers = {t.id: t.name for t in TeacherModel.query.filter(TeacherModel.id.in_(teacher_ids)).all()}
    students = {s.id: s for s in StudentModel.query.filter(StudentModel.class_id.in_(list(classes))).all()}

    # student_id -> {subject_id: score}, only students of this school
    student_scores = OrderedDict()
    for score in ScoreModel.query.filter_by(assessment_id=assessment_id).order_by(ScoreModel.id).all():
        if score.student_id not in students:
            continue
        student_scores.setdefault(score.student_id, {})[score.subject_id] = score.score_value

    thresholds = subject_thresholds(assessment_id)
    if is_total:
        current = thresholds or None
        excellent_line = sum(t.excellent for t in thresholds.values())
        pass_line = sum(t.passing for t in thresholds.values())
        poor_line = sum(t.poor for t in thresholds.values())
    else:
        current = thresholds.get(subject_id)

    by_class = OrderedDict()
    for student_id, scores in student_scores.items():
        by_class.setdefault(students[student_id].class_id, []).append(student_id)

    results = []
    for class_id, student_ids in by_class.items():
        c = classes[class_id]
        total_sum = 0
        excellent_count = pass_count = poor_count = 0
        excellent_students = []

        for student_id in student_ids:
            scores = student_scores[student_id]
            if is_total:
                score = sum(scores.values())
                is_excellent = current is not None and score >= excellent_line
                is_pass = current is not None and score >= pass_line
                is_poor = current is not None and score < poor_line
            else:
                score = scores.get(subject_id, 0)
                # Unconfigured subject: no student reaches any line
                is_excellent = current is not None and score >= current.excellent
                is_pass = current is not None and score >= current.passing
                is_poor = current is not None and score < current.poor

            total_sum += score
            if is_excellent:
                excellent_count += 1
                excellent_students.append({
                    "student_id": student_id,
                    "student_name": students[student_id].name,
                    "scores": [{
                        "subject_name": s.name,
                        "score": scores.get(s.id, 0),
                        "is_current_subject": not is_total and s.id == subject_id,
                    } for s in subjects],
                })
            if is_pass:
                pass_count += 1
            if is_poor:
                poor_count += 1

        count = len(student_ids)
        teacher_name = teachers.get(c.homeroom_teacher_id) if c.homeroom_teacher_id else None
        results.append({
            "class_id": class_id,
            "class_name": c.name,
            "homeroom_teacher": teacher_name or UNASSIGNED_TEACHER,
            "student_count": count,
            "average_score": round2(total_sum / count),
            "excellent_rate": percent(excellent_count, count),
            "excellent_count": excellent_count,
            "excellent_students": excellent_students,
            "pass_rate": percent(pass_count, count),
            "poor_rate": percent(poor_count, count),
        })

    results.sort(key=lambda row: class_number(row["class_name"], 0))

    subject_name = TOTAL_SUBJECT if is_total else next(s.name for s in subjects if s.id == subject_id)
    return {
        "school": {"id": school.id, "name": school.name},
        "assessment": {"id": assessment.id, "label": assessment_label(assessment)},
        "subject": TOTAL_SUBJECT_KEY if is_total else subject_id,
        "subject_name": subject_name,
        "classes": results,
    }
