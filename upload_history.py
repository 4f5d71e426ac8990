from collections import OrderedDict

from flask import current_app
from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError

from errors import GradedeskError, NotFoundError, ValidationError
from models import AssessmentModel, AssessmentSubjectModel, ScoreModel, db


def exam_history():
    """Uploaded exams, one entry per (year, grade, month, type) across schools, newest first."""
    assessments = AssessmentModel.query.order_by(AssessmentModel.created_at.desc(), AssessmentModel.id.desc()).all()

    exams = OrderedDict()
    for a in assessments:
        key = (a.academic_year, a.grade_level, a.month, a.type)
        exam = exams.get(key)
        if exam is None:
            exam = exams[key] = {
                "academic_year": a.academic_year,
                "grade_level": a.grade_level,
                "month": a.month,
                "type": a.type,
                "assessment_ids": [],
                "school_names": [],
                "created_at": a.created_at,
            }
        exam["assessment_ids"].append(a.id)
        if a.school and a.school.name not in exam["school_names"]:
            exam["school_names"].append(a.school.name)
        # Keep the earliest upload time of the exam
        if a.created_at < exam["created_at"]:
            exam["created_at"] = a.created_at

    records = []
    for exam in exams.values():
        ids = exam["assessment_ids"]
        score_count = ScoreModel.query.filter(ScoreModel.assessment_id.in_(ids)).count()
        student_count = (db.session.query(func.count(func.distinct(ScoreModel.student_id)))
                         .filter(ScoreModel.assessment_id.in_(ids)).scalar())
        exam.update({
            "school_count": len(exam["school_names"]),
            "student_count": student_count or 0,
            "score_count": score_count,
        })
        records.append(exam)

    records.sort(key=lambda r: r["created_at"], reverse=True)
    for r in records:
        r["created_at"] = r["created_at"].isoformat()
    return records


def delete_exam(assessment_ids):
    """Remove the exam's subject configs, scores and assessments in one transaction."""
    if not assessment_ids:
        raise ValidationError("assessment_ids is required")
    found = AssessmentModel.query.filter(AssessmentModel.id.in_(assessment_ids)).count()
    if not found:
        raise NotFoundError("Assessment not found")

    try:
        configs = (AssessmentSubjectModel.query
                   .filter(AssessmentSubjectModel.assessment_id.in_(assessment_ids))
                   .delete(synchronize_session=False))
        scores = (ScoreModel.query
                  .filter(ScoreModel.assessment_id.in_(assessment_ids))
                  .delete(synchronize_session=False))
        assessments = (AssessmentModel.query
                       .filter(AssessmentModel.id.in_(assessment_ids))
                       .delete(synchronize_session=False))
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        current_app.logger.exception("Deleting exam failed")
        raise GradedeskError("Failed to delete exam: {}".format(e))

    current_app.logger.info("Deleted assessments {} ({} scores, {} subject configs)".format(
        sorted(assessment_ids), scores, configs))
    return {"assessments": assessments, "scores": scores, "subject_configs": configs}
