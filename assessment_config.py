"""Per-assessment subject configuration: full score and the three rate lines."""

from dataclasses import dataclass

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from config import DEFAULT_THRESHOLDS
from errors import GradedeskError, NotFoundError, ValidationError
from helpers import require_int
from models import AssessmentModel, AssessmentSubjectModel, SubjectModel, db

FIELDS = ('full_score', 'excellent_threshold', 'pass_threshold', 'poor_threshold')


@dataclass
class Thresholds:
    """Absolute score lines derived from a subject's percentage config."""
    full_score: float
    excellent: float
    passing: float
    poor: float

    @classmethod
    def from_config(cls, config):
        full = config['full_score']
        return cls(
            full_score=full,
            excellent=full * config['excellent_threshold'] / 100,
            passing=full * config['pass_threshold'] / 100,
            poor=full * config['poor_threshold'] / 100,
        )


def _with_defaults(row):
    config = {}
    for name in FIELDS:
        value = getattr(row, name) if row is not None else None
        config[name] = DEFAULT_THRESHOLDS[name] if value is None else value
    # A zero full score cannot scale the percentage lines
    if not config['full_score']:
        config['full_score'] = DEFAULT_THRESHOLDS['full_score']
    return config


def get_assessment(assessment_id):
    assessment = db.session.get(AssessmentModel, assessment_id)
    if not assessment:
        raise NotFoundError("Assessment not found")
    return assessment


def configured_subjects(assessment_id):
    """{subject_id: config dict} for subjects with a stored row."""
    rows = AssessmentSubjectModel.query.filter_by(assessment_id=assessment_id).all()
    return {row.subject_id: _with_defaults(row) for row in rows}


def subject_thresholds(assessment_id):
    return {subject_id: Thresholds.from_config(config)
            for subject_id, config in configured_subjects(assessment_id).items()}


def get_assessment_config(assessment_id):
    get_assessment(assessment_id)
    stored = {row.subject_id: row for row in
              AssessmentSubjectModel.query.filter_by(assessment_id=assessment_id).all()}
    configs = []
    for subject in SubjectModel.query.order_by(SubjectModel.id).all():
        row = stored.get(subject.id)
        entry = {"subject_id": subject.id, "subject_name": subject.name, "configured": row is not None}
        entry.update(_with_defaults(row))
        configs.append(entry)
    return configs


def _validate(entry):
    try:
        values = {name: float(entry.get(name, DEFAULT_THRESHOLDS[name])) for name in FIELDS}
    except (TypeError, ValueError):
        raise ValidationError("Thresholds must be numbers")
    if values['full_score'] <= 0:
        raise ValidationError("full_score must be greater than 0")
    if not 0 <= values['poor_threshold'] <= values['pass_threshold'] <= values['excellent_threshold'] <= 100:
        raise ValidationError("Thresholds must satisfy 0 <= poor <= pass <= excellent <= 100")
    return values


def save_assessment_config(assessment_id, configs):
    """Upsert subject configs; each entry carries subject_id plus the four fields."""
    get_assessment(assessment_id)
    if not configs:
        raise ValidationError("No subject configuration provided")

    subject_ids = {s.id for s in SubjectModel.query.all()}
    existing = {row.subject_id: row for row in
                AssessmentSubjectModel.query.filter_by(assessment_id=assessment_id).all()}
    try:
        for entry in configs:
            subject_id = require_int(entry.get('subject_id'), 'subject_id')
            if subject_id not in subject_ids:
                raise ValidationError("Unknown subject: {}".format(subject_id))
            values = _validate(entry)
            row = existing.get(subject_id)
            if row is None:
                row = AssessmentSubjectModel(assessment_id=assessment_id, subject_id=subject_id)
                db.session.add(row)
                existing[subject_id] = row
            for name, value in values.items():
                setattr(row, name, value)
        db.session.commit()
    except ValidationError:
        db.session.rollback()
        raise
    except SQLAlchemyError as e:
        db.session.rollback()
        current_app.logger.exception("Saving assessment config failed")
        raise GradedeskError("Failed to save configuration: {}".format(e))

    current_app.logger.info("Saved {} subject configs for assessment {}".format(len(configs), assessment_id))
    return get_assessment_config(assessment_id)
