from datetime import datetime, timezone

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()


def _utcnow():
    return datetime.now(timezone.utc).replace(tzinfo=None)


class SchoolModel(db.Model):
    __tablename__ = 'schools'
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), unique=True, nullable=False)
    address = db.Column(db.String(300))
    created_at = db.Column(db.DateTime, default=_utcnow, nullable=False)


class AssessmentModel(db.Model):
    __tablename__ = 'assessments'
    __table_args__ = (
        db.UniqueConstraint('school_id', 'academic_year', 'grade_level', 'month', 'type',
                            name='uq_assessment_exam'),
    )
    id = db.Column(db.Integer, primary_key=True)
    school_id = db.Column(db.Integer, db.ForeignKey('schools.id'), nullable=False)
    academic_year = db.Column(db.String(20), nullable=False)
    grade_level = db.Column(db.String(50), nullable=False)
    month = db.Column(db.Integer, nullable=False)
    type = db.Column(db.String(50), nullable=False)
    created_at = db.Column(db.DateTime, default=_utcnow, nullable=False)
    school = db.relationship('SchoolModel', lazy=True)


class TeacherModel(db.Model):
    __tablename__ = 'teachers'
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    employee_number = db.Column(db.String(50))
    school_id = db.Column(db.Integer, db.ForeignKey('schools.id'), nullable=False)
    created_at = db.Column(db.DateTime, default=_utcnow, nullable=False)


class ClassModel(db.Model):
    __tablename__ = 'classes'
    __table_args__ = (
        db.UniqueConstraint('school_id', 'academic_year', 'grade_level', 'name',
                            name='uq_class_name'),
    )
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    school_id = db.Column(db.Integer, db.ForeignKey('schools.id'), nullable=False)
    academic_year = db.Column(db.String(20))
    grade_level = db.Column(db.String(50), nullable=False)
    homeroom_teacher_id = db.Column(db.Integer, db.ForeignKey('teachers.id'))
    created_at = db.Column(db.DateTime, default=_utcnow, nullable=False)
    homeroom_teacher = db.relationship('TeacherModel', lazy=True)


class SubjectModel(db.Model):
    __tablename__ = 'subjects'
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), unique=True, nullable=False)
    created_at = db.Column(db.DateTime, default=_utcnow, nullable=False)


class StudentModel(db.Model):
    __tablename__ = 'students'
    __table_args__ = (
        db.UniqueConstraint('student_number', 'class_id', name='uq_student_number'),
    )
    id = db.Column(db.Integer, primary_key=True)
    student_number = db.Column(db.String(50), nullable=False)
    name = db.Column(db.String(150), nullable=False)
    class_id = db.Column(db.Integer, db.ForeignKey('classes.id'), nullable=False)
    created_at = db.Column(db.DateTime, default=_utcnow, nullable=False)


class CourseAssignmentModel(db.Model):
    __tablename__ = 'course_assignments'
    __table_args__ = (
        db.UniqueConstraint('class_id', 'subject_id', 'academic_year', name='uq_course_assignment'),
    )
    id = db.Column(db.Integer, primary_key=True)
    class_id = db.Column(db.Integer, db.ForeignKey('classes.id'), nullable=False)
    subject_id = db.Column(db.Integer, db.ForeignKey('subjects.id'), nullable=False)
    teacher_id = db.Column(db.Integer, db.ForeignKey('teachers.id'), nullable=False)
    academic_year = db.Column(db.String(20), nullable=False)
    created_at = db.Column(db.DateTime, default=_utcnow, nullable=False)
    teacher = db.relationship('TeacherModel', lazy=True)


class ScoreModel(db.Model):
    __tablename__ = 'individual_scores'
    __table_args__ = (
        db.UniqueConstraint('assessment_id', 'student_id', 'subject_id', name='uq_individual_score'),
    )
    id = db.Column(db.Integer, primary_key=True)
    assessment_id = db.Column(db.Integer, db.ForeignKey('assessments.id'), nullable=False)
    student_id = db.Column(db.Integer, db.ForeignKey('students.id'), nullable=False)
    subject_id = db.Column(db.Integer, db.ForeignKey('subjects.id'), nullable=False)
    score_value = db.Column(db.Float, nullable=False)
    created_at = db.Column(db.DateTime, default=_utcnow, nullable=False)


class AssessmentSubjectModel(db.Model):
    __tablename__ = 'assessment_subjects'
    __table_args__ = (
        db.UniqueConstraint('assessment_id', 'subject_id', name='uq_assessment_subject'),
    )
    id = db.Column(db.Integer, primary_key=True)
    assessment_id = db.Column(db.Integer, db.ForeignKey('assessments.id'), nullable=False)
    subject_id = db.Column(db.Integer, db.ForeignKey('subjects.id'), nullable=False)
    full_score = db.Column(db.Float)
    excellent_threshold = db.Column(db.Float)
    pass_threshold = db.Column(db.Float)
    poor_threshold = db.Column(db.Float)
