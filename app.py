import os
import time

from dotenv import load_dotenv
from flask import Flask, jsonify, make_response, render_template, request, send_file
from flask_cors import CORS
from sqlalchemy import func
from werkzeug.exceptions import HTTPException

# Load environment variables before config reads them
load_dotenv()

import config
from assessment_config import get_assessment, get_assessment_config, save_assessment_config
from class_rates import class_rates
from distribution import distribution_report
from errors import GradedeskError, ValidationError
from excel_export import XLSX_MIMETYPE, class_rates_rows, export_to_excel, score_sheet_rows
from excel_import import UploadMetadata, import_score_file
from helpers import assessment_label, parse_id_list, parse_name_list, require_int, safe_filename
from maintenance import add_teacher, class_roster, list_teachers, set_course_teacher, set_homeroom_teacher
from models import AssessmentModel, ClassModel, SchoolModel, ScoreModel, StudentModel, SubjectModel, db
from rankings import (class_ranking, class_subject_averages, class_total_averages, school_ranking,
                      school_subject_averages)
from upload_history import delete_exam, exam_history

# Initialize Flask App
app = Flask(__name__)
CORS(app)
app.config['MAX_CONTENT_LENGTH'] = config.MAX_UPLOAD_MB * 1024 * 1024
app.config['SECRET_KEY'] = config.SECRET_KEY

# Configure Database
app.config['SQLALCHEMY_DATABASE_URI'] = config.database_url()
app.config['SQLALCHEMY_TRACK_MODIFICATIONS'] = False
db.init_app(app)

with app.app_context():
    db.create_all()


@app.errorhandler(GradedeskError)
def handle_gradedesk_error(e):
    if e.status_code >= 500:
        app.logger.error("Request failed: {}".format(e.message))
    return jsonify(e.to_dict()), e.status_code


@app.errorhandler(413)
def handle_too_large(e):
    return jsonify({"error": "File exceeds the {} MB upload limit".format(config.MAX_UPLOAD_MB)}), 413


@app.errorhandler(Exception)
def handle_unexpected_error(e):
    if isinstance(e, HTTPException):
        return jsonify({"error": e.description}), e.code
    app.logger.exception("Unhandled error: {}".format(e))
    db.session.rollback()
    return jsonify({"error": str(e)}), 500


def _json_body():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def _assessment_ids_arg():
    return parse_id_list(request.args.get('assessment_ids'), 'assessment_ids')


def _xlsx_response(buffer, filename):
    response = make_response(send_file(
        buffer,
        as_attachment=True,
        download_name="{}.xlsx".format(safe_filename(filename)),
        mimetype=XLSX_MIMETYPE,
    ))
    response.headers["Cache-Control"] = "no-cache, no-store, must-revalidate"
    return response


@app.route('/health')
def health_check():
    return jsonify({"status": "ok"}), 200


def overview_counts():
    return {
        "schools": SchoolModel.query.count(),
        "classes": ClassModel.query.count(),
        "students": StudentModel.query.count(),
        "exams": db.session.query(AssessmentModel.academic_year, AssessmentModel.grade_level,
                                  AssessmentModel.month, AssessmentModel.type).distinct().count(),
        "scores": ScoreModel.query.count(),
    }


@app.route('/')
def index():
    response = make_response(render_template(
        'index.html', v=int(time.time()), counts=overview_counts(), exams=exam_history()[:10]))
    response.headers["Cache-Control"] = "no-cache, no-store, must-revalidate"
    response.headers["Pragma"] = "no-cache"
    response.headers["Expires"] = "0"
    return response


@app.route('/api/overview', methods=['GET'])
def overview():
    return jsonify(overview_counts()), 200


# =============================================================================
# LOOKUPS
# =============================================================================

@app.route('/api/schools', methods=['GET'])
def list_schools():
    schools = SchoolModel.query.order_by(SchoolModel.name).all()
    return jsonify([{"id": s.id, "name": s.name, "address": s.address} for s in schools]), 200


@app.route('/api/subjects', methods=['GET'])
def list_subjects():
    subjects = SubjectModel.query.order_by(SubjectModel.id).all()
    return jsonify([{"id": s.id, "name": s.name} for s in subjects]), 200


@app.route('/api/options', methods=['GET'])
def upload_options():
    return jsonify({"academic_years": config.ACADEMIC_YEARS, "grade_levels": config.GRADE_LEVELS}), 200


@app.route('/api/assessments', methods=['GET'])
def list_assessments():
    school_id = require_int(request.args.get('school_id'), 'school_id')
    assessments = (AssessmentModel.query.filter_by(school_id=school_id)
                   .order_by(AssessmentModel.academic_year.desc(), AssessmentModel.month.desc(),
                             AssessmentModel.id.desc())
                   .all())
    return jsonify([{
        "id": a.id,
        "academic_year": a.academic_year,
        "grade_level": a.grade_level,
        "month": a.month,
        "type": a.type,
        "label": assessment_label(a),
    } for a in assessments]), 200


@app.route('/api/classes', methods=['GET'])
def list_classes():
    school_id = require_int(request.args.get('school_id'), 'school_id')
    classes = ClassModel.query.filter_by(school_id=school_id).order_by(ClassModel.name).all()
    counts = dict(db.session.query(StudentModel.class_id, func.count(StudentModel.id))
                  .filter(StudentModel.class_id.in_([c.id for c in classes]))
                  .group_by(StudentModel.class_id).all())
    return jsonify([{
        "id": c.id,
        "name": c.name,
        "academic_year": c.academic_year,
        "grade_level": c.grade_level,
        "student_count": counts.get(c.id, 0),
    } for c in classes]), 200


@app.route('/api/teachers', methods=['GET', 'POST'])
def handle_teachers():
    if request.method == 'GET':
        school_id = require_int(request.args.get('school_id'), 'school_id')
        return jsonify(list_teachers(school_id)), 200

    data = _json_body()
    teacher = add_teacher(require_int(data.get('school_id'), 'school_id'),
                          data.get('name'), data.get('employee_number'))
    return jsonify({"message": "Teacher '{}' added.".format(teacher['name']), "teacher": teacher}), 201


# =============================================================================
# UPLOAD
# =============================================================================

@app.route('/api/upload-scores', methods=['POST'])
def upload_scores():
    file = request.files.get('file')
    if not file or not file.filename:
        return jsonify({"error": "No file provided"}), 400

    metadata = UploadMetadata.from_form(request.form)
    summary = import_score_file(file, file.filename, metadata)
    return jsonify({
        "success": True,
        "message": "Imported {} scores for {} students.".format(summary.record_count, summary.student_count),
        "summary": summary.to_dict(),
    }), 200


@app.route('/api/upload-history', methods=['GET'])
def upload_history():
    return jsonify(exam_history()), 200


@app.route('/api/exams', methods=['DELETE'])
def handle_exam_delete():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        data = {}
    ids = parse_id_list(data.get('assessment_ids', request.args.get('assessment_ids')), 'assessment_ids')
    deleted = delete_exam(ids)
    return jsonify({"success": True, "deleted": deleted}), 200


# =============================================================================
# ASSESSMENT CONFIGURATION
# =============================================================================

@app.route('/api/assessments/<int:assessment_id>/config', methods=['GET', 'PUT'])
def handle_assessment_config(assessment_id):
    if request.method == 'GET':
        return jsonify(get_assessment_config(assessment_id)), 200

    data = request.get_json(silent=True)
    configs = data.get('configs') if isinstance(data, dict) else data
    if not isinstance(configs, list):
        raise ValidationError("configs must be a list")
    return jsonify(save_assessment_config(assessment_id, configs)), 200


# =============================================================================
# REPORTS
# =============================================================================

@app.route('/api/reports/class-rates', methods=['GET'])
def report_class_rates():
    report = class_rates(require_int(request.args.get('school_id'), 'school_id'),
                         require_int(request.args.get('assessment_id'), 'assessment_id'),
                         request.args.get('subject', config.TOTAL_SUBJECT_KEY))
    return jsonify(report), 200


@app.route('/api/reports/school-ranking', methods=['GET'])
def report_school_ranking():
    report = school_ranking(require_int(request.args.get('school_id'), 'school_id'),
                            require_int(request.args.get('assessment_id'), 'assessment_id'),
                            parse_name_list(request.args.get('subjects')),
                            request.args.get('sort', 'avgDesc'))
    return jsonify(report), 200


@app.route('/api/reports/class-ranking', methods=['GET'])
def report_class_ranking():
    report = class_ranking(require_int(request.args.get('assessment_id'), 'assessment_id'),
                           parse_name_list(request.args.get('subjects')),
                           request.args.get('sort', 'avgDesc'))
    return jsonify(report), 200


@app.route('/api/reports/class-subject-averages', methods=['GET'])
def report_class_subject_averages():
    return jsonify(class_subject_averages(_assessment_ids_arg())), 200


@app.route('/api/reports/class-total-averages', methods=['GET'])
def report_class_total_averages():
    return jsonify(class_total_averages(_assessment_ids_arg())), 200


@app.route('/api/reports/school-subject-averages', methods=['GET'])
def report_school_subject_averages():
    return jsonify(school_subject_averages(_assessment_ids_arg())), 200


@app.route('/api/reports/score-distribution', methods=['GET'])
def report_score_distribution():
    class_id = request.args.get('class_id')
    report = distribution_report(
        require_int(request.args.get('assessment_id'), 'assessment_id'),
        parse_id_list(request.args.get('subject_ids'), 'subject_ids'),
        require_int(class_id, 'class_id') if class_id not in (None, '', 'all') else None,
        request.args.get('sort', 'avgDesc'),
    )
    return jsonify(report), 200


# =============================================================================
# MAINTENANCE
# =============================================================================

@app.route('/api/maintenance/classes', methods=['GET'])
def maintenance_classes():
    roster = class_roster(require_int(request.args.get('school_id'), 'school_id'),
                          request.args.get('academic_year'),
                          request.args.get('grade_level'))
    return jsonify(roster), 200


@app.route('/api/maintenance/classes/<int:class_id>/homeroom', methods=['PUT'])
def update_homeroom(class_id):
    data = _json_body()
    result = set_homeroom_teacher(class_id, data.get('teacher_name'))
    return jsonify({"success": True, "message": "Homeroom teacher updated.", **result}), 200


@app.route('/api/maintenance/classes/<int:class_id>/courses/<int:subject_id>', methods=['PUT'])
def update_course_teacher(class_id, subject_id):
    data = _json_body()
    result = set_course_teacher(class_id, subject_id, data.get('academic_year'), data.get('teacher_name'))
    return jsonify({"success": True, "message": "Course teacher updated.", **result}), 200


# =============================================================================
# EXPORTS
# =============================================================================

@app.route('/api/export/scores', methods=['GET'])
def export_scores():
    assessment = get_assessment(require_int(request.args.get('assessment_id'), 'assessment_id'))
    label = "{} {}".format(assessment.grade_level, assessment_label(assessment))
    buffer = export_to_excel(score_sheet_rows(assessment.id), sheet_name="成绩", title=label)
    return _xlsx_response(buffer, "{}_成绩".format(label))


@app.route('/api/export/class-rates', methods=['GET'])
def export_class_rates():
    report = class_rates(require_int(request.args.get('school_id'), 'school_id'),
                         require_int(request.args.get('assessment_id'), 'assessment_id'),
                         request.args.get('subject', config.TOTAL_SUBJECT_KEY))
    title = "{} {} {} 一分三率".format(report['school']['name'], report['assessment']['label'], report['subject_name'])
    buffer = export_to_excel(class_rates_rows(report), sheet_name="一分三率", title=title)
    return _xlsx_response(buffer, title)


if __name__ == '__main__':
    # Make sure templates folder exists
    os.makedirs('templates', exist_ok=True)
    # Run server
    app.run(debug=True, host='0.0.0.0', port=int(os.getenv("PORT", "5000")))
