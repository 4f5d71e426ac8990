import logging
import sys

from app import app, AssessmentModel
from errors import GradedeskError
from upload_history import delete_exam

logging.basicConfig(level=logging.INFO)

USAGE = "Usage: python remove_exam.py ACADEMIC_YEAR GRADE_LEVEL MONTH TYPE"


def main(argv):
    if len(argv) != 4:
        print(USAGE)
        return 2
    academic_year, grade_level, month, exam_type = argv
    try:
        month = int(month)
    except ValueError:
        print(USAGE)
        return 2

    with app.app_context():
        assessments = AssessmentModel.query.filter_by(
            academic_year=academic_year, grade_level=grade_level, month=month, type=exam_type).all()
        if not assessments:
            logging.info("No exam found for {} {} {}月 {}".format(academic_year, grade_level, month, exam_type))
            return 1

        for a in assessments:
            logging.info("Deleting assessment {} of school {}".format(a.id, a.school.name if a.school else a.school_id))
        try:
            deleted = delete_exam([a.id for a in assessments])
        except GradedeskError as e:
            logging.error(e.message)
            return 1

    logging.info("Finished. Deleted {assessments} assessments, {scores} scores, "
                 "{subject_configs} subject configs.".format(**deleted))
    return 0


if __name__ == '__main__':
    sys.exit(main(sys.argv[1:]))
