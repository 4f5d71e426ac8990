"""
Subject averages and ranking analyses

The *_averages functions aggregate individual scores of one or more
assessments; ranks are competition ranks (1, 1, 3) on the average, highest
first. The analyses build the school and class ranking views on top of them.
"""

import pandas as pd

from assessment_config import get_assessment
from config import (CLASS_MEDIUM_RANK_DIFF, CLASS_POOR_RANK_DIFF, SCHOOL_POOR_DIFF, SORT_OPTIONS)
from errors import NotFoundError, ValidationError
from helpers import assessment_label, round2, round_half_up
from models import AssessmentModel, ClassModel, SchoolModel, ScoreModel, StudentModel, SubjectModel, db

SCORE_COLUMNS = ['student_id', 'score', 'class_id', 'class_name', 'school_id', 'school_name',
                 'subject_id', 'subject_name']

STATUS_ORDER = {'poor': 0, 'medium': 1, 'excellent': 2}


def load_scores(assessment_ids):
    """One row per individual score of the given assessments."""
    if not assessment_ids:
        raise ValidationError("assessment_ids is required and must be a non-empty list")
    rows = (db.session.query(
                ScoreModel.student_id, ScoreModel.score_value,
                ClassModel.id, ClassModel.name,
                SchoolModel.id, SchoolModel.name,
                SubjectModel.id, SubjectModel.name)
            .join(StudentModel, StudentModel.id == ScoreModel.student_id)
            .join(ClassModel, ClassModel.id == StudentModel.class_id)
            .join(SchoolModel, SchoolModel.id == ClassModel.school_id)
            .join(SubjectModel, SubjectModel.id == ScoreModel.subject_id)
            .filter(ScoreModel.assessment_id.in_(assessment_ids))
            .all())
    return pd.DataFrame([tuple(r) for r in rows], columns=SCORE_COLUMNS)


def _rank(frame, by, value):
    return frame.groupby(by)[value].rank(method='min', ascending=False).astype(int)


def class_subject_averages(assessment_ids):
    df = load_scores(assessment_ids)
    if df.empty:
        return []
    keys = ['school_name', 'class_id', 'class_name', 'subject_id', 'subject_name']
    averages = df.groupby(keys, as_index=False)['score'].mean()
    averages['rank'] = _rank(averages, 'subject_id', 'score')
    averages = averages.sort_values(['subject_id', 'rank', 'class_id'])
    return [{
        "school_name": row.school_name,
        "class_id": int(row.class_id),
        "class_name": row.class_name,
        "subject_id": int(row.subject_id),
        "subject_name": row.subject_name,
        "average_score": round2(row.score),
        "rank_in_subject": int(row.rank),
    } for row in averages.itertuples(index=False)]


def class_total_averages(assessment_ids):
    df = load_scores(assessment_ids)
    if df.empty:
        return []
    totals = df.groupby(['school_name', 'class_id', 'class_name', 'student_id'], as_index=False)['score'].sum()
    averages = (totals.groupby(['school_name', 'class_id', 'class_name'], as_index=False)
                .agg(average_total=('score', 'mean'), student_count=('student_id', 'nunique')))
    averages['rank'] = averages['average_total'].rank(method='min', ascending=False).astype(int)
    averages = averages.sort_values(['rank', 'class_id'])
    return [{
        "school_name": row.school_name,
        "class_id": int(row.class_id),
        "class_name": row.class_name,
        "student_count": int(row.student_count),
        "average_total_score": round2(row.average_total),
        "rank": int(row.rank),
    } for row in averages.itertuples(index=False)]


def _school_subject_frame(assessment_ids):
    """Unrounded per-school subject means with the grade mean and school count alongside."""
    df = load_scores(assessment_ids)
    if df.empty:
        return df
    averages = df.groupby(['school_id', 'school_name', 'subject_id', 'subject_name'], as_index=False)['score'].mean()
    averages['rank'] = _rank(averages, 'subject_id', 'score')
    averages['grade_average'] = averages['subject_id'].map(df.groupby('subject_id')['score'].mean())
    averages['total_schools'] = averages['subject_id'].map(averages.groupby('subject_id')['school_id'].nunique())
    return averages.sort_values(['subject_id', 'rank', 'school_id'])


def school_subject_averages(assessment_ids):
    return [{
        "school_id": int(row.school_id),
        "school_name": row.school_name,
        "subject_id": int(row.subject_id),
        "subject_name": row.subject_name,
        "average_score": round2(row.score),
        "rank_in_subject": int(row.rank),
        "grade_average": round2(row.grade_average),
        "total_schools": int(row.total_schools),
    } for row in _school_subject_frame(assessment_ids).itertuples(index=False)]


def matching_assessment_ids(assessment):
    """All schools' assessments for the same exam (year, grade, month, type)."""
    matches = AssessmentModel.query.filter_by(
        academic_year=assessment.academic_year,
        grade_level=assessment.grade_level,
        month=assessment.month,
        type=assessment.type,
    ).order_by(AssessmentModel.id).all()
    return [a.id for a in matches] or [assessment.id]


def _check_sort(sort):
    if sort not in SORT_OPTIONS:
        raise ValidationError("sort must be one of: {}".format(", ".join(SORT_OPTIONS)))


def _school_status(diff):
    if diff < SCHOOL_POOR_DIFF:
        return 'poor'
    if diff < 0:
        return 'medium'
    return 'excellent'


def _class_status(rank_diff):
    if rank_diff >= CLASS_POOR_RANK_DIFF:
        return 'poor'
    if rank_diff >= CLASS_MEDIUM_RANK_DIFF:
        return 'medium'
    return 'excellent'


def school_ranking(school_id, assessment_id, subjects=None, sort='avgDesc'):
    """How one school ranks per subject among all schools sitting the same exam."""
    _check_sort(sort)
    school = db.session.get(SchoolModel, school_id)
    if not school:
        raise NotFoundError("School not found")
    assessment = get_assessment(assessment_id)

    averages = _school_subject_frame(matching_assessment_ids(assessment))
    own = averages[averages['school_id'] == school.id] if not averages.empty else averages
    if own.empty:
        raise NotFoundError("No data for this school")

    rankings = []
    for row in own.itertuples(index=False):
        # Status from the unrounded gap
        diff = row.score - row.grade_average
        rankings.append({
            "subject_name": row.subject_name,
            "average_score": round2(row.score),
            "rank_in_subject": int(row.rank),
            "total_schools": int(row.total_schools),
            "grade_average": round2(row.grade_average),
            "difference": round2(diff),
            "status": _school_status(diff),
        })

    # Overall rank: schools ordered by the mean of their subject averages
    overall = averages.groupby('school_id')['score'].mean()
    overall_rank = overall.rank(method='min', ascending=False).astype(int)

    problem_count = sum(1 for r in rankings if r['status'] == 'poor')
    if subjects is not None:
        wanted = set(subjects)
        rankings = [r for r in rankings if r['subject_name'] in wanted]

    if sort == 'avgAsc':
        rankings.sort(key=lambda r: r['average_score'])
    elif sort == 'problemDesc':
        rankings.sort(key=lambda r: STATUS_ORDER[r['status']])
    else:
        rankings.sort(key=lambda r: r['average_score'], reverse=True)

    return {
        "school_name": school.name,
        "assessment": {"id": assessment.id, "label": assessment_label(assessment),
                       "grade_level": assessment.grade_level},
        "subject_rankings": rankings,
        "overall_average": round2(own["score"].mean()),
        "overall_rank": int(overall_rank[school.id]),
        "total_schools": int(overall.size),
        "problem_subject_count": problem_count,
    }


def class_ranking(assessment_id, subjects=None, sort='avgDesc'):
    """Per class, how each subject's rank compares with the grade's average rank."""
    _check_sort(sort)
    assessment = get_assessment(assessment_id)
    data = class_subject_averages([assessment.id])

    by_class = {}
    rank_sums = {}
    for item in data:
        by_class.setdefault(item['class_id'], {"class_name": item['class_name'], "subjects": []})
        by_class[item['class_id']]["subjects"].append(item)
        sums = rank_sums.setdefault(item['subject_name'], [0, 0])
        sums[0] += item['rank_in_subject']
        sums[1] += 1
    grade_average_ranks = {name: round_half_up(total / count) for name, (total, count) in rank_sums.items()}

    rankings = []
    for class_id, entry in by_class.items():
        subject_rows = []
        for item in entry["subjects"]:
            grade_rank = grade_average_ranks[item['subject_name']]
            diff = item['rank_in_subject'] - grade_rank
            subject_rows.append({
                "subject_name": item['subject_name'],
                "class_rank": item['rank_in_subject'],
                "grade_average_rank": grade_rank,
                "rank_difference": diff,
                "status": _class_status(diff),
                "average_score": item['average_score'],
            })
        class_avg = sum(r['average_score'] for r in subject_rows) / len(subject_rows)
        rankings.append({
            "class_id": class_id,
            "class_name": entry["class_name"],
            "class_average_score": round2(class_avg),
            "class_rank": 0,
            "total_classes": len(by_class),
            "subject_rankings": subject_rows,
            "problem_subject_count": sum(1 for r in subject_rows if r['status'] == 'poor'),
        })

    rankings.sort(key=lambda r: r['class_average_score'], reverse=True)
    for idx, r in enumerate(rankings):
        r['class_rank'] = idx + 1

    if subjects is not None:
        wanted = set(subjects)
        for r in rankings:
            r['subject_rankings'] = [s for s in r['subject_rankings'] if s['subject_name'] in wanted]

    if sort == 'avgAsc':
        rankings.sort(key=lambda r: r['class_average_score'])
    elif sort == 'problemDesc':
        rankings.sort(key=lambda r: r['problem_subject_count'], reverse=True)

    return {
        "assessment": {"id": assessment.id, "label": assessment_label(assessment),
                       "grade_level": assessment.grade_level},
        "classes": rankings,
    }
