"""
Score distribution (一分一段)

Splits one subject's scores into bands derived from the assessment's
configuration, each band cut into fixed-width segments:

    excellent  [excellent line, full score]
    good       [midpoint of pass and excellent lines, excellent line)
    pass       [pass line, good line)
    poor       [0, pass line)

Segments are listed top-down. Scores above the full score land in the top
segment and negative scores in the bottom one.
"""

from dataclasses import dataclass
from typing import List

from assessment_config import configured_subjects, get_assessment, Thresholds
from config import DEFAULT_THRESHOLDS, DISTRIBUTION_GROUPS, DISTRIBUTION_SORT_OPTIONS, SEGMENT_WIDTH
from errors import ValidationError
from helpers import percent, round2
from models import ScoreModel, StudentModel, SubjectModel

GROUP_NAMES = dict(DISTRIBUTION_GROUPS)
GROUP_ORDER = {group_type: idx for idx, (group_type, _) in enumerate(DISTRIBUTION_GROUPS)}


@dataclass
class Segment:
    group_type: str
    min_score: float
    max_score: float

    @property
    def label(self):
        return "{:g}-{:g}".format(self.min_score, self.max_score)


def subject_scores(assessment_id, subject_id, class_id=None) -> List[float]:
    query = ScoreModel.query.filter_by(assessment_id=assessment_id, subject_id=subject_id)
    if class_id:
        query = query.join(StudentModel, StudentModel.id == ScoreModel.student_id).filter(
            StudentModel.class_id == class_id)
    return [s.score_value for s in query.all() if s.score_value is not None]


def _split(group_type, low, high, width):
    """Cut [low, high) at multiples of width, highest segment first."""
    cuts = [high]
    step = int(high // width) * width
    if step == high:
        step -= width
    while step > low:
        cuts.append(step)
        step -= width
    cuts.append(low)
    return [Segment(group_type, cuts[i + 1], cuts[i]) for i in range(len(cuts) - 1)]


def build_segments(thresholds: Thresholds, width=SEGMENT_WIDTH) -> List[Segment]:
    full = thresholds.full_score
    excellent = thresholds.excellent
    passing = thresholds.passing
    good = (excellent + passing) / 2
    bands = [
        ('excellent', excellent, full),
        ('good', good, excellent),
        ('pass', passing, good),
        ('poor', 0, passing),
    ]
    segments = []
    for group_type, low, high in bands:
        if low < high:
            segments.extend(_split(group_type, low, high, width))
        elif group_type == 'excellent':
            # A 100% excellent line still needs a bucket for full marks
            segments.append(Segment(group_type, full, full))
    return segments


def _count(segments, scores):
    counts = [0] * len(segments)
    for score in scores:
        for idx, segment in enumerate(segments):
            if score >= segment.min_score:
                counts[idx] += 1
                break
        else:
            counts[-1] += 1
    return counts


def score_distribution(assessment_id, subject_id, class_id=None):
    """Flat segment rows; empty when the subject has no configuration."""
    config = configured_subjects(assessment_id).get(subject_id)
    if config is None:
        return []
    segments = build_segments(Thresholds.from_config(config))
    scores = subject_scores(assessment_id, subject_id, class_id)
    counts = _count(segments, scores)
    total = len(scores)

    subtotals = {}
    for segment, count in zip(segments, counts):
        subtotals[segment.group_type] = subtotals.get(segment.group_type, 0) + count

    return [{
        "group_name": GROUP_NAMES[segment.group_type],
        "group_type": segment.group_type,
        "score_range": segment.label,
        "min_score": segment.min_score,
        "max_score": segment.max_score,
        "student_count": count,
        "percentage": percent(count, total),
        "group_subtotal": subtotals[segment.group_type],
        "group_subtotal_percentage": percent(subtotals[segment.group_type], total),
    } for segment, count in zip(segments, counts)]


def group_segments(segments):
    """Nest flat segment rows under their group, excellent first."""
    groups = {}
    for segment in segments:
        group = groups.setdefault(segment['group_name'], {
            "group_name": segment['group_name'],
            "group_type": segment['group_type'],
            "segments": [],
            "subtotal": segment['group_subtotal'],
            "subtotal_percentage": segment['group_subtotal_percentage'],
        })
        group["segments"].append({
            "label": segment['score_range'],
            "min_score": segment['min_score'],
            "max_score": segment['max_score'],
            "student_count": segment['student_count'],
            "percentage": segment['percentage'],
        })
    return sorted(groups.values(), key=lambda g: GROUP_ORDER[g['group_type']])


def subject_stats(assessment_id, subject_id, class_id=None):
    """Average and rates; an unconfigured subject is measured against the default lines."""
    config = configured_subjects(assessment_id).get(subject_id)
    config_missing = config is None
    scores = subject_scores(assessment_id, subject_id, class_id)
    if not scores:
        return {"average_score": 0, "pass_rate": 0, "excellence_rate": 0, "poor_rate": 0,
                "config_missing": config_missing}

    lines = Thresholds.from_config(DEFAULT_THRESHOLDS if config_missing else config)
    total = len(scores)
    return {
        "average_score": round2(sum(scores) / total),
        "pass_rate": percent(sum(1 for s in scores if s >= lines.passing), total),
        "excellence_rate": percent(sum(1 for s in scores if s >= lines.excellent), total),
        "poor_rate": percent(sum(1 for s in scores if s < lines.poor), total),
        "config_missing": config_missing,
    }


def _sort_key(sort):
    field = {'avgDesc': 'average_score', 'excellenceDesc': 'excellence_rate', 'passDesc': 'pass_rate'}[sort]
    return lambda item: item[field]


def distribution_report(assessment_id, subject_ids, class_id=None, sort='avgDesc'):
    if not subject_ids:
        raise ValidationError("Select at least one subject")
    if sort not in DISTRIBUTION_SORT_OPTIONS:
        raise ValidationError("sort must be one of: {}".format(", ".join(DISTRIBUTION_SORT_OPTIONS)))
    get_assessment(assessment_id)

    names = {s.id: s.name for s in SubjectModel.query.filter(SubjectModel.id.in_(subject_ids)).all()}
    report = []
    for subject_id in subject_ids:
        if subject_id not in names or not subject_scores(assessment_id, subject_id, class_id):
            continue
        stats = subject_stats(assessment_id, subject_id, class_id)
        item = {"subject_id": subject_id, "subject_name": names[subject_id]}
        item.update(stats)
        item["segment_groups"] = group_segments(score_distribution(assessment_id, subject_id, class_id))
        report.append(item)

    report.sort(key=_sort_key(sort), reverse=True)
    return report
