import math
import re

from errors import ValidationError

_LEADING_NUMBER = re.compile(r'^\s*([+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?)')


def round_half_up(x):
    return int(math.floor(x + 0.5))


def round2(x):
    """Round to two decimals, halves away from zero for positive values."""
    return math.floor(float(x) * 100 + 0.5) / 100


def percent(count, total):
    if not total:
        return 0
    return round2(count / total * 100)


def is_blank(value):
    if value is None:
        return True
    if isinstance(value, float) and math.isnan(value):
        return True
    return isinstance(value, str) and not value.strip()


def cell_text(value):
    """Text of a spreadsheet cell. 20240101.0 -> '20240101', NaN -> ''."""
    if is_blank(value):
        return ""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()


def parse_score(value):
    """Numeric value of a score cell, or None.

    Strings are read up to the first non-numeric character, so '87.5分'
    gives 87.5 and '缺考' gives None.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        value = float(value)
        return None if math.isnan(value) or math.isinf(value) else value
    match = _LEADING_NUMBER.match(str(value))
    if not match:
        return None
    return float(match.group(1))


def class_number(name, default=0):
    """First integer in a class name: '初一(12)班' -> 12."""
    match = re.search(r'\d+', name or "")
    return int(match.group(0)) if match else default


def student_number_key(number):
    """Numeric student numbers sort by value ('2' before '10'), others after them as text."""
    number = str(number or "").strip()
    if number.isdigit():
        return (0, int(number), number)
    return (1, 0, number)


def assessment_label(assessment):
    return "{}年{}月{}".format(assessment.academic_year, assessment.month, assessment.type)


def safe_filename(name):
    name = re.sub(r'[\\/*?:"<>|]+', "-", str(name))
    name = re.sub(r"\s+", " ", name).strip()
    return name[:200] or "export"


def require_int(value, name):
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError("Invalid {}".format(name))


def parse_id_list(raw, name="ids"):
    """Accepts [1, 2], '1,2' or None."""
    if raw is None or raw == "":
        return []
    if isinstance(raw, str):
        raw = [part for part in raw.split(",") if part.strip()]
    if not isinstance(raw, (list, tuple)):
        raise ValidationError("Invalid {}".format(name))
    return [require_int(item, name) for item in raw]


def parse_name_list(raw):
    """Subject-name filters: None means no filter."""
    if raw is None:
        return None
    if isinstance(raw, str):
        return [part.strip() for part in raw.split(",") if part.strip()]
    return [str(part).strip() for part in raw]
