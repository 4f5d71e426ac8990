"""
Configuration for the Gradedesk dashboard

Environment settings are read once at import (after load_dotenv in app.py).
Domain constants for score sheets, thresholds and rankings live below.
"""

import os

# =============================================================================
# ENVIRONMENT
# =============================================================================

def database_url():
    url = os.getenv("DATABASE_URL")
    if url and url.startswith("postgres://"):
        url = url.replace("postgres://", "postgresql://", 1)
    return url or "sqlite:///gradedesk.db"


MAX_UPLOAD_MB = int(os.getenv("MAX_UPLOAD_MB", "20"))
SECRET_KEY = os.getenv("SECRET_KEY", "gradedesk-dev")

# =============================================================================
# SCORE SHEET LAYOUT
# =============================================================================
# Row 2 holds subject names, row 3 holds metric names, data starts at row 4.
# Columns A-D: school, student name, class, student number.

FIRST_SCORE_COLUMN = 4
SCORE_METRIC = "成绩"
TOTAL_SUBJECT = "总分"
UPLOAD_EXTENSIONS = (".xlsx", ".xls", ".csv")
IMPORT_CHUNK_SIZE = 1000

# =============================================================================
# ASSESSMENT THRESHOLDS (percent of full score)
# =============================================================================

DEFAULT_THRESHOLDS = {
    "full_score": 100,
    "excellent_threshold": 85,
    "pass_threshold": 60,
    "poor_threshold": 30,
}

# =============================================================================
# REPORTS
# =============================================================================

TOTAL_SUBJECT_KEY = "total"
UNASSIGNED_TEACHER = "未分配"

# School ranking: difference between school and grade average
SCHOOL_POOR_DIFF = -5
# Class ranking: class rank minus grade average rank
CLASS_POOR_RANK_DIFF = 3
CLASS_MEDIUM_RANK_DIFF = 1

SORT_OPTIONS = ("avgDesc", "avgAsc", "problemDesc")
DISTRIBUTION_SORT_OPTIONS = ("avgDesc", "excellenceDesc", "passDesc")
SEGMENT_WIDTH = 10

DISTRIBUTION_GROUPS = [
    ("excellent", "优秀"),
    ("good", "良好"),
    ("pass", "及格"),
    ("poor", "待提高"),
]

# =============================================================================
# MAINTENANCE OPTIONS
# =============================================================================

ACADEMIC_YEARS = ["2024-2025", "2025-2026", "2026-2027"]
GRADE_LEVELS = [
    "初中一年级", "初中二年级", "初中三年级",
    "高中一年级", "高中二年级", "高中三年级",
]
