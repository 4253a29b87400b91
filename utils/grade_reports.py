import logging
from typing import Dict, List

from flask import current_app

from models import Class, SubmissionStatus
from utils import repositories as repo
from utils.grade_calculation import WeightPolicy, compute_grades
from utils.errors import ConfigurationInvalid, MissingConfiguration

logger = logging.getLogger(__name__)


def configured_policy() -> WeightPolicy:
    value = current_app.config.get("GRADE_WEIGHT_POLICY", WeightPolicy.RENORMALIZE.value)
    try:
        return WeightPolicy(str(value).lower())
    except ValueError:
        raise ConfigurationInvalid(
            f"GRADE_WEIGHT_POLICY must be 'renormalize' or 'raw' (got {value!r})"
        )


def _missing_count(activities, submissions) -> int:
    """Gradable activities without an approved submission."""
    approved = {
        s.activity_id
        for s in submissions
        if SubmissionStatus(s.status) == SubmissionStatus.APPROVED
    }
    return sum(1 for a in activities if a.is_gradable and a.id not in approved)


def student_grade_report(
    cls: Class, student_id: int, policy=WeightPolicy.RENORMALIZE
) -> Dict:
    """Load one student's inputs and run the grade engine over them."""
    if cls.grading_scheme is None:
        raise MissingConfiguration(
            f"No grading scheme configured for class {cls.id}"
        )
    activities = repo.class_activities(cls.id)
    submissions = repo.student_submissions(cls.id, student_id)
    table = repo.load_transmutation_table(cls.grading_scheme)

    report = compute_grades(
        submissions, activities, cls.grading_scheme, table, policy=policy
    )
    report["class_id"] = cls.id
    report["student_id"] = student_id
    report["missing_count"] = _missing_count(activities, submissions)
    report["activity_count"] = sum(1 for a in activities if a.is_gradable)
    return report


def class_grade_reports(cls: Class, policy=WeightPolicy.RENORMALIZE) -> List[Dict]:
    """Reports for every active enrollment, sorted by student name."""
    if cls.grading_scheme is None:
        raise MissingConfiguration(
            f"No grading scheme configured for class {cls.id}"
        )
    activities = repo.class_activities(cls.id)
    table = repo.load_transmutation_table(cls.grading_scheme)

    by_student: Dict[int, list] = {}
    for sub in repo.class_submissions(cls.id):
        by_student.setdefault(sub.student_id, []).append(sub)

    reports = []
    for enrollment in repo.active_enrollments(cls.id):
        submissions = by_student.get(enrollment.student_id, [])
        report = compute_grades(
            submissions, activities, cls.grading_scheme, table, policy=policy
        )
        report["student_id"] = enrollment.student_id
        report["student_name"] = enrollment.student_name
        report["missing_count"] = _missing_count(activities, submissions)
        report["activity_count"] = sum(1 for a in activities if a.is_gradable)
        reports.append(report)

    logger.info(f"Computed {len(reports)} grade reports for class {cls.id}")
    return sorted(
        reports, key=lambda r: ((r.get("student_name") or "").lower(), r["student_id"])
    )
