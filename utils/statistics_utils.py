import math

import numpy as np
from scipy.stats import kurtosis, skew

from models import SubmissionStatus


def _finite(value, digits):
    value = float(value)
    if math.isnan(value) or math.isinf(value):
        return None
    return round(value, digits)


def calculate_grade_distribution(reports, passing_grade=75.0):
    """Distribution of transmuted grades across a class.

    Students whose grade cannot be computed yet (no graded work) are counted
    but left out of the numeric summary.
    """
    grades = [
        float(r["transmuted_grade"])
        for r in reports
        if r.get("transmuted_grade") is not None
    ]
    summary = {
        "student_count": len(reports),
        "graded_count": len(grades),
        "ungraded_count": len(reports) - len(grades),
    }
    if not grades:
        return summary

    arr = np.array(grades)
    std_dev = float(np.std(arr))
    q1 = float(np.percentile(arr, 25))
    q3 = float(np.percentile(arr, 75))
    summary.update(
        {
            "mean": round(float(np.mean(arr)), 2),
            "median": round(float(np.median(arr)), 2),
            "std_dev": round(std_dev, 2),
            "min": round(float(np.min(arr)), 2),
            "max": round(float(np.max(arr)), 2),
            "q1": round(q1, 2),
            "q3": round(q3, 2),
            "iqr": round(q3 - q1, 2),
            "passing_rate": round(
                len([g for g in grades if g >= passing_grade]) / len(grades) * 100, 1
            ),
        }
    )

    # Shape metrics need some spread to mean anything
    if len(grades) >= 3 and std_dev > 0:
        summary["skewness"] = _finite(skew(arr), 3)
        summary["kurtosis"] = _finite(kurtosis(arr), 3)
    else:
        summary["skewness"] = None
        summary["kurtosis"] = None
    return summary


def find_at_risk_students(reports, at_risk_grade=75.0, missing_ratio=0.3):
    """Students below the passing grade or missing too much approved work."""
    at_risk = []
    for r in reports:
        grade = r.get("transmuted_grade")
        total = r.get("activity_count") or 0
        missing = r.get("missing_count") or 0
        low_grade = grade is not None and grade < at_risk_grade
        too_many_missing = total > 0 and missing > total * missing_ratio
        if low_grade or too_many_missing:
            reasons = []
            if low_grade:
                reasons.append("low_grade")
            if too_many_missing:
                reasons.append("missing_submissions")
            at_risk.append(
                {
                    "student_id": r.get("student_id"),
                    "student_name": r.get("student_name"),
                    "current_grade": grade,
                    "missing_submissions": missing,
                    "reasons": reasons,
                }
            )
    return at_risk


def calculate_activity_difficulty(activities, submissions, pass_ratio=0.6):
    """Per-activity difficulty from approved scores.

    difficulty_index runs 0-100, higher meaning harder.
    """
    approved = {}
    for s in submissions:
        if SubmissionStatus(s.status) == SubmissionStatus.APPROVED:
            approved.setdefault(s.activity_id, []).append(float(s.raw_score))

    analytics = []
    for activity in activities:
        if not activity.is_gradable:
            continue
        scores = approved.get(activity.id, [])
        if not scores:
            continue
        max_score = float(activity.max_score)
        mean_score = float(np.mean(scores))
        analytics.append(
            {
                "activity_id": activity.id,
                "title": activity.title,
                "category": activity.category.value,
                "approved_count": len(scores),
                "mean_score": round(mean_score, 2),
                "median_score": round(float(np.median(scores)), 2),
                "std_score": round(float(np.std(scores)), 2),
                "difficulty_index": round(100 - (mean_score / max_score) * 100, 1),
                "pass_rate": round(
                    len([s for s in scores if s >= max_score * pass_ratio])
                    / len(scores)
                    * 100,
                    1,
                ),
            }
        )
    return analytics
