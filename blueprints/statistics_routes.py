import logging

from flask import Blueprint, current_app, jsonify

from utils import repositories as repo
from utils.auth_utils import login_required, require_class_owner
from utils.errors import GradebookError, error_response
from utils.grade_reports import class_grade_reports, configured_policy
from utils.statistics_utils import (
    calculate_activity_difficulty,
    calculate_grade_distribution,
    find_at_risk_students,
)

logger = logging.getLogger(__name__)

statistics_bp = Blueprint("statistics", __name__)


@statistics_bp.route("/api/statistics/class/<int:class_id>", methods=["GET"])
@login_required
def class_statistics(class_id):
    try:
        cls = repo.get_class(class_id)
        require_class_owner(cls)

        at_risk_grade = float(current_app.config.get("AT_RISK_GRADE", 75))
        missing_ratio = float(current_app.config.get("AT_RISK_MISSING_RATIO", 0.3))

        reports = class_grade_reports(cls, policy=configured_policy())
        activities = repo.class_activities(cls.id)
        submissions = repo.class_submissions(cls.id)

        return (
            jsonify(
                {
                    "class": cls.to_dict(),
                    "distribution": calculate_grade_distribution(
                        reports, passing_grade=at_risk_grade
                    ),
                    "at_risk_students": find_at_risk_students(
                        reports, at_risk_grade, missing_ratio
                    ),
                    "activities": calculate_activity_difficulty(
                        activities, submissions
                    ),
                }
            ),
            200,
        )
    except GradebookError as e:
        return error_response(e)
    except Exception as e:
        logger.error(f"Failed to compute statistics for class {class_id}: {str(e)}")
        return jsonify({"error": "Failed to compute statistics"}), 500
