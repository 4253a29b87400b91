import logging
from flask import Blueprint, jsonify

from utils import repositories as repo
from utils.auth_utils import login_required, require_class_owner, require_identity
from utils.errors import Forbidden, GradebookError, error_response
from utils.grade_reports import (
    class_grade_reports,
    configured_policy,
    student_grade_report,
)

logger = logging.getLogger(__name__)

compute_bp = Blueprint("compute", __name__)


# GET /api/compute/class/<class_id>/student/<student_id>
# Used by: student grade view (own grades) and teacher per-student breakdown
@compute_bp.route(
    "/api/compute/class/<int:class_id>/student/<int:student_id>",
    methods=["GET"],
    endpoint="compute_student_grades",
)
@login_required
def compute_student_grades(class_id: int, student_id: int):
    try:
        identity = require_identity()
        cls = repo.get_class(class_id)
        if identity.is_student:
            if identity.user_id != student_id:
                raise Forbidden("Students can only view their own grades")
            if not repo.is_actively_enrolled(class_id, student_id):
                raise Forbidden("You are not enrolled in this class")
        elif cls.owner_id != identity.user_id:
            raise Forbidden("You do not own this class")

        report = student_grade_report(cls, student_id, policy=configured_policy())
        return jsonify(report), 200
    except GradebookError as e:
        return error_response(e)
    except Exception as exc:
        logger.error(
            f"Failed to compute grades for student {student_id} in class {class_id}: {str(exc)}"
        )
        return jsonify({"error": "failed_to_compute", "message": str(exc)}), 500


# GET /api/compute/class/<class_id>: every active enrollment, sorted by name
@compute_bp.route(
    "/api/compute/class/<int:class_id>",
    methods=["GET"],
    endpoint="compute_class_grades",
)
@login_required
def compute_class_grades(class_id: int):
    try:
        cls = repo.get_class(class_id)
        require_class_owner(cls)
        reports = class_grade_reports(cls, policy=configured_policy())
        return jsonify({"class": cls.to_dict(), "results": reports}), 200
    except GradebookError as e:
        return error_response(e)
    except Exception as exc:
        logger.error(f"Failed to compute class grades for {class_id}: {str(exc)}")
        return jsonify({"error": "failed_to_compute", "message": str(exc)}), 500
