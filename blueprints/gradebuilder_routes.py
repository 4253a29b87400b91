import logging

from flask import Blueprint, jsonify, request
from flask_wtf.csrf import generate_csrf

from utils import class_setup
from utils import repositories as repo
from utils.auth_utils import login_required, require_class_owner
from utils.errors import GradebookError, error_response
from utils.structure_utils import DEFAULT_TRANSMUTATION_RULES

logger = logging.getLogger(__name__)


gradebuilder_bp = Blueprint("gradebuilder", __name__)


# GET /api/gradebuilder/class/<id>/scheme: scheme + activities + csrf token
@gradebuilder_bp.route(
    "/api/gradebuilder/class/<int:class_id>/scheme",
    methods=["GET"],
    endpoint="gb_get_scheme",
)
@login_required
def gb_get_scheme(class_id: int):
    try:
        cls = repo.get_class(class_id)
        require_class_owner(cls)
        scheme = cls.grading_scheme
        return (
            jsonify(
                {
                    "csrf_token": generate_csrf(),
                    "class": cls.to_dict(),
                    "grading_scheme": scheme.to_dict() if scheme else None,
                    "default_transmutation_rules": DEFAULT_TRANSMUTATION_RULES,
                    "activities": [a.to_dict() for a in cls.activities],
                }
            ),
            200,
        )
    except GradebookError as e:
        return error_response(e)
    except Exception as e:
        logger.error(f"Failed to fetch grading scheme for class {class_id}: {str(e)}")
        return jsonify({"error": "failed_to_fetch"}), 500


# PUT /api/gradebuilder/class/<id>/scheme
# Body: {written_works_percent, performance_tasks_percent, quarterly_assessment_percent,
#        transmutation_rules?: [{min_percent, max_percent, transmuted_grade}, ...]}
@gradebuilder_bp.route(
    "/api/gradebuilder/class/<int:class_id>/scheme",
    methods=["PUT"],
    endpoint="gb_save_scheme",
)
@login_required
def gb_save_scheme(class_id: int):
    try:
        cls = repo.get_class(class_id)
        identity = require_class_owner(cls)
        payload = request.get_json(force=True, silent=True) or {}
        scheme = class_setup.save_grading_scheme(identity, cls, payload)
        return jsonify({"message": "saved", "grading_scheme": scheme.to_dict()}), 200
    except GradebookError as e:
        return error_response(e)
    except Exception as e:
        logger.error(f"Failed to save grading scheme for class {class_id}: {str(e)}")
        return jsonify({"error": "failed_to_save"}), 500


# POST /api/gradebuilder/class/<id>/grading-period: {"action": "complete" | "reopen"}
@gradebuilder_bp.route(
    "/api/gradebuilder/class/<int:class_id>/grading-period",
    methods=["POST"],
    endpoint="gb_grading_period",
)
@login_required
def gb_grading_period(class_id: int):
    try:
        cls = repo.get_class(class_id)
        identity = require_class_owner(cls)
        payload = request.get_json(force=True, silent=True) or {}
        cls = class_setup.set_grading_period(identity, cls, payload.get("action"))
        return jsonify({"message": "updated", "class": cls.to_dict()}), 200
    except GradebookError as e:
        return error_response(e)
    except Exception as e:
        logger.error(f"Failed to update grading period for class {class_id}: {str(e)}")
        return jsonify({"error": "failed_to_save"}), 500


@gradebuilder_bp.route(
    "/api/gradebuilder/class/<int:class_id>/activities",
    methods=["POST"],
    endpoint="gb_create_activity",
)
@login_required
def gb_create_activity(class_id: int):
    try:
        cls = repo.get_class(class_id)
        identity = require_class_owner(cls)
        payload = request.get_json(force=True, silent=True) or {}
        activity = class_setup.create_activity(identity, cls, payload)
        return jsonify(activity.to_dict()), 201
    except GradebookError as e:
        return error_response(e)
    except Exception as e:
        logger.error(f"Failed to create activity in class {class_id}: {str(e)}")
        return jsonify({"error": "failed_to_save"}), 500


def _toggle_archive(activity_id: int, archived: bool):
    try:
        activity = repo.get_activity(activity_id)
        identity = require_class_owner(activity.class_obj)
        payload = request.get_json(force=True, silent=True) or {}
        activity = class_setup.set_archived(
            identity, activity, archived, reason=payload.get("reason")
        )
        return jsonify(activity.to_dict()), 200
    except GradebookError as e:
        return error_response(e)
    except Exception as e:
        logger.error(f"Failed to update archive flag on activity {activity_id}: {str(e)}")
        return jsonify({"error": "failed_to_save"}), 500


@gradebuilder_bp.route(
    "/api/gradebuilder/activities/<int:activity_id>/archive",
    methods=["POST"],
    endpoint="gb_archive_activity",
)
@login_required
def gb_archive_activity(activity_id: int):
    return _toggle_archive(activity_id, True)


@gradebuilder_bp.route(
    "/api/gradebuilder/activities/<int:activity_id>/unarchive",
    methods=["POST"],
    endpoint="gb_unarchive_activity",
)
@login_required
def gb_unarchive_activity(activity_id: int):
    return _toggle_archive(activity_id, False)
