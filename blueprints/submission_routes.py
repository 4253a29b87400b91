import logging
from flask import Blueprint, current_app, jsonify, request

from models import Activity, ScoreSubmission, SubmissionStatus
from utils import repositories as repo
from utils import review_state
from utils.auth_utils import current_identity, login_required, require_identity
from utils.errors import Forbidden, GradebookError, ValidationFailed, error_response
from utils.structure_utils import parse_id

logger = logging.getLogger(__name__)

submission_bp = Blueprint("submissions", __name__)


def _submission_payload(submission: ScoreSubmission, identity) -> dict:
    data = submission.to_dict()
    data["activity"] = {
        "id": submission.activity.id,
        "title": submission.activity.title,
        "category": submission.activity.category.value,
        "max_score": submission.activity.max_score,
        "class_id": submission.activity.class_id,
    }
    data["allowed_events"] = [
        e.value
        for e in review_state.allowed_events(submission.status, identity.role)
    ]
    return data


def _parse_status(value):
    if value is None:
        return None
    try:
        return SubmissionStatus(str(value).upper())
    except ValueError:
        raise ValidationFailed(f"Unknown status {value!r}")


# POST /api/submissions: student enters a score (or re-opens a returned one)
@submission_bp.route(
    "/api/submissions", methods=["POST"], endpoint="create_submission"
)
@login_required
def create_submission():
    try:
        identity = require_identity()
        data = request.get_json(silent=True) or {}
        activity_id = parse_id(data.get("activity_id"), "activity_id")
        evidence = {
            k: data.get(k) for k in review_state.EVIDENCE_FIELDS if k in data
        }
        submission = review_state.create_submission(
            identity, activity_id, data.get("raw_score"), evidence
        )
        return jsonify(_submission_payload(submission, identity)), 200
    except GradebookError as e:
        return error_response(e)
    except Exception as e:
        logger.error(f"Failed to create submission: {str(e)}")
        return jsonify({"error": "failed_to_create_submission"}), 500


# GET /api/submissions: teacher review queue or a student's own submissions
@submission_bp.route("/api/submissions", methods=["GET"], endpoint="list_submissions")
@login_required
def list_submissions():
    try:
        identity = require_identity()
        status = _parse_status(request.args.get("status"))
        query = ScoreSubmission.query.join(Activity)

        if identity.is_teacher:
            class_id = parse_id(request.args.get("class_id"), "class_id")
            cls = repo.get_class(class_id)
            if cls.owner_id != identity.user_id:
                raise Forbidden("You do not own this class")
            query = query.filter(Activity.class_id == class_id)
            if request.args.get("student_id"):
                query = query.filter(
                    ScoreSubmission.student_id
                    == parse_id(request.args.get("student_id"), "student_id")
                )
        else:
            query = query.filter(ScoreSubmission.student_id == identity.user_id)

        if request.args.get("activity_id"):
            query = query.filter(
                ScoreSubmission.activity_id
                == parse_id(request.args.get("activity_id"), "activity_id")
            )
        if status is not None:
            query = query.filter(ScoreSubmission.status == status)

        submissions = query.order_by(ScoreSubmission.submitted_at.desc()).all()
        return (
            jsonify(
                {"submissions": [_submission_payload(s, identity) for s in submissions]}
            ),
            200,
        )
    except GradebookError as e:
        return error_response(e)
    except Exception as e:
        logger.error(f"Failed to list submissions: {str(e)}")
        return jsonify({"error": "failed_to_fetch"}), 500


@submission_bp.route(
    "/api/submissions/<int:submission_id>", methods=["GET"], endpoint="get_submission"
)
@login_required
def get_submission(submission_id: int):
    try:
        identity = require_identity()
        submission = repo.get_submission(submission_id)
        is_owner = (
            identity.is_teacher
            and submission.activity.class_obj.owner_id == identity.user_id
        )
        is_author = identity.is_student and submission.student_id == identity.user_id
        if not (is_owner or is_author):
            raise Forbidden("Access denied")
        return jsonify(_submission_payload(submission, identity)), 200
    except GradebookError as e:
        return error_response(e)
    except Exception as e:
        logger.error(f"Failed to get submission {submission_id}: {str(e)}")
        return jsonify({"error": "failed_to_fetch"}), 500


# POST /api/submissions/<id>/transition: {event, raw_score?, teacher_feedback?, reason?, evidence...}
@submission_bp.route(
    "/api/submissions/<int:submission_id>/transition",
    methods=["POST"],
    endpoint="transition_submission",
)
@login_required
def transition_submission(submission_id: int):
    try:
        identity = require_identity()
        data = request.get_json(silent=True) or {}
        event = data.get("event")
        if not event:
            raise ValidationFailed("event is required")
        payload = {k: v for k, v in data.items() if k != "event"}
        submission = review_state.transition_submission(
            identity, submission_id, event, payload
        )
        return jsonify(_submission_payload(submission, identity)), 200
    except GradebookError as e:
        return error_response(e)
    except Exception as e:
        logger.error(f"Failed to transition submission {submission_id}: {str(e)}")
        return jsonify({"error": "failed_to_transition"}), 500


# POST /api/submissions/bulk-transition: {submission_ids: [...], event, ...payload}
@submission_bp.route(
    "/api/submissions/bulk-transition",
    methods=["POST"],
    endpoint="bulk_transition",
)
@login_required
def bulk_transition():
    try:
        identity = current_identity()
        data = request.get_json(silent=True) or {}
        ids = data.get("submission_ids")
        if not isinstance(ids, list) or not ids:
            raise ValidationFailed("submission_ids must be a non-empty array")
        limit = current_app.config.get("BULK_TRANSITION_LIMIT", 200)
        if len(ids) > limit:
            raise ValidationFailed(f"At most {limit} submissions per request")
        event = review_state.parse_event(data.get("event"))
        submission_ids = [parse_id(i, "submission_ids[]") for i in ids]
        payload = {
            k: v for k, v in data.items() if k not in ("event", "submission_ids")
        }

        results = review_state.bulk_transition(
            identity, submission_ids, event, payload
        )
        succeeded = len([r for r in results if r["ok"]])
        logger.info(
            f"Bulk {event.value}: {succeeded}/{len(results)} succeeded for user {identity.user_id}"
        )
        return (
            jsonify(
                {
                    "results": results,
                    "succeeded": succeeded,
                    "failed": len(results) - succeeded,
                }
            ),
            200,
        )
    except GradebookError as e:
        return error_response(e)
    except Exception as e:
        logger.error(f"Failed bulk transition: {str(e)}")
        return jsonify({"error": "failed_to_transition"}), 500
