"""Score submission review lifecycle.

A submission is created PENDING by the student, reviewed by the teacher who
owns the class, and can be re-opened by the student after a decline or a
revision request. Each successful step writes exactly one audit entry in the
same transaction as the status change.
"""

import enum
import logging
import math
from typing import Dict, List, NamedTuple, Optional

from sqlalchemy.exc import IntegrityError

from models import AuditAction, ScoreSubmission, SubmissionStatus, db, utcnow
from utils import audit_log
from utils import repositories as repo
from utils.auth_utils import Identity, Role
from utils.errors import (
    Forbidden,
    GradebookError,
    InvalidTransition,
    Unauthorized,
    ValidationFailed,
)

logger = logging.getLogger(__name__)

EVIDENCE_FIELDS = ("evidence_url", "evidence_type", "notes")


class ReviewEvent(str, enum.Enum):
    REVIEW_APPROVE = "review-approve"
    REVIEW_DECLINE = "review-decline"
    REQUEST_REVISION = "request-revision"
    OVERRIDE_APPROVE = "override-approve"
    RESUBMIT = "resubmit"


class Transition(NamedTuple):
    sources: frozenset
    target: SubmissionStatus
    actor: Role
    action: AuditAction


TRANSITIONS: Dict[ReviewEvent, Transition] = {
    ReviewEvent.REVIEW_APPROVE: Transition(
        frozenset({SubmissionStatus.PENDING}),
        SubmissionStatus.APPROVED,
        Role.TEACHER,
        AuditAction.APPROVED,
    ),
    ReviewEvent.REVIEW_DECLINE: Transition(
        frozenset({SubmissionStatus.PENDING}),
        SubmissionStatus.DECLINED,
        Role.TEACHER,
        AuditAction.DECLINED,
    ),
    ReviewEvent.REQUEST_REVISION: Transition(
        frozenset({SubmissionStatus.PENDING}),
        SubmissionStatus.NEEDS_REVISION,
        Role.TEACHER,
        AuditAction.NEEDS_REVISION,
    ),
    ReviewEvent.OVERRIDE_APPROVE: Transition(
        frozenset(
            {
                SubmissionStatus.PENDING,
                SubmissionStatus.NEEDS_REVISION,
                SubmissionStatus.DECLINED,
            }
        ),
        SubmissionStatus.APPROVED,
        Role.TEACHER,
        AuditAction.OVERRIDE,
    ),
    ReviewEvent.RESUBMIT: Transition(
        frozenset({SubmissionStatus.NEEDS_REVISION, SubmissionStatus.DECLINED}),
        SubmissionStatus.PENDING,
        Role.STUDENT,
        AuditAction.UPDATE,
    ),
}

REOPENABLE = TRANSITIONS[ReviewEvent.RESUBMIT].sources


def allowed_events(status: SubmissionStatus, role: Role) -> List[ReviewEvent]:
    """Events a caller with this role may fire from the given status."""
    status = SubmissionStatus(status)
    return [
        event
        for event, t in TRANSITIONS.items()
        if status in t.sources and t.actor == role
    ]


def parse_event(value) -> ReviewEvent:
    if isinstance(value, ReviewEvent):
        return value
    try:
        return ReviewEvent(str(value).strip().lower())
    except ValueError:
        valid = ", ".join(e.value for e in ReviewEvent)
        raise ValidationFailed(f"Unknown event {value!r}. Expected one of: {valid}")


def parse_score(value, field: str = "raw_score") -> float:
    if value is None or isinstance(value, bool):
        raise ValidationFailed(f"{field} must be a number")
    try:
        score = float(value)
    except (TypeError, ValueError):
        raise ValidationFailed(f"{field} must be a number")
    if math.isnan(score) or math.isinf(score):
        raise ValidationFailed(f"{field} must be a finite number")
    return score


def _check_score_range(score: float, max_score: float) -> None:
    if score < 0:
        raise ValidationFailed("Score cannot be negative")
    if score > max_score:
        raise ValidationFailed(f"Score cannot exceed maximum score of {max_score}")


def _optional_text(payload: Dict, key: str) -> Optional[str]:
    value = payload.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationFailed(f"{key} must be a string")
    return value.strip() or None


def _evidence_values(evidence: Optional[Dict]) -> Dict:
    evidence = evidence or {}
    return {key: _optional_text(evidence, key) for key in EVIDENCE_FIELDS}


def _authorize(identity: Optional[Identity], submission: ScoreSubmission, actor: Role):
    if identity is None:
        raise Unauthorized("Please log in to access this resource.")
    if identity.role != actor:
        raise Forbidden(f"Only the {actor.value} can perform this action")
    if actor == Role.TEACHER:
        if submission.activity.class_obj.owner_id != identity.user_id:
            raise Forbidden("You do not own this class")
    else:
        if submission.student_id != identity.user_id:
            raise Forbidden("This submission belongs to another student")
        if not repo.is_actively_enrolled(
            submission.activity.class_id, identity.user_id
        ):
            raise Forbidden("You are not enrolled in this class")


def _build_update(
    event: ReviewEvent, submission: ScoreSubmission, identity: Identity, payload: Dict
) -> Dict:
    """Validate the payload and return the column values to write."""
    now = utcnow()
    target = TRANSITIONS[event].target
    max_score = float(submission.activity.max_score)
    values = {"status": target, "updated_at": now}

    if event == ReviewEvent.RESUBMIT:
        if not submission.activity.is_gradable:
            raise ValidationFailed("This activity is not accepting submissions")
        if payload.get("raw_score") is not None:
            score = parse_score(payload.get("raw_score"))
            _check_score_range(score, max_score)
            values["raw_score"] = score
        for key in EVIDENCE_FIELDS:
            if key in payload:
                values[key] = _optional_text(payload, key)
        values.update(
            {
                "teacher_feedback": None,
                "submitted_at": now,
                "reviewed_at": None,
                "reviewed_by": None,
            }
        )
        return values

    values.update({"reviewed_at": now, "reviewed_by": identity.user_id})
    if "teacher_feedback" in payload:
        values["teacher_feedback"] = _optional_text(payload, "teacher_feedback")

    if event == ReviewEvent.OVERRIDE_APPROVE:
        reason = payload.get("reason")
        if not isinstance(reason, str) or not reason.strip():
            raise ValidationFailed("A reason is required to override a submission")
        if payload.get("raw_score") is not None:
            score = parse_score(payload.get("raw_score"))
            values["raw_score"] = min(max(score, 0.0), max_score)
    return values


def transition_submission(
    identity: Optional[Identity],
    submission_id: int,
    event,
    payload: Optional[Dict] = None,
) -> ScoreSubmission:
    """Apply one review event to a submission and commit it with its audit entry.

    Guards run in order: identity and ownership, current status, payload. No
    write happens until all of them pass. The status write is conditional on the
    status read here, so of two racing requests only one can succeed; the other
    gets InvalidTransition.
    """
    payload = payload or {}
    event = parse_event(event)
    rule = TRANSITIONS[event]
    submission = repo.get_submission(submission_id)

    _authorize(identity, submission, rule.actor)

    current = SubmissionStatus(submission.status)
    if current not in rule.sources:
        raise InvalidTransition(
            f"Cannot {event.value} a submission that is {current.value}"
        )

    values = _build_update(event, submission, identity, payload)
    reason = payload.get("reason") if event == ReviewEvent.OVERRIDE_APPROVE else None
    if reason is None and isinstance(payload.get("teacher_feedback"), str):
        reason = payload.get("teacher_feedback").strip() or None

    old_value = submission.to_dict()
    try:
        if not repo.update_status_if_current(submission.id, current, values):
            raise InvalidTransition(
                "Submission was changed by another request; reload and try again"
            )
        db.session.expire(submission)
        audit_log.record(
            identity.user_id,
            rule.action,
            audit_log.SUBMISSION_ENTITY,
            submission.id,
            old_value,
            submission.to_dict(),
            reason=reason.strip() if isinstance(reason, str) else None,
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info(
        f"Submission {submission.id}: {current.value} -> {rule.target.value} via {event.value} by {identity.user_id}"
    )
    return submission


def create_submission(
    identity: Optional[Identity],
    activity_id: int,
    raw_score,
    evidence: Optional[Dict] = None,
) -> ScoreSubmission:
    """Student entry point. Re-opens a declined or revision-requested record
    instead of creating a duplicate."""
    if identity is None:
        raise Unauthorized("Please log in to access this resource.")
    if not identity.is_student:
        raise Forbidden("Only students can submit scores")

    score = parse_score(raw_score)
    evidence_values = _evidence_values(evidence)

    activity = repo.get_activity(activity_id)
    if not repo.is_actively_enrolled(activity.class_id, identity.user_id):
        raise Forbidden("You are not enrolled in this class")
    if not activity.is_gradable:
        raise ValidationFailed("This activity is not accepting submissions")
    _check_score_range(score, float(activity.max_score))

    existing = repo.find_submission(activity.id, identity.user_id)
    if existing is not None:
        if SubmissionStatus(existing.status) in REOPENABLE:
            payload = dict(evidence_values, raw_score=score)
            return transition_submission(
                identity, existing.id, ReviewEvent.RESUBMIT, payload
            )
        raise InvalidTransition(
            f"Submission already exists with status {SubmissionStatus(existing.status).value}"
        )

    submission = ScoreSubmission(
        activity_id=activity.id,
        student_id=identity.user_id,
        raw_score=score,
        status=SubmissionStatus.PENDING,
        submitted_at=utcnow(),
        **evidence_values,
    )
    try:
        db.session.add(submission)
        db.session.flush()
        audit_log.record(
            identity.user_id,
            AuditAction.CREATE,
            audit_log.SUBMISSION_ENTITY,
            submission.id,
            None,
            submission.to_dict(),
        )
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise InvalidTransition("Submission already exists for this activity")
    except Exception:
        db.session.rollback()
        raise

    logger.info(
        f"Submission {submission.id} created by student {identity.user_id} for activity {activity.id}"
    )
    return submission


def bulk_transition(
    identity: Optional[Identity], submission_ids: List[int], event, payload=None
) -> List[Dict]:
    """Apply the same event to many submissions, each in its own transaction.

    One failure never undoes another submission's transition.
    """
    results = []
    for submission_id in submission_ids:
        try:
            submission = transition_submission(identity, submission_id, event, payload)
            results.append(
                {
                    "id": submission_id,
                    "ok": True,
                    "status": SubmissionStatus(submission.status).value,
                }
            )
        except GradebookError as e:
            results.append(
                {
                    "id": submission_id,
                    "ok": False,
                    "error": e.kind.value,
                    "message": e.message,
                }
            )
        except Exception as e:
            db.session.rollback()
            logger.error(f"Bulk transition failed for submission {submission_id}: {str(e)}")
            results.append(
                {
                    "id": submission_id,
                    "ok": False,
                    "error": "failed_to_transition",
                    "message": "Unexpected error while updating this submission",
                }
            )
    return results
