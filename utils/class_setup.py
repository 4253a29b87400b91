"""Teacher-side configuration of a class: grading scheme, grading period and
activities. Every change is audited in the same transaction as the write."""

import logging
from typing import Dict, Optional

from models import (
    Activity,
    ActivityCategory,
    AuditAction,
    Class,
    GradingPeriodStatus,
    GradingScheme,
    TransmutationRule,
    db,
    utcnow,
)
from utils import audit_log
from utils import repositories as repo
from utils.auth_utils import Identity
from utils.errors import ConfigurationInvalid, InvalidTransition, ValidationFailed
from utils.grade_calculation import check_weights
from utils.structure_utils import (
    DEFAULT_TRANSMUTATION_RULES,
    normalize_transmutation_rules,
    normalize_weights,
)
from utils.transmutation import TransmutationTable

logger = logging.getLogger(__name__)

CLASS_ENTITY = "Class"
SCHEME_ENTITY = "GradingScheme"
ACTIVITY_ENTITY = "Activity"


def _ensure_open(cls: Class, what: str) -> None:
    if cls.is_completed:
        raise InvalidTransition(
            f"Cannot {what}: the grading period for this class is completed"
        )


def _commit_with_audit(actor_id, action, entity_type, entity_id, old, new, reason=None):
    try:
        audit_log.record(actor_id, action, entity_type, entity_id, old, new, reason)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise


def validate_scheme_payload(payload: Dict):
    """Return (weights, rules) ready to store, or raise ValidationFailed."""
    weights, errors = normalize_weights(payload)
    if errors:
        raise ValidationFailed("Grading scheme is invalid", details=errors)
    errors = check_weights(weights)
    if errors:
        raise ValidationFailed("Grading scheme weights are invalid", details=errors)

    rules, errors = normalize_transmutation_rules(
        payload.get("transmutation_rules") if isinstance(payload, dict) else None
    )
    if errors:
        raise ValidationFailed("Transmutation rules are invalid", details=errors)
    if rules is None:
        rules = [dict(r) for r in DEFAULT_TRANSMUTATION_RULES]

    try:
        TransmutationTable(rules).validate()
    except ConfigurationInvalid as e:
        raise ValidationFailed(e.message, details=e.details)
    return weights, rules


def save_grading_scheme(identity: Identity, cls: Class, payload: Dict) -> GradingScheme:
    """Create or replace the class grading scheme and its transmutation rules."""
    _ensure_open(cls, "change the grading scheme")
    weights, rules = validate_scheme_payload(payload)

    scheme = cls.grading_scheme
    old_value = scheme.to_dict() if scheme is not None else None
    if scheme is None:
        scheme = GradingScheme(class_id=cls.id, **weights)
        db.session.add(scheme)
    else:
        for key, value in weights.items():
            setattr(scheme, key, value)
        scheme.transmutation_rules.clear()
        # Old rules must be gone before new ones with the same ranges are inserted
        db.session.flush()

    for row in rules:
        scheme.transmutation_rules.append(TransmutationRule(**row))
    db.session.flush()

    _commit_with_audit(
        identity.user_id,
        AuditAction.UPDATE_GRADING_SCHEME,
        SCHEME_ENTITY,
        scheme.id,
        old_value,
        scheme.to_dict(),
    )
    logger.info(f"Grading scheme saved for class {cls.id} by {identity.user_id}")
    return scheme


def set_grading_period(identity: Identity, cls: Class, action: str) -> Class:
    action = (action or "").strip().lower()
    if action not in ("complete", "reopen"):
        raise ValidationFailed("action must be 'complete' or 'reopen'")

    old_value = cls.to_dict()
    if action == "complete":
        if cls.is_completed:
            raise InvalidTransition("Grading period is already completed")
        cls.grading_period_status = GradingPeriodStatus.COMPLETED
        cls.grading_period_completed_at = utcnow()
        cls.grading_period_completed_by = identity.user_id
        audit_action = AuditAction.COMPLETE_GRADING_PERIOD
    else:
        if not cls.is_completed:
            raise InvalidTransition("Grading period is not completed")
        cls.grading_period_status = GradingPeriodStatus.OPEN
        cls.grading_period_completed_at = None
        cls.grading_period_completed_by = None
        audit_action = AuditAction.REOPEN_GRADING_PERIOD

    db.session.flush()
    _commit_with_audit(
        identity.user_id, audit_action, CLASS_ENTITY, cls.id, old_value, cls.to_dict()
    )
    logger.info(f"Class {cls.id} grading period {action}d by {identity.user_id}")
    return cls


def _parse_category(value) -> ActivityCategory:
    try:
        return ActivityCategory(str(value).strip().upper())
    except ValueError:
        valid = ", ".join(c.value for c in ActivityCategory)
        raise ValidationFailed(f"category must be one of: {valid}")


def create_activity(identity: Identity, cls: Class, payload: Dict) -> Activity:
    _ensure_open(cls, "add activities")
    category = _parse_category(payload.get("category"))

    title = payload.get("title")
    if not isinstance(title, str) or not title.strip():
        raise ValidationFailed("title is required")

    max_score = payload.get("max_score")
    try:
        if max_score is None or isinstance(max_score, bool):
            raise ValueError
        max_score = float(max_score)
    except (TypeError, ValueError):
        raise ValidationFailed("max_score must be a number")
    if max_score <= 0:
        raise ValidationFailed("max_score must be greater than 0")

    description = payload.get("description")
    if description is not None and not isinstance(description, str):
        raise ValidationFailed("description must be a string")

    activity = Activity(
        class_id=cls.id,
        category=category,
        title=title.strip(),
        description=description,
        max_score=max_score,
        order=repo.next_activity_order(cls.id, category),
    )
    db.session.add(activity)
    db.session.flush()
    _commit_with_audit(
        identity.user_id,
        AuditAction.CREATE,
        ACTIVITY_ENTITY,
        activity.id,
        None,
        activity.to_dict(),
    )
    logger.info(f"Activity {activity.id} ({category.value}) created in class {cls.id}")
    return activity


def set_archived(
    identity: Identity, activity: Activity, archived: bool, reason: Optional[str] = None
) -> Activity:
    """Archive or restore an activity. Archived activities drop out of grades."""
    _ensure_open(activity.class_obj, "archive activities")
    if bool(activity.archived) == archived:
        state = "archived" if archived else "not archived"
        raise InvalidTransition(f"Activity is already {state}")

    old_value = activity.to_dict()
    if archived:
        activity.archived = True
        activity.archived_at = utcnow()
        activity.archived_by = identity.user_id
        activity.archive_reason = (reason or "").strip() or None
    else:
        activity.archived = False
        activity.archived_at = None
        activity.archived_by = None
        activity.archive_reason = None

    db.session.flush()
    _commit_with_audit(
        identity.user_id,
        AuditAction.ARCHIVE if archived else AuditAction.UNARCHIVE,
        ACTIVITY_ENTITY,
        activity.id,
        old_value,
        activity.to_dict(),
        reason=(reason or "").strip() or None,
    )
    return activity
