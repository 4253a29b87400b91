import logging
from typing import Dict, Iterable, List, Optional

from models import AuditAction, AuditLog, db, utcnow
from utils.errors import ValidationFailed

logger = logging.getLogger(__name__)

SUBMISSION_ENTITY = "ScoreSubmission"


def record(
    actor_id: int,
    action: AuditAction,
    entity_type: str,
    entity_id: int,
    old_value: Optional[Dict],
    new_value: Optional[Dict],
    reason: Optional[str] = None,
) -> AuditLog:
    """Append one audit entry to the current transaction.

    The entry is flushed immediately so a failing write surfaces here and the
    caller's transaction is rolled back with it. Nothing is committed.
    """
    action = AuditAction(action)
    if action == AuditAction.OVERRIDE and not (reason or "").strip():
        raise ValidationFailed("A reason is required to record an override")

    entry = AuditLog(
        actor_id=actor_id,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        old_value=old_value,
        new_value=new_value,
        reason=reason,
        created_at=utcnow(),
    )
    db.session.add(entry)
    db.session.flush()
    logger.info(f"Audit: {action.value} on {entity_type}:{entity_id} by {actor_id}")
    return entry


def history(entity_id: int, entity_type: str = SUBMISSION_ENTITY) -> List[AuditLog]:
    """Entries for one entity, oldest first."""
    return (
        AuditLog.query.filter_by(entity_type=entity_type, entity_id=entity_id)
        .order_by(AuditLog.created_at.asc(), AuditLog.id.asc())
        .all()
    )


def diff_snapshots(old: Optional[Dict], new: Optional[Dict]) -> Dict[str, Dict]:
    """Fields whose value differs between two snapshots."""
    old = old or {}
    new = new or {}
    changed = {}
    for key in sorted(set(old) | set(new)):
        if old.get(key) != new.get(key):
            changed[key] = {"old": old.get(key), "new": new.get(key)}
    return changed


def reconstruct(initial: Optional[Dict], entries: Iterable[AuditLog]) -> Dict:
    """Replay audit snapshots over an initial state to get the final state."""
    state = dict(initial or {})
    for entry in entries:
        if entry.new_value:
            state.update(entry.new_value)
    return state
