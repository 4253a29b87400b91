"""Request-scoped data access for the grading core.

Everything here goes through Flask-SQLAlchemy's scoped session, which is bound
to the current app context and removed at request teardown.
"""

from typing import Dict, List, Optional

from models import (
    Activity,
    Class,
    Enrollment,
    ScoreSubmission,
    SubmissionStatus,
    db,
)
from utils.errors import NotFound
from utils.transmutation import TransmutationTable


def get_class(class_id: int) -> Class:
    cls = db.session.get(Class, class_id)
    if cls is None:
        raise NotFound(f"Class {class_id} not found")
    return cls


def get_activity(activity_id: int) -> Activity:
    activity = db.session.get(Activity, activity_id)
    if activity is None:
        raise NotFound(f"Activity {activity_id} not found")
    return activity


def get_submission(submission_id: int) -> ScoreSubmission:
    submission = db.session.get(ScoreSubmission, submission_id)
    if submission is None:
        raise NotFound(f"Submission {submission_id} not found")
    return submission


def find_submission(activity_id: int, student_id: int) -> Optional[ScoreSubmission]:
    return ScoreSubmission.query.filter_by(
        activity_id=activity_id, student_id=student_id
    ).first()


def get_enrollment(class_id: int, student_id: int) -> Optional[Enrollment]:
    return Enrollment.query.filter_by(
        class_id=class_id, student_id=student_id, is_active=True
    ).first()


def is_actively_enrolled(class_id: int, student_id: int) -> bool:
    return get_enrollment(class_id, student_id) is not None


def active_enrollments(class_id: int) -> List[Enrollment]:
    return (
        Enrollment.query.filter_by(class_id=class_id, is_active=True)
        .order_by(Enrollment.student_name.asc(), Enrollment.student_id.asc())
        .all()
    )


def class_activities(class_id: int) -> List[Activity]:
    """All activities of a class, archived ones included (the engine filters)."""
    return (
        Activity.query.filter_by(class_id=class_id)
        .order_by(Activity.category.asc(), Activity.order.asc())
        .all()
    )


def student_submissions(class_id: int, student_id: int) -> List[ScoreSubmission]:
    return (
        ScoreSubmission.query.join(Activity)
        .filter(Activity.class_id == class_id)
        .filter(ScoreSubmission.student_id == student_id)
        .all()
    )


def class_submissions(class_id: int) -> List[ScoreSubmission]:
    return (
        ScoreSubmission.query.join(Activity)
        .filter(Activity.class_id == class_id)
        .all()
    )


def activity_submissions(activity_id: int) -> List[ScoreSubmission]:
    return ScoreSubmission.query.filter_by(activity_id=activity_id).all()


def next_activity_order(class_id: int, category) -> int:
    current = (
        db.session.query(db.func.max(Activity.order))
        .filter(Activity.class_id == class_id, Activity.category == category)
        .scalar()
    )
    return int(current or 0) + 1


def load_transmutation_table(grading_scheme) -> TransmutationTable:
    return TransmutationTable(grading_scheme.transmutation_rules)


def update_status_if_current(
    submission_id: int, expected_status: SubmissionStatus, values: Dict
) -> bool:
    """Atomic check-and-set on a submission's status.

    Issues UPDATE ... WHERE id = :id AND status = :expected inside the current
    transaction. Returns False when another request changed the status first.
    """
    affected = (
        ScoreSubmission.query.filter_by(id=submission_id, status=expected_status)
        .update(values, synchronize_session=False)
    )
    return affected == 1
