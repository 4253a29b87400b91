import pytest

from conftest import (
    OTHER_STUDENT_ID,
    OTHER_TEACHER_ID,
    enroll,
    make_activity,
    make_class,
    make_submission,
)
from models import AuditAction, AuditLog, Enrollment, ScoreSubmission, SubmissionStatus, db
from utils import audit_log, review_state
from utils.auth_utils import Identity, Role
from utils.errors import Forbidden, InvalidTransition, NotFound, ValidationFailed
from utils.review_state import ReviewEvent, allowed_events


@pytest.fixture
def setup(app):
    cls = make_class()
    activity = make_activity(cls, max_score=20)
    enroll(cls)
    return cls, activity


def _reload(submission_id):
    db.session.expire_all()
    return db.session.get(ScoreSubmission, submission_id)


def test_create_submission_is_pending_and_audited(setup, student):
    _, activity = setup
    sub = review_state.create_submission(student, activity.id, 18, {"notes": "done"})
    assert sub.status == SubmissionStatus.PENDING
    assert sub.notes == "done"

    entries = audit_log.history(sub.id)
    assert [e.action for e in entries] == [AuditAction.CREATE]
    assert entries[0].old_value is None
    assert entries[0].new_value["raw_score"] == 18


def test_create_rejects_out_of_range_scores(setup, student):
    _, activity = setup
    with pytest.raises(ValidationFailed):
        review_state.create_submission(student, activity.id, 21)
    with pytest.raises(ValidationFailed):
        review_state.create_submission(student, activity.id, -1)
    with pytest.raises(ValidationFailed):
        review_state.create_submission(student, activity.id, "abc")
    assert ScoreSubmission.query.count() == 0


def test_create_requires_enrollment(setup):
    _, activity = setup
    outsider = Identity(OTHER_STUDENT_ID, Role.STUDENT)
    with pytest.raises(Forbidden):
        review_state.create_submission(outsider, activity.id, 10)


def test_create_rejects_archived_activity(setup, student):
    _, activity = setup
    activity.archived = True
    db.session.commit()
    with pytest.raises(ValidationFailed):
        review_state.create_submission(student, activity.id, 10)


def test_teacher_cannot_create_submission(setup, teacher):
    _, activity = setup
    with pytest.raises(Forbidden):
        review_state.create_submission(teacher, activity.id, 10)


def test_unknown_activity_is_not_found(app, student):
    with pytest.raises(NotFound):
        review_state.create_submission(student, 999, 10)


def test_duplicate_pending_submission_is_invalid_transition(setup, student):
    _, activity = setup
    review_state.create_submission(student, activity.id, 10)
    with pytest.raises(InvalidTransition):
        review_state.create_submission(student, activity.id, 12)


def test_create_on_declined_record_resubmits(setup, student, teacher):
    _, activity = setup
    sub = review_state.create_submission(student, activity.id, 10)
    review_state.transition_submission(
        teacher, sub.id, "review-decline", {"teacher_feedback": "Wrong file"}
    )

    again = review_state.create_submission(student, activity.id, 15)
    assert again.id == sub.id
    assert again.status == SubmissionStatus.PENDING
    assert again.raw_score == 15
    assert again.teacher_feedback is None
    assert [e.action for e in audit_log.history(sub.id)] == [
        AuditAction.CREATE,
        AuditAction.DECLINED,
        AuditAction.UPDATE,
    ]


@pytest.mark.parametrize(
    "event,target,action",
    [
        ("review-approve", SubmissionStatus.APPROVED, AuditAction.APPROVED),
        ("review-decline", SubmissionStatus.DECLINED, AuditAction.DECLINED),
        ("request-revision", SubmissionStatus.NEEDS_REVISION, AuditAction.NEEDS_REVISION),
    ],
)
def test_teacher_review_from_pending(setup, teacher, event, target, action):
    _, activity = setup
    sub = make_submission(activity)
    result = review_state.transition_submission(
        teacher, sub.id, event, {"teacher_feedback": "Checked"}
    )
    assert result.status == target
    assert result.reviewed_by == teacher.user_id
    assert result.reviewed_at is not None
    assert result.teacher_feedback == "Checked"

    entries = audit_log.history(sub.id)
    assert len(entries) == 1
    assert entries[0].action == action
    assert entries[0].old_value["status"] == "PENDING"
    assert entries[0].new_value["status"] == target.value


def test_approved_is_terminal_for_review_events(setup, teacher):
    _, activity = setup
    sub = make_submission(activity, status=SubmissionStatus.APPROVED)
    for event in ("review-approve", "review-decline", "request-revision", "override-approve"):
        with pytest.raises(InvalidTransition):
            review_state.transition_submission(teacher, sub.id, event, {"reason": "x"})
    assert audit_log.history(sub.id) == []


def test_student_cannot_review(setup, student):
    _, activity = setup
    sub = make_submission(activity)
    with pytest.raises(Forbidden):
        review_state.transition_submission(student, sub.id, "review-approve")


def test_teacher_of_other_class_cannot_review(setup):
    _, activity = setup
    sub = make_submission(activity)
    other = Identity(OTHER_TEACHER_ID, Role.TEACHER)
    with pytest.raises(Forbidden):
        review_state.transition_submission(other, sub.id, "review-approve")
    assert _reload(sub.id).status == SubmissionStatus.PENDING


def test_override_requires_reason(setup, teacher):
    _, activity = setup
    sub = make_submission(activity, status=SubmissionStatus.DECLINED)
    with pytest.raises(ValidationFailed):
        review_state.transition_submission(teacher, sub.id, "override-approve", {})
    with pytest.raises(ValidationFailed):
        review_state.transition_submission(
            teacher, sub.id, "override-approve", {"reason": "   "}
        )
    assert _reload(sub.id).status == SubmissionStatus.DECLINED


def test_override_clamps_score_and_records_reason(setup, teacher):
    _, activity = setup
    sub = make_submission(activity, raw_score=5, status=SubmissionStatus.NEEDS_REVISION)
    result = review_state.transition_submission(
        teacher,
        sub.id,
        "override-approve",
        {"raw_score": 35, "reason": "Verified paper copy"},
    )
    assert result.status == SubmissionStatus.APPROVED
    assert result.raw_score == 20

    entry = audit_log.history(sub.id)[-1]
    assert entry.action == AuditAction.OVERRIDE
    assert entry.reason == "Verified paper copy"
    assert entry.old_value["raw_score"] == 5
    assert entry.new_value["raw_score"] == 20


def test_override_clamps_negative_scores_to_zero(setup, teacher):
    _, activity = setup
    sub = make_submission(activity)
    result = review_state.transition_submission(
        teacher, sub.id, "override-approve", {"raw_score": -3, "reason": "No work"}
    )
    assert result.raw_score == 0


def test_resubmit_only_by_owning_student(setup, student):
    _, activity = setup
    sub = make_submission(activity, status=SubmissionStatus.NEEDS_REVISION)
    intruder = Identity(OTHER_STUDENT_ID, Role.STUDENT)
    with pytest.raises(Forbidden):
        review_state.transition_submission(intruder, sub.id, "resubmit", {"raw_score": 12})

    result = review_state.transition_submission(student, sub.id, "resubmit", {"raw_score": 12})
    assert result.status == SubmissionStatus.PENDING
    assert result.raw_score == 12


def test_resubmit_from_pending_is_invalid(setup, student):
    _, activity = setup
    sub = make_submission(activity)
    with pytest.raises(InvalidTransition):
        review_state.transition_submission(student, sub.id, "resubmit", {"raw_score": 12})


def test_unknown_event_is_validation_failure(setup, teacher):
    _, activity = setup
    sub = make_submission(activity)
    with pytest.raises(ValidationFailed):
        review_state.transition_submission(teacher, sub.id, "publish")


def test_lost_race_is_invalid_transition(setup, teacher, monkeypatch):
    _, activity = setup
    sub = make_submission(activity)
    monkeypatch.setattr(
        review_state.repo, "update_status_if_current", lambda *args, **kwargs: False
    )
    with pytest.raises(InvalidTransition):
        review_state.transition_submission(teacher, sub.id, "review-approve")
    assert _reload(sub.id).status == SubmissionStatus.PENDING
    assert audit_log.history(sub.id) == []


def test_conditional_update_only_matches_expected_status(setup):
    from utils import repositories as repo

    _, activity = setup
    sub = make_submission(activity, status=SubmissionStatus.DECLINED)
    assert not repo.update_status_if_current(
        sub.id, SubmissionStatus.PENDING, {"status": SubmissionStatus.APPROVED}
    )
    assert repo.update_status_if_current(
        sub.id, SubmissionStatus.DECLINED, {"status": SubmissionStatus.PENDING}
    )
    db.session.commit()
    assert _reload(sub.id).status == SubmissionStatus.PENDING


def test_second_of_two_approvals_loses(setup, teacher):
    _, activity = setup
    sub = make_submission(activity)
    review_state.transition_submission(teacher, sub.id, "review-approve")
    with pytest.raises(InvalidTransition):
        review_state.transition_submission(teacher, sub.id, "review-decline")
    assert len(audit_log.history(sub.id)) == 1


def test_audit_failure_rolls_back_transition(setup, teacher, monkeypatch):
    _, activity = setup
    sub = make_submission(activity)

    def broken_record(*args, **kwargs):
        raise RuntimeError("audit store unavailable")

    monkeypatch.setattr(review_state.audit_log, "record", broken_record)
    with pytest.raises(RuntimeError):
        review_state.transition_submission(teacher, sub.id, "review-approve")

    reloaded = _reload(sub.id)
    assert reloaded.status == SubmissionStatus.PENDING
    assert reloaded.reviewed_by is None
    assert AuditLog.query.count() == 0


def test_bulk_transition_isolates_failures(setup, teacher):
    cls, activity = setup
    enroll(cls, student_id=OTHER_STUDENT_ID, name="Other, Student")
    ok = make_submission(activity)
    already = make_submission(
        activity, student_id=OTHER_STUDENT_ID, status=SubmissionStatus.APPROVED
    )

    results = review_state.bulk_transition(
        teacher, [ok.id, already.id, 999], ReviewEvent.REVIEW_APPROVE
    )
    assert [r["ok"] for r in results] == [True, False, False]
    assert results[1]["error"] == "invalid_transition"
    assert results[2]["error"] == "not_found"
    assert _reload(ok.id).status == SubmissionStatus.APPROVED


def test_allowed_events_by_role():
    assert set(allowed_events(SubmissionStatus.PENDING, Role.TEACHER)) == {
        ReviewEvent.REVIEW_APPROVE,
        ReviewEvent.REVIEW_DECLINE,
        ReviewEvent.REQUEST_REVISION,
        ReviewEvent.OVERRIDE_APPROVE,
    }
    assert allowed_events(SubmissionStatus.DECLINED, Role.STUDENT) == [ReviewEvent.RESUBMIT]
    assert allowed_events(SubmissionStatus.APPROVED, Role.TEACHER) == []
    assert allowed_events(SubmissionStatus.PENDING, Role.STUDENT) == []


def test_resubmit_after_revision_clears_feedback(setup, teacher, student):
    _, activity = setup
    sub = make_submission(activity)
    review_state.transition_submission(
        teacher, sub.id, "request-revision", {"teacher_feedback": "Show your work"}
    )
    assert _reload(sub.id).teacher_feedback == "Show your work"

    result = review_state.transition_submission(student, sub.id, "resubmit", {"raw_score": 16})
    assert result.status == SubmissionStatus.PENDING
    assert result.teacher_feedback is None
    assert result.reviewed_by is None


def test_student_cannot_reopen_approved(setup, student):
    _, activity = setup
    sub = make_submission(activity, status=SubmissionStatus.APPROVED)
    with pytest.raises(InvalidTransition):
        review_state.transition_submission(student, sub.id, "resubmit", {"raw_score": 20})
    with pytest.raises(InvalidTransition):
        review_state.create_submission(student, activity.id, 20)


def test_inactive_enrollment_cannot_resubmit(setup, student):
    cls, activity = setup
    sub = make_submission(activity, status=SubmissionStatus.DECLINED)
    enrollment = Enrollment.query.filter_by(class_id=cls.id, student_id=student.user_id).one()
    enrollment.is_active = False
    db.session.commit()

    with pytest.raises(Forbidden):
        review_state.transition_submission(student, sub.id, "resubmit", {"raw_score": 20})
    assert _reload(sub.id).status == SubmissionStatus.DECLINED
    assert audit_log.history(sub.id) == []


def test_resubmit_on_archived_activity_is_rejected(setup, student):
    _, activity = setup
    sub = make_submission(activity, status=SubmissionStatus.NEEDS_REVISION)
    activity.archived = True
    db.session.commit()

    with pytest.raises(ValidationFailed):
        review_state.transition_submission(student, sub.id, "resubmit", {"raw_score": 20})
    reloaded = _reload(sub.id)
    assert reloaded.status == SubmissionStatus.NEEDS_REVISION
    assert reloaded.raw_score == 10
