from conftest import (
    OTHER_STUDENT_ID,
    STUDENT_ID,
    TEACHER_ID,
    enroll,
    make_activity,
    make_class,
    make_submission,
)
from models import SubmissionStatus
from utils import review_state
from utils.auth_utils import Identity, Role


def test_missing_roster_marks_absent_students(app, login):
    cls = make_class()
    activity = make_activity(cls, max_score=10)
    enroll(cls, STUDENT_ID, "Bautista, Ramon")
    enroll(cls, OTHER_STUDENT_ID, "Aquino, Liza")
    enroll(cls, 103, "Cruz, Pia", is_active=False)
    make_submission(activity, STUDENT_ID, status=SubmissionStatus.APPROVED)

    resp = login(TEACHER_ID, "teacher").get(f"/api/reports/activity/{activity.id}/missing")
    assert resp.status_code == 200
    data = resp.get_json()
    assert data["activity"]["id"] == activity.id
    assert data["counts"]["APPROVED"] == 1
    assert data["counts"]["NO_SUBMISSION"] == 1
    assert data["counts"]["total"] == 2
    assert [r["status"] for r in data["roster"]] == ["NO_SUBMISSION", "APPROVED"]


def test_missing_roster_is_teacher_only(app, login):
    cls = make_class()
    activity = make_activity(cls)
    enroll(cls)
    resp = login(STUDENT_ID, "student").get(f"/api/reports/activity/{activity.id}/missing")
    assert resp.status_code == 403


def test_submission_history_with_diffs(app, login):
    cls = make_class()
    activity = make_activity(cls, max_score=10)
    enroll(cls)
    sub = review_state.create_submission(Identity(STUDENT_ID, Role.STUDENT), activity.id, 4)
    review_state.transition_submission(
        Identity(TEACHER_ID, Role.TEACHER),
        sub.id,
        "override-approve",
        {"raw_score": 8, "reason": "Recounted"},
    )

    resp = login(STUDENT_ID, "student").get(f"/api/reports/submission/{sub.id}/history")
    assert resp.status_code == 200
    data = resp.get_json()
    assert [h["action"] for h in data["history"]] == ["CREATE", "OVERRIDE"]
    override = data["history"][1]
    assert override["reason"] == "Recounted"
    assert override["changes"]["raw_score"] == {"old": 4, "new": 8}
    assert override["changes"]["status"] == {"old": "PENDING", "new": "APPROVED"}
    assert data["reconstructed"]["raw_score"] == 8


def test_submission_history_hidden_from_other_student(app, login):
    cls = make_class()
    activity = make_activity(cls)
    sub = make_submission(activity)
    resp = login(OTHER_STUDENT_ID, "student").get(f"/api/reports/submission/{sub.id}/history")
    assert resp.status_code == 403


def test_export_class_grades(app, login):
    cls = make_class()
    activity = make_activity(cls, max_score=10)
    enroll(cls)
    make_submission(activity, raw_score=9, status=SubmissionStatus.APPROVED)
    client = login(TEACHER_ID, "teacher")

    data = client.get(f"/api/reports/class/{cls.id}/export").get_json()
    assert data["students"][0]["transmuted_grade"] == 88
    assert len(data["activities"]) == 1

    resp = client.get(f"/api/reports/class/{cls.id}/export?format=pdf")
    assert resp.status_code == 200
    assert resp.mimetype == "application/pdf"
    assert resp.data.startswith(b"%PDF")

    assert client.get(f"/api/reports/class/{cls.id}/export?format=xls").status_code == 400
