from conftest import (
    OTHER_TEACHER_ID,
    STUDENT_ID,
    TEACHER_ID,
    enroll,
    make_activity,
    make_class,
    make_submission,
)
from models import AuditAction, AuditLog, SubmissionStatus
from utils.structure_utils import DEFAULT_TRANSMUTATION_RULES

WEIGHTS = {
    "written_works_percent": 25,
    "performance_tasks_percent": 50,
    "quarterly_assessment_percent": 25,
}


def test_get_scheme_returns_csrf_token(app, login):
    cls = make_class()
    resp = login(TEACHER_ID, "teacher").get(f"/api/gradebuilder/class/{cls.id}/scheme")
    assert resp.status_code == 200
    data = resp.get_json()
    assert data["csrf_token"]
    assert data["grading_scheme"]["written_works_percent"] == 30
    assert len(data["grading_scheme"]["transmutation_rules"]) == 20


def test_scheme_is_owner_only(app, login):
    cls = make_class()
    resp = login(OTHER_TEACHER_ID, "teacher").get(f"/api/gradebuilder/class/{cls.id}/scheme")
    assert resp.status_code == 403


def test_save_scheme_defaults_to_seed_table(app, login):
    cls = make_class(with_scheme=False)
    resp = login(TEACHER_ID, "teacher").put(
        f"/api/gradebuilder/class/{cls.id}/scheme", json=WEIGHTS
    )
    assert resp.status_code == 200
    scheme = resp.get_json()["grading_scheme"]
    assert scheme["quarterly_assessment_percent"] == 25
    assert len(scheme["transmutation_rules"]) == len(DEFAULT_TRANSMUTATION_RULES)
    assert AuditLog.query.filter_by(action=AuditAction.UPDATE_GRADING_SCHEME).count() == 1


def test_save_scheme_replaces_rules(app, login):
    cls = make_class()
    rules = [
        {"min_percent": 0, "max_percent": 59.99, "transmuted_grade": 70},
        {"min_percent": 60, "max_percent": 100, "transmuted_grade": 90},
    ]
    resp = login(TEACHER_ID, "teacher").put(
        f"/api/gradebuilder/class/{cls.id}/scheme",
        json=dict(WEIGHTS, transmutation_rules=rules),
    )
    assert resp.status_code == 200
    assert len(resp.get_json()["grading_scheme"]["transmutation_rules"]) == 2


def test_save_scheme_rejects_unbalanced_weights(app, login):
    cls = make_class()
    resp = login(TEACHER_ID, "teacher").put(
        f"/api/gradebuilder/class/{cls.id}/scheme",
        json=dict(WEIGHTS, quarterly_assessment_percent=30),
    )
    assert resp.status_code == 400
    data = resp.get_json()
    assert data["error"] == "validation_failed"
    assert data["details"]


def test_save_scheme_rejects_gapped_table(app, login):
    cls = make_class()
    rules = [
        {"min_percent": 0, "max_percent": 50, "transmuted_grade": 70},
        {"min_percent": 60, "max_percent": 100, "transmuted_grade": 90},
    ]
    resp = login(TEACHER_ID, "teacher").put(
        f"/api/gradebuilder/class/{cls.id}/scheme",
        json=dict(WEIGHTS, transmutation_rules=rules),
    )
    assert resp.status_code == 400
    assert any("gap" in d for d in resp.get_json()["details"])


def test_completed_period_locks_configuration(app, login):
    cls = make_class()
    client = login(TEACHER_ID, "teacher")

    resp = client.post(
        f"/api/gradebuilder/class/{cls.id}/grading-period", json={"action": "complete"}
    )
    assert resp.status_code == 200
    assert resp.get_json()["class"]["grading_period_status"] == "COMPLETED"

    resp = client.put(f"/api/gradebuilder/class/{cls.id}/scheme", json=WEIGHTS)
    assert resp.status_code == 409
    resp = client.post(
        f"/api/gradebuilder/class/{cls.id}/activities",
        json={"category": "WRITTEN_WORK", "title": "Quiz", "max_score": 10},
    )
    assert resp.status_code == 409

    resp = client.post(
        f"/api/gradebuilder/class/{cls.id}/grading-period", json={"action": "reopen"}
    )
    assert resp.status_code == 200
    assert client.put(f"/api/gradebuilder/class/{cls.id}/scheme", json=WEIGHTS).status_code == 200


def test_create_activity_assigns_order(app, login):
    cls = make_class()
    client = login(TEACHER_ID, "teacher")
    url = f"/api/gradebuilder/class/{cls.id}/activities"
    first = client.post(url, json={"category": "written_work", "title": "Quiz 1", "max_score": 10})
    second = client.post(url, json={"category": "WRITTEN_WORK", "title": "Quiz 2", "max_score": 15})
    assert first.status_code == 201
    assert first.get_json()["order"] == 1
    assert second.get_json()["order"] == 2

    bad = client.post(url, json={"category": "WRITTEN_WORK", "title": "Quiz 3", "max_score": 0})
    assert bad.status_code == 400
    bad = client.post(url, json={"category": "HOMEWORK", "title": "Quiz 3", "max_score": 5})
    assert bad.status_code == 400


def test_archive_removes_activity_from_grades(app, login):
    cls = make_class()
    kept = make_activity(cls, max_score=10, title="Kept")
    dropped = make_activity(cls, max_score=10, title="Dropped")
    enroll(cls)
    make_submission(kept, raw_score=10, status=SubmissionStatus.APPROVED)

    teacher = login(TEACHER_ID, "teacher")
    resp = teacher.post(
        f"/api/gradebuilder/activities/{dropped.id}/archive", json={"reason": "Cancelled"}
    )
    assert resp.status_code == 200
    assert resp.get_json()["archived"] is True
    assert teacher.post(f"/api/gradebuilder/activities/{dropped.id}/archive").status_code == 409

    report = teacher.get(f"/api/compute/class/{cls.id}/student/{STUDENT_ID}").get_json()
    assert report["category_percentages"]["WRITTEN_WORK"] == 100.0

    resp = teacher.post(f"/api/gradebuilder/activities/{dropped.id}/unarchive")
    assert resp.status_code == 200
    report = teacher.get(f"/api/compute/class/{cls.id}/student/{STUDENT_ID}").get_json()
    assert report["category_percentages"]["WRITTEN_WORK"] == 50.0

    actions = [e.action for e in AuditLog.query.filter_by(entity_type="Activity").all()]
    assert actions == [AuditAction.ARCHIVE, AuditAction.UNARCHIVE]
