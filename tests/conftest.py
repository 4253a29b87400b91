import pytest

from app import create_app
from config import TestingConfig
from models import (
    Activity,
    ActivityCategory,
    Class,
    Enrollment,
    GradingScheme,
    ScoreSubmission,
    SubmissionStatus,
    TransmutationRule,
    db,
    utcnow,
)
from utils.auth_utils import Identity, Role
from utils.structure_utils import DEFAULT_TRANSMUTATION_RULES

TEACHER_ID = 1
OTHER_TEACHER_ID = 2
STUDENT_ID = 101
OTHER_STUDENT_ID = 102


@pytest.fixture
def app():
    app = create_app(TestingConfig)
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def login(client):
    def _login(user_id, role):
        with client.session_transaction() as sess:
            sess["user_id"] = user_id
            sess["role"] = role
        return client

    return _login


@pytest.fixture
def teacher():
    return Identity(TEACHER_ID, Role.TEACHER)


@pytest.fixture
def student():
    return Identity(STUDENT_ID, Role.STUDENT)


def make_class(owner_id=TEACHER_ID, weights=(30, 50, 20), rules=None, with_scheme=True):
    cls = Class(owner_id=owner_id, name="Grade 10 - Science", quarter=1)
    db.session.add(cls)
    db.session.flush()
    if with_scheme:
        scheme = GradingScheme(
            class_id=cls.id,
            written_works_percent=weights[0],
            performance_tasks_percent=weights[1],
            quarterly_assessment_percent=weights[2],
        )
        for row in rules if rules is not None else DEFAULT_TRANSMUTATION_RULES:
            scheme.transmutation_rules.append(TransmutationRule(**row))
        db.session.add(scheme)
    db.session.commit()
    return cls


def make_activity(cls, category=ActivityCategory.WRITTEN_WORK, max_score=100, **kwargs):
    activity = Activity(
        class_id=cls.id,
        category=category,
        title=kwargs.pop("title", f"{category.value.title()} activity"),
        max_score=max_score,
        **kwargs,
    )
    db.session.add(activity)
    db.session.commit()
    return activity


def enroll(cls, student_id=STUDENT_ID, name="Student, Test", is_active=True):
    enrollment = Enrollment(
        class_id=cls.id, student_id=student_id, student_name=name, is_active=is_active
    )
    db.session.add(enrollment)
    db.session.commit()
    return enrollment


def make_submission(activity, student_id=STUDENT_ID, raw_score=10, status=SubmissionStatus.PENDING):
    submission = ScoreSubmission(
        activity_id=activity.id,
        student_id=student_id,
        raw_score=raw_score,
        status=status,
        submitted_at=utcnow(),
    )
    db.session.add(submission)
    db.session.commit()
    return submission
