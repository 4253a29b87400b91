"""Demo data for local development (``flask seed-demo``)."""

import logging

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
from utils.structure_utils import DEFAULT_TRANSMUTATION_RULES

logger = logging.getLogger(__name__)

DEMO_TEACHER_ID = 1
DEMO_STUDENTS = [
    (101, "Dela Cruz, Juan"),
    (102, "Garcia, Maria"),
    (103, "Reyes, Jose"),
    (104, "Santos, Ana"),
]
DEMO_ACTIVITIES = [
    (ActivityCategory.WRITTEN_WORK, "Quiz 1", 20),
    (ActivityCategory.WRITTEN_WORK, "Quiz 2", 25),
    (ActivityCategory.PERFORMANCE_TASK, "Group Project", 50),
    (ActivityCategory.PERFORMANCE_TASK, "Lab Practical", 40),
    (ActivityCategory.QUARTERLY_ASSESSMENT, "Quarterly Exam", 60),
]


def seed_demo_class(owner_id: int = DEMO_TEACHER_ID) -> Class:
    """Create one demo class with the seed transmutation table and some scores."""
    cls = Class(
        owner_id=owner_id,
        name="Grade 10 - Mathematics",
        subject="Mathematics",
        section="Rizal",
        school_year="2024-2025",
        quarter=1,
    )
    db.session.add(cls)
    db.session.flush()

    scheme = GradingScheme(
        class_id=cls.id,
        written_works_percent=30,
        performance_tasks_percent=50,
        quarterly_assessment_percent=20,
    )
    for row in DEFAULT_TRANSMUTATION_RULES:
        scheme.transmutation_rules.append(TransmutationRule(**row))
    db.session.add(scheme)

    activities = []
    order = {}
    for category, title, max_score in DEMO_ACTIVITIES:
        order[category] = order.get(category, 0) + 1
        activity = Activity(
            class_id=cls.id,
            category=category,
            title=title,
            max_score=max_score,
            order=order[category],
        )
        db.session.add(activity)
        activities.append(activity)

    for student_id, name in DEMO_STUDENTS:
        db.session.add(
            Enrollment(class_id=cls.id, student_id=student_id, student_name=name)
        )
    db.session.flush()

    # Approved scores for the first students, one pending entry to review
    now = utcnow()
    for i, (student_id, _) in enumerate(DEMO_STUDENTS[:3]):
        for activity in activities:
            db.session.add(
                ScoreSubmission(
                    activity_id=activity.id,
                    student_id=student_id,
                    raw_score=round(activity.max_score * (0.95 - 0.15 * i), 2),
                    status=SubmissionStatus.APPROVED,
                    submitted_at=now,
                    reviewed_at=now,
                    reviewed_by=owner_id,
                )
            )
    db.session.add(
        ScoreSubmission(
            activity_id=activities[0].id,
            student_id=DEMO_STUDENTS[3][0],
            raw_score=15,
            status=SubmissionStatus.PENDING,
            submitted_at=now,
        )
    )

    db.session.commit()
    logger.info(f"Seeded demo class {cls.id} with {len(DEMO_STUDENTS)} students")
    return cls
