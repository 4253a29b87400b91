"""
Database models for the E-Class gradebook.
Classes own their activities and grading scheme; submissions and audit entries
are independent facts that reference them.
"""

import enum
from datetime import datetime, timezone

from flask_sqlalchemy import SQLAlchemy
from sqlalchemy import event

db = SQLAlchemy()


def utcnow():
    """Naive UTC timestamp with microseconds (SQLite and MySQL DATETIME(6) safe)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _iso(value):
    return value.isoformat() if value else None


class ActivityCategory(str, enum.Enum):
    WRITTEN_WORK = "WRITTEN_WORK"
    PERFORMANCE_TASK = "PERFORMANCE_TASK"
    QUARTERLY_ASSESSMENT = "QUARTERLY_ASSESSMENT"


class SubmissionStatus(str, enum.Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    DECLINED = "DECLINED"
    NEEDS_REVISION = "NEEDS_REVISION"


class GradingPeriodStatus(str, enum.Enum):
    OPEN = "OPEN"
    COMPLETED = "COMPLETED"


class AuditAction(str, enum.Enum):
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    DECLINED = "DECLINED"
    NEEDS_REVISION = "NEEDS_REVISION"
    OVERRIDE = "OVERRIDE"
    ARCHIVE = "ARCHIVE"
    UNARCHIVE = "UNARCHIVE"
    UPDATE_GRADING_SCHEME = "UPDATE_GRADING_SCHEME"
    COMPLETE_GRADING_PERIOD = "COMPLETE_GRADING_PERIOD"
    REOPEN_GRADING_PERIOD = "REOPEN_GRADING_PERIOD"


class Class(db.Model):
    __tablename__ = "classes"

    id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    owner_id = db.Column(db.Integer, nullable=False, index=True)  # teacher user id
    name = db.Column(db.String(100), nullable=False)
    subject = db.Column(db.String(100), nullable=True)
    section = db.Column(db.String(50), nullable=True)
    school_year = db.Column(db.String(9), nullable=True)  # e.g., "2024-2025"
    quarter = db.Column(db.Integer, nullable=False, default=1)
    grading_period_status = db.Column(
        db.Enum(GradingPeriodStatus),
        nullable=False,
        default=GradingPeriodStatus.OPEN,
    )
    grading_period_completed_at = db.Column(db.DateTime, nullable=True)
    grading_period_completed_by = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime, default=utcnow)

    # Relationships
    activities = db.relationship(
        "Activity", back_populates="class_obj", order_by="Activity.order"
    )
    enrollments = db.relationship("Enrollment", back_populates="class_obj")
    grading_scheme = db.relationship(
        "GradingScheme",
        back_populates="class_obj",
        uselist=False,
        cascade="all, delete-orphan",
    )

    @property
    def is_completed(self):
        return self.grading_period_status == GradingPeriodStatus.COMPLETED

    def to_dict(self):
        return {
            "id": self.id,
            "owner_id": self.owner_id,
            "name": self.name,
            "subject": self.subject,
            "section": self.section,
            "school_year": self.school_year,
            "quarter": self.quarter,
            "grading_period_status": (
                self.grading_period_status.value
                if self.grading_period_status
                else None
            ),
            "grading_period_completed_at": _iso(self.grading_period_completed_at),
        }

    def __repr__(self):
        return f"<Class {self.name} Q{self.quarter}>"


class Enrollment(db.Model):
    """Student-class enrollment. Read-only to the grading core."""

    __tablename__ = "enrollments"

    id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    class_id = db.Column(
        db.Integer, db.ForeignKey("classes.id"), nullable=False, index=True
    )
    student_id = db.Column(db.Integer, nullable=False, index=True)
    student_name = db.Column(db.String(150), nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    enrolled_at = db.Column(db.DateTime, default=utcnow)

    class_obj = db.relationship("Class", back_populates="enrollments")

    __table_args__ = (
        db.UniqueConstraint("class_id", "student_id", name="unique_class_student"),
    )

    def __repr__(self):
        return f"<Enrollment student:{self.student_id} class:{self.class_id}>"


class Activity(db.Model):
    __tablename__ = "activities"

    id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    class_id = db.Column(
        db.Integer, db.ForeignKey("classes.id"), nullable=False, index=True
    )
    category = db.Column(db.Enum(ActivityCategory), nullable=False, index=True)
    title = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=True)
    max_score = db.Column(db.Float, nullable=False)
    order = db.Column(db.Integer, nullable=False, default=1)
    due_date = db.Column(db.DateTime, nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    archived = db.Column(db.Boolean, nullable=False, default=False, index=True)
    archived_at = db.Column(db.DateTime, nullable=True)
    archived_by = db.Column(db.Integer, nullable=True)
    archive_reason = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime, default=utcnow)

    class_obj = db.relationship("Class", back_populates="activities")
    submissions = db.relationship("ScoreSubmission", back_populates="activity")

    __table_args__ = (
        db.CheckConstraint("max_score > 0", name="ck_activity_max_score_positive"),
    )

    @property
    def is_gradable(self):
        """Active, non-archived activities are the only ones counted in grades."""
        return bool(self.is_active) and not self.archived

    def to_dict(self):
        return {
            "id": self.id,
            "class_id": self.class_id,
            "category": self.category.value if self.category else None,
            "title": self.title,
            "description": self.description,
            "max_score": self.max_score,
            "order": self.order,
            "due_date": _iso(self.due_date),
            "is_active": self.is_active,
            "archived": self.archived,
            "archived_at": _iso(self.archived_at),
            "archive_reason": self.archive_reason,
        }

    def __repr__(self):
        return f"<Activity {self.title} ({self.max_score} pts)>"


class GradingScheme(db.Model):
    __tablename__ = "grading_schemes"

    id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    class_id = db.Column(
        db.Integer, db.ForeignKey("classes.id"), nullable=False, unique=True
    )
    written_works_percent = db.Column(db.Float, nullable=False)
    performance_tasks_percent = db.Column(db.Float, nullable=False)
    quarterly_assessment_percent = db.Column(db.Float, nullable=False)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    class_obj = db.relationship("Class", back_populates="grading_scheme")
    transmutation_rules = db.relationship(
        "TransmutationRule",
        back_populates="grading_scheme",
        cascade="all, delete-orphan",
        order_by="TransmutationRule.min_percent",
    )

    def weights(self):
        """Category -> weight percent."""
        return {
            ActivityCategory.WRITTEN_WORK: float(self.written_works_percent or 0),
            ActivityCategory.PERFORMANCE_TASK: float(
                self.performance_tasks_percent or 0
            ),
            ActivityCategory.QUARTERLY_ASSESSMENT: float(
                self.quarterly_assessment_percent or 0
            ),
        }

    def to_dict(self):
        return {
            "class_id": self.class_id,
            "written_works_percent": self.written_works_percent,
            "performance_tasks_percent": self.performance_tasks_percent,
            "quarterly_assessment_percent": self.quarterly_assessment_percent,
            "transmutation_rules": [r.to_dict() for r in self.transmutation_rules],
        }

    def __repr__(self):
        return (
            f"<GradingScheme WW {self.written_works_percent}% / "
            f"PT {self.performance_tasks_percent}% / "
            f"QA {self.quarterly_assessment_percent}%>"
        )


class TransmutationRule(db.Model):
    __tablename__ = "transmutation_rules"

    id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    grading_scheme_id = db.Column(
        db.Integer, db.ForeignKey("grading_schemes.id"), nullable=False, index=True
    )
    min_percent = db.Column(db.Float, nullable=False)
    max_percent = db.Column(db.Float, nullable=False)
    transmuted_grade = db.Column(db.Float, nullable=False)

    grading_scheme = db.relationship(
        "GradingScheme", back_populates="transmutation_rules"
    )

    def to_dict(self):
        return {
            "min_percent": self.min_percent,
            "max_percent": self.max_percent,
            "transmuted_grade": self.transmuted_grade,
        }

    def __repr__(self):
        return f"<TransmutationRule {self.min_percent}-{self.max_percent} -> {self.transmuted_grade}>"


class ScoreSubmission(db.Model):
    __tablename__ = "score_submissions"

    id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    activity_id = db.Column(
        db.Integer, db.ForeignKey("activities.id"), nullable=False, index=True
    )
    student_id = db.Column(db.Integer, nullable=False, index=True)
    raw_score = db.Column(db.Float, nullable=False)
    status = db.Column(
        db.Enum(SubmissionStatus),
        nullable=False,
        default=SubmissionStatus.PENDING,
        index=True,
    )
    teacher_feedback = db.Column(db.Text, nullable=True)
    evidence_url = db.Column(db.String(500), nullable=True)
    evidence_type = db.Column(db.String(50), nullable=True)
    notes = db.Column(db.Text, nullable=True)
    submitted_at = db.Column(db.DateTime, default=utcnow)
    reviewed_at = db.Column(db.DateTime, nullable=True)
    reviewed_by = db.Column(db.Integer, nullable=True)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    activity = db.relationship("Activity", back_populates="submissions")

    # A student has at most one live submission per activity
    __table_args__ = (
        db.UniqueConstraint(
            "activity_id", "student_id", name="unique_activity_student"
        ),
    )

    def to_dict(self):
        """Full snapshot, also used as the audit before/after payload."""
        return {
            "id": self.id,
            "activity_id": self.activity_id,
            "student_id": self.student_id,
            "raw_score": self.raw_score,
            "status": self.status.value if self.status else None,
            "teacher_feedback": self.teacher_feedback,
            "evidence_url": self.evidence_url,
            "evidence_type": self.evidence_type,
            "notes": self.notes,
            "submitted_at": _iso(self.submitted_at),
            "reviewed_at": _iso(self.reviewed_at),
            "reviewed_by": self.reviewed_by,
        }

    def __repr__(self):
        return f"<ScoreSubmission activity:{self.activity_id} student:{self.student_id} {self.status}>"


class AuditLog(db.Model):
    """Append-only trail of every mutation to a reviewable entity."""

    __tablename__ = "audit_logs"

    id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    actor_id = db.Column(db.Integer, nullable=False, index=True)
    action = db.Column(db.Enum(AuditAction), nullable=False, index=True)
    entity_type = db.Column(db.String(50), nullable=False)
    entity_id = db.Column(db.Integer, nullable=False)
    old_value = db.Column(db.JSON, nullable=True)
    new_value = db.Column(db.JSON, nullable=True)
    reason = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow, index=True)

    __table_args__ = (
        db.Index("idx_audit_entity", "entity_type", "entity_id"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "actor_id": self.actor_id,
            "action": self.action.value if self.action else None,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "old_value": self.old_value,
            "new_value": self.new_value,
            "reason": self.reason,
            "timestamp": _iso(self.created_at),
        }

    def __repr__(self):
        return f"<AuditLog {self.action} {self.entity_type}:{self.entity_id} by {self.actor_id}>"


@event.listens_for(AuditLog, "before_update")
def _refuse_audit_update(mapper, connection, target):
    raise RuntimeError("audit log entries are immutable")


@event.listens_for(AuditLog, "before_delete")
def _refuse_audit_delete(mapper, connection, target):
    raise RuntimeError("audit log entries are immutable")
