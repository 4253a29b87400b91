import logging
from datetime import datetime
from io import BytesIO

from flask import Blueprint, jsonify, request, send_file
from reportlab.lib import colors
from reportlab.lib.pagesizes import letter
from reportlab.lib.styles import getSampleStyleSheet
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from models import SubmissionStatus
from utils import audit_log
from utils import repositories as repo
from utils.auth_utils import login_required, require_class_owner, require_identity
from utils.errors import Forbidden, GradebookError, ValidationFailed, error_response
from utils.grade_reports import class_grade_reports, configured_policy

logger = logging.getLogger(__name__)

reports_bp = Blueprint("reports", __name__)

NO_SUBMISSION = "NO_SUBMISSION"


@reports_bp.route(
    "/api/reports/activity/<int:activity_id>/missing",
    methods=["GET"],
    endpoint="missing_roster",
)
@login_required
def missing_roster(activity_id: int):
    """Every active student with their submission status for one activity."""
    try:
        activity = repo.get_activity(activity_id)
        require_class_owner(activity.class_obj)

        by_student = {
            s.student_id: s for s in repo.activity_submissions(activity.id)
        }
        counts = {s.value: 0 for s in SubmissionStatus}
        counts[NO_SUBMISSION] = 0
        roster = []
        for enrollment in repo.active_enrollments(activity.class_id):
            sub = by_student.get(enrollment.student_id)
            status = SubmissionStatus(sub.status).value if sub else NO_SUBMISSION
            counts[status] += 1
            roster.append(
                {
                    "student_id": enrollment.student_id,
                    "student_name": enrollment.student_name,
                    "status": status,
                    "submission_id": sub.id if sub else None,
                    "raw_score": sub.raw_score if sub else None,
                    "submitted_at": (
                        sub.submitted_at.isoformat()
                        if sub and sub.submitted_at
                        else None
                    ),
                }
            )
        counts["total"] = len(roster)

        return (
            jsonify({"activity": activity.to_dict(), "counts": counts, "roster": roster}),
            200,
        )
    except GradebookError as e:
        return error_response(e)
    except Exception as e:
        logger.error(f"Failed to build missing roster for activity {activity_id}: {str(e)}")
        return jsonify({"error": "failed_to_fetch"}), 500


@reports_bp.route(
    "/api/reports/submission/<int:submission_id>/history",
    methods=["GET"],
    endpoint="submission_history",
)
@login_required
def submission_history(submission_id: int):
    """Audit trail of one submission, oldest first, with per-entry field diffs."""
    try:
        identity = require_identity()
        submission = repo.get_submission(submission_id)
        if identity.is_teacher:
            if submission.activity.class_obj.owner_id != identity.user_id:
                raise Forbidden("You do not own this class")
        elif submission.student_id != identity.user_id:
            raise Forbidden("This submission belongs to another student")

        entries = audit_log.history(submission.id)
        history = []
        for entry in entries:
            item = entry.to_dict()
            item["changes"] = audit_log.diff_snapshots(entry.old_value, entry.new_value)
            history.append(item)

        return (
            jsonify(
                {
                    "submission": submission.to_dict(),
                    "history": history,
                    "reconstructed": audit_log.reconstruct(None, entries),
                }
            ),
            200,
        )
    except GradebookError as e:
        return error_response(e)
    except Exception as e:
        logger.error(f"Failed to load history for submission {submission_id}: {str(e)}")
        return jsonify({"error": "failed_to_fetch"}), 500


def _fmt(value, suffix=""):
    return f"{value:.2f}{suffix}" if value is not None else "-"


def _grades_pdf(cls, reports) -> BytesIO:
    buffer = BytesIO()
    doc = SimpleDocTemplate(buffer, pagesize=letter)
    styles = getSampleStyleSheet()
    elements = []

    elements.append(Paragraph(f"Grade Report - {cls.name}", styles["Title"]))
    elements.append(Spacer(1, 12))

    class_info_text = f"""
    Subject: {cls.subject or '-'}<br/>
    Section: {cls.section or '-'}<br/>
    School Year: {cls.school_year or '-'} (Quarter {cls.quarter})<br/>
    Grading Period: {cls.grading_period_status.value}<br/>
    Generated: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}
    """
    elements.append(Paragraph(class_info_text, styles["Normal"]))
    elements.append(Spacer(1, 20))

    data = [["Student", "WW %", "PT %", "QA %", "Weighted", "Grade"]]
    for r in reports:
        pct = r["category_percentages"]
        data.append(
            [
                r.get("student_name") or f"Student {r['student_id']}",
                _fmt(pct.get("WRITTEN_WORK")),
                _fmt(pct.get("PERFORMANCE_TASK")),
                _fmt(pct.get("QUARTERLY_ASSESSMENT")),
                _fmt(r["weighted_sum"]),
                _fmt(r["transmuted_grade"]),
            ]
        )

    table = Table(data)
    table.setStyle(
        TableStyle(
            [
                ("BACKGROUND", (0, 0), (-1, 0), colors.grey),
                ("TEXTCOLOR", (0, 0), (-1, 0), colors.whitesmoke),
                ("ALIGN", (0, 0), (-1, -1), "CENTER"),
                ("FONTNAME", (0, 0), (-1, 0), "Helvetica-Bold"),
                ("BOTTOMPADDING", (0, 0), (-1, 0), 12),
                ("BACKGROUND", (0, 1), (-1, -1), colors.beige),
                ("GRID", (0, 0), (-1, -1), 1, colors.black),
            ]
        )
    )
    elements.append(table)

    doc.build(elements)
    buffer.seek(0)
    return buffer


# GET /api/reports/class/<class_id>/export?format=json|pdf
@reports_bp.route(
    "/api/reports/class/<int:class_id>/export",
    methods=["GET"],
    endpoint="export_class_grades",
)
@login_required
def export_class_grades(class_id: int):
    try:
        cls = repo.get_class(class_id)
        require_class_owner(cls)
        fmt = (request.args.get("format") or "json").lower()
        if fmt not in ("json", "pdf"):
            raise ValidationFailed("format must be 'json' or 'pdf'")

        reports = class_grade_reports(cls, policy=configured_policy())
        if fmt == "json":
            activities = [a.to_dict() for a in repo.class_activities(cls.id) if a.is_gradable]
            return (
                jsonify({"class": cls.to_dict(), "activities": activities, "students": reports}),
                200,
            )

        filename = f"grade_report_{cls.id}_{datetime.now().strftime('%Y%m%d_%H%M%S')}.pdf"
        return send_file(
            _grades_pdf(cls, reports),
            as_attachment=True,
            download_name=filename,
            mimetype="application/pdf",
        )
    except GradebookError as e:
        return error_response(e)
    except Exception as e:
        logger.error(f"Error exporting grades for class {class_id}: {str(e)}")
        return jsonify({"error": "failed_to_export"}), 500
