import enum
import logging
from typing import Dict, Iterable, List, Optional, Tuple

from models import ActivityCategory, SubmissionStatus
from utils.errors import ConfigurationInvalid, MissingConfiguration
from utils.transmutation import TransmutationTable

logger = logging.getLogger(__name__)

WEIGHT_TOLERANCE = 0.01

CATEGORIES = (
    ActivityCategory.WRITTEN_WORK,
    ActivityCategory.PERFORMANCE_TASK,
    ActivityCategory.QUARTERLY_ASSESSMENT,
)

APPROVED_ONLY = frozenset({SubmissionStatus.APPROVED})
APPROVED_OR_PENDING = frozenset({SubmissionStatus.APPROVED, SubmissionStatus.PENDING})


class WeightPolicy(str, enum.Enum):
    """How categories with no gradable activities are weighted.

    RENORMALIZE drops them and scales the remaining weights back up to 100.
    RAW drops them without scaling, which is how the legacy gradebook summed
    categories (a missing category silently lowered the total).
    """

    RENORMALIZE = "renormalize"
    RAW = "raw"


def check_weights(weights: Dict[str, float]) -> List[str]:
    """Return a list of problems with a WW/PT/QA weight set (empty when valid)."""
    errors = []
    for key, value in weights.items():
        if value < 0 or value > 100:
            errors.append(f"{key} must be between 0 and 100 (got {value})")
    total = sum(weights.values())
    if abs(total - 100.0) > WEIGHT_TOLERANCE:
        errors.append(f"Category weights must sum to 100 (got {round(total, 4)})")
    return errors


def _gradable_activities(category: ActivityCategory, activities: Iterable) -> Dict:
    return {
        a.id: a
        for a in activities
        if ActivityCategory(a.category) == category and a.is_active and not a.archived
    }


def category_totals(
    category: ActivityCategory,
    activities: Iterable,
    submissions: Iterable,
    statuses=APPROVED_ONLY,
) -> Optional[Tuple[float, float, int]]:
    """Sum (earned, max, counted submissions) for one category.

    Returns None when the category has no active, non-archived activities.
    The max is taken over every gradable activity, so unsubmitted work counts
    as zero once a category has activities.
    """
    gradable = _gradable_activities(category, activities)
    if not gradable:
        return None

    earned = 0.0
    counted = 0
    for sub in submissions:
        if sub.activity_id not in gradable:
            continue
        if SubmissionStatus(sub.status) not in statuses:
            continue
        earned += float(sub.raw_score or 0)
        counted += 1

    max_total = sum(float(a.max_score) for a in gradable.values())
    return earned, max_total, counted


def aggregate_category(
    category: ActivityCategory,
    activities: Iterable,
    submissions: Iterable,
    statuses=APPROVED_ONLY,
) -> Optional[float]:
    """Category percentage in [0, 100], or None when there is no graded work."""
    totals = category_totals(category, activities, submissions, statuses)
    if totals is None:
        return None
    earned, max_total, _ = totals
    if max_total <= 0:
        return None
    return min(max(earned / max_total * 100.0, 0.0), 100.0)


def weighted_sum(
    percentages: Dict[ActivityCategory, Optional[float]],
    weights: Dict[ActivityCategory, float],
    policy: WeightPolicy = WeightPolicy.RENORMALIZE,
) -> Optional[float]:
    """Combine category percentages under the scheme weights.

    Categories whose percentage is None never contribute. Returns None when no
    category can contribute at all.
    """
    present = [c for c in CATEGORIES if percentages.get(c) is not None]
    if not present:
        return None

    total = sum(percentages[c] * weights.get(c, 0.0) / 100.0 for c in present)
    if WeightPolicy(policy) == WeightPolicy.RAW:
        return total

    present_weight = sum(weights.get(c, 0.0) for c in present)
    if present_weight <= 0:
        return None
    return total * 100.0 / present_weight


def _scheme_weights(grading_scheme) -> Dict[ActivityCategory, float]:
    if isinstance(grading_scheme, dict):
        return {
            ActivityCategory.WRITTEN_WORK: float(
                grading_scheme.get("written_works_percent") or 0
            ),
            ActivityCategory.PERFORMANCE_TASK: float(
                grading_scheme.get("performance_tasks_percent") or 0
            ),
            ActivityCategory.QUARTERLY_ASSESSMENT: float(
                grading_scheme.get("quarterly_assessment_percent") or 0
            ),
        }
    return grading_scheme.weights()


def _grade_pass(activities, submissions, weights, table, policy, statuses) -> Dict:
    percentages = {
        c: aggregate_category(c, activities, submissions, statuses) for c in CATEGORIES
    }
    total = weighted_sum(percentages, weights, policy)
    if total is None:
        weighted, transmuted = None, None
    else:
        # Only the reported value is rounded; the table sees the exact sum
        weighted = round(total, 2)
        transmuted = table.lookup(total)
    return {
        "category_percentages": {
            c.value: (round(p, 2) if p is not None else None)
            for c, p in percentages.items()
        },
        "weighted_sum": weighted,
        "transmuted_grade": transmuted,
        "is_complete": all(p is not None for p in percentages.values()),
    }


def _status_counts(activities, submissions) -> Dict[str, int]:
    gradable_ids = {a.id for a in activities if a.is_active and not a.archived}
    counts = {s.value.lower(): 0 for s in SubmissionStatus}
    for sub in submissions:
        if sub.activity_id in gradable_ids:
            counts[SubmissionStatus(sub.status).value.lower()] += 1
    return counts


def compute_grades(
    submissions: List,
    activities: List,
    grading_scheme,
    transmutation_table: Optional[TransmutationTable] = None,
    policy: WeightPolicy = WeightPolicy.RENORMALIZE,
) -> Dict:
    """Compute one student's grade report.

    Pure over its inputs: submissions and activities are read, never modified,
    and identical inputs always give identical reports. The current grade uses
    APPROVED submissions only; the tentative grade also counts PENDING ones.
    """
    if grading_scheme is None:
        raise MissingConfiguration("No grading scheme configured for this class")

    weights = _scheme_weights(grading_scheme)
    problems = check_weights({c.value: w for c, w in weights.items()})
    if problems:
        raise ConfigurationInvalid("Grading scheme weights are invalid", details=problems)

    if transmutation_table is None:
        transmutation_table = TransmutationTable(
            getattr(grading_scheme, "transmutation_rules", None) or []
        )

    policy = WeightPolicy(policy)
    current = _grade_pass(
        activities, submissions, weights, transmutation_table, policy, APPROVED_ONLY
    )
    tentative = _grade_pass(
        activities,
        submissions,
        weights,
        transmutation_table,
        policy,
        APPROVED_OR_PENDING,
    )

    details = {}
    for c in CATEGORIES:
        totals = category_totals(c, activities, submissions)
        details[c.value] = (
            None
            if totals is None
            else {
                "earned": round(totals[0], 2),
                "max": round(totals[1], 2),
                "approved_count": totals[2],
            }
        )

    report = dict(current)
    report.update(
        {
            "category_details": details,
            "weights": {c.value: w for c, w in weights.items()},
            "weight_policy": policy.value,
            "tentative": tentative,
            "counts": _status_counts(activities, submissions),
        }
    )
    return report
