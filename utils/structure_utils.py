from typing import Dict, List, Optional, Tuple

from utils.errors import ValidationFailed

# DepEd seed table: percent range -> transmuted grade
DEFAULT_TRANSMUTATION_RULES: List[Dict] = [
    {"min_percent": 0, "max_percent": 4.99, "transmuted_grade": 70},
    {"min_percent": 5, "max_percent": 9.99, "transmuted_grade": 71},
    {"min_percent": 10, "max_percent": 14.99, "transmuted_grade": 72},
    {"min_percent": 15, "max_percent": 19.99, "transmuted_grade": 73},
    {"min_percent": 20, "max_percent": 24.99, "transmuted_grade": 74},
    {"min_percent": 25, "max_percent": 29.99, "transmuted_grade": 75},
    {"min_percent": 30, "max_percent": 34.99, "transmuted_grade": 76},
    {"min_percent": 35, "max_percent": 39.99, "transmuted_grade": 77},
    {"min_percent": 40, "max_percent": 44.99, "transmuted_grade": 78},
    {"min_percent": 45, "max_percent": 49.99, "transmuted_grade": 79},
    {"min_percent": 50, "max_percent": 54.99, "transmuted_grade": 80},
    {"min_percent": 55, "max_percent": 59.99, "transmuted_grade": 81},
    {"min_percent": 60, "max_percent": 64.99, "transmuted_grade": 82},
    {"min_percent": 65, "max_percent": 69.99, "transmuted_grade": 83},
    {"min_percent": 70, "max_percent": 74.99, "transmuted_grade": 84},
    {"min_percent": 75, "max_percent": 79.99, "transmuted_grade": 85},
    {"min_percent": 80, "max_percent": 84.99, "transmuted_grade": 86},
    {"min_percent": 85, "max_percent": 89.99, "transmuted_grade": 87},
    {"min_percent": 90, "max_percent": 94.99, "transmuted_grade": 88},
    {"min_percent": 95, "max_percent": 100, "transmuted_grade": 90},
]

WEIGHT_KEYS = (
    "written_works_percent",
    "performance_tasks_percent",
    "quarterly_assessment_percent",
)


def normalize_weights(payload: Dict) -> Tuple[Dict[str, float], List[str]]:
    """Coerce the three category weights to floats.

    Expected input shape:
    {"written_works_percent": 30, "performance_tasks_percent": 50, "quarterly_assessment_percent": 20}
    Returns (weights, errors); weights only holds the keys that parsed.
    """
    weights: Dict[str, float] = {}
    errors: List[str] = []
    if not isinstance(payload, dict):
        return weights, ["grading scheme must be an object"]

    for key in WEIGHT_KEYS:
        raw = payload.get(key)
        if raw is None or isinstance(raw, bool):
            errors.append(f"{key} is required")
            continue
        try:
            weights[key] = float(raw)
        except (TypeError, ValueError):
            errors.append(f"{key} must be a number")
    return weights, errors


def normalize_transmutation_rules(
    rules,
) -> Tuple[Optional[List[Dict]], List[str]]:
    """Flatten a transmutation rules payload into a list of numeric row dicts.

    Input rows: {min_percent, max_percent, transmuted_grade}. A missing payload
    returns (None, []) so callers can fall back to the seed table.
    """
    if rules is None:
        return None, []
    if not isinstance(rules, list):
        return None, ["transmutation_rules must be an array"]

    rows: List[Dict] = []
    errors: List[str] = []
    for i, rule in enumerate(rules):
        if not isinstance(rule, dict):
            errors.append(f"transmutation_rules[{i}] must be an object")
            continue
        try:
            rows.append(
                {
                    "min_percent": float(rule["min_percent"]),
                    "max_percent": float(rule["max_percent"]),
                    "transmuted_grade": float(rule["transmuted_grade"]),
                }
            )
        except KeyError as e:
            errors.append(f"transmutation_rules[{i}] is missing {e.args[0]}")
        except (TypeError, ValueError):
            errors.append(f"transmutation_rules[{i}] values must be numbers")
    return rows, errors


def parse_id(value, field: str) -> int:
    """Coerce an identifier from a JSON payload or query string."""
    if value is None or isinstance(value, bool):
        raise ValidationFailed(f"{field} is required")
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        raise ValidationFailed(f"{field} must be an integer")
    if parsed <= 0:
        raise ValidationFailed(f"{field} must be positive")
    return parsed
