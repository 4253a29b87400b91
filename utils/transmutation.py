import logging
from typing import Iterable, List, NamedTuple

from utils.errors import ConfigurationInvalid

logger = logging.getLogger(__name__)

# Neighbouring rules whose bounds differ by at most this much are contiguous
# (seed data uses 4.99 / 5 style boundaries).
BOUNDARY_TOLERANCE = 0.01
_EPS = 1e-9


class Rule(NamedTuple):
    min_percent: float
    max_percent: float
    transmuted_grade: float


def _as_rule(item) -> Rule:
    if isinstance(item, Rule):
        return item
    if isinstance(item, dict):
        return Rule(
            float(item["min_percent"]),
            float(item["max_percent"]),
            float(item["transmuted_grade"]),
        )
    return Rule(
        float(item.min_percent),
        float(item.max_percent),
        float(item.transmuted_grade),
    )


class TransmutationTable:
    """Ordered percentage ranges mapping a weighted percent to a reported grade.

    Rules are inclusive on both ends. When two neighbours are contiguous (the
    next rule starts within BOUNDARY_TOLERANCE of the previous rule's max), the
    lower rule owns everything up to, but excluding, the next rule's min. This
    way a percent such as 4.995 falls into the 0-4.99 rule instead of a gap.
    """

    def __init__(self, rules: Iterable):
        self.rules: List[Rule] = sorted(
            (_as_rule(r) for r in rules or []),
            key=lambda r: (r.min_percent, r.max_percent),
        )

    def __len__(self):
        return len(self.rules)

    def _upper_bound(self, index: int):
        """Return (bound, inclusive) for the rule at index."""
        rule = self.rules[index]
        if index + 1 < len(self.rules):
            nxt = self.rules[index + 1]
            gap = nxt.min_percent - rule.max_percent
            if 0 < gap <= BOUNDARY_TOLERANCE + _EPS:
                return nxt.min_percent, False
        return rule.max_percent, True

    def validate(self) -> None:
        """Raise ConfigurationInvalid unless the rules cover [0, 100] exactly once."""
        errors = []
        if not self.rules:
            raise ConfigurationInvalid("Transmutation table has no rules")

        for i, rule in enumerate(self.rules):
            if rule.min_percent > rule.max_percent:
                errors.append(
                    f"rule {i}: min_percent {rule.min_percent} exceeds max_percent {rule.max_percent}"
                )
            if i == 0:
                continue
            prev = self.rules[i - 1]
            gap = rule.min_percent - prev.max_percent
            if gap <= 0:
                errors.append(
                    f"rule {i}: range {rule.min_percent}-{rule.max_percent} overlaps {prev.min_percent}-{prev.max_percent}"
                )
            elif gap > BOUNDARY_TOLERANCE + _EPS:
                errors.append(
                    f"gap between {prev.max_percent} and {rule.min_percent}"
                )
            if rule.transmuted_grade < prev.transmuted_grade:
                logger.warning(
                    f"Transmutation grade decreases at {rule.min_percent}% "
                    f"({prev.transmuted_grade} -> {rule.transmuted_grade})"
                )

        if self.rules[0].min_percent > 0:
            errors.append(f"table starts at {self.rules[0].min_percent}, not 0")
        if self.rules[-1].max_percent < 100:
            errors.append(f"table ends at {self.rules[-1].max_percent}, not 100")

        if errors:
            raise ConfigurationInvalid(
                "Transmutation table is invalid", details=errors
            )

    def lookup(self, percent: float) -> float:
        """Transmute a weighted percent. Fails loudly on gaps and overlaps."""
        p = min(max(float(percent), 0.0), 100.0)
        matches = []
        for i, rule in enumerate(self.rules):
            upper, inclusive = self._upper_bound(i)
            if p < rule.min_percent:
                continue
            if p < upper or (inclusive and p <= upper):
                matches.append(rule)

        if len(matches) != 1:
            reason = "no rule matches" if not matches else "several rules match"
            logger.error(f"Transmutation lookup failed for {p}%: {reason}")
            raise ConfigurationInvalid(
                f"Transmutation table cannot map {round(p, 4)}%: {reason}"
            )
        return matches[0].transmuted_grade

    def to_list(self) -> List[dict]:
        return [r._asdict() for r in self.rules]
