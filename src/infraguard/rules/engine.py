import functools
import logging
import re
from typing import List, Pattern

from ..attributes import Attributes
from ..models import ValidationResult
from .checkers import evaluate_condition
from .policy import Policy, Rule

logger = logging.getLogger(__name__)


@functools.lru_cache(maxsize=256)
def _compile_type_pattern(pattern: str) -> Pattern[str]:
    # Only '*' is special; everything else is matched literally.
    regex = ".*".join(re.escape(part) for part in pattern.split("*"))
    return re.compile(regex)


def match_resource_type(pattern: str, resource_type: str) -> bool:
    """
    Case-sensitive, anchored match of a resource type against a pattern.

    >>> match_resource_type("aws_*", "aws_s3_bucket")
    True
    >>> match_resource_type("aws_*", "otheraws_bucket")
    False
    """
    return _compile_type_pattern(pattern).fullmatch(resource_type) is not None


class RuleEngine:
    """Evaluates the rules of one policy against resource attributes."""

    def __init__(self, policy: Policy):
        self.policy = policy

    def applicable_rules(self, resource_type: str) -> List[Rule]:
        """Enabled rules whose type patterns match, in policy order. No patterns matches everything."""
        applicable = []
        for rule in self.policy.rules:
            if not rule.enabled:
                continue
            if not rule.resource_types or any(
                match_resource_type(p, resource_type) for p in rule.resource_types
            ):
                applicable.append(rule)
        return applicable

    def evaluate(self, rule: Rule, attributes: Attributes, address: str = "") -> ValidationResult:
        """
        Evaluates every condition of ``rule`` in declaration order.

        The rule passes only if all conditions pass. Evaluation stops at the
        first failing condition and only its details are reported.

        Raises:
            ConditionError: if a condition in the rule is malformed.
        """
        for condition, expected in rule.conditions.items():
            outcome = evaluate_condition(condition, expected, attributes)
            if not outcome.passed:
                logger.debug("Rule '%s' failed on %s at condition '%s'", rule.name, address, condition)
                return self._result(rule, address, passed=False, details=outcome.details)
        return self._result(rule, address, passed=True, details=[])

    def _result(self, rule: Rule, address: str, passed: bool, details: List[str]) -> ValidationResult:
        return ValidationResult(
            resource_address=address,
            rule_name=rule.name,
            passed=passed,
            severity=rule.severity,
            message=rule.message or rule.description,
            details=details,
            remediation=rule.remediation,
        )
