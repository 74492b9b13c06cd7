"""
Condition checkers used by the rule engine.

Each checker takes the expected value from the policy and the resource's
attributes and returns a ConditionOutcome. A failing outcome always carries at
least one detail string. A subject field that is entirely absent is a failure,
never "not applicable".

Checkers raise ConditionError when the policy itself is malformed (wrong value
type, bad regex); that is an evaluation error, not a verdict.
"""

import functools
import json
import re
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, NamedTuple, Tuple

from ..attributes import (
    MISSING,
    Attributes,
    as_mapping,
    is_enabled_indicator,
    is_positive_int,
    is_true,
    lookup,
    lookup_path,
    loosely_equal,
    render,
)
from ..errors import ConditionError


class ConditionOutcome(NamedTuple):
    passed: bool
    details: List[str]


PASSED = ConditionOutcome(True, [])


def _failed(*details: str) -> ConditionOutcome:
    return ConditionOutcome(False, list(details))


def _expect_bool(condition: str, expected: Any) -> bool:
    if not isinstance(expected, bool):
        raise ConditionError(condition, f"expected true or false, got {render(expected)!r}")
    return expected


def _present(attributes: Attributes, fields: Tuple[str, ...]) -> List[Tuple[str, Any]]:
    """(field, value) pairs for the candidate fields present on the resource, in order."""
    present = []
    for field in fields:
        value = lookup(attributes, field)
        if value is not MISSING and value is not None:
            present.append((field, value))
    return present


# --- Indicator checks: "is at least one of these legacy fields switched on?" ---


def _versioning_predicate(value: Any) -> bool:
    if is_true(value):
        return True
    mapping = as_mapping(value)
    return mapping is not None and is_true(mapping.get("enabled"))


def _backup_predicate(value: Any) -> bool:
    return is_enabled_indicator(value) or is_positive_int(value)


@dataclass(frozen=True)
class IndicatorSpec:
    condition: str
    fields: Tuple[str, ...]
    predicate: Callable[[Any], bool]
    failure_detail: str


INDICATOR_SPECS: Dict[str, IndicatorSpec] = {
    spec.condition: spec
    for spec in (
        IndicatorSpec(
            "encryption.enabled",
            (
                "encryption",
                "encrypted",
                "encryption_configuration",
                "server_side_encryption_configuration",
                "encryption_at_rest",
            ),
            is_enabled_indicator,
            "Encryption is not enabled",
        ),
        IndicatorSpec(
            "versioning.enabled",
            ("versioning", "versioning_configuration", "version_enabled"),
            _versioning_predicate,
            "Versioning is not enabled",
        ),
        IndicatorSpec(
            "logging.enabled",
            ("logging", "logging_configuration", "log_configuration", "enable_logging"),
            is_enabled_indicator,
            "Logging is not enabled",
        ),
        IndicatorSpec(
            "backup.enabled",
            ("backup", "backup_configuration", "backup_enabled", "backup_retention_period"),
            _backup_predicate,
            "Backup is not configured",
        ),
    )
}


def check_indicator(spec: IndicatorSpec, expected: Any, attributes: Attributes) -> ConditionOutcome:
    if not _expect_bool(spec.condition, expected):
        return PASSED

    present = _present(attributes, spec.fields)
    if not present:
        return _failed(
            spec.failure_detail,
            f"None of the fields ({', '.join(spec.fields)}) are set on the resource",
        )
    for _field, value in present:
        if spec.predicate(value):
            return PASSED
    return _failed(spec.failure_detail)


# --- Individual checkers ---


def check_required_tags(expected: Any, attributes: Attributes) -> ConditionOutcome:
    if not isinstance(expected, (list, tuple)):
        raise ConditionError("tags.required", "expected a list of tag keys")

    tags = as_mapping(lookup(attributes, "tags"))
    if tags is None:
        return _failed("No tags found on resource")

    missing_tags = [str(tag) for tag in expected if str(tag) not in tags]
    if missing_tags:
        return _failed(f"Missing required tags: {', '.join(missing_tags)}")
    return PASSED


PUBLIC_ACCESS_FIELDS = (
    "public",
    "publicly_accessible",
    "public_access_enabled",
    "acl",
)


def check_public_access_blocked(expected: Any, attributes: Attributes) -> ConditionOutcome:
    if not _expect_bool("public_access.blocked", expected):
        return PASSED

    present = _present(attributes, PUBLIC_ACCESS_FIELDS)
    if not present:
        return _failed(
            "Public access settings not found on resource "
            f"(checked: {', '.join(PUBLIC_ACCESS_FIELDS)})"
        )
    for field, value in present:
        if is_true(value):
            return _failed(f"Resource has public access via '{field}'")
        if isinstance(value, str) and "public" in value.lower():
            return _failed(f"Resource has public access via '{field}': {value}")
    return PASSED


NAME_FIELDS = ("name", "id", "resource_name")


def check_naming_pattern(expected: Any, attributes: Attributes) -> ConditionOutcome:
    if not isinstance(expected, str):
        raise ConditionError("naming.pattern", "expected a regular expression string")
    try:
        pattern = re.compile(expected)
    except re.error as e:
        raise ConditionError("naming.pattern", f"invalid regex pattern '{expected}': {e}")

    for field in NAME_FIELDS:
        name = lookup(attributes, field)
        if isinstance(name, str):
            if pattern.search(name):
                return PASSED
            return _failed(f"Name '{name}' does not match pattern '{expected}'")
    return _failed(f"No name field ({', '.join(NAME_FIELDS)}) found on resource")


POLICY_FIELDS = ("policy", "policy_document", "policy_arn")
WILDCARD_MARKERS = ("*:*", '"*"')


def check_least_privilege(expected: Any, attributes: Attributes) -> ConditionOutcome:
    if not _expect_bool("iam.least_privilege", expected):
        return PASSED

    present = _present(attributes, POLICY_FIELDS)
    if not present:
        return _failed(f"No policy document found on resource (checked: {', '.join(POLICY_FIELDS)})")
    for field, value in present:
        # Some providers hand back the document already decoded
        text = value if isinstance(value, str) else json.dumps(value)
        if any(marker in text for marker in WILDCARD_MARKERS):
            return _failed(f"Policy in '{field}' contains wildcard permissions")
    return PASSED


def check_private_subnet(expected: Any, attributes: Attributes) -> ConditionOutcome:
    if not _expect_bool("network.private_subnet", expected):
        return PASSED

    subnet_id = lookup(attributes, "subnet_id")
    if subnet_id is MISSING or subnet_id is None:
        return _failed("No subnet_id found on resource")
    if "public" in render(subnet_id).lower():
        return _failed(f"Resource is in a public subnet ({render(subnet_id)})")
    return PASSED


def check_property(condition: str, expected: Any, attributes: Attributes) -> ConditionOutcome:
    """Generic dotted-path lookup with a loose (rendered) comparison."""
    value, reason = lookup_path(attributes, condition)
    if value is MISSING:
        return _failed(reason)
    if not loosely_equal(value, expected):
        return _failed(
            f"Property '{condition}' has value '{render(value)}', expected '{render(expected)}'"
        )
    return PASSED


CheckerFn = Callable[[Any, Attributes], ConditionOutcome]

CHECKERS: Dict[str, CheckerFn] = {
    "tags.required": check_required_tags,
    "public_access.blocked": check_public_access_blocked,
    "naming.pattern": check_naming_pattern,
    "iam.least_privilege": check_least_privilege,
    "network.private_subnet": check_private_subnet,
}
CHECKERS.update(
    {condition: functools.partial(check_indicator, spec) for condition, spec in INDICATOR_SPECS.items()}
)


def evaluate_condition(condition: str, expected: Any, attributes: Attributes) -> ConditionOutcome:
    checker = CHECKERS.get(condition)
    if checker is None:
        return check_property(condition, expected, attributes)
    return checker(expected, attributes)
