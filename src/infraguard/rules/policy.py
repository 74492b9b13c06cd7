import logging
import os
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from ..errors import PolicyParseError
from ..models import Severity

logger = logging.getLogger(__name__)

DEFAULT_POLICY_PATH = os.path.join("policies", "sample-policy.yml")


class Rule(BaseModel):
    """A named compliance rule scoped to resource-type patterns."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(min_length=1)
    description: str = ""
    severity: Severity = Severity.ERROR
    category: str = ""  # e.g. "security", "compliance", "cost"
    enabled: bool = True
    resource_types: List[str] = Field(default_factory=list)  # Empty means every type
    # Declaration order is significant: conditions are evaluated in this order.
    conditions: Dict[str, Any] = Field(default_factory=dict)
    message: str = ""
    remediation: Optional[str] = None

    @field_validator("severity", mode="before")
    def normalise_severity(cls, v):
        if isinstance(v, str):
            return v.strip().lower()
        return v

    @field_validator("resource_types", mode="before")
    def coerce_resource_types(cls, v):
        if v is None:
            return []
        if isinstance(v, str):
            return [v]
        return v

    @field_validator("conditions", mode="before")
    def coerce_conditions(cls, v):
        return {} if v is None else v


class Policy(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str = ""
    version: str = ""
    description: str = ""
    rules: List[Rule] = Field(default_factory=list)

    @field_validator("version", mode="before")
    def stringify_version(cls, v):
        # "version: 1.0" arrives from YAML as a float
        return "" if v is None else str(v)

    @field_validator("rules", mode="before")
    def coerce_rules(cls, v):
        return [] if v is None else v

    @field_validator("rules")
    def unique_rule_names(cls, rules: List[Rule]) -> List[Rule]:
        seen = set()
        for rule in rules:
            if rule.name in seen:
                raise ValueError(f"duplicate rule name '{rule.name}'")
            seen.add(rule.name)
        return rules

    def get_rule(self, name: str) -> Optional[Rule]:
        return next((r for r in self.rules if r.name == name), None)


def parse_policy(policy_data: Any, source: Optional[str] = None) -> Policy:
    """
    Builds a Policy from an already-loaded mapping.

    Unknown condition keys are accepted here; they are evaluated by the generic
    property checker at run time.
    """
    if policy_data is None:
        raise PolicyParseError("policy document is empty", source)
    if not isinstance(policy_data, dict):
        raise PolicyParseError(
            f"policy document must be a mapping, got {type(policy_data).__name__}", source
        )
    try:
        return Policy(**policy_data)
    except ValidationError as e:
        raise PolicyParseError(f"policy validation error:\n{e}", source)


def load_policy(policy_path: str) -> Policy:
    """
    Loads a policy from a YAML file.

    Raises:
        PolicyParseError: if the file is missing or unreadable, is not valid YAML,
                          or does not have the policy shape.
    """
    if not policy_path or not os.path.isfile(policy_path):
        raise PolicyParseError("policy file does not exist", policy_path)

    logger.info("Loading policy from: %s", policy_path)
    try:
        with open(policy_path, "r") as f:
            policy_data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise PolicyParseError(f"error parsing YAML policy file: {e}", policy_path)
    except OSError as e:
        raise PolicyParseError(f"cannot read policy file: {e}", policy_path)

    policy = parse_policy(policy_data, policy_path)
    logger.info(
        "Loaded policy '%s' (version %s) with %d rule(s)",
        policy.name or "unnamed", policy.version or "n/a", len(policy.rules),
    )
    return policy
