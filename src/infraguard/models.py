from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field


class Severity(str, Enum):
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


class Status(str, Enum):
    PASS = "pass"
    WARNING = "warning"
    FAIL = "fail"
    ERROR = "error"  # Part of the report vocabulary; escalation never produces it


class ValidationMode(str, Enum):
    VALIDATE_EXISTING = "validate-existing"  # Read-only: rules + live drift
    EPHEMERAL_SANDBOX = "ephemeral-sandbox"  # Rules, then apply and destroy


class ValidationResult(BaseModel):
    """One rule evaluated against one resource."""

    model_config = ConfigDict(frozen=True)

    resource_address: str = ""
    rule_name: str
    passed: bool
    severity: Severity
    message: str = ""
    details: List[str] = Field(default_factory=list)  # Why it failed
    remediation: Optional[str] = None


class DriftStatus(BaseModel):
    """Live state of one resource and how it compares to the plan."""

    model_config = ConfigDict(frozen=True)

    resource_id: str
    resource_type: str
    exists: bool
    state: Optional[str] = None
    tags: Dict[str, str] = Field(default_factory=dict)
    properties: Dict[str, Any] = Field(default_factory=dict)
    drift_detected: bool = False
    drift_details: List[str] = Field(default_factory=list)


def escalate_status(
    rule_results: Iterable[ValidationResult],
    drift_status: Optional[DriftStatus] = None,
) -> Status:
    """
    Maps a resource's check outcomes to one overall status.

    Any failed error-severity result makes the resource FAIL. Otherwise a failed
    warning-severity result, or detected drift, makes it WARNING. Info-level
    failures never escalate. The outcome does not depend on result order.
    Execution errors recorded on a report are not an input.
    """
    failed = {r.severity for r in rule_results if not r.passed}
    if Severity.ERROR in failed:
        return Status.FAIL
    if Severity.WARNING in failed or (drift_status is not None and drift_status.drift_detected):
        return Status.WARNING
    return Status.PASS


class ResourceReport(BaseModel):
    """Aggregate outcome for one planned resource."""

    model_config = ConfigDict(frozen=True)

    resource_address: str
    resource_type: str
    provider: str = ""
    rule_results: List[ValidationResult] = Field(default_factory=list)
    drift_status: Optional[DriftStatus] = None
    errors: List[str] = Field(default_factory=list)  # Execution errors, reported separately

    @computed_field  # type: ignore[misc]
    @property
    def status(self) -> Status:
        return escalate_status(self.rule_results, self.drift_status)

    @property
    def failed_results(self) -> List[ValidationResult]:
        return [r for r in self.rule_results if not r.passed]


class SandboxOutcome(BaseModel):
    """What happened to the disposable environment in ephemeral-sandbox mode."""

    model_config = ConfigDict(frozen=True)

    applied: bool
    destroy_attempted: bool
    destroyed: bool
    destroy_error: Optional[str] = None
    # Addresses that may still exist live (destroy skipped or failed).
    pending_resources: List[str] = Field(default_factory=list)


class Summary(BaseModel):
    """The run's terminal artifact and the only thing the reporting layer consumes."""

    model_config = ConfigDict(frozen=True)

    mode: ValidationMode
    provider: Optional[str] = None
    policy_name: str = ""
    policy_version: str = ""
    total_resources: int = 0
    passed_resources: int = 0
    failed_resources: int = 0
    warning_resources: int = 0
    error_resources: int = 0
    drift_detected: int = 0
    reports: List[ResourceReport] = Field(default_factory=list)
    sandbox: Optional[SandboxOutcome] = None

    @computed_field  # type: ignore[misc]
    @property
    def compliance_percent(self) -> float:
        if self.total_resources == 0:
            return 0.0
        return round(self.passed_resources / self.total_resources * 100, 2)

    @computed_field  # type: ignore[misc]
    @property
    def validation_passed(self) -> bool:
        return self.failed_resources == 0

    @classmethod
    def from_reports(
        cls,
        reports: List[ResourceReport],
        mode: ValidationMode,
        provider: Optional[str] = None,
        policy_name: str = "",
        policy_version: str = "",
        sandbox: Optional[SandboxOutcome] = None,
    ) -> "Summary":
        counts = {status: 0 for status in Status}
        drifted = 0
        for report in reports:
            counts[report.status] += 1
            if report.drift_status is not None and report.drift_status.drift_detected:
                drifted += 1

        return cls(
            mode=mode,
            provider=provider,
            policy_name=policy_name,
            policy_version=policy_version,
            total_resources=len(reports),
            passed_resources=counts[Status.PASS],
            failed_resources=counts[Status.FAIL],
            warning_resources=counts[Status.WARNING],
            error_resources=counts[Status.ERROR],
            drift_detected=drifted,
            reports=list(reports),
            sandbox=sandbox,
        )
