import json
from datetime import datetime, timezone
from importlib.metadata import PackageNotFoundError, version
from typing import Any, Callable, Dict, List, Optional

from ..models import ResourceReport, Severity, Status, Summary

TOOL_NAME = "infraguard"
SARIF_VERSION = "2.1.0"
SARIF_SCHEMA = "https://json.schemastore.org/sarif-2.1.0.json"

RULE_LINE = "=" * 63
SECTION_LINE = "-" * 63

STATUS_ICONS = {
    Status.PASS: "✓",
    Status.FAIL: "✗",
    Status.WARNING: "⚠",
    Status.ERROR: "⨯",
}

SARIF_LEVELS = {
    Severity.ERROR: "error",
    Severity.WARNING: "warning",
    Severity.INFO: "note",
}


def tool_version() -> str:
    try:
        return version(TOOL_NAME)
    except PackageNotFoundError:
        return "0.0.0"


class HumanReportRenderer:
    """Plain-text report for terminals and CI logs."""

    def __init__(self, summary: Summary, generated_at: Optional[datetime] = None):
        self.summary = summary
        self.generated_at = generated_at or datetime.now(timezone.utc)
        self.lines: List[str] = []

    def _add_line(self, text: str = ""):
        self.lines.append(text)

    def _render_summary(self):
        s = self.summary
        self._add_line("SUMMARY:")
        self._add_line(f"  Mode:               {s.mode.value}")
        self._add_line(f"  Provider:           {s.provider or 'n/a'}")
        if s.policy_name:
            self._add_line(f"  Policy:             {s.policy_name} (version {s.policy_version or 'n/a'})")
        self._add_line(f"  Total Resources:    {s.total_resources}")
        self._add_line(f"  ✓ Passed:           {s.passed_resources}")
        self._add_line(f"  ✗ Failed:           {s.failed_resources}")
        self._add_line(f"  ⚠ Warnings:         {s.warning_resources}")
        self._add_line(f"  ⨯ Errors:           {s.error_resources}")
        self._add_line(f"  ↔ Drift Detected:   {s.drift_detected}")
        self._add_line(f"  Compliance:         {s.compliance_percent:.2f}%")
        self._add_line()
        self._add_line("✓ VALIDATION PASSED" if s.validation_passed else "✗ VALIDATION FAILED")
        self._add_line()

    def _render_report(self, report: ResourceReport):
        self._add_line(f"{STATUS_ICONS[report.status]} {report.resource_address} ({report.resource_type})")
        self._add_line(f"  Provider: {report.provider}")

        if report.rule_results:
            self._add_line("  Policy Checks:")
            for result in report.rule_results:
                icon = "✓" if result.passed else "✗"
                self._add_line(f"    {icon} {result.rule_name} [{result.severity.value}]")
                if result.passed:
                    continue
                if result.message:
                    self._add_line(f"      Message: {result.message}")
                for detail in result.details:
                    self._add_line(f"      - {detail}")
                if result.remediation:
                    self._add_line(f"      Remediation: {result.remediation}")

        drift = report.drift_status
        if drift is not None and drift.drift_detected:
            self._add_line("  ↔ Drift Detected:")
            for detail in drift.drift_details:
                self._add_line(f"    - {detail}")

        if report.errors:
            self._add_line("  Errors:")
            for error in report.errors:
                self._add_line(f"    - {error}")
        self._add_line()

    def _render_sandbox(self):
        sandbox = self.summary.sandbox
        if sandbox is None:
            return
        self._add_line("EPHEMERAL SANDBOX:")
        self._add_line(f"  Applied:   {'yes' if sandbox.applied else 'no'}")
        if not sandbox.destroy_attempted:
            self._add_line("  Destroyed: skipped (--no-destroy)")
        elif sandbox.destroyed:
            self._add_line("  Destroyed: yes")
        else:
            self._add_line(f"  Destroyed: FAILED ({sandbox.destroy_error})")
        if sandbox.pending_resources:
            self._add_line("  Resources that may still exist:")
            for address in sandbox.pending_resources:
                self._add_line(f"    - {address}")
        self._add_line()

    def render(self) -> str:
        self.lines = []
        self._add_line(RULE_LINE)
        self._add_line("INFRAGUARD VALIDATION REPORT".center(len(RULE_LINE)).rstrip())
        self._add_line(RULE_LINE)
        self._add_line()
        self._render_summary()

        if self.summary.reports:
            self._add_line("DETAILED RESULTS:")
            self._add_line(SECTION_LINE)
            self._add_line()
            for report in self.summary.reports:
                self._render_report(report)

        self._render_sandbox()
        self._add_line(RULE_LINE)
        self._add_line(f"Generated: {self.generated_at.isoformat(timespec='seconds')}")
        return "\n".join(self.lines) + "\n"


def format_human(summary: Summary) -> str:
    return HumanReportRenderer(summary).render()


def format_json(summary: Summary) -> str:
    """Full Summary as JSON, derived fields (status, compliance_percent, ...) included."""
    return summary.model_dump_json(indent=2)


def format_sarif(summary: Summary) -> str:
    """SARIF 2.1.0 log with one result per failed rule check."""
    results: List[Dict[str, Any]] = []
    rules: Dict[str, Dict[str, Any]] = {}

    for report in summary.reports:
        for result in report.failed_results:
            text = result.message or f"Rule '{result.rule_name}' failed"
            if result.details:
                text += "\n" + "\n".join(result.details)

            rules.setdefault(
                result.rule_name,
                {"id": result.rule_name, "defaultConfiguration": {"level": SARIF_LEVELS[result.severity]}},
            )
            sarif_result: Dict[str, Any] = {
                "ruleId": result.rule_name,
                "level": SARIF_LEVELS[result.severity],
                "message": {"text": text},
                "locations": [
                    {
                        "physicalLocation": {"artifactLocation": {"uri": report.resource_address}},
                        "logicalLocations": [
                            {"fullyQualifiedName": report.resource_address, "kind": report.resource_type}
                        ],
                    }
                ],
            }
            if result.remediation:
                sarif_result["properties"] = {"remediation": result.remediation}
            results.append(sarif_result)

    sarif = {
        "$schema": SARIF_SCHEMA,
        "version": SARIF_VERSION,
        "runs": [
            {
                "tool": {
                    "driver": {
                        "name": TOOL_NAME,
                        "version": tool_version(),
                        "rules": list(rules.values()),
                    }
                },
                "results": results,
            }
        ],
    }
    return json.dumps(sarif, indent=2)


FORMATTERS: Dict[str, Callable[[Summary], str]] = {
    "human": format_human,
    "json": format_json,
    "sarif": format_sarif,
}
