import copy
import os
from unittest.mock import patch

import pytest

from infraguard.cancellation import CancellationToken
from infraguard.config import ValidatorConfig
from infraguard.connectors.mock_connector import MockProviderAdapter
from infraguard.core_logic.orchestrator import Validator, validate
from infraguard.errors import (
    NoProviderDetected,
    OperationCancelled,
    SetupError,
    ToolInvocationError,
    UnsupportedProviderError,
)
from infraguard.models import Status, ValidationMode
from infraguard.parsers.plan_parser import parse_plan

LIVE_STATE = {
    "rg-app": {"tags": {"Environment": "prod", "Owner": "platform", "Project": "app"}},
    "stappdata": {"tags": {"Environment": "prod"}},
    "vnet-app": {"tags": {"Environment": "prod", "Owner": "network", "Project": "app"}},
}


class FakeTerraformClient:
    """Records terraform phases and serves a canned plan."""

    def __init__(self, plan_json, failures=None, on_show=None):
        self.plan_json = plan_json
        self.failures = failures or {}
        self.on_show = on_show
        self.calls = []
        self.plan_files = []
        self.destroy_token = None

    def _record(self, phase):
        self.calls.append(phase)
        if phase in self.failures:
            raise self.failures[phase]

    def init(self, token=None, upgrade=False):
        self._record("init")

    def validate_syntax(self, token=None):
        self._record("validate")
        return []

    def plan(self, plan_file, token=None):
        assert os.path.isdir(os.path.dirname(plan_file))
        self.plan_files.append(plan_file)
        self._record("plan")

    def show_plan(self, plan_file, token=None):
        self.plan_files.append(plan_file)
        self._record("show")
        if self.on_show is not None:
            self.on_show()
        return parse_plan(copy.deepcopy(self.plan_json))

    def apply(self, plan_file="", token=None):
        self.plan_files.append(plan_file)
        self._record("apply")

    def destroy(self, auto_approve=True, token=None):
        self.destroy_token = token
        self._record("destroy")


@pytest.fixture
def make_config(tmp_path, policy_file):
    def _make(**kwargs):
        kwargs.setdefault("working_dir", str(tmp_path))
        kwargs.setdefault("policy_path", str(policy_file))
        kwargs.setdefault("provider", "mock")
        return ValidatorConfig(**kwargs)
    return _make


@pytest.fixture
def client(sample_plan_json):
    return FakeTerraformClient(sample_plan_json)


def statuses(summary):
    return {r.resource_address: r.status for r in summary.reports}


# --- validate-existing ---


def test_validate_existing_counts(make_config, client):
    adapter = MockProviderAdapter(LIVE_STATE)
    summary = validate(make_config(), iac_client=client, adapter=adapter)

    assert client.calls == ["init", "validate", "plan", "show"]
    assert summary.mode is ValidationMode.VALIDATE_EXISTING
    assert summary.provider == "mock"
    assert summary.policy_name == "test-policy"
    assert summary.policy_version == "1.0"
    assert summary.total_resources == 3
    assert summary.passed_resources == 2
    assert summary.failed_resources == 1
    assert summary.compliance_percent == 66.67
    assert summary.validation_passed is False
    assert summary.sandbox is None
    assert statuses(summary)["azurerm_storage_account.data"] is Status.FAIL
    assert adapter.initialized and adapter.closed


def test_reports_follow_plan_order(make_config, client):
    summary = validate(make_config(), iac_client=client, adapter=MockProviderAdapter(LIVE_STATE))
    assert [r.resource_address for r in summary.reports] == [
        "azurerm_resource_group.main",
        "azurerm_storage_account.data",
        "module.network.azurerm_virtual_network.vnet",
    ]


def test_failed_report_carries_rule_details(make_config, client):
    summary = validate(make_config(), iac_client=client, adapter=MockProviderAdapter(LIVE_STATE))
    storage = summary.reports[1]
    failed = storage.failed_results
    assert [r.rule_name for r in failed] == ["required-tags"]
    assert failed[0].details == ["Missing required tags: Owner"]
    assert failed[0].remediation == "Add the missing tags"
    assert failed[0].resource_address == "azurerm_storage_account.data"


def test_tag_drift_escalates_to_warning(make_config, client):
    live = copy.deepcopy(LIVE_STATE)
    live["vnet-app"]["tags"]["Owner"] = "someone-else"

    summary = validate(make_config(), iac_client=client, adapter=MockProviderAdapter(live))

    vnet = summary.reports[2]
    assert vnet.status is Status.WARNING
    assert vnet.drift_status.drift_details == ["Tag 'Owner' has value 'someone-else', expected 'network'"]
    assert summary.drift_detected == 1
    assert summary.warning_resources == 1


def test_missing_live_resource_is_drift(make_config, client):
    live = {k: v for k, v in LIVE_STATE.items() if k != "rg-app"}
    summary = validate(make_config(), iac_client=client, adapter=MockProviderAdapter(live))
    rg = summary.reports[0]
    assert rg.drift_status.exists is False
    assert rg.status is Status.WARNING


def test_provider_error_recorded_on_resource(make_config, client):
    live = dict(LIVE_STATE, stappdata={"error": "throttled"})
    summary = validate(make_config(), iac_client=client, adapter=MockProviderAdapter(live))

    storage = summary.reports[1]
    assert storage.errors == ["Drift detection failed: MockProvider: throttled"]
    assert storage.drift_status is None
    assert storage.status is Status.FAIL
    assert summary.total_resources == 3


class BrokenAdapter(MockProviderAdapter):
    def __init__(self, error):
        super().__init__(LIVE_STATE)
        self.error = error

    def get_resource_status(self, resource_type, resource_id, token=None):
        raise self.error


def test_unexpected_drift_failure_is_recorded_and_run_continues(make_config, client):
    adapter = BrokenAdapter(RuntimeError("connection reset"))
    summary = validate(make_config(), iac_client=client, adapter=adapter)

    assert summary.total_resources == 3
    for report in summary.reports:
        assert report.errors == ["Drift detection failed: unexpected error: connection reset"]
        assert report.drift_status is None
    assert statuses(summary)["azurerm_resource_group.main"] is Status.PASS
    assert adapter.closed


def test_cancellation_during_drift_detection_propagates(make_config, client):
    adapter = BrokenAdapter(OperationCancelled("lookup of rg-app cancelled"))
    with pytest.raises(OperationCancelled):
        validate(make_config(), iac_client=client, adapter=adapter)
    assert adapter.closed


def test_repeated_runs_are_identical(make_config, sample_plan_json):
    first = validate(make_config(), iac_client=FakeTerraformClient(sample_plan_json),
                     adapter=MockProviderAdapter(LIVE_STATE))
    second = validate(make_config(), iac_client=FakeTerraformClient(sample_plan_json),
                      adapter=MockProviderAdapter(LIVE_STATE))
    assert first.model_dump() == second.model_dump()


def test_plan_file_lives_in_temporary_directory(make_config, client):
    validate(make_config(mode="ephemeral-sandbox"), iac_client=client, adapter=MockProviderAdapter())

    plan_file = client.plan_files[0]
    assert set(client.plan_files) == {plan_file}
    assert os.path.basename(plan_file) == "tfplan"
    assert not os.path.exists(os.path.dirname(plan_file))


def test_auto_detects_provider(make_config, client):
    summary = validate(make_config(provider=None), iac_client=client, adapter=MockProviderAdapter(LIVE_STATE))
    assert summary.provider == "azure"


def test_no_provider_detected(make_config):
    plan = {"planned_values": {"root_module": {"resources": [
        {"address": "null_resource.x", "type": "null_resource", "name": "x", "values": {}},
    ]}}}
    with pytest.raises(NoProviderDetected):
        validate(make_config(provider=None), iac_client=FakeTerraformClient(plan))


def test_provider_without_adapter(make_config, client):
    with pytest.raises(UnsupportedProviderError):
        validate(make_config(provider="oci"), iac_client=client)


def test_missing_working_dir(make_config, tmp_path, client):
    with pytest.raises(SetupError, match="does not exist"):
        validate(make_config(working_dir=str(tmp_path / "absent")), iac_client=client)
    assert client.calls == []


def test_invalid_configuration_stops_before_plan(make_config, sample_plan_json):
    client = FakeTerraformClient(sample_plan_json, failures={"validate": ToolInvocationError("validate", "bad")})
    with pytest.raises(ToolInvocationError):
        validate(make_config(), iac_client=client, adapter=MockProviderAdapter())
    assert client.calls == ["init", "validate"]


def test_malformed_condition_is_recorded_without_changing_status(make_config, client, tmp_path):
    policy = tmp_path / "bad-regex.yml"
    policy.write_text(
        "version: 1\nname: bad\nrules:\n"
        "  - name: naming\n    severity: error\n    resource_types: ['azurerm_*']\n"
        "    conditions:\n      naming.pattern: '['\n"
    )

    summary = validate(
        make_config(policy_path=str(policy), mode="ephemeral-sandbox"),
        iac_client=client,
        adapter=MockProviderAdapter(),
    )

    for report in summary.reports:
        assert report.status is Status.PASS
        assert report.rule_results == []
        assert report.errors[0].startswith("Rule 'naming': Condition 'naming.pattern'")
    assert summary.error_resources == 0
    assert summary.passed_resources == 3
    assert summary.validation_passed is True


def test_adapter_closed_when_cancelled(make_config, sample_plan_json):
    token = CancellationToken()
    client = FakeTerraformClient(sample_plan_json, on_show=token.cancel)
    adapter = MockProviderAdapter(LIVE_STATE)

    with pytest.raises(OperationCancelled):
        Validator(make_config(), iac_client=client, adapter=adapter).run(token)
    assert adapter.closed


# --- ephemeral-sandbox ---


def test_ephemeral_applies_then_destroys(make_config, client):
    adapter = MockProviderAdapter()
    summary = validate(make_config(mode="ephemeral-sandbox"), iac_client=client, adapter=adapter)

    assert client.calls == ["init", "validate", "plan", "show", "apply", "destroy"]
    assert summary.sandbox.applied is True
    assert summary.sandbox.destroyed is True
    assert summary.sandbox.pending_resources == []
    assert all(r.drift_status is None for r in summary.reports)
    assert summary.failed_resources == 1
    assert not adapter.initialized
    assert not adapter.closed


def test_ephemeral_needs_no_provider_credentials(make_config, client):
    with patch("infraguard.core_logic.orchestrator.create_adapter") as mock_create:
        summary = validate(make_config(mode="ephemeral-sandbox", provider="aws"), iac_client=client)

    mock_create.assert_not_called()
    assert summary.provider == "aws"
    assert summary.sandbox.destroyed is True


def test_ephemeral_no_destroy_leaves_resources(make_config, client):
    summary = validate(
        make_config(mode="ephemeral-sandbox", no_destroy=True), iac_client=client, adapter=MockProviderAdapter()
    )
    assert "destroy" not in client.calls
    assert summary.sandbox.destroy_attempted is False
    assert len(summary.sandbox.pending_resources) == 3


def test_destroy_failure_is_reported(make_config, sample_plan_json):
    client = FakeTerraformClient(sample_plan_json, failures={"destroy": ToolInvocationError("destroy", "locked")})
    summary = validate(make_config(mode="ephemeral-sandbox"), iac_client=client, adapter=MockProviderAdapter())

    assert summary.sandbox.destroyed is False
    assert summary.sandbox.destroy_error == "destroy failed: locked"
    assert summary.sandbox.pending_resources[0] == "azurerm_resource_group.main"


def test_apply_failure_still_destroys(make_config, sample_plan_json):
    client = FakeTerraformClient(sample_plan_json, failures={"apply": ToolInvocationError("apply", "quota")})

    with pytest.raises(ToolInvocationError) as exc_info:
        validate(make_config(mode="ephemeral-sandbox"), iac_client=client, adapter=MockProviderAdapter())

    assert client.calls[-2:] == ["apply", "destroy"]
    assert exc_info.value.cleanup_error is None


def test_apply_and_destroy_failures_both_surface(make_config, sample_plan_json):
    client = FakeTerraformClient(sample_plan_json, failures={
        "apply": ToolInvocationError("apply", "quota"),
        "destroy": ToolInvocationError("destroy", "locked"),
    })

    with pytest.raises(ToolInvocationError) as exc_info:
        validate(make_config(mode="ephemeral-sandbox"), iac_client=client, adapter=MockProviderAdapter())

    assert str(exc_info.value) == "apply failed: quota (cleanup also failed: destroy failed: locked)"


def test_cancelled_apply_destroys_with_fresh_token(make_config, sample_plan_json):
    client = FakeTerraformClient(sample_plan_json, failures={"apply": OperationCancelled("terraform apply cancelled")})

    with pytest.raises(OperationCancelled):
        validate(make_config(mode="ephemeral-sandbox"), iac_client=client, adapter=MockProviderAdapter())

    assert client.calls[-1] == "destroy"
    assert client.destroy_token is not None
    assert client.destroy_token.cancelled is False
