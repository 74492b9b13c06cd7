"""
Validation orchestration.

A run loads the policy, drives Terraform through init, validate and plan,
evaluates every planned managed resource against the policy and, depending on
the mode, either checks each resource for live drift (validate-existing) or
applies the plan and tears it down again (ephemeral-sandbox).

The run's only output is a Summary. Setup and tool failures raise; per-resource
evaluation and drift failures are recorded on that resource's report.
"""

import logging
import os
import tempfile
from typing import List, Optional

from ..cancellation import CancellationToken
from ..config import ValidatorConfig
from ..connectors.base import ProviderAdapter, ProviderConfig
from ..connectors.registry import create_adapter, detect_provider
from ..errors import (
    ConditionError,
    InfraGuardError,
    OperationCancelled,
    ProviderError,
    SetupError,
    ToolInvocationError,
)
from ..models import ResourceReport, SandboxOutcome, Summary, ValidationMode, ValidationResult
from ..parsers.plan_parser import PlanResource, flatten_resources
from ..rules.engine import RuleEngine
from ..rules.policy import load_policy
from ..terraform.client import TerraformClient

logger = logging.getLogger(__name__)

PLAN_FILENAME = "tfplan"


class Validator:
    """
    Runs one validation according to a ValidatorConfig.

    ``iac_client`` and ``adapter`` may be injected; by default a TerraformClient
    is built from the config and the adapter comes from the provider registry.
    """

    def __init__(
        self,
        config: ValidatorConfig,
        iac_client: Optional[TerraformClient] = None,
        adapter: Optional[ProviderAdapter] = None,
    ):
        self.config = config
        self._iac_client = iac_client
        self._adapter = adapter

    def run(self, token: Optional[CancellationToken] = None) -> Summary:
        token = token or CancellationToken()
        config = self.config

        if not os.path.isdir(config.working_dir):
            raise SetupError(f"Working directory does not exist: {config.working_dir}")

        policy = load_policy(config.policy_path)
        engine = RuleEngine(policy)
        client = self._iac_client or TerraformClient(config.working_dir, config.terraform_bin)

        logger.info("Initializing Terraform in %s", config.working_dir)
        client.init(token=token)
        client.validate_syntax(token=token)

        provider = config.provider
        if provider:
            logger.info("Using configured provider '%s'", provider)

        with tempfile.TemporaryDirectory(prefix="infraguard-") as tmp_dir:
            plan_file = os.path.join(tmp_dir, PLAN_FILENAME)
            client.plan(plan_file, token=token)
            plan = client.show_plan(plan_file, token=token)
            resources = flatten_resources(plan.root_module)
            logger.info("Plan contains %d managed resource(s)", len(resources))

            if not provider:
                provider = detect_provider(resources)

            # Only validate-existing queries live state
            adapter = None
            if config.mode is ValidationMode.VALIDATE_EXISTING:
                adapter = self._adapter or create_adapter(provider)
            try:
                if adapter is not None:
                    adapter.initialize(ProviderConfig(provider=provider, settings=config.provider_settings))
                    adapter.validate_credentials(token)

                reports = []
                for resource in resources:
                    token.raise_if_cancelled("resource validation")
                    reports.append(self._check_resource(resource, engine, adapter, token))
            finally:
                if adapter is not None:
                    adapter.close()

            sandbox = None
            if config.mode is ValidationMode.EPHEMERAL_SANDBOX:
                sandbox = self._run_sandbox(client, plan_file, resources, token)

        summary = Summary.from_reports(
            reports,
            mode=config.mode,
            provider=provider,
            policy_name=policy.name,
            policy_version=policy.version,
            sandbox=sandbox,
        )
        logger.info(
            "Validation complete: %d resource(s), %d passed, %d failed, %d warning(s), %d error(s)",
            summary.total_resources, summary.passed_resources, summary.failed_resources,
            summary.warning_resources, summary.error_resources,
        )
        return summary

    def _check_resource(
        self,
        resource: PlanResource,
        engine: RuleEngine,
        adapter: Optional[ProviderAdapter],
        token: CancellationToken,
    ) -> ResourceReport:
        rule_results: List[ValidationResult] = []
        errors: List[str] = []

        for rule in engine.applicable_rules(resource.type):
            try:
                rule_results.append(engine.evaluate(rule, resource.values, resource.address))
            except ConditionError as e:
                errors.append(f"Rule '{rule.name}': {e}")
            except Exception as e:
                logger.exception("Unexpected failure evaluating rule '%s' on %s", rule.name, resource.address)
                errors.append(f"Rule '{rule.name}': unexpected error: {e}")

        drift_status = None
        if adapter is not None:
            resource_id = adapter.extract_resource_id(resource.values)
            if resource_id is None:
                logger.debug("No identifier for %s; skipping drift detection", resource.address)
            else:
                try:
                    drift_status = adapter.detect_drift(resource.values, resource.type, resource_id, token)
                except ProviderError as e:
                    logger.warning("Drift detection failed for %s: %s", resource.address, e)
                    errors.append(f"Drift detection failed: {e}")
                except OperationCancelled:
                    raise
                except Exception as e:
                    logger.exception("Unexpected failure detecting drift for %s", resource.address)
                    errors.append(f"Drift detection failed: unexpected error: {e}")

        return ResourceReport(
            resource_address=resource.address,
            resource_type=resource.type,
            provider=resource.provider,
            rule_results=rule_results,
            drift_status=drift_status,
            errors=errors,
        )

    def _run_sandbox(
        self,
        client: TerraformClient,
        plan_file: str,
        resources: List[PlanResource],
        token: CancellationToken,
    ) -> SandboxOutcome:
        addresses = [r.address for r in resources]

        logger.info("Applying plan to ephemeral sandbox")
        try:
            client.apply(plan_file, token=token)
        except BaseException as apply_error:
            if self.config.no_destroy:
                logger.warning("Apply failed and destroy is disabled; partially created resources may remain")
            else:
                destroy_error = self._destroy(client)
                if destroy_error is not None and isinstance(apply_error, ToolInvocationError):
                    apply_error.cleanup_error = destroy_error
            raise

        if self.config.no_destroy:
            logger.warning("Destroy skipped; %d resource(s) remain live", len(addresses))
            return SandboxOutcome(
                applied=True, destroy_attempted=False, destroyed=False, pending_resources=addresses
            )

        destroy_error = self._destroy(client)
        if destroy_error is not None:
            return SandboxOutcome(
                applied=True,
                destroy_attempted=True,
                destroyed=False,
                destroy_error=str(destroy_error),
                pending_resources=addresses,
            )
        return SandboxOutcome(applied=True, destroy_attempted=True, destroyed=True)

    def _destroy(self, client: TerraformClient) -> Optional[InfraGuardError]:
        """Destroys the sandbox under a fresh token so a cancelled run still cleans up."""
        logger.info("Destroying ephemeral sandbox resources")
        try:
            client.destroy(auto_approve=True, token=CancellationToken())
        except InfraGuardError as e:
            logger.error("Failed to destroy ephemeral resources: %s", e)
            return e
        return None


def validate(
    config: ValidatorConfig,
    token: Optional[CancellationToken] = None,
    *,
    iac_client: Optional[TerraformClient] = None,
    adapter: Optional[ProviderAdapter] = None,
) -> Summary:
    return Validator(config, iac_client=iac_client, adapter=adapter).run(token)
