import json
import logging
import os
import shutil
import subprocess
from typing import Any, Dict, List, Optional

from ..cancellation import CancellationToken
from ..errors import (
    OperationCancelled,
    SetupError,
    TerraformCommandError,
    TerraformNotFoundError,
    ToolInvocationError,
)
from ..parsers.plan_parser import Plan, parse_plan

logger = logging.getLogger(__name__)

POLL_INTERVAL_SECONDS = 0.5
TERMINATE_GRACE_SECONDS = 10


class TerraformClient:
    """
    Thin wrapper over the Terraform CLI.

    Every command runs in ``working_dir`` with ``-no-color``. Commands are
    polled so that a cancelled token terminates the child process.
    """

    def __init__(
        self,
        working_dir: str,
        terraform_bin: Optional[str] = None,
        env: Optional[Dict[str, str]] = None,
    ):
        if not working_dir or not os.path.isdir(working_dir):
            raise SetupError(f"Working directory does not exist: {working_dir}")
        self.working_dir = working_dir

        binary = terraform_bin or shutil.which("terraform")
        if not binary:
            raise TerraformNotFoundError(
                "terraform binary not found in PATH. Install Terraform or set terraform_bin."
            )
        self.terraform_bin = binary
        self.env = dict(env or {})

    def init(self, token: Optional[CancellationToken] = None, upgrade: bool = False) -> None:
        args = ["init", "-no-color", "-input=false"]
        if upgrade:
            args.append("-upgrade")
        self._run("init", args, token)

    def validate_syntax(self, token: Optional[CancellationToken] = None) -> List[Dict[str, Any]]:
        """
        Runs ``terraform validate -json`` and returns its diagnostics.

        Warnings are logged. Invalid configuration raises ToolInvocationError
        carrying the error diagnostics.
        """
        # validate exits non-zero on invalid configuration but still prints JSON
        stdout, stderr, returncode = self._run("validate", ["validate", "-json", "-no-color"], token, check=False)
        try:
            result = json.loads(stdout)
        except json.JSONDecodeError:
            raise TerraformCommandError(
                "validate", self._command(["validate", "-json", "-no-color"]), returncode, stdout, stderr
            )

        diagnostics = result.get("diagnostics") or []
        for diag in diagnostics:
            if diag.get("severity") == "warning":
                logger.warning("terraform validate: %s", _describe_diagnostic(diag))

        if not result.get("valid", False):
            errors = [_describe_diagnostic(d) for d in diagnostics if d.get("severity") == "error"]
            raise ToolInvocationError(
                "validate",
                "; ".join(errors) or "configuration is invalid",
                stdout=stdout,
                stderr=stderr,
                diagnostics=diagnostics,
            )
        return diagnostics

    def plan(self, plan_file: str, token: Optional[CancellationToken] = None) -> None:
        self._run("plan", ["plan", "-no-color", "-input=false", f"-out={plan_file}"], token)

    def show_plan(self, plan_file: str, token: Optional[CancellationToken] = None) -> Plan:
        stdout, _stderr, _rc = self._run("show", ["show", "-json", plan_file], token)
        try:
            plan_data = json.loads(stdout)
        except json.JSONDecodeError as e:
            raise ToolInvocationError("show", f"failed to parse plan output: {e}", stdout=stdout)
        return parse_plan(plan_data)

    def apply(self, plan_file: str = "", token: Optional[CancellationToken] = None) -> None:
        args = ["apply", "-no-color", "-input=false", "-auto-approve"]
        if plan_file:
            args.append(plan_file)
        self._run("apply", args, token)

    def destroy(self, auto_approve: bool = True, token: Optional[CancellationToken] = None) -> None:
        args = ["destroy", "-no-color", "-input=false"]
        if auto_approve:
            args.append("-auto-approve")
        self._run("destroy", args, token)

    def _command(self, args: List[str]) -> List[str]:
        return [self.terraform_bin] + list(args)

    def _run(
        self,
        phase: str,
        args: List[str],
        token: Optional[CancellationToken] = None,
        check: bool = True,
    ):
        """
        Runs one terraform command and returns ``(stdout, stderr, returncode)``.

        Raises:
            OperationCancelled: if ``token`` is cancelled before or during the run.
            TerraformCommandError: if ``check`` is set and the exit code is non-zero.
            TerraformNotFoundError: if the binary cannot be executed.
        """
        command = self._command(args)
        if token is not None:
            token.raise_if_cancelled(f"terraform {phase}")

        logger.info("Running terraform %s", phase)
        logger.debug("Command: %s (cwd=%s)", " ".join(command), self.working_dir)

        env = os.environ.copy()
        env.update(self.env)
        env.setdefault("TF_IN_AUTOMATION", "1")
        try:
            process = subprocess.Popen(
                command,
                cwd=self.working_dir,
                env=env,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
            )
        except FileNotFoundError:
            raise TerraformNotFoundError(f"terraform binary '{self.terraform_bin}' could not be executed")

        # The child is reaped on any exit from the loop, KeyboardInterrupt included
        try:
            while True:
                try:
                    stdout, stderr = process.communicate(timeout=POLL_INTERVAL_SECONDS)
                    break
                except subprocess.TimeoutExpired:
                    if token is not None and token.cancelled:
                        raise OperationCancelled(f"terraform {phase} cancelled")
        except BaseException:
            self._stop(process, phase)
            raise

        if check and process.returncode != 0:
            raise TerraformCommandError(phase, command, process.returncode, stdout, stderr)
        return stdout, stderr, process.returncode

    def _stop(self, process: subprocess.Popen, phase: str) -> None:
        logger.warning("Cancelling terraform %s (pid %s)", phase, process.pid)
        process.terminate()
        try:
            process.communicate(timeout=TERMINATE_GRACE_SECONDS)
        except subprocess.TimeoutExpired:
            process.kill()
            process.communicate()


def _describe_diagnostic(diag: Dict[str, Any]) -> str:
    summary = diag.get("summary", "")
    detail = diag.get("detail", "")
    return f"{summary}: {detail}" if detail else summary
