from typing import Any, Dict, List, Optional


class InfraGuardError(Exception):
    """Base class for every error raised by infraguard."""
    pass


# --- Setup errors: fatal, raised before any resource is touched ---

class SetupError(InfraGuardError):
    """The run cannot start: bad working directory, policy, provider or credentials."""
    pass


class ConfigError(SetupError):
    pass


class PolicyParseError(SetupError):
    """The policy document could not be read or does not have the expected shape."""

    def __init__(self, message: str, policy_path: Optional[str] = None):
        self.policy_path = policy_path
        if policy_path:
            message = f"{policy_path}: {message}"
        super().__init__(message)


class NoProviderDetected(SetupError):
    """No resource in the plan carries a recognised provider prefix."""
    pass


class UnsupportedProviderError(SetupError):
    pass


# --- Provider errors ---

class ProviderError(InfraGuardError):
    """A provider API call failed. Recorded per resource during drift detection."""
    pass


class CredentialsError(ProviderError, SetupError):
    """Provider credentials are missing or were rejected."""
    pass


class UnsupportedResourceTypeError(ProviderError):
    pass


# --- Rule evaluation ---

class ConditionError(InfraGuardError):
    """A rule condition is malformed (wrong value type, invalid regex, ...)."""

    def __init__(self, condition: str, message: str):
        self.condition = condition
        super().__init__(f"Condition '{condition}': {message}")


# --- Tool invocation ---

class ToolInvocationError(InfraGuardError):
    """An IaC tool phase (init/validate/plan/show/apply/destroy) failed."""

    def __init__(
        self,
        phase: str,
        message: str,
        stdout: str = "",
        stderr: str = "",
        diagnostics: Optional[List[Dict[str, Any]]] = None,
    ):
        self.phase = phase
        self.stdout = stdout
        self.stderr = stderr
        self.diagnostics = diagnostics or []
        # Set when an ephemeral destroy also failed after this error.
        self.cleanup_error: Optional[BaseException] = None
        super().__init__(f"{phase} failed: {message}")

    def __str__(self) -> str:
        text = super().__str__()
        if self.cleanup_error is not None:
            text += f" (cleanup also failed: {self.cleanup_error})"
        return text


class TerraformCommandError(ToolInvocationError):
    def __init__(self, phase: str, command: List[str], returncode: int, stdout: str = "", stderr: str = ""):
        self.command = command
        self.returncode = returncode
        output = (stderr or stdout).strip()
        message = f"'{' '.join(command)}' exited with code {returncode}"
        if output:
            message += f"\nOutput: {output}"
        super().__init__(phase, message, stdout=stdout, stderr=stderr)


class TerraformNotFoundError(SetupError):
    pass


class OperationCancelled(InfraGuardError):
    """The caller cancelled the run (or its deadline passed) during a blocking call."""
    pass
