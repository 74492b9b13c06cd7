import logging
from typing import Any, Dict, List

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..errors import ToolInvocationError

logger = logging.getLogger(__name__)


def provider_short_name(provider_full: str) -> str:
    """
    Extracts the short provider name from a registry source or a state-style
    provider reference.

    "registry.terraform.io/hashicorp/aws" -> "aws"
    'provider["registry.terraform.io/hashicorp/azurerm"]' -> "azurerm"
    "google" -> "google"
    """
    if not provider_full:
        return ""
    name = provider_full.strip()
    if name.startswith("provider["):
        name = name[len("provider["):].rstrip("]").strip('"')
    # Aliased references look like 'provider["..."].west'
    name = name.split('"]')[0]
    return name.rsplit("/", 1)[-1]


class PlanResource(BaseModel):
    """One planned resource as it appears under planned_values."""

    model_config = ConfigDict(frozen=True)

    address: str
    mode: str = "managed"  # "managed" or "data"
    type: str
    name: str
    provider_name: str = ""  # e.g. "registry.terraform.io/hashicorp/aws"
    values: Dict[str, Any] = Field(default_factory=dict)

    @property
    def provider(self) -> str:
        short = provider_short_name(self.provider_name)
        if short:
            return short
        # Fall back to the type prefix ("aws_s3_bucket" -> "aws")
        return self.type.split("_", 1)[0]


class PlanModule(BaseModel):
    model_config = ConfigDict(frozen=True)

    address: str = ""  # Empty for the root module
    resources: List[PlanResource] = Field(default_factory=list)
    child_modules: List["PlanModule"] = Field(default_factory=list)


class Plan(BaseModel):
    model_config = ConfigDict(frozen=True)

    format_version: str = ""
    terraform_version: str = ""
    root_module: PlanModule = Field(default_factory=PlanModule)


def parse_plan(plan_data: Dict[str, Any]) -> Plan:
    """
    Builds a Plan from the JSON document produced by ``terraform show -json <planfile>``.

    Only ``planned_values`` is used: it holds the resolved attribute values of
    every resource as they will be after apply. ``values`` may be null in the
    document for resources with nothing known yet; those become empty mappings.

    Raises:
        ToolInvocationError: if the document does not have the expected shape.
    """
    if not isinstance(plan_data, dict):
        raise ToolInvocationError("show", "plan JSON is not an object")

    planned_values = plan_data.get("planned_values") or {}
    root_data = planned_values.get("root_module") or {}

    try:
        root_module = _parse_module(root_data)
    except (ValidationError, ValueError, TypeError, AttributeError) as e:
        raise ToolInvocationError("show", f"unexpected plan structure: {e}")

    return Plan(
        format_version=str(plan_data.get("format_version", "")),
        terraform_version=str(plan_data.get("terraform_version", "")),
        root_module=root_module,
    )


def _parse_module(module_data: Dict[str, Any]) -> PlanModule:
    resources = []
    for res_data in module_data.get("resources") or []:
        res = dict(res_data)
        if res.get("values") is None:
            res["values"] = {}
        resources.append(PlanResource(**res))

    children = [_parse_module(child) for child in module_data.get("child_modules") or []]
    return PlanModule(
        address=module_data.get("address", ""),
        resources=resources,
        child_modules=children,
    )


def flatten_resources(module: PlanModule, include_data_sources: bool = False) -> List[PlanResource]:
    """
    Depth-first pre-order walk: a module's own resources first, then each child
    module in declared order. The order is deterministic so reports are
    reproducible.

    Data sources are skipped unless ``include_data_sources`` is set; only
    managed resources are validated.
    """
    flattened: List[PlanResource] = []
    _walk(module, flattened, include_data_sources)
    return flattened


def _walk(module: PlanModule, out: List[PlanResource], include_data_sources: bool) -> None:
    for resource in module.resources:
        if resource.mode != "managed" and not include_data_sources:
            logger.debug("Skipping data source %s", resource.address)
            continue
        out.append(resource)
    for child in module.child_modules:
        _walk(child, out, include_data_sources)

