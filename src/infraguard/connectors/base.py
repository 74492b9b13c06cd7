import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..attributes import as_mapping, render
from ..cancellation import CancellationToken
from ..models import DriftStatus

logger = logging.getLogger(__name__)


class ProviderConfig(BaseModel):
    """Connection settings handed to an adapter's initialize()."""

    model_config = ConfigDict(frozen=True)

    provider: str
    # e.g. subscription_id, tenant_id, client_id, client_secret, mock_data_file
    settings: Dict[str, str] = Field(default_factory=dict)

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        value = self.settings.get(key)
        return value if value else default


def extract_resource_id(values: Mapping[str, Any], unique_id_field: Optional[str] = None) -> Optional[str]:
    """
    Picks the identifier used to look a planned resource up live: ``id``, then
    ``name``, then the provider's own unique field. The first non-empty string wins.
    """
    candidates = ["id", "name"]
    if unique_id_field:
        candidates.append(unique_id_field)
    for field in candidates:
        value = values.get(field)
        if isinstance(value, str) and value:
            return value
    return None


def compare_tags(planned_tags: Any, live_tags: Mapping[str, str]) -> List[str]:
    """
    Compares planned tags against live tags.

    Every planned key missing live, and every planned key whose live value
    differs, is one detail. Extra live tags are not drift.
    """
    planned = as_mapping(planned_tags)
    if not planned:
        return []

    details = []
    for key, planned_value in planned.items():
        expected = render(planned_value)
        if key not in live_tags:
            details.append(f"Tag '{key}' is missing (expected '{expected}')")
        elif render(live_tags[key]) != expected:
            details.append(f"Tag '{key}' has value '{render(live_tags[key])}', expected '{expected}'")
    return details


class ProviderAdapter(ABC):
    """
    Common capability interface over one cloud provider.

    Adapters raise ProviderError (or a subclass) when a provider call fails.
    Every outbound call checks the cancellation token first.
    """

    name: str = ""
    # Provider-specific unique identifier attribute, tried after id and name.
    UNIQUE_ID_FIELD: Optional[str] = None
    TAGS_ATTRIBUTE: str = "tags"

    @abstractmethod
    def initialize(self, config: ProviderConfig) -> None:
        ...

    @abstractmethod
    def validate_credentials(self, token: Optional[CancellationToken] = None) -> None:
        ...

    @abstractmethod
    def get_resource_status(
        self, resource_type: str, resource_id: str, token: Optional[CancellationToken] = None
    ) -> DriftStatus:
        ...

    def detect_drift(
        self,
        planned_values: Mapping[str, Any],
        resource_type: str,
        resource_id: str,
        token: Optional[CancellationToken] = None,
    ) -> DriftStatus:
        status = self.get_resource_status(resource_type, resource_id, token)
        if not status.exists:
            return status.model_copy(
                update={
                    "drift_detected": True,
                    "drift_details": [f"Resource '{resource_id}' does not exist in {self.name}"],
                }
            )

        details = compare_tags(planned_values.get(self.TAGS_ATTRIBUTE), status.tags)
        if details:
            logger.debug("Drift on %s %s: %s", resource_type, resource_id, details)
        return status.model_copy(update={"drift_detected": bool(details), "drift_details": details})

    def extract_resource_id(self, planned_values: Mapping[str, Any]) -> Optional[str]:
        return extract_resource_id(planned_values, self.UNIQUE_ID_FIELD)

    def close(self) -> None:
        pass
