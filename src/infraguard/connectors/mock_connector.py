import json
import logging
from typing import Any, Dict, List, Optional, Union

from ..cancellation import CancellationToken
from ..errors import ConfigError, ProviderError
from ..models import DriftStatus
from .base import ProviderAdapter, ProviderConfig

logger = logging.getLogger(__name__)


class MockProviderAdapter(ProviderAdapter):
    """
    Simulates a cloud provider from canned live state.

    Live state is a mapping keyed by resource id. Each entry may carry ``type``,
    ``exists`` (default true), ``state``, ``tags`` and ``properties``. An entry
    with an ``error`` key makes lookups of that id fail with ProviderError.
    Ids that are not in the mapping do not exist.
    """

    name = "mock"
    UNIQUE_ID_FIELD = "arn"

    def __init__(self, mock_data: Optional[Union[Dict[str, Dict[str, Any]], List[Dict[str, Any]]]] = None):
        self.mock_resources: Dict[str, Dict[str, Any]] = _index_mock_data(mock_data or {})
        self.initialized = False
        self.closed = False

    def initialize(self, config: ProviderConfig) -> None:
        data_file = config.get("mock_data_file")
        if data_file:
            self.mock_resources = load_mock_data_file(data_file)
        logger.info("MockProvider: serving live state for %d resource(s)", len(self.mock_resources))
        self.initialized = True

    def validate_credentials(self, token: Optional[CancellationToken] = None) -> None:
        if token is not None:
            token.raise_if_cancelled("credential validation")

    def get_resource_status(
        self, resource_type: str, resource_id: str, token: Optional[CancellationToken] = None
    ) -> DriftStatus:
        if token is not None:
            token.raise_if_cancelled(f"lookup of {resource_id}")

        entry = self.mock_resources.get(resource_id)
        if entry is None or not entry.get("exists", True):
            return DriftStatus(resource_id=resource_id, resource_type=resource_type, exists=False)
        if "error" in entry:
            raise ProviderError(f"MockProvider: {entry['error']}")

        return DriftStatus(
            resource_id=resource_id,
            resource_type=entry.get("type", resource_type),
            exists=True,
            state=entry.get("state"),
            tags={str(k): str(v) for k, v in (entry.get("tags") or {}).items()},
            properties=entry.get("properties") or {},
        )

    def close(self) -> None:
        self.closed = True


def _index_mock_data(data: Union[Dict[str, Any], List[Dict[str, Any]]]) -> Dict[str, Dict[str, Any]]:
    # A list of entries, each with an "id", is accepted as well as a mapping.
    if isinstance(data, list):
        indexed = {}
        for entry in data:
            if not isinstance(entry, dict) or not entry.get("id"):
                raise ConfigError(f"Mock data entry has no 'id': {entry!r}")
            indexed[entry["id"]] = entry
        return indexed
    if isinstance(data, dict):
        return dict(data)
    raise ConfigError(f"Mock data must be a mapping or a list, got {type(data).__name__}")


def load_mock_data_file(file_path: str) -> Dict[str, Dict[str, Any]]:
    try:
        with open(file_path, "r") as f:
            data = json.load(f)
    except FileNotFoundError:
        raise ConfigError(f"Mock data file not found at {file_path}")
    except json.JSONDecodeError as e:
        raise ConfigError(f"Invalid JSON in mock data file {file_path}: {e}")
    return _index_mock_data(data)
