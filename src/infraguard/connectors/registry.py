import logging
from collections import Counter
from typing import Dict, Iterable, Type

from ..errors import NoProviderDetected, UnsupportedProviderError
from ..parsers.plan_parser import PlanResource
from .aws_connector import AWSProviderAdapter
from .azure_connector import AzureProviderAdapter
from .base import ProviderAdapter
from .gcp_connector import GCPProviderAdapter
from .mock_connector import MockProviderAdapter

logger = logging.getLogger(__name__)

# Terraform provider short name -> cloud provider
PROVIDER_PREFIXES: Dict[str, str] = {
    "aws": "aws",
    "azurerm": "azure",
    "azuread": "azure",
    "azapi": "azure",
    "google": "gcp",
    "google-beta": "gcp",
}

ADAPTERS: Dict[str, Type[ProviderAdapter]] = {
    "mock": MockProviderAdapter,
    "azure": AzureProviderAdapter,
    "aws": AWSProviderAdapter,
    "gcp": GCPProviderAdapter,
}


def detect_provider(resources: Iterable[PlanResource]) -> str:
    """
    Picks the most frequent recognised provider across ``resources``. Ties go to
    the provider seen first.

    Raises:
        NoProviderDetected: if no resource has a recognised provider.
    """
    counts: Counter = Counter()
    for resource in resources:
        provider = PROVIDER_PREFIXES.get(resource.provider)
        if provider is not None:
            counts[provider] += 1

    if not counts:
        raise NoProviderDetected("No cloud provider detected in the plan; set provider explicitly")
    # max() keeps the first of equal counts and Counter keeps insertion order
    provider = max(counts, key=lambda p: counts[p])
    logger.info("Detected provider '%s' (%s)", provider, dict(counts))
    return provider


def create_adapter(provider: str) -> ProviderAdapter:
    adapter_cls = ADAPTERS.get(provider)
    if adapter_cls is None:
        raise UnsupportedProviderError(
            f"No adapter available for provider '{provider}' (available: {', '.join(sorted(ADAPTERS))})"
        )
    return adapter_cls()
