import logging
import os
from typing import Any, Dict, List, Optional

from azure.core.exceptions import AzureError, ClientAuthenticationError
from azure.identity import ClientSecretCredential, DefaultAzureCredential
from azure.mgmt.resourcegraph import ResourceGraphClient
from azure.mgmt.resourcegraph.models import QueryRequest, QueryRequestOptions

from ..cancellation import CancellationToken
from ..errors import CredentialsError, ProviderError, UnsupportedResourceTypeError
from ..models import DriftStatus
from .base import ProviderAdapter, ProviderConfig

logger = logging.getLogger(__name__)

RESOURCE_GROUP_TYPE = "azurerm_resource_group"
ARM_RESOURCE_GROUP_TYPE = "microsoft.resources/subscriptions/resourcegroups"

# Terraform type -> ARM type, for looking resources up by plan-time name.
ARM_RESOURCE_TYPES: Dict[str, str] = {
    "azurerm_storage_account": "microsoft.storage/storageaccounts",
    "azurerm_virtual_machine": "microsoft.compute/virtualmachines",
    "azurerm_linux_virtual_machine": "microsoft.compute/virtualmachines",
    "azurerm_windows_virtual_machine": "microsoft.compute/virtualmachines",
    "azurerm_managed_disk": "microsoft.compute/disks",
    "azurerm_virtual_network": "microsoft.network/virtualnetworks",
    "azurerm_network_security_group": "microsoft.network/networksecuritygroups",
    "azurerm_network_interface": "microsoft.network/networkinterfaces",
    "azurerm_public_ip": "microsoft.network/publicipaddresses",
    "azurerm_key_vault": "microsoft.keyvault/vaults",
    "azurerm_kubernetes_cluster": "microsoft.containerservice/managedclusters",
    "azurerm_mssql_server": "microsoft.sql/servers",
    "azurerm_service_plan": "microsoft.web/serverfarms",
    "azurerm_linux_web_app": "microsoft.web/sites",
    "azurerm_windows_web_app": "microsoft.web/sites",
    "azurerm_log_analytics_workspace": "microsoft.operationalinsights/workspaces",
}

PROJECTION = "| project id, name, type, location, tags, properties | limit 1"


def _kql_string(value: str) -> str:
    return "'" + value.replace("\\", "\\\\").replace("'", "\\'") + "'"


def build_lookup_query(resource_type: str, resource_id: str) -> str:
    """
    Resource Graph query that finds one resource by full ARM id, or by name and
    ARM type when ``resource_id`` is a plan-time name.

    Raises:
        UnsupportedResourceTypeError: for a name lookup on an unmapped type.
    """
    is_group = resource_type == RESOURCE_GROUP_TYPE
    table = "ResourceContainers" if is_group else "Resources"

    if resource_id.startswith("/subscriptions/"):
        return f"{table} | where id =~ {_kql_string(resource_id)} {PROJECTION}"

    arm_type = ARM_RESOURCE_GROUP_TYPE if is_group else ARM_RESOURCE_TYPES.get(resource_type)
    if arm_type is None:
        raise UnsupportedResourceTypeError(
            f"Azure lookup by name is not supported for resource type '{resource_type}'"
        )
    return (
        f"{table} | where type =~ {_kql_string(arm_type)} "
        f"and name =~ {_kql_string(resource_id)} {PROJECTION}"
    )


class AzureProviderAdapter(ProviderAdapter):
    """Reads live Azure state through Azure Resource Graph."""

    name = "azure"

    def __init__(self):
        self.subscription_id: Optional[str] = None
        self.credential = None
        self.client: Optional[ResourceGraphClient] = None

    def initialize(self, config: ProviderConfig) -> None:
        self.subscription_id = config.get("subscription_id") or os.environ.get("AZURE_SUBSCRIPTION_ID")
        if not self.subscription_id:
            raise CredentialsError(
                "Azure subscription ID is required (provider setting subscription_id or AZURE_SUBSCRIPTION_ID)"
            )

        tenant_id = config.get("tenant_id") or os.environ.get("AZURE_TENANT_ID")
        client_id = config.get("client_id") or os.environ.get("AZURE_CLIENT_ID")
        client_secret = config.get("client_secret") or os.environ.get("AZURE_CLIENT_SECRET")
        try:
            if tenant_id and client_id and client_secret:
                logger.info("Azure: authenticating with client secret for client %s", client_id)
                self.credential = ClientSecretCredential(tenant_id, client_id, client_secret)
            else:
                logger.info("Azure: authenticating with the default credential chain")
                self.credential = DefaultAzureCredential()
            self.client = ResourceGraphClient(self.credential)
        except (AzureError, ValueError) as e:
            raise CredentialsError(f"Failed to create Azure credential: {e}")

    def validate_credentials(self, token: Optional[CancellationToken] = None) -> None:
        try:
            self._query("Resources | project id | limit 1", token)
        except CredentialsError:
            raise
        except ProviderError as e:
            raise CredentialsError(f"Azure credential validation failed: {e}")
        logger.info("Azure: credentials valid for subscription %s", self.subscription_id)

    def get_resource_status(
        self, resource_type: str, resource_id: str, token: Optional[CancellationToken] = None
    ) -> DriftStatus:
        rows = self._query(build_lookup_query(resource_type, resource_id), token)
        if not rows:
            return DriftStatus(resource_id=resource_id, resource_type=resource_type, exists=False)

        row = rows[0]
        properties = row.get("properties") or {}
        return DriftStatus(
            resource_id=row.get("id") or resource_id,
            resource_type=resource_type,
            exists=True,
            state=properties.get("provisioningState"),
            tags={str(k): str(v) for k, v in (row.get("tags") or {}).items()},
            properties={"location": row.get("location"), "arm_type": row.get("type"), **properties},
        )

    def _query(self, query: str, token: Optional[CancellationToken] = None) -> List[Dict[str, Any]]:
        if self.client is None:
            raise ProviderError("Azure adapter is not initialized")
        if token is not None:
            token.raise_if_cancelled("Azure Resource Graph query")

        logger.debug("Azure Resource Graph query: %s", query)
        request = QueryRequest(
            subscriptions=[self.subscription_id],
            query=query,
            options=QueryRequestOptions(result_format="objectArray"),
        )
        try:
            response = self.client.resources(request)
        except ClientAuthenticationError as e:
            raise CredentialsError(f"Azure authentication failed: {e}")
        except AzureError as e:
            raise ProviderError(f"Azure Resource Graph query failed: {e}")
        return list(response.data or [])

    def close(self) -> None:
        if self.client is not None:
            self.client.close()
        if self.credential is not None:
            self.credential.close()
