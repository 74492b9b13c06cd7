import copy
from typing import Any, Dict

import pytest

AZURERM = "registry.terraform.io/hashicorp/azurerm"

# Shape of `terraform show -json <planfile>`, trimmed to what is consumed.
SAMPLE_PLAN_JSON: Dict[str, Any] = {
    "format_version": "1.2",
    "terraform_version": "1.7.5",
    "planned_values": {
        "root_module": {
            "resources": [
                {
                    "address": "azurerm_resource_group.main",
                    "mode": "managed",
                    "type": "azurerm_resource_group",
                    "name": "main",
                    "provider_name": AZURERM,
                    "values": {
                        "name": "rg-app",
                        "location": "westeurope",
                        "tags": {"Environment": "prod", "Owner": "platform", "Project": "app"},
                    },
                },
                {
                    "address": "azurerm_storage_account.data",
                    "mode": "managed",
                    "type": "azurerm_storage_account",
                    "name": "data",
                    "provider_name": AZURERM,
                    "values": {
                        "name": "stappdata",
                        "https_traffic_only_enabled": True,
                        "min_tls_version": "TLS1_2",
                        "tags": {"Environment": "prod"},
                    },
                },
            ],
            "child_modules": [
                {
                    "address": "module.network",
                    "resources": [
                        {
                            "address": "module.network.azurerm_virtual_network.vnet",
                            "mode": "managed",
                            "type": "azurerm_virtual_network",
                            "name": "vnet",
                            "provider_name": AZURERM,
                            "values": {
                                "name": "vnet-app",
                                "address_space": ["10.0.0.0/16"],
                                "tags": {"Environment": "prod", "Owner": "network", "Project": "app"},
                            },
                        },
                        {
                            "address": "module.network.data.azurerm_client_config.current",
                            "mode": "data",
                            "type": "azurerm_client_config",
                            "name": "current",
                            "provider_name": AZURERM,
                            "values": {"tenant_id": "0000"},
                        },
                    ],
                }
            ],
        }
    },
}

SAMPLE_POLICY_YAML = """
version: 1.0
name: test-policy
description: Policy used by the test-suite
rules:
  - name: required-tags
    severity: error
    resource_types: ["azurerm_*"]
    conditions:
      tags.required: [Environment, Owner]
    message: Resources must be tagged
    remediation: Add the missing tags
  - name: storage-tls
    severity: warning
    resource_types: ["azurerm_storage_account"]
    conditions:
      https_traffic_only_enabled: true
      min_tls_version: TLS1_2
    message: Storage must enforce TLS 1.2
"""


@pytest.fixture
def sample_plan_json() -> Dict[str, Any]:
    return copy.deepcopy(SAMPLE_PLAN_JSON)


@pytest.fixture
def policy_file(tmp_path):
    path = tmp_path / "policy.yml"
    path.write_text(SAMPLE_POLICY_YAML)
    return path
