from unittest.mock import MagicMock, patch

import pytest
from google.api_core.exceptions import Forbidden, NotFound, ServiceUnavailable
from google.auth.exceptions import DefaultCredentialsError

from infraguard.cancellation import CancellationToken
from infraguard.connectors.base import ProviderConfig
from infraguard.connectors.gcp_connector import GCPProviderAdapter, parse_instance_id
from infraguard.errors import (
    CredentialsError,
    OperationCancelled,
    ProviderError,
    UnsupportedResourceTypeError,
)

MODULE = "infraguard.connectors.gcp_connector"
INSTANCE_ID = "projects/shop-prod/zones/europe-west1-b/instances/web-1"


@pytest.fixture
def gcp_sdk():
    with patch(f"{MODULE}.compute_v1.InstancesClient") as instances_cls, \
         patch(f"{MODULE}.storage.Client") as storage_cls, \
         patch(f"{MODULE}.service_account.Credentials.from_service_account_file") as from_file:
        yield {
            "instances_cls": instances_cls,
            "instances": instances_cls.return_value,
            "storage_cls": storage_cls,
            "storage": storage_cls.return_value,
            "from_file": from_file,
        }


@pytest.fixture
def adapter(gcp_sdk) -> GCPProviderAdapter:
    a = GCPProviderAdapter()
    a.initialize(ProviderConfig(provider="gcp", settings={"project": "shop-prod"}))
    return a


def test_initialize_requires_project(gcp_sdk, monkeypatch):
    monkeypatch.delenv("GCP_PROJECT", raising=False)
    monkeypatch.delenv("GOOGLE_CLOUD_PROJECT", raising=False)
    with pytest.raises(CredentialsError, match="project ID is required"):
        GCPProviderAdapter().initialize(ProviderConfig(provider="gcp"))


def test_initialize_reads_project_from_environment(gcp_sdk, monkeypatch):
    monkeypatch.delenv("GCP_PROJECT", raising=False)
    monkeypatch.setenv("GOOGLE_CLOUD_PROJECT", "from-env")
    adapter = GCPProviderAdapter()
    adapter.initialize(ProviderConfig(provider="gcp"))
    assert adapter.project_id == "from-env"
    gcp_sdk["storage_cls"].assert_called_once_with(project="from-env", credentials=None)


def test_initialize_with_service_account_file(gcp_sdk):
    GCPProviderAdapter().initialize(ProviderConfig(provider="gcp", settings={
        "project": "shop-prod", "credentials_file": "/secrets/sa.json",
    }))
    gcp_sdk["from_file"].assert_called_once_with("/secrets/sa.json")
    credentials = gcp_sdk["from_file"].return_value
    gcp_sdk["instances_cls"].assert_called_once_with(credentials=credentials)


def test_missing_default_credentials(gcp_sdk):
    gcp_sdk["storage_cls"].side_effect = DefaultCredentialsError("no ADC")
    with pytest.raises(CredentialsError, match="no ADC"):
        GCPProviderAdapter().initialize(ProviderConfig(provider="gcp", settings={"project": "shop-prod"}))


def test_validate_credentials_lists_one_instance(adapter, gcp_sdk):
    gcp_sdk["instances"].aggregated_list.return_value = iter([])
    adapter.validate_credentials()
    gcp_sdk["instances"].aggregated_list.assert_called_once_with(
        request={"project": "shop-prod", "max_results": 1}
    )


@pytest.mark.parametrize("error", [Forbidden("denied"), NotFound("no such project"), ServiceUnavailable("down")])
def test_validate_credentials_failures(adapter, gcp_sdk, error):
    gcp_sdk["instances"].aggregated_list.side_effect = error
    with pytest.raises(CredentialsError):
        adapter.validate_credentials()


def test_parse_instance_id():
    assert parse_instance_id(INSTANCE_ID) == ("shop-prod", "europe-west1-b", "web-1")
    with pytest.raises(ProviderError, match="Invalid compute instance id"):
        parse_instance_id("web-1")


def test_instance_found_with_label_drift(adapter, gcp_sdk):
    gcp_sdk["instances"].get.return_value = MagicMock(
        status="RUNNING",
        labels={"env": "staging"},
        machine_type="zones/europe-west1-b/machineTypes/e2-small",
        zone="zones/europe-west1-b",
    )

    status = adapter.detect_drift({"labels": {"env": "prod"}, "tags": ["http"]},
                                  "google_compute_instance", INSTANCE_ID)

    gcp_sdk["instances"].get.assert_called_once_with(project="shop-prod", zone="europe-west1-b", instance="web-1")
    assert status.state == "RUNNING"
    assert status.properties["machine_type"].endswith("e2-small")
    assert status.drift_details == ["Tag 'env' has value 'staging', expected 'prod'"]


def test_instance_not_found(adapter, gcp_sdk):
    gcp_sdk["instances"].get.side_effect = NotFound("gone")
    status = adapter.detect_drift({}, "google_compute_instance", INSTANCE_ID)
    assert status.exists is False
    assert status.drift_detected is True


def test_bucket_found(adapter, gcp_sdk):
    gcp_sdk["storage"].get_bucket.return_value = MagicMock(
        location="EU",
        storage_class="STANDARD",
        versioning_enabled=True,
        default_kms_key_name="projects/shop-prod/locations/eu/keyRings/r/cryptoKeys/k",
        labels={"owner": "data"},
    )

    status = adapter.get_resource_status("google_storage_bucket", "shop-logs")

    gcp_sdk["storage"].get_bucket.assert_called_once_with("shop-logs")
    assert status.tags == {"owner": "data"}
    assert status.properties["versioning_enabled"] is True
    assert status.properties["encryption_enabled"] is True


def test_bucket_without_customer_key(adapter, gcp_sdk):
    gcp_sdk["storage"].get_bucket.return_value = MagicMock(
        location="US", storage_class="STANDARD", versioning_enabled=None, default_kms_key_name=None, labels={},
    )
    status = adapter.get_resource_status("google_storage_bucket", "shop-logs")
    assert status.properties == {"location": "US", "storage_class": "STANDARD", "versioning_enabled": False}


def test_api_failure_is_provider_error(adapter, gcp_sdk):
    gcp_sdk["storage"].get_bucket.side_effect = ServiceUnavailable("backend error")
    with pytest.raises(ProviderError, match="get bucket shop-logs failed"):
        adapter.get_resource_status("google_storage_bucket", "shop-logs")


def test_unsupported_resource_type(adapter):
    with pytest.raises(UnsupportedResourceTypeError):
        adapter.get_resource_status("google_sql_database_instance", "db")


def test_calls_check_cancellation(adapter, gcp_sdk):
    token = CancellationToken()
    token.cancel()
    with pytest.raises(OperationCancelled):
        adapter.get_resource_status("google_storage_bucket", "shop-logs", token)
    gcp_sdk["storage"].get_bucket.assert_not_called()


def test_uninitialized_adapter_raises():
    with pytest.raises(ProviderError, match="not initialized"):
        GCPProviderAdapter().get_resource_status("google_storage_bucket", "shop-logs")


def test_close_releases_clients(adapter, gcp_sdk):
    adapter.close()
    gcp_sdk["instances"].transport.close.assert_called_once()
    gcp_sdk["storage"].close.assert_called_once()
