import logging
import os
from typing import Any, Callable, Optional

from google.api_core.exceptions import Forbidden, GoogleAPIError, NotFound, PermissionDenied, Unauthenticated
from google.auth.exceptions import GoogleAuthError
from google.cloud import compute_v1, storage
from google.oauth2 import service_account

from ..cancellation import CancellationToken
from ..errors import CredentialsError, ProviderError, UnsupportedResourceTypeError
from ..models import DriftStatus
from .base import ProviderAdapter, ProviderConfig

logger = logging.getLogger(__name__)

AUTH_ERRORS = (Unauthenticated, PermissionDenied, Forbidden, GoogleAuthError)


def parse_instance_id(resource_id: str):
    """
    Splits ``projects/{project}/zones/{zone}/instances/{name}`` into its parts.

    Raises:
        ProviderError: if ``resource_id`` is not in that form.
    """
    parts = resource_id.split("/")
    if len(parts) != 6 or parts[0] != "projects" or parts[2] != "zones" or parts[4] != "instances":
        raise ProviderError(
            f"Invalid compute instance id '{resource_id}': expected projects/<project>/zones/<zone>/instances/<name>"
        )
    return parts[1], parts[3], parts[5]


class GCPProviderAdapter(ProviderAdapter):
    """
    Reads live Google Cloud state for compute instances and storage buckets.

    Google Cloud calls its tags labels, so drift compares the planned ``labels``.
    """

    name = "gcp"
    TAGS_ATTRIBUTE = "labels"

    def __init__(self):
        self.project_id: Optional[str] = None
        self.instances: Optional[compute_v1.InstancesClient] = None
        self.storage: Optional[storage.Client] = None

    def initialize(self, config: ProviderConfig) -> None:
        self.project_id = (
            config.get("project")
            or os.environ.get("GCP_PROJECT")
            or os.environ.get("GOOGLE_CLOUD_PROJECT")
        )
        if not self.project_id:
            raise CredentialsError(
                "GCP project ID is required (provider setting project, GCP_PROJECT or GOOGLE_CLOUD_PROJECT)"
            )

        # Without an explicit file the client libraries fall back to application default credentials
        credentials_file = config.get("credentials_file")
        try:
            credentials = None
            if credentials_file:
                logger.info("GCP: authenticating with service account file %s", credentials_file)
                credentials = service_account.Credentials.from_service_account_file(credentials_file)
            else:
                logger.info("GCP: authenticating with application default credentials")
            self.instances = compute_v1.InstancesClient(credentials=credentials)
            self.storage = storage.Client(project=self.project_id, credentials=credentials)
        except (GoogleAuthError, OSError, ValueError) as e:
            raise CredentialsError(f"Failed to create GCP credentials: {e}")

    def validate_credentials(self, token: Optional[CancellationToken] = None) -> None:
        def first_instance_page():
            pager = self.instances.aggregated_list(request={"project": self.project_id, "max_results": 1})
            return next(iter(pager), None)

        try:
            self._call("compute instances aggregated list", first_instance_page, token, missing_ok=False)
        except CredentialsError:
            raise
        except ProviderError as e:
            raise CredentialsError(f"GCP credential validation failed: {e}")
        logger.info("GCP: credentials valid for project %s", self.project_id)

    def get_resource_status(
        self, resource_type: str, resource_id: str, token: Optional[CancellationToken] = None
    ) -> DriftStatus:
        if resource_type == "google_compute_instance":
            return self._instance_status(resource_id, token)
        if resource_type == "google_storage_bucket":
            return self._bucket_status(resource_id, token)
        raise UnsupportedResourceTypeError(f"GCP lookup is not supported for resource type '{resource_type}'")

    def _instance_status(self, resource_id: str, token: Optional[CancellationToken]) -> DriftStatus:
        project, zone, name = parse_instance_id(resource_id)
        instance = self._call(
            f"get instance {name}",
            lambda: self.instances.get(project=project, zone=zone, instance=name),
            token,
        )
        if instance is None:
            return DriftStatus(resource_id=resource_id, resource_type="google_compute_instance", exists=False)

        return DriftStatus(
            resource_id=resource_id,
            resource_type="google_compute_instance",
            exists=True,
            state=instance.status or None,
            tags={str(k): str(v) for k, v in dict(instance.labels).items()},
            properties={"machine_type": instance.machine_type, "zone": instance.zone},
        )

    def _bucket_status(self, bucket_name: str, token: Optional[CancellationToken]) -> DriftStatus:
        bucket = self._call(f"get bucket {bucket_name}", lambda: self.storage.get_bucket(bucket_name), token)
        if bucket is None:
            return DriftStatus(resource_id=bucket_name, resource_type="google_storage_bucket", exists=False)

        properties = {
            "location": bucket.location,
            "storage_class": bucket.storage_class,
            "versioning_enabled": bool(bucket.versioning_enabled),
        }
        if bucket.default_kms_key_name:
            properties["encryption_enabled"] = True
            properties["encryption_key"] = bucket.default_kms_key_name
        return DriftStatus(
            resource_id=bucket_name,
            resource_type="google_storage_bucket",
            exists=True,
            tags={str(k): str(v) for k, v in (bucket.labels or {}).items()},
            properties=properties,
        )

    def _call(
        self,
        description: str,
        func: Callable[[], Any],
        token: Optional[CancellationToken] = None,
        missing_ok: bool = True,
    ) -> Any:
        """Runs one API call. A NotFound answer returns None when ``missing_ok`` is set."""
        if self.instances is None or self.storage is None:
            raise ProviderError("GCP adapter is not initialized")
        if token is not None:
            token.raise_if_cancelled(f"GCP {description}")

        logger.debug("GCP %s", description)
        try:
            return func()
        except NotFound as e:
            if missing_ok:
                return None
            raise ProviderError(f"GCP {description} failed: {e}")
        except AUTH_ERRORS as e:
            raise CredentialsError(f"GCP authentication failed: {e}")
        except GoogleAPIError as e:
            raise ProviderError(f"GCP {description} failed: {e}")

    def close(self) -> None:
        if self.instances is not None:
            self.instances.transport.close()
        if self.storage is not None:
            self.storage.close()
