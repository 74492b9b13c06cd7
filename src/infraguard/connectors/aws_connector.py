import logging
import os
from typing import Any, Callable, Dict, Optional, Tuple

import boto3
from botocore.exceptions import BotoCoreError, ClientError, NoCredentialsError, ProfileNotFound

from ..cancellation import CancellationToken
from ..errors import CredentialsError, ProviderError, UnsupportedResourceTypeError
from ..models import DriftStatus
from .base import ProviderAdapter, ProviderConfig

logger = logging.getLogger(__name__)

DEFAULT_REGION = "us-east-1"

# Error codes AWS returns when the caller's credentials are rejected
AUTH_ERROR_CODES = {
    "AuthFailure",
    "ExpiredToken",
    "ExpiredTokenException",
    "InvalidClientTokenId",
    "SignatureDoesNotMatch",
    "UnrecognizedClientException",
}


def _error_code(error: ClientError) -> str:
    return str(error.response.get("Error", {}).get("Code", ""))


def _tag_dict(tags) -> Dict[str, str]:
    return {str(t["Key"]): str(t["Value"]) for t in tags or [] if "Key" in t and "Value" in t}


class AWSProviderAdapter(ProviderAdapter):
    """
    Reads live AWS state with boto3.

    Supports EC2 instances, S3 buckets and IAM roles. The region comes from the
    ``region`` setting, then AWS_REGION or AWS_DEFAULT_REGION, then us-east-1.
    """

    name = "aws"
    UNIQUE_ID_FIELD = "arn"

    def __init__(self):
        self.region: Optional[str] = None
        self.profile: Optional[str] = None
        self.session = None
        self.clients: Dict[str, Any] = {}

    def initialize(self, config: ProviderConfig) -> None:
        self.region = (
            config.get("region")
            or os.environ.get("AWS_REGION")
            or os.environ.get("AWS_DEFAULT_REGION")
            or DEFAULT_REGION
        )
        self.profile = config.get("profile")
        try:
            self.session = boto3.Session(profile_name=self.profile, region_name=self.region)
            self.clients = {
                service: self.session.client(service) for service in ("sts", "ec2", "s3", "iam")
            }
        except ProfileNotFound as e:
            raise CredentialsError(f"AWS profile not found: {e}")
        except BotoCoreError as e:
            raise CredentialsError(f"Failed to create AWS session: {e}")
        logger.info("AWS: using region %s%s", self.region, f" (profile {self.profile})" if self.profile else "")

    def validate_credentials(self, token: Optional[CancellationToken] = None) -> None:
        try:
            identity = self._call("sts", "get_caller_identity", token)
        except CredentialsError:
            raise
        except ProviderError as e:
            raise CredentialsError(f"AWS credential validation failed: {e}")
        logger.info("AWS: credentials valid for account %s (%s)", identity.get("Account"), identity.get("Arn"))

    def get_resource_status(
        self, resource_type: str, resource_id: str, token: Optional[CancellationToken] = None
    ) -> DriftStatus:
        lookups: Dict[str, Callable[[str, Optional[CancellationToken]], DriftStatus]] = {
            "aws_instance": self._instance_status,
            "aws_s3_bucket": self._bucket_status,
            "aws_iam_role": self._role_status,
        }
        lookup = lookups.get(resource_type)
        if lookup is None:
            raise UnsupportedResourceTypeError(f"AWS lookup is not supported for resource type '{resource_type}'")
        return lookup(resource_id, token)

    def _instance_status(self, instance_id: str, token: Optional[CancellationToken]) -> DriftStatus:
        result = self._call(
            "ec2", "describe_instances", token,
            missing_codes=("InvalidInstanceID.NotFound", "InvalidInstanceID.Malformed"),
            InstanceIds=[instance_id],
        )
        instances = [i for r in (result or {}).get("Reservations", []) for i in r.get("Instances", [])]
        if not instances:
            return DriftStatus(resource_id=instance_id, resource_type="aws_instance", exists=False)

        instance = instances[0]
        return DriftStatus(
            resource_id=instance_id,
            resource_type="aws_instance",
            exists=True,
            state=instance.get("State", {}).get("Name"),
            tags=_tag_dict(instance.get("Tags")),
            properties={
                "instance_type": instance.get("InstanceType"),
                "availability_zone": instance.get("Placement", {}).get("AvailabilityZone"),
                "public_ip": instance.get("PublicIpAddress"),
                "private_ip": instance.get("PrivateIpAddress"),
            },
        )

    def _bucket_status(self, bucket: str, token: Optional[CancellationToken]) -> DriftStatus:
        found = self._call("s3", "head_bucket", token, missing_codes=("404", "NoSuchBucket"), Bucket=bucket)
        if found is None:
            return DriftStatus(resource_id=bucket, resource_type="aws_s3_bucket", exists=False)

        tagging = self._call("s3", "get_bucket_tagging", token, missing_codes=("NoSuchTagSet",), Bucket=bucket)
        encryption = self._call(
            "s3", "get_bucket_encryption", token,
            missing_codes=("ServerSideEncryptionConfigurationNotFoundError",),
            Bucket=bucket,
        )
        versioning = self._call("s3", "get_bucket_versioning", token, Bucket=bucket)
        return DriftStatus(
            resource_id=bucket,
            resource_type="aws_s3_bucket",
            exists=True,
            tags=_tag_dict((tagging or {}).get("TagSet")),
            properties={
                "encryption_enabled": bool((encryption or {}).get("ServerSideEncryptionConfiguration")),
                "versioning_enabled": versioning.get("Status") == "Enabled",
            },
        )

    def _role_status(self, role_name: str, token: Optional[CancellationToken]) -> DriftStatus:
        result = self._call("iam", "get_role", token, missing_codes=("NoSuchEntity",), RoleName=role_name)
        if result is None:
            return DriftStatus(resource_id=role_name, resource_type="aws_iam_role", exists=False)

        role = result["Role"]
        create_date = role.get("CreateDate")
        return DriftStatus(
            resource_id=role_name,
            resource_type="aws_iam_role",
            exists=True,
            tags=_tag_dict(role.get("Tags")),
            properties={
                "arn": role.get("Arn"),
                "create_date": create_date.isoformat() if create_date is not None else None,
            },
        )

    def _call(
        self,
        service: str,
        operation: str,
        token: Optional[CancellationToken] = None,
        missing_codes: Tuple[str, ...] = (),
        **kwargs,
    ) -> Optional[Dict[str, Any]]:
        """
        Invokes one boto3 operation and returns its response.

        Returns None when AWS answers with one of ``missing_codes``.
        """
        client = self.clients.get(service)
        if client is None:
            raise ProviderError("AWS adapter is not initialized")
        if token is not None:
            token.raise_if_cancelled(f"AWS {service} {operation}")

        logger.debug("AWS %s.%s %s", service, operation, kwargs)
        try:
            return getattr(client, operation)(**kwargs)
        except NoCredentialsError as e:
            raise CredentialsError(f"AWS credentials not found: {e}")
        except ClientError as e:
            code = _error_code(e)
            if code in missing_codes:
                return None
            if code in AUTH_ERROR_CODES:
                raise CredentialsError(f"AWS authentication failed: {e}")
            raise ProviderError(f"AWS {service} {operation} failed: {e}")
        except BotoCoreError as e:
            raise ProviderError(f"AWS {service} {operation} failed: {e}")

    def close(self) -> None:
        for client in self.clients.values():
            client.close()
        self.clients = {}
