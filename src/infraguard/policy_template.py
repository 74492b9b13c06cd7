import logging
import os
from typing import Optional

import yaml

logger = logging.getLogger(__name__)

DEFAULT_POLICY_FILENAME = "sample-policy.yml"

DEFAULT_POLICY_TEMPLATE = '''\
version: "1.0"
name: "Multi-Cloud Security and Compliance Policy"
description: "Baseline security, tagging and data-protection rules for AWS, Azure and GCP resources"

rules:
  # Governance
  - name: "required-tags"
    description: "Resources carry the tags used for ownership and cost reporting"
    severity: "error"
    category: "compliance"
    resource_types:
      - "aws_*"
      - "azurerm_*"
      - "google_*"
    conditions:
      tags.required:
        - "Environment"
        - "Owner"
        - "Project"
    message: "Resources must have Environment, Owner and Project tags"
    remediation: "Add the missing keys to the resource's tags block"

  - name: "naming-convention"
    description: "Resource names are lowercase with dashes"
    severity: "info"
    category: "compliance"
    resource_types:
      - "azurerm_resource_group"
      - "azurerm_storage_account"
      - "aws_s3_bucket"
    conditions:
      naming.pattern: "^[a-z0-9][a-z0-9-]*$"
    message: "Resource name does not follow the naming convention"
    remediation: "Rename the resource using lowercase letters, digits and dashes"

  # Data protection
  - name: "encryption-at-rest"
    description: "Storage is encrypted at rest"
    severity: "error"
    category: "security"
    resource_types:
      - "aws_s3_bucket"
      - "aws_ebs_volume"
      - "aws_rds_*"
      - "azurerm_managed_disk"
      - "google_compute_disk"
    conditions:
      encryption.enabled: true
    message: "Encryption at rest must be enabled"
    remediation: "Enable server-side encryption for the resource"

  - name: "block-public-access"
    description: "Sensitive resources are not publicly reachable"
    severity: "error"
    category: "security"
    resource_types:
      - "aws_s3_bucket"
      - "aws_db_instance"
      - "google_sql_database_instance"
    conditions:
      public_access.blocked: true
    message: "Public access must be blocked"
    remediation: "Set the ACL to private and disable public accessibility"

  - name: "enable-versioning"
    description: "Object storage keeps previous versions"
    severity: "warning"
    category: "compliance"
    resource_types:
      - "aws_s3_bucket"
      - "google_storage_bucket"
    conditions:
      versioning.enabled: true
    message: "Versioning should be enabled for data protection"
    remediation: "Enable versioning in the bucket configuration"

  - name: "enable-logging"
    description: "Access is logged for audit"
    severity: "warning"
    category: "compliance"
    resource_types:
      - "aws_s3_bucket"
      - "aws_cloudtrail"
      - "google_storage_bucket"
    conditions:
      logging.enabled: true
    message: "Logging should be enabled for audit purposes"
    remediation: "Configure access logging or diagnostic settings"

  - name: "database-backups"
    description: "Databases keep automated backups"
    severity: "warning"
    category: "compliance"
    resource_types:
      - "aws_db_instance"
      - "aws_rds_cluster"
    conditions:
      backup.enabled: true
    message: "Automated backups should be enabled"
    remediation: "Set backup_retention_period to at least 1 day"

  # Identity and network
  - name: "iam-least-privilege"
    description: "IAM policies avoid wildcard permissions"
    severity: "error"
    category: "security"
    resource_types:
      - "aws_iam_*"
      - "google_project_iam_*"
    conditions:
      iam.least_privilege: true
    message: "IAM policies should not use wildcard permissions"
    remediation: "List explicit actions and resources instead of '*'"

  - name: "use-private-subnet"
    description: "Compute runs in private subnets"
    severity: "warning"
    category: "security"
    resource_types:
      - "aws_instance"
      - "aws_db_instance"
    conditions:
      network.private_subnet: true
    message: "Resources should be deployed in private subnets"
    remediation: "Move the resource to a private subnet"

  - name: "storage-https-only"
    description: "Azure storage accounts only accept HTTPS traffic"
    severity: "error"
    category: "security"
    resource_types:
      - "azurerm_storage_account"
    conditions:
      https_traffic_only_enabled: true
      min_tls_version: "TLS1_2"
    message: "Storage accounts must enforce HTTPS with TLS 1.2"
    remediation: "Set https_traffic_only_enabled = true and min_tls_version = \\"TLS1_2\\""
'''


def count_rules(policy_text: str) -> int:
    data = yaml.safe_load(policy_text) or {}
    return len(data.get("rules") or [])


def write_policy_template(directory: str, policy_name: Optional[str] = None, force: bool = False) -> str:
    """
    Writes the sample policy to ``<directory>/policies/<policy_name>`` and returns its path.

    Raises:
        FileExistsError: if the file exists and ``force`` is not set.
    """
    policies_dir = os.path.join(directory, "policies")
    policy_file = os.path.join(policies_dir, policy_name or DEFAULT_POLICY_FILENAME)
    if os.path.exists(policy_file) and not force:
        raise FileExistsError(f"Policy file already exists: {policy_file} (use --force to overwrite)")

    os.makedirs(policies_dir, exist_ok=True)
    with open(policy_file, "w") as f:
        f.write(DEFAULT_POLICY_TEMPLATE)
    logger.info("Wrote policy template to %s", policy_file)
    return policy_file
