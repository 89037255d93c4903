"""
Built-in compliance frameworks and the JSON framework loader.

The built-in frameworks cover the generic infrastructure checks every
organization starts with: encryption at rest, public exposure, backups and
ownership tagging. They are ordinary framework definitions seeded per
organization with ``framework_type=built_in``; organizations may disable
individual rules like any other.

Framework files are JSON documents shaped like FrameworkDefinition:

    {
      "name": "Internal Baseline",
      "standard_name": "INTERNAL",
      "rules": [
        {"rule_code": "INT-001", "title": "...", "severity": "high",
         "category": "tagging", "rule_type": "tag_required",
         "conditions": {"tag_key": "CostCenter"}, "recommendation": "..."}
      ]
    }
"""

import json
import logging
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Union

from pydantic import ValidationError

from ...models.compliance_models import Framework, FrameworkDefinition
from ...models.enums import FrameworkType
from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)

SOC2_FRAMEWORK = FrameworkDefinition(
    name="SOC 2 Type II",
    description="System and Organization Controls 2 Type II infrastructure controls",
    framework_type=FrameworkType.BUILT_IN,
    standard_name="SOC2",
    version="Type II",
    rules=[
        {
            "rule_code": "SOC2-CC6.1",
            "title": "Data at Rest Encryption",
            "description": "All data stored in databases and storage systems must be encrypted at rest",
            "severity": "critical",
            "category": "encryption",
            "rule_type": "property_check",
            "conditions": {"property": "is_encrypted", "operator": "equals", "value": True},
            "resource_types": ["rds", "s3", "ebs"],
            "recommendation": "Enable encryption at rest for this resource using AWS KMS or service-managed encryption",
        },
        {
            "rule_code": "SOC2-CC6.6",
            "title": "Restrict Public Access",
            "description": "Data stores must not be reachable from the public internet",
            "severity": "critical",
            "category": "public_access",
            "rule_type": "property_check",
            "conditions": {"property": "is_public", "operator": "not_equals", "value": True},
            "resource_types": ["rds", "s3"],
            "recommendation": "Remove public access and restrict access to VPC resources only",
        },
        {
            "rule_code": "SOC2-CC6.3",
            "title": "Least-Privilege Role Attached",
            "description": "Compute resources must run under an audited IAM role",
            "severity": "high",
            "category": "iam",
            "rule_type": "custom_script",
            "conditions": {"script": "'IAMRole' in resource.tags or 'Role' in resource.tags"},
            "resource_types": ["ec2", "lambda"],
            "recommendation": (
                'Attach an IAM role with least-privilege permissions and tag the resource with "IAMRole" '
                'or "Role" for audit tracking.'
            ),
        },
        {
            "rule_code": "SOC2-CC8.1",
            "title": "Change Management Tracking",
            "description": "Resources must carry change tracking tags for audit",
            "severity": "medium",
            "category": "tagging",
            "rule_type": "custom_script",
            "conditions": {
                "script": (
                    "'LastModifiedBy' in resource.tags or 'ChangeTicket' in resource.tags "
                    "or 'Version' in resource.tags"
                )
            },
            "recommendation": (
                'Add tags like "LastModifiedBy", "ChangeTicket", or "Version" to track changes for audit compliance.'
            ),
        },
        {
            "rule_code": "SOC2-A1.2",
            "title": "Automated Backups",
            "description": "Databases and instances must have automated backups",
            "severity": "high",
            "category": "backups",
            "rule_type": "property_check",
            "conditions": {"property": "has_backup", "operator": "equals", "value": True},
            "resource_types": ["rds", "ec2"],
            "recommendation": "Enable automated backups with a retention period of at least 7 days.",
        },
        {
            "rule_code": "SOC2-CC7.2",
            "title": "S3 Access Logging",
            "description": "Bucket access must be logged for security monitoring",
            "severity": "high",
            "category": "networking",
            "rule_type": "tag_required",
            "conditions": {"tag_key": "AccessLogging"},
            "resource_types": ["s3"],
            "recommendation": 'Enable S3 server access logging and tag the bucket with "AccessLogging".',
        },
    ],
)

AWS_FOUNDATIONAL_FRAMEWORK = FrameworkDefinition(
    name="AWS Foundational Security",
    description="Baseline security checks for AWS resources",
    framework_type=FrameworkType.BUILT_IN,
    standard_name="AWS-FSB",
    version="1.0",
    is_default=True,
    rules=[
        {
            "rule_code": "AWS-ENC-RDS",
            "title": "RDS Encryption at Rest",
            "severity": "critical",
            "category": "encryption",
            "rule_type": "property_check",
            "conditions": {"property": "is_encrypted", "operator": "equals", "value": True},
            "resource_types": ["rds"],
            "recommendation": (
                "Enable encryption at rest for the RDS instance. Note: Requires creating a new encrypted "
                "instance and migrating data."
            ),
        },
        {
            "rule_code": "AWS-ENC-EC2",
            "title": "EBS Volume Encryption",
            "severity": "high",
            "category": "encryption",
            "rule_type": "property_check",
            "conditions": {"property": "is_encrypted", "operator": "equals", "value": True},
            "resource_types": ["ec2"],
            "recommendation": (
                "Create encrypted snapshots of EBS volumes and launch new instance with encrypted volumes."
            ),
        },
        {
            "rule_code": "AWS-ENC-S3",
            "title": "S3 Default Encryption",
            "severity": "high",
            "category": "encryption",
            "rule_type": "property_check",
            "conditions": {"property": "is_encrypted", "operator": "equals", "value": True},
            "resource_types": ["s3"],
            "recommendation": "Enable default encryption for the S3 bucket using AES-256 or AWS KMS.",
        },
        {
            "rule_code": "AWS-PUB-S3",
            "title": "S3 Block Public Access",
            "severity": "critical",
            "category": "public_access",
            "rule_type": "property_check",
            "conditions": {"property": "is_public", "operator": "not_equals", "value": True},
            "resource_types": ["s3"],
            "recommendation": (
                "Remove public access permissions from bucket ACL and bucket policy. Enable S3 Block Public Access."
            ),
        },
        {
            "rule_code": "AWS-PUB-RDS",
            "title": "RDS Not Publicly Accessible",
            "severity": "critical",
            "category": "public_access",
            "rule_type": "property_check",
            "conditions": {"property": "is_public", "operator": "not_equals", "value": True},
            "resource_types": ["rds"],
            "recommendation": (
                "Modify the RDS instance to disable public accessibility. Access should be restricted to VPC "
                "resources only."
            ),
        },
        {
            "rule_code": "AWS-PUB-EC2",
            "title": "EC2 Public Exposure Reviewed",
            "severity": "high",
            "category": "public_access",
            "rule_type": "property_check",
            "conditions": {"property": "is_public", "operator": "not_equals", "value": True},
            "resource_types": ["ec2"],
            "recommendation": (
                "Review security groups to ensure only necessary ports are exposed. Consider using a bastion "
                "host or VPN for access."
            ),
        },
        {
            "rule_code": "AWS-BAK-RDS",
            "title": "RDS Automated Backups",
            "severity": "high",
            "category": "backups",
            "rule_type": "property_check",
            "conditions": {"property": "has_backup", "operator": "equals", "value": True},
            "resource_types": ["rds"],
            "recommendation": (
                "Enable automated backups with a retention period of at least 7 days. Consider enabling "
                "automated snapshots."
            ),
        },
        {
            "rule_code": "AWS-BAK-EC2",
            "title": "EC2 Snapshot Schedule",
            "severity": "medium",
            "category": "backups",
            "rule_type": "property_check",
            "conditions": {"property": "has_backup", "operator": "equals", "value": True},
            "resource_types": ["ec2"],
            "recommendation": (
                "Create a snapshot schedule using AWS Backup or a Lambda function to automate EBS snapshots."
            ),
        },
        {
            "rule_code": "AWS-TAG-OWNER",
            "title": "Owner Tag Present",
            "severity": "low",
            "category": "tagging",
            "rule_type": "tag_required",
            "conditions": {"tag_key": "Owner"},
            "recommendation": "Add an Owner tag. Tags are important for cost allocation and resource management.",
        },
        {
            "rule_code": "AWS-TAG-ENV",
            "title": "Environment Tag Valid",
            "severity": "low",
            "category": "tagging",
            "rule_type": "tag_pattern",
            "conditions": {"tag_key": "Environment", "pattern": "^(production|staging|development|test)$"},
            "recommendation": "Tag the resource with Environment set to production, staging, development or test.",
        },
        {
            "rule_code": "AWS-TAG-TEAM",
            "title": "Team Tag Present",
            "severity": "low",
            "category": "tagging",
            "rule_type": "tag_required",
            "conditions": {"tag_key": "Team"},
            "recommendation": "Add a Team tag. Tags are important for cost allocation and resource management.",
        },
    ],
)

BUILTIN_FRAMEWORKS: Dict[str, FrameworkDefinition] = {
    SOC2_FRAMEWORK.standard_name: SOC2_FRAMEWORK,
    AWS_FOUNDATIONAL_FRAMEWORK.standard_name: AWS_FOUNDATIONAL_FRAMEWORK,
}


def load_framework_definition(path: Union[str, Path]) -> FrameworkDefinition:
    """
    Read one framework definition from a JSON file.

    Raises:
        ConfigurationError: Unreadable file, invalid JSON or invalid definition.
    """
    path = Path(path)
    try:
        with path.open("r", encoding="utf-8") as handle:
            data = json.load(handle)
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigurationError(
            f"Cannot read framework file {path.name}: {e}",
            error_code="INVALID_FRAMEWORK_FILE",
            context={"path": str(path)},
            cause=e,
        )

    try:
        return FrameworkDefinition.model_validate(data)
    except ValidationError as e:
        raise ConfigurationError(
            f"Invalid framework definition in {path.name}: {e.error_count()} errors",
            error_code="INVALID_FRAMEWORK_FILE",
            context={"path": str(path), "errors": e.errors(include_url=False)},
            cause=e,
        )


def load_framework_definitions(paths: Iterable[Union[str, Path]]) -> List[FrameworkDefinition]:
    """Load definitions from files and directories (``*.json``, sorted)."""
    definitions = []
    for entry in paths:
        entry = Path(entry)
        files = sorted(entry.glob("*.json")) if entry.is_dir() else [entry]
        for file_path in files:
            definitions.append(load_framework_definition(file_path))
            logger.info(f"Loaded framework definition from {file_path}")
    return definitions


def seed_frameworks(
    repository,
    organization_id: str,
    definitions: Iterable[FrameworkDefinition],
    created_by: Optional[str] = None,
) -> List[Framework]:
    """
    Create each definition for the organization unless a framework with the
    same name already exists.

    Args:
        repository: FrameworkRepository bound to an open session

    Returns:
        Frameworks created by this call.
    """
    created = []
    for definition in definitions:
        if repository.find_framework_by_name(organization_id, definition.name) is not None:
            logger.info(f"Framework {definition.name} already exists for organization {organization_id}; skipping")
            continue
        created.append(repository.create_framework(organization_id, definition, created_by=created_by))
    return created


def seed_builtin_frameworks(
    repository,
    organization_id: str,
    standard_names: Optional[Iterable[str]] = None,
    created_by: Optional[str] = None,
) -> List[Framework]:
    """
    Seed the built-in frameworks (all, or the named standards) for an organization.

    Raises:
        ConfigurationError: Unknown standard name.
    """
    names = list(standard_names) if standard_names is not None else list(BUILTIN_FRAMEWORKS)
    unknown = [name for name in names if name not in BUILTIN_FRAMEWORKS]
    if unknown:
        raise ConfigurationError(
            f"Unknown built-in frameworks: {', '.join(unknown)}",
            error_code="UNKNOWN_BUILTIN_FRAMEWORK",
            context={"available": sorted(BUILTIN_FRAMEWORKS)},
        )
    return seed_frameworks(
        repository,
        organization_id,
        [BUILTIN_FRAMEWORKS[name] for name in names],
        created_by=created_by,
    )
