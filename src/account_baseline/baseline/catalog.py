"""Baseline catalog: the fixed set of controls and their dependency order.

The catalog validates control definitions before any account access and
hands out a stable topological order (ties broken by declaration order).
``build_default_catalog`` derives the standard account baseline from the
configuration.
"""

import logging
from typing import Dict, List, Optional, Sequence

from ..core.config import Configuration, ConfigurationError
from .models import Category, Control


logger = logging.getLogger(__name__)


class DuplicateControlError(ConfigurationError):
    """Raised when two controls share an identifier."""
    pass


class UnknownDependencyError(ConfigurationError):
    """Raised when a control depends on an identifier absent from the catalog."""
    pass


class CycleError(ConfigurationError):
    """Raised when control dependencies form a cycle."""
    pass


class BaselineCatalog:
    """Holds the baseline controls and exposes a dependency-safe order."""

    def __init__(self, controls: Sequence[Control]) -> None:
        """Initialize catalog.

        Args:
            controls: Control definitions in declaration order
        """
        self._controls: List[Control] = list(controls)

    def __len__(self) -> int:
        return len(self._controls)

    def get(self, identifier: str) -> Optional[Control]:
        """Look up a control by identifier."""
        for control in self._controls:
            if control.identifier == identifier:
                return control
        return None

    def validate(self) -> None:
        """Validate identifiers and dependency references.

        Raises:
            DuplicateControlError: When an identifier is declared twice
            UnknownDependencyError: When a dependency is not in the catalog
        """
        seen = set()
        for control in self._controls:
            if control.identifier in seen:
                raise DuplicateControlError(
                    f"Control '{control.identifier}' is declared more than once"
                )
            seen.add(control.identifier)

        for control in self._controls:
            for dependency in control.depends_on:
                if dependency not in seen:
                    raise UnknownDependencyError(
                        f"Control '{control.identifier}' depends on unknown "
                        f"control '{dependency}'"
                    )

    def load(self) -> List[Control]:
        """Validate and return controls in stable topological order.

        Every control appears after all of its dependencies. Among controls
        that are ready at the same time, declaration order wins.

        Returns:
            Ordered list of controls

        Raises:
            UnknownDependencyError: When a dependency is not in the catalog
            CycleError: When dependencies form a cycle
        """
        self.validate()

        ordered: List[Control] = []
        emitted = set()
        remaining = list(self._controls)

        while remaining:
            for control in remaining:
                if all(dep in emitted for dep in control.depends_on):
                    ordered.append(control)
                    emitted.add(control.identifier)
                    remaining.remove(control)
                    break
            else:
                members = ", ".join(c.identifier for c in remaining)
                raise CycleError(f"Dependency cycle detected among controls: {members}")

        return ordered

    def levels(self) -> List[List[Control]]:
        """Group the load order into dependency depths.

        Controls within one level never depend on each other, directly or
        transitively, so they can be inspected concurrently.

        Returns:
            Levels in execution order, each in load order
        """
        depth: Dict[str, int] = {}
        grouped: List[List[Control]] = []
        for control in self.load():
            level = max((depth[dep] + 1 for dep in control.depends_on), default=0)
            depth[control.identifier] = level
            while len(grouped) <= level:
                grouped.append([])
            grouped[level].append(control)
        return grouped

    def dependents_of(self, identifier: str) -> List[Control]:
        """Controls that directly depend on ``identifier``."""
        return [c for c in self._controls if identifier in c.depends_on]


MFA_SELF_SERVICE_ACTIONS = [
    "iam:CreateVirtualMFADevice",
    "iam:EnableMFADevice",
    "iam:GetUser",
    "iam:ListMFADevices",
    "iam:ListVirtualMFADevices",
    "iam:ResyncMFADevice",
    "iam:ChangePassword",
    "iam:GetAccountPasswordPolicy",
    "sts:GetSessionToken",
]

DEFAULT_CONFIG_RULES = [
    {"name": "root-account-mfa-enabled", "source_identifier": "ROOT_ACCOUNT_MFA_ENABLED"},
    {"name": "iam-user-mfa-enabled", "source_identifier": "IAM_USER_MFA_ENABLED"},
    {"name": "cloudtrail-enabled", "source_identifier": "CLOUD_TRAIL_ENABLED"},
    {
        "name": "s3-bucket-public-read-prohibited",
        "source_identifier": "S3_BUCKET_PUBLIC_READ_PROHIBITED",
    },
    {
        "name": "iam-password-policy",
        "source_identifier": "IAM_PASSWORD_POLICY",
        "input_parameters": {"MinimumPasswordLength": "14"},
    },
]

DEFAULT_STANDARDS = [
    "standards/aws-foundational-security-best-practices/v/1.0.0",
    "standards/cis-aws-foundations-benchmark/v/1.4.0",
]


def mfa_policy_document() -> Dict:
    """IAM policy denying everything without MFA except MFA self-enrolment."""
    return {
        "Version": "2012-10-17",
        "Statement": [
            {
                "Sid": "DenyAllExceptListedIfNoMFA",
                "Effect": "Deny",
                "NotAction": MFA_SELF_SERVICE_ACTIONS,
                "Resource": "*",
                "Condition": {"BoolIfExists": {"aws:MultiFactorAuthPresent": "false"}},
            }
        ],
    }


def log_bucket_policy(bucket_name: str, account_id: str) -> Dict:
    """Bucket policy allowing CloudTrail and Config to deliver logs."""
    bucket_arn = f"arn:aws:s3:::{bucket_name}"
    return {
        "Version": "2012-10-17",
        "Statement": [
            {
                "Sid": "AWSCloudTrailAclCheck",
                "Effect": "Allow",
                "Principal": {"Service": "cloudtrail.amazonaws.com"},
                "Action": "s3:GetBucketAcl",
                "Resource": bucket_arn,
            },
            {
                "Sid": "AWSCloudTrailWrite",
                "Effect": "Allow",
                "Principal": {"Service": "cloudtrail.amazonaws.com"},
                "Action": "s3:PutObject",
                "Resource": f"{bucket_arn}/AWSLogs/{account_id}/*",
                "Condition": {"StringEquals": {"s3:x-amz-acl": "bucket-owner-full-control"}},
            },
            {
                "Sid": "AWSConfigBucketPermissionsCheck",
                "Effect": "Allow",
                "Principal": {"Service": "config.amazonaws.com"},
                "Action": ["s3:GetBucketAcl", "s3:ListBucket"],
                "Resource": bucket_arn,
            },
            {
                "Sid": "AWSConfigBucketDelivery",
                "Effect": "Allow",
                "Principal": {"Service": "config.amazonaws.com"},
                "Action": "s3:PutObject",
                "Resource": f"{bucket_arn}/AWSLogs/{account_id}/Config/*",
                "Condition": {"StringEquals": {"s3:x-amz-acl": "bucket-owner-full-control"}},
            },
            {
                "Sid": "DenyInsecureTransport",
                "Effect": "Deny",
                "Principal": "*",
                "Action": "s3:*",
                "Resource": [bucket_arn, f"{bucket_arn}/*"],
                "Condition": {"Bool": {"aws:SecureTransport": "false"}},
            },
        ],
    }


def build_default_catalog(
    config: Configuration, account_id: str, region: str
) -> BaselineCatalog:
    """Derive the account baseline from configuration.

    Disabled controls are left out entirely, so disabling a control that
    another enabled control depends on fails catalog validation.

    Args:
        config: Loaded configuration
        account_id: Account the baseline is applied to
        region: Region the baseline is applied in

    Returns:
        Catalog of enabled controls in declaration order
    """
    prefix = config.get_resource_prefix()
    controls: List[Control] = []

    settings = config.get_control_settings("mfa_policy")
    controls.append(
        Control(
            identifier="mfa_policy",
            category=Category.IDENTITY,
            kind="iam_managed_policy",
            description="Deny all actions without MFA except MFA self-enrolment",
            desired={
                "policy_name": settings.get("policy_name", f"{prefix}-require-mfa"),
                "description": "Denies all actions unless the caller authenticated with MFA",
                "document": settings.get("document", mfa_policy_document()),
            },
        )
    )

    settings = config.get_control_settings("log_bucket")
    bucket_name = settings.get("bucket_name", f"{prefix}-logs-{account_id}-{region}")
    controls.append(
        Control(
            identifier="log_bucket",
            category=Category.LOGGING,
            kind="s3_log_bucket",
            description="Private, encrypted, versioned bucket for CloudTrail and Config",
            desired={
                "bucket_name": bucket_name,
                "versioning": "Enabled",
                "encryption": "AES256",
                "block_public_access": True,
                "policy": log_bucket_policy(bucket_name, account_id),
            },
            retain_on_teardown=settings.get("retain_on_teardown", True),
        )
    )

    settings = config.get_control_settings("cloudtrail")
    controls.append(
        Control(
            identifier="cloudtrail",
            category=Category.LOGGING,
            kind="cloudtrail_trail",
            description="Multi-region trail with log file validation",
            desired={
                "trail_name": settings.get("trail_name", f"{prefix}-trail"),
                "s3_bucket_name": bucket_name,
                "is_multi_region": settings.get("is_multi_region", True),
                "log_file_validation": True,
                "include_global_service_events": True,
                "logging": True,
            },
            depends_on=("log_bucket",),
        )
    )

    settings = config.get_control_settings("config_recorder")
    controls.append(
        Control(
            identifier="config_recorder",
            category=Category.COMPLIANCE,
            kind="config_recorder",
            description="AWS Config recorder and delivery channel",
            desired={
                "recorder_name": settings.get("recorder_name", f"{prefix}-recorder"),
                "delivery_channel_name": settings.get(
                    "delivery_channel_name", f"{prefix}-channel"
                ),
                "role_arn": settings.get(
                    "role_arn",
                    f"arn:aws:iam::{account_id}:role/aws-service-role/"
                    "config.amazonaws.com/AWSServiceRoleForConfig",
                ),
                "all_supported": True,
                "include_global_resource_types": settings.get(
                    "include_global_resource_types", True
                ),
                "s3_bucket_name": bucket_name,
                "recording": True,
            },
            depends_on=("log_bucket",),
        )
    )

    settings = config.get_control_settings("config_rules")
    rules = {}
    for rule in settings.get("rules", DEFAULT_CONFIG_RULES):
        rules[rule["name"]] = {
            "source_identifier": rule["source_identifier"],
            "input_parameters": dict(rule.get("input_parameters") or {}),
        }
    controls.append(
        Control(
            identifier="config_rules",
            category=Category.COMPLIANCE,
            kind="config_rules",
            description="AWS managed Config rules",
            desired={"rules": rules},
            depends_on=("config_recorder",),
        )
    )

    settings = config.get_control_settings("security_hub")
    standards = settings.get("standards", DEFAULT_STANDARDS)
    controls.append(
        Control(
            identifier="security_hub",
            category=Category.FINDINGS,
            kind="security_hub",
            description="Security Hub with security standards enabled",
            desired={
                "standards": sorted(
                    standard if standard.startswith("arn:")
                    else f"arn:aws:securityhub:{region}::{standard}"
                    for standard in standards
                ),
            },
            depends_on=("config_recorder",),
        )
    )

    settings = config.get_control_settings("budget")
    subscribers = sorted(settings.get("subscribers", []))
    # Budget notifications need at least one subscriber.
    thresholds = settings.get("thresholds", [80, 100]) if subscribers else []
    controls.append(
        Control(
            identifier="budget",
            category=Category.COST,
            kind="cost_budget",
            description="Monthly cost budget with e-mail alerts",
            desired={
                "budget_name": settings.get("budget_name", f"{prefix}-monthly-cost"),
                "limit_amount": f"{float(settings.get('limit_amount', 100)):.2f}",
                "limit_unit": settings.get("limit_unit", "USD"),
                "time_unit": "MONTHLY",
                "notifications": {
                    f"{float(threshold):g}": subscribers for threshold in thresholds
                },
            },
        )
    )

    enabled = [c for c in controls if config.is_control_enabled(c.identifier)]
    logger.debug(
        f"Baseline catalog built with {len(enabled)} of {len(controls)} controls enabled"
    )
    return BaselineCatalog(enabled)
