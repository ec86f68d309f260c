"""Customer managed IAM policy enforcing MFA."""

import json
import logging
from typing import Any, Dict, Optional, Sequence
from urllib.parse import unquote

from botocore.exceptions import ClientError

from ..baseline.models import Control, PropertyDiff
from ..core.aws_client import error_code
from .base import ControlHandler, ResourceSnapshot, tags_to_dict


logger = logging.getLogger(__name__)

# IAM keeps at most five versions of a managed policy.
MAX_POLICY_VERSIONS = 5


class ManagedPolicyHandler(ControlHandler):
    """Manages a customer managed IAM policy."""

    kind = "iam_managed_policy"

    def _policy_arn(self, control: Control) -> str:
        account_id = self.aws_client.get_account_id()
        return f"arn:aws:iam::{account_id}:policy/{control.desired['policy_name']}"

    def desired_properties(self, control: Control) -> Dict[str, Any]:
        # Policy descriptions are immutable, so only the document is compared.
        return {"document": control.desired["document"]}

    def read(self, control: Control) -> Optional[ResourceSnapshot]:
        iam = self.aws_client.get_client('iam')
        policy_arn = self._policy_arn(control)

        try:
            policy = iam.get_policy(PolicyArn=policy_arn)['Policy']
        except ClientError as e:
            if error_code(e) == 'NoSuchEntity':
                return None
            raise

        tags = tags_to_dict(iam.list_policy_tags(PolicyArn=policy_arn).get('Tags'))
        version = iam.get_policy_version(
            PolicyArn=policy_arn, VersionId=policy['DefaultVersionId']
        )['PolicyVersion']

        document = version['Document']
        if isinstance(document, str):
            document = json.loads(unquote(document))

        return ResourceSnapshot(
            properties={"description": policy.get('Description', ''), "document": document},
            owned=self.marker.is_present(tags),
        )

    def create(self, control: Control) -> None:
        iam = self.aws_client.get_client('iam')
        name = control.desired['policy_name']

        try:
            iam.create_policy(
                PolicyName=name,
                PolicyDocument=json.dumps(control.desired['document']),
                Description=control.desired.get('description', ''),
                Tags=self.marker.as_tag_list(),
            )
            logger.info(f"Created IAM policy {name}")
        except ClientError as e:
            if error_code(e) == 'EntityAlreadyExists':
                logger.info(f"IAM policy {name} already exists")
                return
            raise

    def update(self, control: Control, diff: Sequence[PropertyDiff]) -> None:
        self._dispatch_updates(control, diff, {"document": self._set_document})

    def _set_document(self, control: Control) -> None:
        """Publish the desired document as the new default version."""
        iam = self.aws_client.get_client('iam')
        policy_arn = self._policy_arn(control)

        versions = iam.list_policy_versions(PolicyArn=policy_arn)['Versions']
        if len(versions) >= MAX_POLICY_VERSIONS:
            oldest = min(
                (v for v in versions if not v['IsDefaultVersion']),
                key=lambda v: v['CreateDate'],
            )
            iam.delete_policy_version(PolicyArn=policy_arn, VersionId=oldest['VersionId'])
            logger.info(f"Pruned version {oldest['VersionId']} of {policy_arn}")

        iam.create_policy_version(
            PolicyArn=policy_arn,
            PolicyDocument=json.dumps(control.desired['document']),
            SetAsDefault=True,
        )

    def delete(self, control: Control) -> None:
        iam = self.aws_client.get_client('iam')
        policy_arn = self._policy_arn(control)

        for version in iam.list_policy_versions(PolicyArn=policy_arn)['Versions']:
            if not version['IsDefaultVersion']:
                iam.delete_policy_version(PolicyArn=policy_arn, VersionId=version['VersionId'])

        iam.delete_policy(PolicyArn=policy_arn)
        logger.info(f"Deleted IAM policy {policy_arn}")
