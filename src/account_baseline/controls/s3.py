"""S3 bucket receiving CloudTrail and Config logs."""

import json
import logging
from typing import Any, Dict, Optional, Sequence

from botocore.exceptions import ClientError

from ..baseline.models import Control, PropertyDiff
from ..core.aws_client import error_code
from .base import ControlHandler, ResourceSnapshot, tags_to_dict


logger = logging.getLogger(__name__)

BUCKET_NOT_FOUND_CODES = ('404', 'NoSuchBucket', 'NotFound')

PUBLIC_ACCESS_BLOCK_SETTINGS = (
    'BlockPublicAcls',
    'IgnorePublicAcls',
    'BlockPublicPolicy',
    'RestrictPublicBuckets',
)


class LogBucketHandler(ControlHandler):
    """Manages the central log bucket.

    The bucket is compared on four properties: versioning status, default
    encryption algorithm, whether all public access is blocked, and the
    bucket policy document.
    """

    kind = "s3_log_bucket"

    def read(self, control: Control) -> Optional[ResourceSnapshot]:
        s3 = self.aws_client.get_client('s3')
        bucket = control.desired['bucket_name']

        try:
            s3.head_bucket(Bucket=bucket)
        except ClientError as e:
            if error_code(e) in BUCKET_NOT_FOUND_CODES:
                return None
            raise

        properties = {
            "versioning": s3.get_bucket_versioning(Bucket=bucket).get('Status', 'Disabled'),
            "encryption": self._read_encryption(s3, bucket),
            "block_public_access": self._read_public_access_block(s3, bucket),
            "policy": self._read_policy(s3, bucket),
        }
        return ResourceSnapshot(properties, owned=self.marker.is_present(self._read_tags(s3, bucket)))

    @staticmethod
    def _read_tags(s3, bucket: str) -> Dict[str, str]:
        try:
            return tags_to_dict(s3.get_bucket_tagging(Bucket=bucket).get('TagSet'))
        except ClientError as e:
            if error_code(e) == 'NoSuchTagSet':
                return {}
            raise

    @staticmethod
    def _read_encryption(s3, bucket: str) -> Optional[str]:
        try:
            response = s3.get_bucket_encryption(Bucket=bucket)
        except ClientError as e:
            if error_code(e) == 'ServerSideEncryptionConfigurationNotFoundError':
                return None
            raise
        rules = response['ServerSideEncryptionConfiguration'].get('Rules', [])
        if not rules:
            return None
        return rules[0].get('ApplyServerSideEncryptionByDefault', {}).get('SSEAlgorithm')

    @staticmethod
    def _read_public_access_block(s3, bucket: str) -> bool:
        try:
            block = s3.get_public_access_block(Bucket=bucket)['PublicAccessBlockConfiguration']
        except ClientError as e:
            if error_code(e) == 'NoSuchPublicAccessBlockConfiguration':
                return False
            raise
        return all(block.get(setting, False) for setting in PUBLIC_ACCESS_BLOCK_SETTINGS)

    @staticmethod
    def _read_policy(s3, bucket: str) -> Optional[Dict[str, Any]]:
        try:
            return json.loads(s3.get_bucket_policy(Bucket=bucket)['Policy'])
        except ClientError as e:
            if error_code(e) == 'NoSuchBucketPolicy':
                return None
            raise

    def create(self, control: Control) -> None:
        s3 = self.aws_client.get_client('s3')
        bucket = control.desired['bucket_name']
        region = self.aws_client.get_current_region()

        params = {'Bucket': bucket}
        if region != 'us-east-1':
            params['CreateBucketConfiguration'] = {'LocationConstraint': region}

        try:
            s3.create_bucket(**params)
            logger.info(f"Created S3 bucket {bucket}")
        except ClientError as e:
            if error_code(e) != 'BucketAlreadyOwnedByYou':
                raise
            logger.info(f"S3 bucket {bucket} already exists")

        s3.put_bucket_tagging(Bucket=bucket, Tagging={'TagSet': self.marker.as_tag_list()})
        self._set_versioning(control)
        self._set_encryption(control)
        self._set_public_access_block(control)
        self._set_policy(control)

    def update(self, control: Control, diff: Sequence[PropertyDiff]) -> None:
        self._dispatch_updates(control, diff, {
            "versioning": self._set_versioning,
            "encryption": self._set_encryption,
            "block_public_access": self._set_public_access_block,
            "policy": self._set_policy,
        })

    def _set_versioning(self, control: Control) -> None:
        self.aws_client.get_client('s3').put_bucket_versioning(
            Bucket=control.desired['bucket_name'],
            VersioningConfiguration={'Status': control.desired['versioning']},
        )

    def _set_encryption(self, control: Control) -> None:
        self.aws_client.get_client('s3').put_bucket_encryption(
            Bucket=control.desired['bucket_name'],
            ServerSideEncryptionConfiguration={
                'Rules': [{
                    'ApplyServerSideEncryptionByDefault': {
                        'SSEAlgorithm': control.desired['encryption'],
                    },
                }],
            },
        )

    def _set_public_access_block(self, control: Control) -> None:
        blocked = bool(control.desired['block_public_access'])
        self.aws_client.get_client('s3').put_public_access_block(
            Bucket=control.desired['bucket_name'],
            PublicAccessBlockConfiguration={
                setting: blocked for setting in PUBLIC_ACCESS_BLOCK_SETTINGS
            },
        )

    def _set_policy(self, control: Control) -> None:
        self.aws_client.get_client('s3').put_bucket_policy(
            Bucket=control.desired['bucket_name'],
            Policy=json.dumps(control.desired['policy']),
        )

    def delete(self, control: Control) -> None:
        bucket = control.desired['bucket_name']
        self.aws_client.get_client('s3').delete_bucket(Bucket=bucket)
        logger.info(f"Deleted S3 bucket {bucket}")
