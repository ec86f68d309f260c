"""Unit tests for the log bucket handler."""

import json

import pytest
from unittest.mock import Mock
from botocore.exceptions import ClientError

from account_baseline.baseline.models import Category, Control, PropertyDiff
from account_baseline.controls.s3 import LogBucketHandler


POLICY = {"Version": "2012-10-17", "Statement": [{"Effect": "Deny", "Principal": "*"}]}

BUCKET = Control(
    "log_bucket",
    Category.LOGGING,
    "s3_log_bucket",
    {
        "bucket_name": "baseline-logs",
        "versioning": "Enabled",
        "encryption": "AES256",
        "block_public_access": True,
        "policy": POLICY,
    },
)

ALL_BLOCKED = {
    "BlockPublicAcls": True,
    "IgnorePublicAcls": True,
    "BlockPublicPolicy": True,
    "RestrictPublicBuckets": True,
}


@pytest.fixture
def mock_s3(mock_aws_client):
    s3 = Mock()
    mock_aws_client.get_client.return_value = s3
    return s3


@pytest.fixture
def handler(mock_aws_client, marker):
    return LogBucketHandler(mock_aws_client, marker)


def configured_bucket(s3, tags):
    s3.get_bucket_tagging.return_value = {"TagSet": tags}
    s3.get_bucket_versioning.return_value = {"Status": "Enabled"}
    s3.get_bucket_encryption.return_value = {
        "ServerSideEncryptionConfiguration": {
            "Rules": [{"ApplyServerSideEncryptionByDefault": {"SSEAlgorithm": "AES256"}}]
        }
    }
    s3.get_public_access_block.return_value = {"PublicAccessBlockConfiguration": ALL_BLOCKED}
    s3.get_bucket_policy.return_value = {"Policy": json.dumps(POLICY)}


class TestLogBucketHandler:

    def test_read_absent(self, handler, mock_s3):
        mock_s3.head_bucket.side_effect = ClientError({"Error": {"Code": "404"}}, "HeadBucket")

        assert handler.read(BUCKET) is None

    def test_read_bucket_owned_elsewhere_raises(self, handler, mock_s3):
        mock_s3.head_bucket.side_effect = ClientError({"Error": {"Code": "403"}}, "HeadBucket")

        with pytest.raises(ClientError):
            handler.read(BUCKET)

    def test_read_configured(self, handler, mock_s3, owned_tags):
        configured_bucket(mock_s3, owned_tags)

        snapshot = handler.read(BUCKET)

        assert snapshot.owned is True
        assert snapshot.properties == {
            "versioning": "Enabled",
            "encryption": "AES256",
            "block_public_access": True,
            "policy": POLICY,
        }

    def test_read_bare_bucket(self, handler, mock_s3):
        mock_s3.get_bucket_tagging.side_effect = ClientError(
            {"Error": {"Code": "NoSuchTagSet"}}, "GetBucketTagging"
        )
        mock_s3.get_bucket_versioning.return_value = {}
        mock_s3.get_bucket_encryption.side_effect = ClientError(
            {"Error": {"Code": "ServerSideEncryptionConfigurationNotFoundError"}}, "GetBucketEncryption"
        )
        mock_s3.get_public_access_block.side_effect = ClientError(
            {"Error": {"Code": "NoSuchPublicAccessBlockConfiguration"}}, "GetPublicAccessBlock"
        )
        mock_s3.get_bucket_policy.side_effect = ClientError(
            {"Error": {"Code": "NoSuchBucketPolicy"}}, "GetBucketPolicy"
        )

        snapshot = handler.read(BUCKET)

        assert snapshot.owned is False
        assert snapshot.properties == {
            "versioning": "Disabled",
            "encryption": None,
            "block_public_access": False,
            "policy": None,
        }

    def test_partial_public_access_block_is_not_blocked(self, handler, mock_s3, owned_tags):
        configured_bucket(mock_s3, owned_tags)
        mock_s3.get_public_access_block.return_value = {
            "PublicAccessBlockConfiguration": dict(ALL_BLOCKED, BlockPublicPolicy=False)
        }

        assert handler.read(BUCKET).properties["block_public_access"] is False

    def test_create_in_us_east_1(self, handler, mock_s3, mock_aws_client, owned_tags):
        handler.create(BUCKET)

        mock_s3.create_bucket.assert_called_once_with(Bucket="baseline-logs")
        mock_s3.put_bucket_tagging.assert_called_once_with(
            Bucket="baseline-logs", Tagging={"TagSet": owned_tags}
        )
        mock_s3.put_bucket_versioning.assert_called_once_with(
            Bucket="baseline-logs", VersioningConfiguration={"Status": "Enabled"}
        )
        mock_s3.put_bucket_encryption.assert_called_once()
        mock_s3.put_public_access_block.assert_called_once_with(
            Bucket="baseline-logs", PublicAccessBlockConfiguration=ALL_BLOCKED
        )
        mock_s3.put_bucket_policy.assert_called_once_with(
            Bucket="baseline-logs", Policy=json.dumps(POLICY)
        )

    def test_create_with_location_constraint(self, handler, mock_s3, mock_aws_client):
        mock_aws_client.get_current_region.return_value = "eu-west-1"

        handler.create(BUCKET)

        mock_s3.create_bucket.assert_called_once_with(
            Bucket="baseline-logs",
            CreateBucketConfiguration={"LocationConstraint": "eu-west-1"},
        )

    def test_create_tolerates_bucket_already_owned(self, handler, mock_s3):
        mock_s3.create_bucket.side_effect = ClientError(
            {"Error": {"Code": "BucketAlreadyOwnedByYou"}}, "CreateBucket"
        )

        handler.create(BUCKET)

        mock_s3.put_bucket_tagging.assert_called_once()

    def test_create_bucket_taken_by_someone_else(self, handler, mock_s3):
        mock_s3.create_bucket.side_effect = ClientError(
            {"Error": {"Code": "BucketAlreadyExists"}}, "CreateBucket"
        )

        with pytest.raises(ClientError):
            handler.create(BUCKET)
        mock_s3.put_bucket_tagging.assert_not_called()

    def test_update_only_changed_properties(self, handler, mock_s3):
        handler.update(BUCKET, [PropertyDiff(("versioning",), "Enabled", "Suspended")])

        mock_s3.put_bucket_versioning.assert_called_once()
        mock_s3.put_bucket_encryption.assert_not_called()
        mock_s3.put_public_access_block.assert_not_called()
        mock_s3.put_bucket_policy.assert_not_called()

    def test_update_nested_policy_diff_puts_policy_once(self, handler, mock_s3):
        handler.update(BUCKET, [
            PropertyDiff(("policy", "Statement"), [], [{}]),
            PropertyDiff(("policy", "Version"), "2012-10-17", "2008-10-17"),
        ])

        mock_s3.put_bucket_policy.assert_called_once()

    def test_delete(self, handler, mock_s3):
        handler.delete(BUCKET)

        mock_s3.delete_bucket.assert_called_once_with(Bucket="baseline-logs")
