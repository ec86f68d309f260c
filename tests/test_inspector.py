"""Unit tests for state inspection."""

import pytest
from unittest.mock import Mock
from botocore.exceptions import ClientError, ReadTimeoutError

from account_baseline.baseline.inspector import InspectionError, StateInspector
from account_baseline.baseline.models import Category, Control, ObservedStatus
from account_baseline.controls.base import ControlHandler, ResourceSnapshot


BUCKET = Control(
    "log_bucket",
    Category.LOGGING,
    "s3_log_bucket",
    {"bucket_name": "logs", "versioning": "Enabled", "encryption": "AES256"},
)


@pytest.fixture
def handler():
    handler = Mock(spec=ControlHandler)
    handler.desired_properties.return_value = {"versioning": "Enabled", "encryption": "AES256"}
    return handler


@pytest.fixture
def inspector(handler):
    return StateInspector({"s3_log_bucket": handler})


class TestStateInspector:

    def test_absent(self, inspector, handler):
        handler.read.return_value = None

        assert inspector.inspect(BUCKET).status is ObservedStatus.ABSENT

    def test_matching(self, inspector, handler):
        handler.read.return_value = ResourceSnapshot(
            {"versioning": "Enabled", "encryption": "AES256", "extra": 1}, owned=True
        )

        observed = inspector.inspect(BUCKET)

        assert observed.status is ObservedStatus.MATCHING
        assert observed.owned is True

    def test_divergent(self, inspector, handler):
        handler.read.return_value = ResourceSnapshot(
            {"versioning": "Suspended", "encryption": "AES256"}, owned=False
        )

        observed = inspector.inspect(BUCKET)

        assert observed.status is ObservedStatus.DIVERGENT
        assert observed.owned is False
        assert [d.path for d in observed.diff] == [("versioning",)]

    def test_throttling_returned_not_raised(self, inspector, handler):
        handler.read.side_effect = ClientError(
            {"Error": {"Code": "ThrottlingException", "Message": "Rate exceeded"}},
            "GetBucketVersioning",
        )

        observed = inspector.inspect(BUCKET)

        assert observed.status is ObservedStatus.INSPECTION_FAILED
        assert observed.retryable is True
        assert observed.cause == "ThrottlingException: Rate exceeded"

    def test_timeout_returned_not_raised(self, inspector, handler):
        handler.read.side_effect = ReadTimeoutError(endpoint_url="https://s3.amazonaws.com")

        observed = inspector.inspect(BUCKET)

        assert observed.status is ObservedStatus.INSPECTION_FAILED
        assert observed.retryable is True

    def test_access_denied_is_fatal(self, inspector, handler):
        handler.read.side_effect = ClientError(
            {"Error": {"Code": "AccessDenied", "Message": "denied"}}, "HeadBucket"
        )

        observed = inspector.inspect(BUCKET)

        assert observed.status is ObservedStatus.INSPECTION_FAILED
        assert observed.retryable is False

    def test_malformed_response(self, inspector, handler):
        handler.read.side_effect = InspectionError("unexpected policy format")

        observed = inspector.inspect(BUCKET)

        assert observed.status is ObservedStatus.INSPECTION_FAILED
        assert observed.cause == "unexpected policy format"

    def test_unknown_kind(self, inspector):
        control = Control("other", Category.COST, "unknown_kind")

        observed = inspector.inspect(control)

        assert observed.status is ObservedStatus.INSPECTION_FAILED
        assert "unknown_kind" in observed.cause
