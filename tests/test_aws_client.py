"""Unit tests for AWS Client Manager."""

import pytest
from unittest.mock import Mock, patch
from botocore.exceptions import (
    ClientError,
    EndpointConnectionError,
    NoCredentialsError,
    ProfileNotFound,
)

from account_baseline.core.aws_client import (
    AWSClientManager,
    InvalidCredentialsError,
    describe_error,
    error_code,
    is_retryable_error,
)


def mock_session_with_sts():
    mock_session = Mock()
    mock_sts_client = Mock()
    mock_sts_client.get_caller_identity.return_value = {"Account": "123456789012"}
    mock_session.client.return_value = mock_sts_client
    return mock_session, mock_sts_client


class TestAWSClientManager:
    """Test cases for AWSClientManager class."""

    @patch("account_baseline.core.aws_client.boto3.Session")
    def test_init_success(self, mock_session_class):
        """Test successful initialization."""
        mock_session, mock_sts_client = mock_session_with_sts()
        mock_session_class.return_value = mock_session

        manager = AWSClientManager()

        assert manager._profile_name is None
        assert manager.account_id == "123456789012"
        mock_sts_client.get_caller_identity.assert_called_once()

    @patch("account_baseline.core.aws_client.boto3.Session")
    def test_init_with_profile(self, mock_session_class):
        """Test initialization with profile."""
        mock_session, _ = mock_session_with_sts()
        mock_session_class.return_value = mock_session

        manager = AWSClientManager(profile_name="test-profile")

        assert manager._profile_name == "test-profile"
        mock_session_class.assert_called_with(profile_name="test-profile")

    @patch("account_baseline.core.aws_client.boto3.Session")
    def test_init_without_validation(self, mock_session_class):
        """Test initialization can skip the STS round trip."""
        AWSClientManager(validate=False)

        mock_session_class.assert_not_called()

    @patch("account_baseline.core.aws_client.boto3.Session")
    def test_init_no_credentials(self, mock_session_class):
        """Test initialization with no credentials."""
        mock_session, mock_sts_client = mock_session_with_sts()
        mock_sts_client.get_caller_identity.side_effect = NoCredentialsError()
        mock_session_class.return_value = mock_session

        with pytest.raises(NoCredentialsError):
            AWSClientManager()

    @patch("account_baseline.core.aws_client.boto3.Session")
    def test_init_expired_token(self, mock_session_class):
        """Test expired credentials are reported as missing credentials."""
        mock_session, mock_sts_client = mock_session_with_sts()
        mock_sts_client.get_caller_identity.side_effect = ClientError(
            {"Error": {"Code": "ExpiredToken"}}, "GetCallerIdentity"
        )
        mock_session_class.return_value = mock_session

        with pytest.raises(NoCredentialsError):
            AWSClientManager()

    @patch("account_baseline.core.aws_client.boto3.Session")
    def test_init_invalid_token_message(self, mock_session_class):
        """Test rejected credentials name the error code and keep the cause."""
        mock_session, mock_sts_client = mock_session_with_sts()
        rejected = ClientError({"Error": {"Code": "InvalidClientTokenId"}}, "GetCallerIdentity")
        mock_sts_client.get_caller_identity.side_effect = rejected
        mock_session_class.return_value = mock_session

        with pytest.raises(InvalidCredentialsError) as excinfo:
            AWSClientManager()

        assert "invalid or expired (InvalidClientTokenId)" in str(excinfo.value)
        assert excinfo.value.__cause__ is rejected

    @patch("account_baseline.core.aws_client.boto3.Session")
    def test_init_profile_not_found(self, mock_session_class):
        """Test initialization with invalid profile."""
        mock_session_class.side_effect = ProfileNotFound(profile="invalid")

        with pytest.raises(ProfileNotFound):
            AWSClientManager(profile_name="invalid")

    @patch("account_baseline.core.aws_client.boto3.Session")
    def test_get_client_caching(self, mock_session_class):
        """Test client caching functionality."""
        mock_session, mock_sts_client = mock_session_with_sts()
        mock_s3_client = Mock()

        def client_side_effect(service_name, region_name=None, config=None):
            if service_name == "sts":
                return mock_sts_client
            elif service_name == "s3":
                return mock_s3_client
            return Mock()

        mock_session.client.side_effect = client_side_effect
        mock_session_class.return_value = mock_session

        manager = AWSClientManager(region_name="us-east-1")

        client1 = manager.get_client("s3")
        client2 = manager.get_client("s3", "us-east-1")

        assert client1 is client2
        assert client1 is mock_s3_client

    @patch("account_baseline.core.aws_client.boto3.Session")
    def test_clients_disable_botocore_retries(self, mock_session_class):
        """Test clients carry timeouts and a single botocore attempt."""
        mock_session, _ = mock_session_with_sts()
        mock_session_class.return_value = mock_session

        AWSClientManager(region_name="eu-west-1", call_timeout=12)

        _, kwargs = mock_session.client.call_args
        assert kwargs["region_name"] == "eu-west-1"
        assert kwargs["config"].connect_timeout == 12
        assert kwargs["config"].read_timeout == 12
        assert kwargs["config"].retries["total_max_attempts"] == 1

    @patch("account_baseline.core.aws_client.boto3.Session")
    def test_get_current_region_explicit(self, mock_session_class):
        """Test explicit region wins over the session region."""
        mock_session, _ = mock_session_with_sts()
        mock_session.region_name = "us-west-2"
        mock_session_class.return_value = mock_session

        manager = AWSClientManager(region_name="eu-central-1")

        assert manager.get_current_region() == "eu-central-1"

    @patch("account_baseline.core.aws_client.boto3.Session")
    def test_get_current_region(self, mock_session_class):
        """Test getting current region."""
        mock_session, _ = mock_session_with_sts()
        mock_session.region_name = "us-west-2"
        mock_session_class.return_value = mock_session

        manager = AWSClientManager()

        assert manager.get_current_region() == "us-west-2"

    @patch("account_baseline.core.aws_client.boto3.Session")
    def test_get_current_region_default(self, mock_session_class):
        """Test getting current region with default fallback."""
        mock_session, _ = mock_session_with_sts()
        mock_session.region_name = None
        mock_session_class.return_value = mock_session

        manager = AWSClientManager()

        assert manager.get_current_region() == "us-east-1"

    @patch("account_baseline.core.aws_client.boto3.Session")
    def test_get_account_id_cached(self, mock_session_class):
        """Test account ID is fetched once."""
        mock_session, mock_sts_client = mock_session_with_sts()
        mock_session_class.return_value = mock_session

        manager = AWSClientManager()
        manager.get_account_id()
        manager.get_account_id()

        mock_sts_client.get_caller_identity.assert_called_once()

    @patch("account_baseline.core.aws_client.boto3.Session")
    def test_clear_cache(self, mock_session_class):
        """Test clearing client cache."""
        mock_session, _ = mock_session_with_sts()
        mock_session_class.return_value = mock_session

        manager = AWSClientManager(region_name="us-east-1")
        manager.get_client("s3")
        assert len(manager._clients) == 2

        manager.clear_cache()
        assert len(manager._clients) == 0


class TestErrorClassification:
    """Test cases for AWS error classification."""

    @pytest.mark.parametrize("code", [
        "Throttling",
        "ThrottlingException",
        "TooManyRequestsException",
        "ServiceUnavailable",
        "ConcurrentModificationException",
        "InsufficientDeliveryPolicyException",
    ])
    def test_retryable_codes(self, code):
        error = ClientError({"Error": {"Code": code}}, "Operation")
        assert is_retryable_error(error) is True

    @pytest.mark.parametrize("code", [
        "AccessDenied",
        "AccessDeniedException",
        "MalformedPolicyDocument",
        "ValidationException",
    ])
    def test_fatal_codes(self, code):
        error = ClientError({"Error": {"Code": code}}, "Operation")
        assert is_retryable_error(error) is False

    def test_unknown_code_uses_http_status(self):
        server_error = ClientError(
            {"Error": {"Code": "Mystery"}, "ResponseMetadata": {"HTTPStatusCode": 503}},
            "Operation",
        )
        client_error = ClientError(
            {"Error": {"Code": "Mystery"}, "ResponseMetadata": {"HTTPStatusCode": 400}},
            "Operation",
        )

        assert is_retryable_error(server_error) is True
        assert is_retryable_error(client_error) is False

    def test_connection_errors_are_retryable(self):
        error = EndpointConnectionError(endpoint_url="https://s3.amazonaws.com")
        assert is_retryable_error(error) is True

    def test_non_aws_errors_are_not_retryable(self):
        assert is_retryable_error(ValueError("boom")) is False

    def test_describe_and_code(self):
        error = ClientError(
            {"Error": {"Code": "AccessDenied", "Message": "not allowed"}}, "PutBucketPolicy"
        )

        assert error_code(error) == "AccessDenied"
        assert describe_error(error) == "AccessDenied: not allowed"
        assert error_code(ValueError("x")) is None
