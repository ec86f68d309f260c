"""Centralized AWS client management with session handling.

This module provides one boto3 session per governed account/region and
hands out cached, thread-safe service clients configured with per-call
timeouts. It also classifies AWS API failures as retryable or fatal so the
inspector and applier agree on what "transient" means.
"""

import threading
from typing import Dict, Optional, Union

import boto3
from botocore.config import Config
from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    ConnectionError as BotoConnectionError,
    NoCredentialsError,
    ReadTimeoutError,
)


DEFAULT_REGION = "us-east-1"

# Throttling, server-side hiccups and eventual-consistency races.
RETRYABLE_ERROR_CODES = frozenset(
    {
        "Throttling",
        "ThrottlingException",
        "ThrottledException",
        "RequestThrottled",
        "RequestThrottledException",
        "TooManyRequestsException",
        "RequestLimitExceeded",
        "SlowDown",
        "RequestTimeout",
        "RequestTimeoutException",
        "PriorRequestNotComplete",
        "ServiceUnavailable",
        "ServiceUnavailableException",
        "InternalError",
        "InternalFailure",
        "InternalServerError",
        "InternalException",
        "ConcurrentModificationException",
        "OperationAbortedException",
        "InsufficientS3BucketPolicyException",
        "InsufficientDeliveryPolicyException",
        "NoSuchBucket",
    }
)

FATAL_ERROR_CODES = frozenset(
    {
        "AccessDenied",
        "AccessDeniedException",
        "UnauthorizedOperation",
        "AuthorizationError",
        "InvalidClientTokenId",
        "ExpiredToken",
        "ValidationError",
        "ValidationException",
        "InvalidParameterValueException",
        "InvalidParameterException",
        "MalformedPolicyDocument",
        "MalformedPolicy",
        "InvalidRequest",
        "InvalidInput",
    }
)


class InvalidCredentialsError(NoCredentialsError):
    """Credentials were found but AWS rejected them."""

    fmt = "AWS credentials are invalid or expired ({code}). Please update your credentials."


def error_code(error: Exception) -> Optional[str]:
    """Return the AWS error code carried by a ClientError, if any."""
    if isinstance(error, ClientError):
        return error.response.get("Error", {}).get("Code")
    return None


def is_retryable_error(error: Exception) -> bool:
    """Decide whether an AWS failure is worth retrying.

    Known error codes win. Unknown codes fall back to the HTTP status
    (429 and 5xx are retryable). Connection problems and timeouts raised
    by botocore itself are always retryable.

    Args:
        error: Exception raised by a boto3 call

    Returns:
        True if the failure is transient
    """
    if isinstance(error, (BotoConnectionError, ReadTimeoutError)):
        return True

    if not isinstance(error, ClientError):
        return False

    code = error_code(error)
    if code in RETRYABLE_ERROR_CODES:
        return True
    if code in FATAL_ERROR_CODES:
        return False

    status = error.response.get("ResponseMetadata", {}).get("HTTPStatusCode")
    return status == 429 or (status is not None and status >= 500)


def describe_error(error: Union[ClientError, BotoCoreError, Exception]) -> str:
    """Render an AWS failure as a short single-line message."""
    if isinstance(error, ClientError):
        details = error.response.get("Error", {})
        code = details.get("Code", "Unknown")
        message = details.get("Message") or str(error)
        return f"{code}: {message}"
    return f"{type(error).__name__}: {error}"


class AWSClientManager:
    """Centralized AWS client management with session handling.

    Credentials and region are passed in explicitly so that separate
    instances can govern separate accounts or regions without sharing
    ambient state.
    """

    def __init__(
        self,
        profile_name: Optional[str] = None,
        region_name: Optional[str] = None,
        call_timeout: int = 30,
        validate: bool = True,
    ) -> None:
        """Initialize AWS client manager.

        Args:
            profile_name: Optional AWS profile name for credentials
            region_name: Region all clients are created in
            call_timeout: Connect and read timeout for every API call, in seconds
            validate: Whether to verify credentials with STS immediately

        Raises:
            NoCredentialsError: When AWS credentials are not available
            ProfileNotFound: When specified profile doesn't exist
        """
        self._session: Optional[boto3.Session] = None
        self._clients: Dict[str, boto3.client] = {}
        self._lock = threading.Lock()
        self._profile_name = profile_name
        self._region_name = region_name
        self._account_id: Optional[str] = None
        # Retries are owned by the applier, so botocore makes a single attempt.
        self._client_config = Config(
            connect_timeout=call_timeout,
            read_timeout=call_timeout,
            retries={"mode": "standard", "total_max_attempts": 1},
        )
        if validate:
            self._validate_credentials()

    def _validate_credentials(self) -> None:
        """Validate AWS credentials are available and working.

        Raises:
            NoCredentialsError: When AWS credentials are not available
            InvalidCredentialsError: When AWS credentials are invalid or expired
            ProfileNotFound: When specified profile doesn't exist
        """
        try:
            self._account_id = self.get_account_id()
        except ClientError as e:
            code = error_code(e)
            if code in ("InvalidClientTokenId", "ExpiredToken"):
                raise InvalidCredentialsError(code=code) from e
            raise

    def _get_session(self) -> boto3.Session:
        """Get or create boto3 session.

        Returns:
            Configured boto3 session
        """
        if self._session is None:
            if self._profile_name:
                self._session = boto3.Session(profile_name=self._profile_name)
            else:
                self._session = boto3.Session()
        return self._session

    def get_client(self, service_name: str, region_name: Optional[str] = None) -> boto3.client:
        """Get AWS service client, cached per service and region.

        Args:
            service_name: AWS service name (e.g., 's3', 'cloudtrail')
            region_name: AWS region name; defaults to the managed region

        Returns:
            Configured boto3 client for the service and region
        """
        region = region_name or self.get_current_region()
        client_key = f"{service_name}_{region}"

        # boto3 sessions are not thread-safe; clients are.
        with self._lock:
            if client_key not in self._clients:
                session = self._get_session()
                self._clients[client_key] = session.client(
                    service_name, region_name=region, config=self._client_config
                )
            return self._clients[client_key]

    def get_current_region(self) -> str:
        """Get the region this manager governs.

        Returns:
            Explicit region, else the session's region, else us-east-1
        """
        if self._region_name:
            return self._region_name
        session = self._get_session()
        return session.region_name or DEFAULT_REGION

    def get_account_id(self) -> str:
        """Get current AWS account ID.

        Returns:
            Current AWS account ID

        Raises:
            ClientError: When unable to get account information
        """
        if self._account_id is None:
            sts_client = self.get_client("sts")
            response = sts_client.get_caller_identity()
            self._account_id = response["Account"]
        return self._account_id

    @property
    def account_id(self) -> str:
        """AWS account ID the credentials belong to."""
        return self.get_account_id()

    def clear_cache(self) -> None:
        """Clear cached clients to force recreation."""
        with self._lock:
            self._clients.clear()
