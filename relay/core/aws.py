from typing import Any, Dict
import aioboto3
from botocore.exceptions import BotoCoreError, ClientError

from relay.core.config import Settings
from relay.core.logging import get_logger

logger = get_logger(__name__)


def build_session(settings: Settings) -> aioboto3.Session:
    """
    Build the aioboto3 session for SQS and DynamoDB.

    A named profile is used when AWS_PROFILE is set; otherwise credentials
    come from the environment or the container role.
    """
    if settings.AWS_PROFILE:
        logger.info("aws.credentials", source="profile", profile=settings.AWS_PROFILE)
        return aioboto3.Session(profile_name=settings.AWS_PROFILE, region_name=settings.AWS_REGION)

    logger.info("aws.credentials", source="container_role")
    return aioboto3.Session(region_name=settings.AWS_REGION)


def client_kwargs(settings: Settings) -> Dict[str, Any]:
    """Extra keyword arguments for ``session.client``."""
    kwargs: Dict[str, Any] = {}
    if settings.AWS_ENDPOINT_URL:
        kwargs["endpoint_url"] = settings.AWS_ENDPOINT_URL
    return kwargs


# Client error codes that mean the backend is unusable rather than that one request failed
FATAL_ERROR_CODES = {
    "AccessDenied",
    "AccessDeniedException",
    "UnrecognizedClientException",
    "InvalidClientTokenId",
    "ExpiredToken",
    "ExpiredTokenException",
    "SignatureDoesNotMatch",
    "MissingAuthenticationToken",
    "ResourceNotFoundException",
    "QueueDoesNotExist",
    "AWS.SimpleQueueService.NonExistentQueue",
}


def error_code(error: ClientError) -> str:
    return error.response.get("Error", {}).get("Code", "")


def is_fatal(error: Exception) -> bool:
    """True for connection, credential and missing-resource failures."""
    if isinstance(error, ClientError):
        return error_code(error) in FATAL_ERROR_CODES
    return isinstance(error, BotoCoreError)
