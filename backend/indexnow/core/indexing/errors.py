"""
Error taxonomy for the indexing pipeline.

Every pipeline error derives from IndexingError and carries a ``retryable``
flag that RetryHandler.with_retry honours:

    InvalidJobError        bad job configuration or input (fatal for the job)
      NoActiveAccountsError
      NoUsableCredentialsError
      SitemapError
    TransientApiError      timeouts, connection errors, 5xx, plain 429 (retryable)
    CredentialError        401/403 or an unusable credential
    QuotaExhaustedError    account quota used up (pauses jobs, never retried)
    IndexingApiError       any other API failure
    JobNotEligibleError    job could not be locked for processing
"""

from typing import Any, Dict, Optional

QUOTA_EXCEEDED_SIGNATURE = "quota exceeded"


class IndexingError(Exception):
    """Base class for pipeline errors."""

    retryable = False

    def __init__(self, message: str, status_code: Optional[int] = None,
                 details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.details = details or {}


class InvalidJobError(IndexingError):
    """The job's configuration or input cannot be processed."""


class NoActiveAccountsError(InvalidJobError):
    """The owner has no active service account."""


class NoUsableCredentialsError(InvalidJobError):
    """Every active account was skipped because no token could be obtained."""


class SitemapError(InvalidJobError):
    """The sitemap could not be fetched or parsed."""


class TransientApiError(IndexingError):
    """Temporary failure worth retrying."""

    retryable = True


class CredentialError(IndexingError):
    """Authentication or authorization failure."""


class QuotaExhaustedError(IndexingError):
    """The account's daily API quota is used up."""


class IndexingApiError(IndexingError):
    """Unclassified API failure."""


class JobNotEligibleError(IndexingError):
    """The job is not pending, or is already being processed."""


def is_quota_exceeded(message: Optional[str]) -> bool:
    return bool(message) and QUOTA_EXCEEDED_SIGNATURE in message.lower()


def classify_api_error(status_code: Optional[int], message: str) -> IndexingError:
    """
    Map an indexing API failure onto the error taxonomy.

    Args:
        status_code: HTTP status, or None for transport-level failures
        message: Error text from the response body or the transport

    Returns:
        An IndexingError subclass instance (not raised)
    """
    if is_quota_exceeded(message):
        return QuotaExhaustedError(message, status_code=status_code)
    if status_code is None:
        return TransientApiError(message)
    if status_code in (401, 403):
        return CredentialError(message, status_code=status_code)
    if status_code == 429 or status_code >= 500:
        return TransientApiError(message, status_code=status_code)
    return IndexingApiError(message, status_code=status_code)
