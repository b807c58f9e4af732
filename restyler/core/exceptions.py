"""
Custom Exceptions
=================

Unified exception hierarchy for the video restyling pipeline.

Every error carries a ``category`` drawn from the pipeline's failure
taxonomy so callers can decide between aborting, retrying, or offering a
manual recovery path:

- ``InputValidation``: missing, oversize or malformed input. Never retried.
- ``ExternalServiceFailure``: a decoder, edit, analysis or encode call failed.
- ``ReferenceExpiry``: a previously issued image reference no longer resolves.
- ``PartialBatchFailure``: some frames of a fan-out failed, others succeeded.
"""

from typing import Optional, Dict, Any, List


INPUT_VALIDATION = "InputValidation"
EXTERNAL_SERVICE_FAILURE = "ExternalServiceFailure"
REFERENCE_EXPIRY = "ReferenceExpiry"
PARTIAL_BATCH_FAILURE = "PartialBatchFailure"


class VideoEditorError(Exception):
    """Base exception for all restyler errors."""

    category = EXTERNAL_SERVICE_FAILURE

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        recoverable: bool = False,
    ):
        super().__init__(message)
        self.message = message
        self.code = code or self.__class__.__name__
        self.details = details or {}
        self.recoverable = recoverable

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for serialization."""
        return {
            "error": self.code,
            "category": self.category,
            "message": self.message,
            "details": self.details,
            "recoverable": self.recoverable,
        }


class ValidationError(VideoEditorError):
    """Input/output validation errors."""

    category = INPUT_VALIDATION

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        value: Optional[Any] = None,
        constraint: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if field:
            details["field"] = field
        if value is not None:
            details["value"] = str(value)[:100]
        if constraint:
            details["constraint"] = constraint
        kwargs.pop("recoverable", None)
        super().__init__(message, details=details, recoverable=False, **kwargs)


class ConfigurationError(VideoEditorError):
    """Configuration-related errors."""

    category = INPUT_VALIDATION

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        expected_type: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if config_key:
            details["config_key"] = config_key
        if expected_type:
            details["expected_type"] = expected_type
        super().__init__(message, details=details, **kwargs)


class ExternalServiceError(VideoEditorError):
    """A call to an external service or process failed."""

    def __init__(
        self,
        message: str,
        service: Optional[str] = None,
        status_code: Optional[int] = None,
        response_body: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if service:
            details["service"] = service
        if status_code:
            details["status_code"] = status_code
        if response_body:
            # Truncate large responses
            details["response_body"] = response_body[:500] if len(response_body) > 500 else response_body

        # Throttling and server-side errors are worth another attempt
        recoverable = kwargs.pop("recoverable", status_code in (429, 500, 502, 503, 504) if status_code else False)
        super().__init__(message, recoverable=recoverable, details=details, **kwargs)
        self.status_code = status_code


class RateLimitError(ExternalServiceError):
    """Rate limit exceeded errors."""

    def __init__(
        self,
        message: str,
        retry_after: Optional[int] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if retry_after:
            details["retry_after_seconds"] = retry_after
        kwargs.pop("recoverable", None)
        super().__init__(message, status_code=429, recoverable=True, details=details, **kwargs)


class OperationTimeoutError(ExternalServiceError):
    """Operation timeout errors."""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if operation:
            details["operation"] = operation
        if timeout_seconds:
            details["timeout_seconds"] = timeout_seconds
        kwargs.pop("recoverable", None)
        super().__init__(message, recoverable=True, details=details, **kwargs)


class ExtractionError(ExternalServiceError):
    """The decoder could not read the video or one of its frames."""

    def __init__(self, message: str, stderr: Optional[str] = None, **kwargs):
        kwargs.setdefault("service", "ffmpeg")
        kwargs.pop("recoverable", None)
        super().__init__(message, response_body=stderr, recoverable=False, **kwargs)


class EncodeError(ExternalServiceError):
    """The encoder failed to produce a video from the staged frames."""

    def __init__(self, message: str, stderr: Optional[str] = None, **kwargs):
        kwargs.setdefault("service", "ffmpeg")
        kwargs.pop("recoverable", None)
        super().__init__(message, response_body=stderr, recoverable=True, **kwargs)


class ReferenceExpiredError(VideoEditorError):
    """A previously issued image reference is no longer resolvable."""

    category = REFERENCE_EXPIRY

    def __init__(
        self,
        message: str,
        reference: Optional[str] = None,
        status_code: Optional[int] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if reference:
            # Signed URLs carry credentials in the query string
            details["reference"] = reference.split("?", 1)[0][:200]
        if status_code:
            details["status_code"] = status_code
        kwargs.pop("recoverable", None)
        super().__init__(message, recoverable=True, details=details, **kwargs)


class PartialBatchError(VideoEditorError):
    """One or more frames of a fan-out failed while others succeeded."""

    category = PARTIAL_BATCH_FAILURE

    def __init__(
        self,
        message: str,
        failed_indices: Optional[List[int]] = None,
        succeeded: int = 0,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        self.failed_indices = sorted(failed_indices or [])
        self.succeeded = succeeded
        details["failed_indices"] = self.failed_indices
        details["succeeded"] = succeeded
        kwargs.pop("recoverable", None)
        super().__init__(message, recoverable=True, details=details, **kwargs)
