"""
Pipeline Errors - Centralized failure taxonomy for the sentence pipeline.

Every failure a stage can produce is one of these classes. Stages raise them
unmodified, the engine decides whether to retry, and the service boundary is
the ONLY place that translates them into response statuses.

Each error has:
- ERROR_CODE: Unique identifier for logging/monitoring
- message: Human-readable description (embedded verbatim in responses)
- transient: Whether the engine may retry the failing stage
- to_dict(): Structured output for API responses
"""

from enum import Enum
from typing import Any, Dict, Optional


class PipelineErrorCode(str, Enum):
    """
    Canonical error codes for pipeline failures.
    """
    # Configuration
    CONFIGURATION_UNAVAILABLE = "CONFIGURATION_UNAVAILABLE"

    # Language model
    GENERATION_FAILED = "GENERATION_FAILED"
    GENERATION_TIMEOUT = "GENERATION_TIMEOUT"
    EMPTY_RESPONSE = "EMPTY_RESPONSE"

    # JSON extraction
    EXTRACTION_FAILED = "EXTRACTION_FAILED"
    NO_JSON_FOUND = "NO_JSON_FOUND"
    INVALID_JSON = "INVALID_JSON"
    MALFORMED_OUTPUT = "MALFORMED_OUTPUT"

    # Endpoint resolution
    NO_ENDPOINT_MATCH = "NO_ENDPOINT_MATCH"

    # Caller input
    INVALID_INPUT = "INVALID_INPUT"
    MISSING_IDENTITY = "MISSING_IDENTITY"
    INVALID_IDENTITY = "INVALID_IDENTITY"
    EMPTY_SENTENCE = "EMPTY_SENTENCE"

    # Engine
    MISSING_PREREQUISITE = "MISSING_PREREQUISITE"
    STAGE_TIMEOUT = "STAGE_TIMEOUT"

    # Service
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"


class PipelineError(Exception):
    """
    Base class for all pipeline errors.

    `transient` tells the engine whether re-running the same stage could
    succeed (model output varies between calls, remote services come back).
    """

    ERROR_CODE: PipelineErrorCode = PipelineErrorCode.EXTRACTION_FAILED
    transient: bool = True

    def __init__(self, message: str, metadata: Optional[Dict[str, Any]] = None):
        self.message = message
        self.metadata = metadata or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert error to structured dict for API responses.

        Returns:
            {
                "error_code": "NO_ENDPOINT_MATCH",
                "error_type": "NoMatchError",
                "message": "No endpoint matched the response: 'book a taxi'",
                "metadata": {...}
            }
        """
        return {
            "error_code": self.ERROR_CODE.value,
            "error_type": self.__class__.__name__,
            "message": self.message,
            "metadata": self.metadata,
        }


# ============================================================================
# CONFIGURATION ERRORS
# ============================================================================

class ConfigurationError(PipelineError):
    """
    ERROR_CODE: CONFIGURATION_UNAVAILABLE

    Raised when the endpoint catalog, model configuration or a prompt template
    cannot be loaded (missing, unparseable or empty).
    """
    ERROR_CODE = PipelineErrorCode.CONFIGURATION_UNAVAILABLE


# ============================================================================
# LANGUAGE MODEL ERRORS
# ============================================================================

class GenerationError(PipelineError):
    """
    ERROR_CODE: GENERATION_FAILED

    The model call failed (transport error, API error, bad status).
    """
    ERROR_CODE = PipelineErrorCode.GENERATION_FAILED


class LLMTimeoutError(GenerationError):
    """Model call timed out."""
    ERROR_CODE = PipelineErrorCode.GENERATION_TIMEOUT


class EmptyResponseError(GenerationError):
    """Model returned empty text (or nothing usable after cleanup)."""
    ERROR_CODE = PipelineErrorCode.EMPTY_RESPONSE


# ============================================================================
# EXTRACTION ERRORS
# ============================================================================

class ExtractionError(PipelineError):
    """
    ERROR_CODE: EXTRACTION_FAILED

    Base class for model output that could not be turned into usable JSON.
    """
    ERROR_CODE = PipelineErrorCode.EXTRACTION_FAILED


class NoJsonFoundError(ExtractionError):
    """No `{...}` span in the model output."""
    ERROR_CODE = PipelineErrorCode.NO_JSON_FOUND

    def __init__(self, raw_text: str):
        super().__init__(
            message="No JSON structure found in response",
            metadata={"raw_text": raw_text},
        )
        self.raw_text = raw_text


class JSONParseError(ExtractionError):
    """The candidate span was not valid JSON, even after sanitation."""
    ERROR_CODE = PipelineErrorCode.INVALID_JSON

    def __init__(self, error: str, candidate: str):
        super().__init__(
            message=f"Failed to parse JSON: {error}. Raw JSON: {candidate}",
            metadata={"error": error, "candidate": candidate},
        )
        self.candidate = candidate


class MalformedOutputError(ExtractionError):
    """
    ERROR_CODE: MALFORMED_OUTPUT

    Valid JSON, wrong shape.

    Example:
        - Missing "endpoints" array
        - "endpoints" is empty
        - First action has no "fields" object
    """
    ERROR_CODE = PipelineErrorCode.MALFORMED_OUTPUT


# ============================================================================
# RESOLUTION ERRORS
# ============================================================================

class NoMatchError(PipelineError):
    """
    ERROR_CODE: NO_ENDPOINT_MATCH

    Raised when the model's answer does not resolve to any catalog endpoint.
    """
    ERROR_CODE = PipelineErrorCode.NO_ENDPOINT_MATCH

    def __init__(self, answer: str):
        super().__init__(
            message=f"No endpoint matched the response: '{answer}'",
            metadata={"answer": answer},
        )
        self.answer = answer


# ============================================================================
# INPUT ERRORS (never retried)
# ============================================================================

class InputValidationError(PipelineError):
    """
    ERROR_CODE: INVALID_INPUT

    The caller sent something unusable. Retrying cannot help.
    """
    ERROR_CODE = PipelineErrorCode.INVALID_INPUT
    transient = False


class MissingIdentityError(InputValidationError):
    ERROR_CODE = PipelineErrorCode.MISSING_IDENTITY

    def __init__(self):
        super().__init__("Email is required and cannot be empty")


class InvalidIdentityError(InputValidationError):
    ERROR_CODE = PipelineErrorCode.INVALID_IDENTITY

    def __init__(self, identity: str):
        super().__init__(
            f"Invalid email format: {identity}",
            metadata={"identity": identity},
        )


class EmptySentenceError(InputValidationError):
    ERROR_CODE = PipelineErrorCode.EMPTY_SENTENCE

    def __init__(self):
        super().__init__("Sentence is required and cannot be empty")


# ============================================================================
# ENGINE ERRORS
# ============================================================================

class MissingPrerequisiteError(PipelineError):
    """
    ERROR_CODE: MISSING_PREREQUISITE

    A stage ran before the field it depends on was produced, usually because
    the producing stage is disabled.
    """
    ERROR_CODE = PipelineErrorCode.MISSING_PREREQUISITE
    transient = False

    def __init__(self, field: str, stage: str):
        super().__init__(
            f"Stage '{stage}' requires '{field}', which has not been produced",
            metadata={"field": field, "stage": stage},
        )


class StageTimeoutError(PipelineError):
    """Raised only when the engine runs with an enforcing TimeoutMode."""
    ERROR_CODE = PipelineErrorCode.STAGE_TIMEOUT

    def __init__(self, stage: str, timeout_secs: float):
        super().__init__(
            f"Stage '{stage}' timed out after {timeout_secs}s",
            metadata={"stage": stage, "timeout_secs": timeout_secs},
        )


# ============================================================================
# SERVICE ERRORS
# ============================================================================

class ServiceUnavailableError(PipelineError):
    """The service is shutting down and accepts no new requests."""
    ERROR_CODE = PipelineErrorCode.SERVICE_UNAVAILABLE
    transient = False

    def __init__(self):
        super().__init__("Service is shutting down")
