"""Error taxonomy for the damage analysis pipeline.

Item-level errors (normalization, scoring) are recorded on the affected
``BatchItem`` and never abort a batch. Batch-level errors are raised to the
caller of the pipeline operation.
"""
from enum import Enum
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from damage_pipeline.domain.entities.batch_entity import PipelineState


class ErrorKind(str, Enum):
    UNSUPPORTED_MEDIA_TYPE = "unsupported_media_type"
    DECODE_FAILURE = "decode_failure"
    ENCODE_FAILURE = "encode_failure"
    TRANSPORT_FAILURE = "transport_failure"
    SERVICE_ERROR = "service_error"
    MALFORMED_RESPONSE = "malformed_response"


# --- Item-level ---

class ItemProcessingError(Exception):
    kind: ErrorKind

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status = status


class NormalizationError(ItemProcessingError):
    pass


class UnsupportedMediaTypeError(NormalizationError):
    kind = ErrorKind.UNSUPPORTED_MEDIA_TYPE


class DecodeFailureError(NormalizationError):
    kind = ErrorKind.DECODE_FAILURE


class EncodeFailureError(NormalizationError):
    kind = ErrorKind.ENCODE_FAILURE


class ScoringError(ItemProcessingError):
    pass


class TransportFailureError(ScoringError):
    kind = ErrorKind.TRANSPORT_FAILURE


class ServiceError(ScoringError):
    """The scoring service answered with an HTTP error status."""
    kind = ErrorKind.SERVICE_ERROR

    def __init__(self, status: int, message: str = ""):
        super().__init__(message or f"Scoring service returned HTTP {status}", status=status)


class MalformedResponseError(ScoringError):
    kind = ErrorKind.MALFORMED_RESPONSE


# --- Batch-level ---

class PipelineError(Exception):
    pass


class InvalidInputError(PipelineError):
    pass


class EmptyBatchError(PipelineError):
    pass


class PipelineBusyError(PipelineError):
    pass


class AllItemsFailedError(PipelineError):
    """Analysis finished but no item produced a score."""

    def __init__(self, state: "PipelineState"):
        super().__init__(f"All {len(state.items)} items failed to score")
        self.state = state


class PipelineCancelledError(PipelineError):
    def __init__(self, state: "PipelineState"):
        super().__init__("Pipeline operation cancelled")
        self.state = state
