"""
Custom Exceptions for CodeStream
================================

Only the terminal states of the pipeline raise. Intermediate parser failures
are absorbed and turned into the next fallback's input.

Usage:
    from codestream.core.exceptions import UnrecoverableResponseError

    try:
        result = await pipeline.run_attempt(request)
    except UnrecoverableResponseError as e:
        logger.error(f"Could not parse response: {e}")
        dump(e.raw_text)
"""

from typing import Optional, Any, Dict


class CodeStreamError(Exception):
    """Base exception for all CodeStream errors"""

    def __init__(
        self,
        message: str,
        code: str = "INTERNAL_ERROR",
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "details": self.details
        }


# ============================================
# Stream Errors
# ============================================

class FormatMismatchError(CodeStreamError):
    """Detected wire format differs from the one the caller expected"""

    def __init__(self, expected: str, detected: str):
        super().__init__(
            f"Expected {expected} response format but detected {detected}",
            code="FORMAT_MISMATCH",
            details={"expected": expected, "detected": detected}
        )
        self.expected = expected
        self.detected = detected


class StreamTransportError(CodeStreamError):
    """Model stream could not be opened or broke mid-response"""

    def __init__(self, message: str, retryable: bool = False, received_chars: int = 0):
        super().__init__(
            message,
            code="STREAM_TRANSPORT_ERROR",
            details={"retryable": retryable, "received_chars": received_chars}
        )
        self.retryable = retryable
        self.received_chars = received_chars


class UnrecoverableResponseError(CodeStreamError):
    """Neither structured parsing nor emergency extraction produced a file"""

    def __init__(self, raw_text: str, message: str = "Could not parse response"):
        super().__init__(
            message,
            code="UNRECOVERABLE_RESPONSE",
            details={"raw_chars": len(raw_text), "tail": raw_text[-200:]}
        )
        self.raw_text = raw_text


# ============================================
# Continuation Errors
# ============================================

class ContinuationError(CodeStreamError):
    """Continuation loop failed after retries were exhausted"""

    def __init__(
        self,
        message: str,
        accumulated_files: Optional[Dict[str, str]] = None,
        missing_files: Optional[list] = None,
        code: str = "CONTINUATION_FAILED"
    ):
        self.accumulated_files = dict(accumulated_files or {})
        self.missing_files = list(missing_files or [])
        super().__init__(
            message,
            code=code,
            details={
                "accumulated": len(self.accumulated_files),
                "missing": self.missing_files,
            }
        )


class ContinuationLimitError(ContinuationError):
    """Maximum number of continuation batches reached"""

    def __init__(
        self,
        max_batches: int,
        accumulated_files: Optional[Dict[str, str]] = None,
        missing_files: Optional[list] = None
    ):
        super().__init__(
            f"Continuation stopped after {max_batches} batches",
            accumulated_files=accumulated_files,
            missing_files=missing_files,
            code="CONTINUATION_LIMIT"
        )
        self.max_batches = max_batches


class GenerationCancelledError(CodeStreamError):
    """Generation was cancelled by the caller"""

    def __init__(self, merged_files: Optional[Dict[str, str]] = None):
        self.merged_files = dict(merged_files or {})
        super().__init__(
            "Generation cancelled",
            code="CANCELLED",
            details={"merged": len(self.merged_files)}
        )
