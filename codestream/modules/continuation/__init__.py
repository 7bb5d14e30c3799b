"""
Continuation: single attempts, follow-up batches and the top-level generator
"""

from codestream.modules.continuation.request import GenerationRequest
from codestream.modules.continuation.pipeline import AttemptResult, GenerationPipeline
from codestream.modules.continuation.controller import (
    ContinuationController,
    ContinuationState,
    ContinuationStatus,
)
from codestream.modules.continuation.generator import (
    CodeGenerator,
    GenerationResult,
    safe_merge,
    validate_generated_files,
)

__all__ = [
    'GenerationRequest',
    'AttemptResult',
    'GenerationPipeline',
    'ContinuationController',
    'ContinuationState',
    'ContinuationStatus',
    'CodeGenerator',
    'GenerationResult',
    'safe_merge',
    'validate_generated_files',
]
