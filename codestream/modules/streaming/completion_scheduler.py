"""
Completion Scheduler - presentation pacing for file completion events

A file whose content is complete may still be reported as streaming until it
has dwelt in the streaming state for `min_dwell_ms + plan_index * stagger_ms`.
Files therefore complete in plan order at a readable pace. Content extraction
is unaffected; headless callers use ImmediateCompletionPolicy.
"""

from abc import ABC, abstractmethod

from codestream.core.config import settings


class CompletionPolicy(ABC):

    @abstractmethod
    def can_complete(self, plan_index: int, streaming_since_ms: float, now_ms: float) -> bool:
        """Whether a content-complete file may be reported Complete now"""

    @abstractmethod
    def sweep_delay_ms(self) -> float:
        """Pause between force-completions at stream end"""


class StaggeredCompletionPolicy(CompletionPolicy):

    def __init__(self, min_dwell_ms: float = None, stagger_ms: float = None,
                 sweep_stagger_ms: float = None):
        self.min_dwell_ms = settings.COMPLETION_MIN_DWELL_MS if min_dwell_ms is None else min_dwell_ms
        self.stagger_ms = settings.COMPLETION_STAGGER_MS if stagger_ms is None else stagger_ms
        self.sweep_stagger_ms = (
            settings.COMPLETION_SWEEP_STAGGER_MS if sweep_stagger_ms is None else sweep_stagger_ms
        )

    def required_dwell_ms(self, plan_index: int) -> float:
        return self.min_dwell_ms + plan_index * self.stagger_ms

    def can_complete(self, plan_index: int, streaming_since_ms: float, now_ms: float) -> bool:
        return now_ms - streaming_since_ms >= self.required_dwell_ms(plan_index)

    def sweep_delay_ms(self) -> float:
        return self.sweep_stagger_ms


class ImmediateCompletionPolicy(CompletionPolicy):

    def can_complete(self, plan_index: int, streaming_since_ms: float, now_ms: float) -> bool:
        return True

    def sweep_delay_ms(self) -> float:
        return 0


def default_policy() -> CompletionPolicy:
    if settings.COMPLETION_STAGGER_ENABLED:
        return StaggeredCompletionPolicy()
    return ImmediateCompletionPolicy()
