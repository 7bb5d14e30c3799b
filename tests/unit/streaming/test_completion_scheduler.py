"""
Unit Tests for Completion Scheduler policies
"""
from codestream.modules.streaming.completion_scheduler import (
    ImmediateCompletionPolicy,
    StaggeredCompletionPolicy,
)


class TestStaggeredCompletionPolicy:
    """Test dwell-time pacing"""

    def test_required_dwell_grows_with_plan_index(self):
        policy = StaggeredCompletionPolicy(min_dwell_ms=500, stagger_ms=200, sweep_stagger_ms=150)
        assert policy.required_dwell_ms(0) == 500
        assert policy.required_dwell_ms(3) == 1100

    def test_can_complete_after_dwell(self):
        policy = StaggeredCompletionPolicy(min_dwell_ms=500, stagger_ms=200, sweep_stagger_ms=150)
        assert not policy.can_complete(1, streaming_since_ms=1000, now_ms=1699)
        assert policy.can_complete(1, streaming_since_ms=1000, now_ms=1700)

    def test_sweep_delay(self):
        policy = StaggeredCompletionPolicy(min_dwell_ms=0, stagger_ms=0, sweep_stagger_ms=150)
        assert policy.sweep_delay_ms() == 150


class TestImmediateCompletionPolicy:

    def test_always_completes(self):
        policy = ImmediateCompletionPolicy()
        assert policy.can_complete(10, streaming_since_ms=0, now_ms=0)
        assert policy.sweep_delay_ms() == 0
