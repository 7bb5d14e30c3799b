"""
CodeStream - Test Configuration and Fixtures
"""
import os
from typing import Dict, List

import pytest

# Set testing environment before settings are loaded
os.environ['ENVIRONMENT'] = 'testing'
os.environ['ANTHROPIC_API_KEY'] = 'test-api-key'
os.environ['COMPLETION_STAGGER_ENABLED'] = 'false'
os.environ['LOG_FILE'] = ''

from codestream.modules.streaming.completion_scheduler import ImmediateCompletionPolicy
from tests.mocks.mock_claude import SAMPLE_FILES


class FakeClock:
    """Millisecond clock advanced by hand"""

    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, ms: float) -> None:
        self.now += ms


class RecordingSleep:
    """Async sleep replacement that only records the requested delays"""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def immediate_policy() -> ImmediateCompletionPolicy:
    return ImmediateCompletionPolicy()


@pytest.fixture
def sample_files() -> Dict[str, str]:
    return dict(SAMPLE_FILES)
