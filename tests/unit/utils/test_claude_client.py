"""
Unit Tests for the Claude stream client
Uses an in-memory stand-in for AsyncAnthropic so no network calls are made.
"""
from types import SimpleNamespace

import httpx
import pytest

from codestream.core.exceptions import StreamTransportError
from codestream.modules.continuation.request import GenerationRequest
from codestream.modules.streaming.types import FinishReason
from codestream.utils import claude_client
from codestream.utils.claude_client import ClaudeStreamClient, is_retryable_error


class FakeMessageStream:

    def __init__(self, chunks, stop_reason="end_turn", fail_on_enter=None, fail_after=None):
        self.chunks = chunks
        self.stop_reason = stop_reason
        self.fail_on_enter = fail_on_enter
        self.fail_after = fail_after

    async def __aenter__(self):
        if self.fail_on_enter:
            raise self.fail_on_enter
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False

    @property
    def text_stream(self):
        return self._text()

    async def _text(self):
        for chunk in self.chunks:
            yield chunk
        if self.fail_after:
            raise self.fail_after

    async def get_final_message(self):
        return SimpleNamespace(
            id="msg_test",
            stop_reason=self.stop_reason,
            usage=SimpleNamespace(input_tokens=12, output_tokens=34),
        )


class FakeMessages:

    def __init__(self, streams):
        self.streams = list(streams)
        self.calls = []

    def stream(self, **kwargs):
        self.calls.append(kwargs)
        return self.streams.pop(0)


class FakeAnthropic:

    def __init__(self, streams):
        self.messages = FakeMessages(streams)


@pytest.fixture(autouse=True)
def no_backoff(monkeypatch):
    monkeypatch.setattr(claude_client, "calculate_retry_delay", lambda attempt: 0)


def _client(*streams) -> ClaudeStreamClient:
    return ClaudeStreamClient(model="test-model", client=FakeAnthropic(streams))


async def _drain(stream):
    return [chunk async for chunk in stream]


class TestStreaming:
    """Test chunk delivery and finish reasons"""

    @pytest.mark.asyncio
    async def test_chunks_and_usage(self):
        client = _client(FakeMessageStream(["<!-- FILE:", "src/a.ts -->"]))
        stream = client.open_stream(GenerationRequest(prompt="Build it", system_instruction="Use markers"))

        assert await _drain(stream) == ["<!-- FILE:", "src/a.ts -->"]
        assert stream.finish_reason == FinishReason.STOP
        assert stream.received_chars == len("<!-- FILE:src/a.ts -->")
        assert stream.input_tokens == 12
        assert stream.output_tokens == 34

        call = client.async_client.messages.calls[0]
        assert call["model"] == "test-model"
        assert call["system"] == "Use markers"
        assert call["messages"] == [{"role": "user", "content": "Build it"}]

    @pytest.mark.asyncio
    async def test_request_overrides(self):
        client = _client(FakeMessageStream(["x"]))
        request = GenerationRequest(prompt="p", max_tokens=100, temperature=0.0)
        await _drain(client.open_stream(request))

        call = client.async_client.messages.calls[0]
        assert call["max_tokens"] == 100
        assert call["temperature"] == 0.0

    @pytest.mark.parametrize("stop_reason, expected", [
        ("end_turn", FinishReason.STOP),
        ("stop_sequence", FinishReason.STOP),
        ("max_tokens", FinishReason.LENGTH),
        ("refusal", FinishReason.UNKNOWN),
    ])
    @pytest.mark.asyncio
    async def test_stop_reason_mapping(self, stop_reason, expected):
        stream = _client(FakeMessageStream(["x"], stop_reason=stop_reason)).open_stream(GenerationRequest(prompt="p"))
        await _drain(stream)
        assert stream.finish_reason == expected


class TestRetries:

    @pytest.mark.asyncio
    async def test_retries_before_first_chunk(self):
        client = _client(
            FakeMessageStream([], fail_on_enter=httpx.ConnectError("connection refused")),
            FakeMessageStream(["ok"]),
        )
        stream = client.open_stream(GenerationRequest(prompt="p"))

        assert await _drain(stream) == ["ok"]
        assert len(client.async_client.messages.calls) == 2

    @pytest.mark.asyncio
    async def test_mid_stream_failure_is_not_retried(self):
        client = _client(
            FakeMessageStream(["partial"], fail_after=httpx.ReadError("connection reset")),
            FakeMessageStream(["never"]),
        )
        stream = client.open_stream(GenerationRequest(prompt="p"))
        received = []

        with pytest.raises(StreamTransportError) as exc_info:
            async for chunk in stream:
                received.append(chunk)

        assert received == ["partial"]
        assert exc_info.value.retryable
        assert exc_info.value.received_chars == len("partial")
        assert len(client.async_client.messages.calls) == 1

    @pytest.mark.asyncio
    async def test_non_retryable_error(self):
        client = _client(FakeMessageStream([], fail_on_enter=ValueError("invalid prompt")))
        with pytest.raises(StreamTransportError) as exc_info:
            await _drain(client.open_stream(GenerationRequest(prompt="p")))

        assert not exc_info.value.retryable
        assert len(client.async_client.messages.calls) == 1

    @pytest.mark.asyncio
    async def test_gives_up_after_max_retries(self):
        failures = [
            FakeMessageStream([], fail_on_enter=httpx.ConnectError("connection refused"))
            for _ in range(claude_client.MAX_RETRIES + 1)
        ]
        client = _client(*failures)
        with pytest.raises(StreamTransportError):
            await _drain(client.open_stream(GenerationRequest(prompt="p")))
        assert len(client.async_client.messages.calls) == claude_client.MAX_RETRIES + 1


class TestIsRetryableError:

    @pytest.mark.parametrize("error, expected", [
        (httpx.ConnectError("refused"), True),
        (httpx.ReadTimeout("slow"), True),
        (Exception("Overloaded, try again"), True),
        (ValueError("bad request"), False),
    ])
    def test_classification(self, error, expected):
        assert is_retryable_error(error) is expected
