from anthropic import AsyncAnthropic, APIStatusError, APIError, APIConnectionError, APITimeoutError
from typing import AsyncIterator, Optional
import asyncio
import random
import httpx
from codestream.core.config import settings
from codestream.core.exceptions import StreamTransportError
from codestream.core.logging_config import logger
from codestream.modules.continuation.request import GenerationRequest
from codestream.modules.streaming.types import FinishReason
from codestream.utils.chunk_streams import ChunkStream

# Retry configuration - loaded from settings
MAX_RETRIES = settings.CLAUDE_MAX_RETRIES
BASE_DELAY = settings.CLAUDE_RETRY_BASE_DELAY
MAX_DELAY = settings.CLAUDE_RETRY_MAX_DELAY
REQUEST_TIMEOUT = float(settings.CLAUDE_REQUEST_TIMEOUT)
CONNECT_TIMEOUT = float(settings.CLAUDE_CONNECT_TIMEOUT)
RETRYABLE_ERRORS = ['overloaded_error', 'rate_limit_error', 'server_error', 'api_error']

STOP_REASONS = {
    "end_turn": FinishReason.STOP,
    "stop_sequence": FinishReason.STOP,
    "max_tokens": FinishReason.LENGTH,
}


def is_retryable_error(error: Exception) -> bool:
    """Check if an error is retryable (overload, rate limit, network issues, etc.)"""
    error_str = str(error).lower()

    # Network/connection errors are always retryable
    if isinstance(error, (APIConnectionError, APITimeoutError)):
        logger.warning(f"Network error detected (retryable): {type(error).__name__}")
        return True

    # httpx network errors
    if isinstance(error, (httpx.ConnectError, httpx.TimeoutException, httpx.NetworkError)):
        logger.warning(f"HTTPX network error detected (retryable): {type(error).__name__}")
        return True

    if isinstance(error, (APIStatusError, APIError)):
        # Check error type from API response
        body = getattr(error, 'body', None)
        if isinstance(body, dict) and isinstance(body.get('error'), dict):
            return body['error'].get('type', '') in RETRYABLE_ERRORS
        # Check status code for server errors
        if hasattr(error, 'status_code'):
            return error.status_code in [429, 500, 502, 503, 529]

    # Fallback: check error message for network-related issues
    network_errors = ['overload', 'rate_limit', '529', '503', 'capacity',
                      'connection', 'timeout', 'network', 'dns', 'socket']
    return any(err in error_str for err in network_errors)


def calculate_retry_delay(attempt: int) -> float:
    """Calculate delay with exponential backoff and jitter"""
    delay = min(BASE_DELAY * (2 ** attempt), MAX_DELAY)
    # Add jitter (0-25% of delay)
    jitter = delay * random.uniform(0, 0.25)
    return delay + jitter


class ClaudeChunkStream(ChunkStream):
    """
    One streaming messages call.

    Retries only before the first chunk has been yielded; a stream that
    breaks mid-response cannot be resumed and surfaces StreamTransportError.
    """

    def __init__(self, client: AsyncAnthropic, model: str, request: GenerationRequest):
        super().__init__()
        self.client = client
        self.model = model
        self.request = request
        self.received_chars = 0
        self.input_tokens = 0
        self.output_tokens = 0

    async def _chunks(self) -> AsyncIterator[str]:
        request = self.request
        max_tokens = request.max_tokens or settings.CLAUDE_MAX_TOKENS
        temperature = settings.CLAUDE_TEMPERATURE if request.temperature is None else request.temperature
        messages = [{"role": "user", "content": request.user_message()}]

        logger.info(
            f"Claude Streaming: model={self.model}, max_tokens={max_tokens}, "
            f"prompt_len={len(request.prompt)}, batch={request.batch_index}"
        )

        for attempt in range(MAX_RETRIES + 1):
            has_yielded = False
            try:
                async with self.client.messages.stream(
                    model=self.model,
                    max_tokens=max_tokens,
                    temperature=temperature,
                    system=request.system_instruction or "",
                    messages=messages
                ) as stream:
                    async for text in stream.text_stream:
                        if self.closed:
                            break
                        has_yielded = True
                        self.received_chars += len(text)
                        yield text

                    if self.closed:
                        return
                    final_message = await stream.get_final_message()

                self.input_tokens = final_message.usage.input_tokens
                self.output_tokens = final_message.usage.output_tokens
                self.finish_reason = STOP_REASONS.get(final_message.stop_reason, FinishReason.UNKNOWN)
                logger.info(
                    f"Claude Streaming response: id={final_message.id}, "
                    f"tokens={self.input_tokens + self.output_tokens}, stop={final_message.stop_reason}"
                )
                return  # Success, exit the retry loop

            except Exception as e:
                error_type = type(e).__name__
                retryable = is_retryable_error(e)
                # Only retry if we haven't started yielding yet (can't recover mid-stream)
                if not has_yielded and retryable and attempt < MAX_RETRIES:
                    delay = calculate_retry_delay(attempt)
                    logger.warning(
                        f"Claude Streaming API error [{error_type}] (attempt {attempt + 1}/{MAX_RETRIES + 1}), retrying in {delay:.1f}s...",
                        extra={
                            "event_type": "claude_stream_retry",
                            "error_type": error_type,
                            "attempt": attempt + 1,
                            "retry_delay": delay
                        }
                    )
                    await asyncio.sleep(delay)
                    continue

                logger.error(
                    f"Claude Streaming API error: {error_type}: {e}",
                    extra={
                        "event_type": "claude_stream_error",
                        "error_type": error_type,
                        "error_message": str(e),
                        "has_yielded": has_yielded,
                        "attempt": attempt + 1
                    }
                )
                raise StreamTransportError(
                    f"{error_type}: {e}", retryable=retryable, received_chars=self.received_chars
                ) from e


class ClaudeStreamClient:
    """Opens model streams for the generation pipeline"""

    def __init__(self, model: Optional[str] = None, client: Optional[AsyncAnthropic] = None):
        self.model = model or settings.CLAUDE_MODEL
        if client is not None:
            self.async_client = client
        else:
            client_kwargs = {"api_key": settings.ANTHROPIC_API_KEY}

            # Only set base_url if it's a non-empty string with actual content
            if settings.ANTHROPIC_BASE_URL and settings.ANTHROPIC_BASE_URL.strip():
                client_kwargs["base_url"] = settings.ANTHROPIC_BASE_URL.strip()
                logger.info(f"Using custom Claude API base URL: {settings.ANTHROPIC_BASE_URL}")

            client_kwargs["timeout"] = httpx.Timeout(
                connect=CONNECT_TIMEOUT,
                read=REQUEST_TIMEOUT,
                write=REQUEST_TIMEOUT,
                pool=REQUEST_TIMEOUT
            )
            self.async_client = AsyncAnthropic(**client_kwargs)

        logger.info(f"Claude stream client initialized: timeout={REQUEST_TIMEOUT}s, model={self.model}")

    def open_stream(self, request: GenerationRequest) -> ClaudeChunkStream:
        return ClaudeChunkStream(self.async_client, self.model, request)
