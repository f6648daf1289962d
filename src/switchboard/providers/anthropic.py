"""Anthropic Messages API adapter."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

from switchboard.errors import APIError, SwitchboardError, UnsupportedCapabilityError
from switchboard.providers._compat import SCHEMA_TOOL_DESCRIPTION, SCHEMA_TOOL_NAME
from switchboard.providers._errors import wrap_provider_error
from switchboard.providers._hygiene import apply_hygiene
from switchboard.providers._messages import (
    Message,
    contents_to_messages,
    extract_system_text,
)
from switchboard.providers._streaming import ToolCallAssembler
from switchboard.providers._usage import (
    ANTHROPIC_STOP_REASONS,
    account_failure,
    dump_for_estimate,
    estimate_tokens,
    map_finish_reason,
    normalize_usage,
)
from switchboard.providers._utils import (
    close_stream,
    first_set,
    new_call_id,
    sanitize_schema,
    unwrap_schema_call,
)
from switchboard.providers.base import ProviderCapabilities
from switchboard.telemetry import CallRecorder
from switchboard.types import (
    Candidate,
    Content,
    CountTokensResponse,
    FinishReason,
    GenerateResponse,
    Part,
    TextPart,
    ToolCallPart,
    UsageMetadata,
)

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from switchboard.config import GeneratorConfig
    from switchboard.telemetry import TelemetrySink
    from switchboard.types import EmbedRequest, EmbedResponse, GenerateRequest

logger = logging.getLogger(__name__)

_ANTHROPIC_MAX_TOKENS = 4096
_CONTINUE_PLACEHOLDER = "Continue."


def normalize_base_url(base_url: str | None) -> str | None:
    """Strip a trailing ``/v1``; the SDK appends its own API path."""
    if not base_url:
        return None
    url = base_url.rstrip("/")
    if url.endswith("/v1"):
        url = url[: -len("/v1")]
    return url


class AnthropicGenerator:
    """Anthropic Messages API adapter."""

    def __init__(
        self, config: GeneratorConfig, *, telemetry: TelemetrySink | None = None
    ) -> None:
        """Initialize from a resolved config; the SDK client is created lazily."""
        self.config = config
        self.model = config.model
        self._telemetry = telemetry
        self._client: Any = None

    def _get_client(self) -> Any:
        """Lazily initialize and return the async Anthropic client."""
        if self._client is None:
            try:
                from anthropic import AsyncAnthropic
            except ImportError as e:
                raise APIError(
                    "anthropic package not installed",
                    hint="uv pip install anthropic",
                ) from e
            self._client = AsyncAnthropic(
                api_key=self.config.api_key,
                base_url=normalize_base_url(self.config.base_url),
                timeout=self.config.timeout_s,
                max_retries=self.config.max_retries,
            )
        return self._client

    @property
    def capabilities(self) -> ProviderCapabilities:
        """Return supported feature flags."""
        return ProviderCapabilities(
            streaming=True,
            embeddings=False,
            count_tokens_native=False,
            structured_outputs=False,
            reasoning=True,
        )

    @staticmethod
    def build_messages(request: GenerateRequest) -> list[dict[str, Any]]:
        """Build strictly alternating messages that start with a user turn.

        Consecutive same-role messages are merged block-wise; a leading
        assistant turn gets a ``"Continue."`` user turn in front of it.
        """
        neutral = apply_hygiene(contents_to_messages(request.normalized_contents()))
        messages: list[dict[str, Any]] = []
        for message in neutral:
            role = "assistant" if message.role == "assistant" else "user"
            blocks = _content_blocks(message)
            if not blocks:
                continue
            if messages and messages[-1]["role"] == role:
                messages[-1]["content"].extend(blocks)
            else:
                messages.append({"role": role, "content": blocks})

        if messages and messages[0]["role"] != "user":
            messages.insert(0, {"role": "user", "content": _CONTINUE_PLACEHOLDER})
        return messages

    @staticmethod
    def _tool_kwargs(request: GenerateRequest) -> dict[str, Any]:
        schema = request.response_schema_json()
        if schema is not None:
            return {
                "tools": [
                    {
                        "name": SCHEMA_TOOL_NAME,
                        "description": SCHEMA_TOOL_DESCRIPTION,
                        "input_schema": sanitize_schema(schema),
                    }
                ],
                "tool_choice": {"type": "tool", "name": SCHEMA_TOOL_NAME},
            }
        tools = [
            {
                "name": tool.name,
                "description": tool.description,
                "input_schema": sanitize_schema(tool.parameters or {}),
            }
            for tool in request.tools or []
            if tool.name
        ]
        return {"tools": tools} if tools else {}

    def build_create_kwargs(self, request: GenerateRequest) -> dict[str, Any]:
        """Assemble keyword arguments for ``messages.create``."""
        sampling = self.config.sampling
        kwargs: dict[str, Any] = {
            "model": request.model or self.model,
            "max_tokens": first_set(
                sampling.max_tokens,
                request.max_output_tokens,
                default=_ANTHROPIC_MAX_TOKENS,
            ),
            "messages": self.build_messages(request),
        }
        system_text = extract_system_text(request.system_instruction)
        if system_text:
            kwargs["system"] = system_text
        temperature = first_set(sampling.temperature, request.temperature)
        if temperature is not None:
            kwargs["temperature"] = temperature
        top_p = first_set(sampling.top_p, request.top_p)
        if top_p is not None:
            kwargs["top_p"] = top_p
        if sampling.top_k is not None:
            kwargs["top_k"] = sampling.top_k
        kwargs.update(self._tool_kwargs(request))
        return kwargs

    def _wrap(
        self, exc: BaseException, *, phase: str, streaming: bool = False
    ) -> APIError:
        return wrap_provider_error(
            exc,
            provider="anthropic",
            phase=phase,
            allow_network_errors=True,
            message=f"Anthropic {phase} failed",
            timeout_s=self.config.timeout_s,
            streaming=streaming,
        )

    async def generate(
        self, request: GenerateRequest, prompt_id: str
    ) -> GenerateResponse:
        """Generate a complete response using the Messages API."""
        model = request.model or self.model
        recorder = CallRecorder(
            self._telemetry,
            model=model,
            prompt_id=prompt_id,
            auth_type=self.config.auth_type.value,
        )
        try:
            client = self._get_client()
            message = await client.messages.create(**self.build_create_kwargs(request))
            response = decode_message(
                message, model=model, schema_request=request.response_schema is not None
            )
        except asyncio.CancelledError:
            raise
        except SwitchboardError as e:
            await account_failure(recorder, request, e, self.count_tokens)
            raise
        except Exception as e:
            err = self._wrap(e, phase="generate")
            await account_failure(recorder, request, err, self.count_tokens)
            raise err from e

        recorder.success(response.usage, response_id=response.response_id)
        return response

    async def generate_stream(
        self, request: GenerateRequest, prompt_id: str
    ) -> AsyncIterator[GenerateResponse]:
        """Stream incremental responses from raw Messages API events."""
        model = request.model or self.model
        recorder = CallRecorder(
            self._telemetry,
            model=model,
            prompt_id=prompt_id,
            auth_type=self.config.auth_type.value,
            streamed=True,
        )
        decoder = AnthropicStreamDecoder(
            model=model, schema_request=request.response_schema is not None
        )
        stream: Any = None
        try:
            client = self._get_client()
            stream = await client.messages.create(
                **self.build_create_kwargs(request), stream=True
            )
            async for event in stream:
                for response in decoder.decode(event):
                    yield response
            for response in decoder.flush():
                yield response
        except asyncio.CancelledError:
            raise
        except SwitchboardError as e:
            await account_failure(recorder, request, e, self.count_tokens)
            raise
        except Exception as e:
            err = self._wrap(e, phase="stream", streaming=True)
            await account_failure(recorder, request, err, self.count_tokens)
            raise err from e
        finally:
            decoder.assembler.clear()
            await close_stream(stream)

        recorder.success(decoder.usage(), response_id=decoder.response_id)

    async def count_tokens(self, request: GenerateRequest) -> CountTokensResponse:
        """Estimate prompt tokens locally; there is no free counting endpoint."""
        text = dump_for_estimate(request.normalized_contents())
        return CountTokensResponse(total_tokens=estimate_tokens(text))

    async def embed(self, request: EmbedRequest) -> EmbedResponse:
        """Raise because Anthropic has no embeddings endpoint."""
        _ = request
        raise UnsupportedCapabilityError(
            "Anthropic does not support embeddings",
            hint="Use a Gemini or OpenAI-compatible generator for embeddings.",
            provider="anthropic",
            capability="embeddings",
        )

    async def aclose(self) -> None:
        """Close underlying async client resources."""
        client = self._client
        if client is None:
            return
        self._client = None
        await client.close()


def _thinking_blocks(message: Message) -> list[dict[str, Any]]:
    """Replay signed reasoning; unsigned thoughts cannot be sent back."""
    blocks: list[dict[str, Any]] = []
    for thought in message.thoughts or []:
        if not thought.thought_signature:
            continue
        if thought.text:
            blocks.append(
                {
                    "type": "thinking",
                    "thinking": thought.text,
                    "signature": thought.thought_signature,
                }
            )
        else:
            blocks.append(
                {"type": "redacted_thinking", "data": thought.thought_signature}
            )
    return blocks


def _content_blocks(message: Message) -> list[dict[str, Any]]:
    if message.role == "tool":
        return [
            {
                "type": "tool_result",
                "tool_use_id": message.tool_call_id,
                "content": message.content,
            }
        ]
    if message.role != "assistant":
        return [{"type": "text", "text": message.content}] if message.content else []

    # Thinking blocks must precede the text and tool_use blocks they explain.
    blocks = _thinking_blocks(message)
    if message.content:
        blocks.append({"type": "text", "text": message.content})
    for call in message.tool_calls or []:
        blocks.append(
            {"type": "tool_use", "id": call.id, "name": call.name, "input": call.args}
        )
    return blocks


def _decode_block(block: Any, *, schema_request: bool) -> Part | None:
    block_type = getattr(block, "type", None)
    if block_type == "text":
        text = getattr(block, "text", None) or ""
        return TextPart(text=text) if text else None
    if block_type == "thinking":
        return TextPart(
            text=getattr(block, "thinking", None) or "",
            thought=True,
            thought_signature=getattr(block, "signature", None),
        )
    if block_type == "redacted_thinking":
        return TextPart(
            text="", thought=True, thought_signature=getattr(block, "data", None)
        )
    if block_type == "tool_use":
        raw_input = getattr(block, "input", None)
        call = ToolCallPart(
            name=getattr(block, "name", None) or "",
            args=dict(raw_input) if isinstance(raw_input, dict) else {},
            id=getattr(block, "id", None) or new_call_id(),
        )
        return unwrap_schema_call(call) if schema_request else call
    return None


def _decode_usage(usage: Any) -> UsageMetadata | None:
    if usage is None:
        return None
    return normalize_usage(
        getattr(usage, "input_tokens", None),
        getattr(usage, "output_tokens", None),
        cached_tokens=getattr(usage, "cache_read_input_tokens", None),
    )


def decode_message(
    message: Any, *, model: str, schema_request: bool
) -> GenerateResponse:
    """Convert an Anthropic ``Message`` into a canonical response."""
    parts: list[Part] = []
    for block in getattr(message, "content", None) or []:
        part = _decode_block(block, schema_request=schema_request)
        if part is not None:
            parts.append(part)
    finish = map_finish_reason(
        getattr(message, "stop_reason", None),
        ANTHROPIC_STOP_REASONS,
        default=FinishReason.STOP,
    )
    return GenerateResponse(
        candidates=[
            Candidate(content=Content(role="model", parts=parts), finish_reason=finish)
        ],
        usage=_decode_usage(getattr(message, "usage", None)),
        response_id=getattr(message, "id", None),
        model_version=model,
    )


class AnthropicStreamDecoder:
    """Per-stream decoder for raw Messages API stream events.

    Text deltas are emitted as they arrive. ``tool_use`` blocks are buffered
    in the assembler until their ``content_block_stop``. Thinking blocks are
    buffered too, since their signature only arrives at the end of the block.
    """

    def __init__(self, *, model: str, schema_request: bool) -> None:
        """Start with no open blocks."""
        self.model = model
        self.schema_request = schema_request
        self.assembler = ToolCallAssembler()
        self.response_id: str | None = None
        self.stop_reason: Any = None
        self._thinking: dict[int, dict[str, Any]] = {}
        self._input_tokens: int | None = None
        self._output_tokens: int | None = None
        self._cached_tokens: int | None = None
        self._finished = False

    def usage(self) -> UsageMetadata | None:
        if self._input_tokens is None and self._output_tokens is None:
            return None
        return normalize_usage(
            self._input_tokens, self._output_tokens, cached_tokens=self._cached_tokens
        )

    def _response(
        self, parts: list[Part], finish_reason: FinishReason
    ) -> GenerateResponse:
        return GenerateResponse(
            candidates=[
                Candidate(
                    content=Content(role="model", parts=parts),
                    finish_reason=finish_reason,
                )
            ],
            response_id=self.response_id,
            model_version=self.model,
        )

    def _close(self, index: int) -> Part | None:
        if index in self._thinking:
            block = self._thinking.pop(index)
            return TextPart(
                text="".join(block["text"]),
                thought=True,
                thought_signature=block["signature"],
            )
        call = self.assembler.close_block(index)
        if call is None:
            return None
        return unwrap_schema_call(call) if self.schema_request else call

    def _on_block_start(self, index: int, block: Any) -> list[GenerateResponse]:
        block_type = getattr(block, "type", None)
        if block_type == "tool_use":
            self.assembler.open_block(
                index, id=getattr(block, "id", None), name=getattr(block, "name", None)
            )
        elif block_type == "thinking":
            self._thinking[index] = {
                "text": [getattr(block, "thinking", None) or ""],
                "signature": getattr(block, "signature", None) or None,
            }
        elif block_type == "redacted_thinking":
            self._thinking[index] = {
                "text": [],
                "signature": getattr(block, "data", None),
            }
        elif block_type == "text":
            text = getattr(block, "text", None) or ""
            if text:
                return [self._response([TextPart(text=text)], FinishReason.UNSPECIFIED)]
        return []

    def _on_block_delta(self, index: int, delta: Any) -> list[GenerateResponse]:
        delta_type = getattr(delta, "type", None)
        if delta_type == "text_delta":
            text = getattr(delta, "text", None) or ""
            if text:
                return [self._response([TextPart(text=text)], FinishReason.UNSPECIFIED)]
        elif delta_type == "input_json_delta":
            self.assembler.append(index, getattr(delta, "partial_json", None))
        elif delta_type == "thinking_delta" and index in self._thinking:
            self._thinking[index]["text"].append(getattr(delta, "thinking", None) or "")
        elif delta_type == "signature_delta" and index in self._thinking:
            self._thinking[index]["signature"] = getattr(delta, "signature", None)
        return []

    def _final(self) -> list[GenerateResponse]:
        self._finished = True
        parts: list[Part] = []
        for index in sorted(self._thinking):
            part = self._close(index)
            if part is not None:
                parts.append(part)
        for call in self.assembler.finish():
            parts.append(unwrap_schema_call(call) if self.schema_request else call)
        finish = map_finish_reason(
            self.stop_reason, ANTHROPIC_STOP_REASONS, default=FinishReason.STOP
        )
        responses = [self._response(parts, finish)]
        usage = self.usage()
        if usage is not None:
            responses.append(
                GenerateResponse(
                    usage=usage,
                    response_id=self.response_id,
                    model_version=self.model,
                )
            )
        return responses

    def decode(self, event: Any) -> list[GenerateResponse]:
        """Turn one stream event into zero or more canonical responses."""
        event_type = getattr(event, "type", None)
        index = getattr(event, "index", 0) or 0

        if event_type == "message_start":
            message = getattr(event, "message", None)
            self.response_id = getattr(message, "id", None)
            usage = getattr(message, "usage", None)
            if usage is not None:
                self._input_tokens = getattr(usage, "input_tokens", None)
                self._cached_tokens = getattr(usage, "cache_read_input_tokens", None)
            return []
        if event_type == "content_block_start":
            return self._on_block_start(index, getattr(event, "content_block", None))
        if event_type == "content_block_delta":
            return self._on_block_delta(index, getattr(event, "delta", None))
        if event_type == "content_block_stop":
            part = self._close(index)
            if part is None:
                return []
            return [self._response([part], FinishReason.UNSPECIFIED)]
        if event_type == "message_delta":
            delta = getattr(event, "delta", None)
            stop_reason = getattr(delta, "stop_reason", None)
            if stop_reason:
                self.stop_reason = stop_reason
            usage = getattr(event, "usage", None)
            output_tokens = getattr(usage, "output_tokens", None)
            if output_tokens is not None:
                self._output_tokens = output_tokens
            return []
        if event_type == "message_stop":
            return self._final()
        return []

    def flush(self) -> list[GenerateResponse]:
        """Finalize a stream that ended without ``message_stop``."""
        if self._finished:
            return []
        if not len(self.assembler) and not self._thinking:
            return []
        logger.debug("Anthropic stream ended without message_stop")
        return self._final()
