"""OpenAI-compatible Chat Completions adapter.

Covers OpenAI itself and every endpoint speaking the same wire format
(DeepSeek, OpenRouter, DashScope/Qwen, local servers). Vendor differences are
looked up in ``_compat`` by model name or base URL.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

from switchboard.errors import APIError, SwitchboardError
from switchboard.models import DEFAULT_OPENAI_EMBEDDING_MODEL
from switchboard.providers._compat import (
    SCHEMA_TOOL_DESCRIPTION,
    SCHEMA_TOOL_NAME,
    accepts_request_metadata,
    decode_signature,
    default_headers,
    encode_signature,
    is_openrouter,
    is_valid_thought_signature,
    quirks_for,
)
from switchboard.providers._errors import wrap_provider_error
from switchboard.providers._hygiene import apply_hygiene
from switchboard.providers._messages import (
    Message,
    contents_to_messages,
    extract_system_text,
)
from switchboard.providers._streaming import StreamState, ToolCallAssembler
from switchboard.providers._usage import (
    OPENAI_FINISH_REASONS,
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
    parse_tool_arguments,
    sanitize_schema,
    unwrap_schema_call,
)
from switchboard.providers.base import ProviderCapabilities
from switchboard.telemetry import CallRecorder
from switchboard.types import (
    Candidate,
    Content,
    CountTokensResponse,
    EmbedResponse,
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
    from switchboard.types import EmbedRequest, GenerateRequest

logger = logging.getLogger(__name__)

_DEFAULT_TEMPERATURE = 0.0
_DEFAULT_TOP_P = 1.0


class OpenAICompatibleGenerator:
    """Chat Completions adapter for OpenAI-compatible endpoints."""

    def __init__(
        self, config: GeneratorConfig, *, telemetry: TelemetrySink | None = None
    ) -> None:
        """Initialize from a resolved config; the SDK client is created lazily."""
        self.config = config
        self.model = config.model
        self._telemetry = telemetry
        self._client: Any = None

    def _get_client(self) -> Any:
        """Lazily initialize and return the async OpenAI client."""
        if self._client is None:
            try:
                from openai import AsyncOpenAI
            except ImportError as e:
                raise APIError(
                    "openai package not installed",
                    hint="uv pip install openai",
                ) from e
            self._client = AsyncOpenAI(
                api_key=self.config.api_key,
                base_url=self.config.base_url or None,
                timeout=self.config.timeout_s,
                max_retries=self.config.max_retries,
                default_headers=default_headers(self.config.base_url),
            )
        return self._client

    @property
    def capabilities(self) -> ProviderCapabilities:
        """Return supported feature flags."""
        return ProviderCapabilities(
            streaming=True,
            embeddings=True,
            count_tokens_native=False,
            structured_outputs=False,
            reasoning=True,
        )

    # ------------------------------------------------------------------
    # Request building
    # ------------------------------------------------------------------

    def build_messages(
        self, request: GenerateRequest, model: str
    ) -> list[dict[str, Any]]:
        """Serialize a canonical request into Chat Completions messages."""
        messages: list[dict[str, Any]] = []
        system_text = extract_system_text(request.system_instruction)
        if system_text:
            messages.append({"role": "system", "content": system_text})

        neutral = apply_hygiene(contents_to_messages(request.normalized_contents()))
        messages.extend(_serialize_message(m) for m in neutral)

        if quirks_for(model).reasoning_content_placeholder:
            for message in messages:
                if message["role"] == "assistant":
                    message.setdefault("reasoning_content", "")
        return messages

    def _sampling_kwargs(
        self, request: GenerateRequest, model: str
    ) -> tuple[dict[str, Any], dict[str, Any]]:
        """Sampling parameters: config overrides request, request overrides defaults.

        Returns the native keyword arguments and the non-standard ones that
        travel in ``extra_body``.
        """
        sampling = self.config.sampling
        kwargs: dict[str, Any] = {
            "temperature": first_set(
                sampling.temperature, request.temperature, default=_DEFAULT_TEMPERATURE
            ),
            "top_p": first_set(sampling.top_p, request.top_p, default=_DEFAULT_TOP_P),
        }
        max_tokens = first_set(sampling.max_tokens, request.max_output_tokens)
        if max_tokens is not None:
            kwargs["max_tokens"] = max_tokens
        if sampling.presence_penalty is not None:
            kwargs["presence_penalty"] = sampling.presence_penalty
        if sampling.frequency_penalty is not None:
            kwargs["frequency_penalty"] = sampling.frequency_penalty

        extra_body: dict[str, Any] = {}
        if sampling.top_k is not None:
            extra_body["top_k"] = sampling.top_k
        if sampling.repetition_penalty is not None:
            extra_body["repetition_penalty"] = sampling.repetition_penalty

        forced = quirks_for(model).forced_temperature
        if forced is not None:
            kwargs["temperature"] = forced
        return kwargs, extra_body

    def _tool_kwargs(self, request: GenerateRequest, model: str) -> dict[str, Any]:
        schema = request.response_schema_json()
        if schema is not None:
            # Structured output travels as a single synthetic tool; real tools
            # are not offered alongside it.
            kwargs: dict[str, Any] = {
                "tools": [
                    {
                        "type": "function",
                        "function": {
                            "name": SCHEMA_TOOL_NAME,
                            "description": SCHEMA_TOOL_DESCRIPTION,
                            "parameters": sanitize_schema(schema),
                        },
                    }
                ]
            }
            if not quirks_for(model).rejects_forced_tool_choice:
                kwargs["tool_choice"] = {
                    "type": "function",
                    "function": {"name": SCHEMA_TOOL_NAME},
                }
            return kwargs

        tools = [
            {
                "type": "function",
                "function": {
                    "name": tool.name,
                    "description": tool.description,
                    "parameters": sanitize_schema(tool.parameters or {}),
                },
            }
            for tool in request.tools or []
            if tool.name
        ]
        return {"tools": tools} if tools else {}

    def build_create_kwargs(
        self, request: GenerateRequest, prompt_id: str, *, stream: bool = False
    ) -> dict[str, Any]:
        """Assemble keyword arguments for ``chat.completions.create``."""
        model = request.model or self.model
        quirks = quirks_for(model)
        sampling, extra_body = self._sampling_kwargs(request, model)

        kwargs: dict[str, Any] = {
            "model": model,
            "messages": self.build_messages(request, model),
            **sampling,
        }
        if accepts_request_metadata(self.config.base_url):
            kwargs["metadata"] = {
                "sessionId": self.config.session_id or "",
                "promptId": prompt_id,
            }
        if quirks.store:
            kwargs["store"] = True
        kwargs.update(self._tool_kwargs(request, model))

        if is_openrouter(self.config.base_url) and quirks.openrouter_reasoning_effort:
            extra_body["reasoning"] = {"effort": quirks.openrouter_reasoning_effort}
        if extra_body:
            kwargs["extra_body"] = extra_body
        if stream:
            kwargs["stream"] = True
            kwargs["stream_options"] = {"include_usage": True}
        return kwargs

    def _wrap(
        self, exc: BaseException, *, phase: str, streaming: bool = False
    ) -> APIError:
        return wrap_provider_error(
            exc,
            provider="openai",
            phase=phase,
            allow_network_errors=True,
            message=f"OpenAI-compatible {phase} failed",
            timeout_s=self.config.timeout_s,
            streaming=streaming,
        )

    # ------------------------------------------------------------------
    # Canonical interface
    # ------------------------------------------------------------------

    async def generate(
        self, request: GenerateRequest, prompt_id: str
    ) -> GenerateResponse:
        """Generate a complete response."""
        model = request.model or self.model
        recorder = CallRecorder(
            self._telemetry,
            model=model,
            prompt_id=prompt_id,
            auth_type=self.config.auth_type.value,
        )
        try:
            client = self._get_client()
            kwargs = self.build_create_kwargs(request, prompt_id)
            completion = await client.chat.completions.create(**kwargs)
            response = decode_completion(
                completion,
                model=model,
                schema_request=request.response_schema is not None,
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
        """Stream incremental responses.

        Text arrives as it is produced; tool calls are buffered per index and
        emitted whole once the provider reports a finish reason.
        """
        model = request.model or self.model
        recorder = CallRecorder(
            self._telemetry,
            model=model,
            prompt_id=prompt_id,
            auth_type=self.config.auth_type.value,
            streamed=True,
        )
        decoder = StreamDecoder(
            model=model, schema_request=request.response_schema is not None
        )
        last_usage: UsageMetadata | None = None
        stream: Any = None
        response_id: str | None = None
        try:
            client = self._get_client()
            kwargs = self.build_create_kwargs(request, prompt_id, stream=True)
            stream = await client.chat.completions.create(**kwargs)
            async for chunk in stream:
                for response in decoder.decode(chunk):
                    if response.usage is not None:
                        last_usage = response.usage
                    response_id = response.response_id or response_id
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

        recorder.success(last_usage, response_id=response_id)

    async def count_tokens(self, request: GenerateRequest) -> CountTokensResponse:
        """Estimate prompt tokens locally with tiktoken's ``cl100k_base``."""
        text = dump_for_estimate(request.normalized_contents())
        return CountTokensResponse(total_tokens=estimate_tokens(text))

    async def embed(self, request: EmbedRequest) -> EmbedResponse:
        """Embed texts with the embeddings endpoint, one vector per text."""
        if not request.texts:
            return EmbedResponse(embeddings=[])
        model = (
            request.model or self.config.embedding_model or DEFAULT_OPENAI_EMBEDDING_MODEL
        )
        try:
            client = self._get_client()
            result = await client.embeddings.create(
                model=model, input=list(request.texts)
            )
        except asyncio.CancelledError:
            raise
        except APIError:
            raise
        except Exception as e:
            raise self._wrap(e, phase="embed") from e

        data = sorted(result.data, key=lambda item: getattr(item, "index", 0))
        return EmbedResponse(embeddings=[list(item.embedding) for item in data])

    async def aclose(self) -> None:
        """Close underlying async client resources."""
        client = self._client
        if client is None:
            return
        self._client = None
        await client.close()


# ----------------------------------------------------------------------
# Wire serialization
# ----------------------------------------------------------------------


def _serialize_message(message: Message) -> dict[str, Any]:
    if message.role == "tool":
        return {
            "role": "tool",
            "tool_call_id": message.tool_call_id,
            "content": message.content,
        }

    if message.role != "assistant":
        return {"role": "user", "content": message.content}

    wire: dict[str, Any] = {"role": "assistant", "content": message.content}
    reasoning_details = message.reasoning_details
    if message.tool_calls:
        wire["content"] = message.content or None
        wire["tool_calls"] = [
            {
                "id": call.id,
                "type": "function",
                "function": {"name": call.name, "arguments": call.arguments},
            }
            for call in message.tool_calls
        ]
        if reasoning_details is None:
            # Parallel calls carry one signature; the first valid one wins.
            for call in message.tool_calls:
                if is_valid_thought_signature(call.thought_signature):
                    reasoning_details = decode_signature(call.thought_signature)
                    break
    if reasoning_details is not None:
        wire["reasoning_details"] = reasoning_details
    return wire


# ----------------------------------------------------------------------
# Response decoding
# ----------------------------------------------------------------------


def _decode_usage(usage: Any) -> UsageMetadata | None:
    if usage is None:
        return None
    details = getattr(usage, "prompt_tokens_details", None)
    cached = getattr(details, "cached_tokens", None) if details is not None else None
    return normalize_usage(
        getattr(usage, "prompt_tokens", None),
        getattr(usage, "completion_tokens", None),
        getattr(usage, "total_tokens", None),
        cached_tokens=cached,
    )


def _call_signature(tool_call: Any) -> str | None:
    function = getattr(tool_call, "function", None)
    raw = (
        getattr(tool_call, "thought_signature", None)
        or getattr(tool_call, "thoughtSignature", None)
        or getattr(function, "thought_signature", None)
    )
    if raw and is_valid_thought_signature(raw):
        return encode_signature(raw)
    return None


def _attach_reasoning(parts: list[Part], reasoning_details: Any) -> list[Part]:
    """Give the first tool call the message-level reasoning metadata.

    Nothing changes when that call already carries its own signature.
    """
    for idx, part in enumerate(parts):
        if isinstance(part, ToolCallPart):
            if part.thought_signature is None:
                parts[idx] = ToolCallPart(
                    name=part.name,
                    args=part.args,
                    id=part.id,
                    thought_signature=encode_signature(reasoning_details),
                )
            break
    return parts


def decode_completion(
    completion: Any, *, model: str, schema_request: bool
) -> GenerateResponse:
    """Convert a ``ChatCompletion`` into a canonical response."""
    usage = _decode_usage(getattr(completion, "usage", None))
    response_id = getattr(completion, "id", None)
    choices = getattr(completion, "choices", None) or []
    if not choices:
        return GenerateResponse(
            candidates=[], usage=usage, response_id=response_id, model_version=model
        )

    choice = choices[0]
    message = getattr(choice, "message", None)
    parts: list[Part] = []

    reasoning_text = getattr(message, "reasoning_content", None)
    if isinstance(reasoning_text, str) and reasoning_text:
        parts.append(TextPart(text=reasoning_text, thought=True))
    content = getattr(message, "content", None)
    if isinstance(content, str) and content:
        parts.append(TextPart(text=content))

    for tool_call in getattr(message, "tool_calls", None) or []:
        function = getattr(tool_call, "function", None)
        if function is None:
            continue
        name = getattr(function, "name", None) or ""
        args = parse_tool_arguments(
            getattr(function, "arguments", None), tool_name=name
        )
        call = ToolCallPart(
            name=name,
            args=args,
            id=getattr(tool_call, "id", None) or new_call_id(),
            thought_signature=_call_signature(tool_call),
        )
        parts.append(unwrap_schema_call(call) if schema_request else call)

    reasoning_details = getattr(message, "reasoning_details", None)
    if reasoning_details and is_valid_thought_signature(reasoning_details):
        parts = _attach_reasoning(parts, reasoning_details)

    finish = map_finish_reason(
        getattr(choice, "finish_reason", None) or "stop", OPENAI_FINISH_REASONS
    )
    return GenerateResponse(
        candidates=[
            Candidate(
                content=Content(role="model", parts=parts),
                finish_reason=finish,
                index=getattr(choice, "index", 0) or 0,
            )
        ],
        usage=usage,
        response_id=response_id,
        model_version=model,
    )


class StreamDecoder:
    """Per-stream decoder for ``ChatCompletionChunk`` objects.

    Owns the stream's tool-call assembler and any reasoning metadata seen so
    far; a new decoder is created for every stream.
    """

    def __init__(self, *, model: str, schema_request: bool) -> None:
        """Start with an empty assembler."""
        self.model = model
        self.schema_request = schema_request
        self.assembler = ToolCallAssembler()
        self.reasoning_details: Any = None
        # Slot bookkeeping for vendors that omit ``index`` on tool-call deltas.
        self._unindexed_slot = 0
        self._unindexed_id: str | None = None

    def _append_tool_delta(self, tool_call: Any) -> None:
        if self.assembler.state is StreamState.FINISHED:
            logger.debug("Ignoring tool-call delta after finish")
            return
        index = getattr(tool_call, "index", None)
        if not isinstance(index, int):
            index = self._slot_for(getattr(tool_call, "id", None))
        function = getattr(tool_call, "function", None)
        self.assembler.append(
            index,
            getattr(function, "arguments", None),
            id=getattr(tool_call, "id", None),
            name=getattr(function, "name", None),
            thought_signature=_call_signature(tool_call),
        )

    def _slot_for(self, call_id: Any) -> int:
        """Without ``index``, a delta carrying an unseen id starts the next call."""
        if isinstance(call_id, str) and call_id and call_id != self._unindexed_id:
            if self._unindexed_id is not None:
                self._unindexed_slot += 1
            self._unindexed_id = call_id
        return self._unindexed_slot

    def _finish_calls(self) -> list[Part]:
        parts: list[Part] = []
        for call in self.assembler.finish():
            if self.schema_request and call.name == SCHEMA_TOOL_NAME:
                parts.append(unwrap_schema_call(call))
                continue
            parts.append(call)
        if self.reasoning_details is not None:
            parts = _attach_reasoning(parts, self.reasoning_details)
        self.reasoning_details = None
        return parts

    def _response(
        self, parts: list[Part], finish_reason: FinishReason, response_id: Any
    ) -> GenerateResponse:
        return GenerateResponse(
            candidates=[
                Candidate(
                    content=Content(role="model", parts=parts),
                    finish_reason=finish_reason,
                )
            ],
            response_id=response_id,
            model_version=self.model,
        )

    def decode(self, chunk: Any) -> list[GenerateResponse]:
        """Turn one chunk into zero or more canonical responses."""
        responses: list[GenerateResponse] = []
        response_id = getattr(chunk, "id", None)
        choices = getattr(chunk, "choices", None) or []

        if choices:
            choice = choices[0]
            delta = getattr(choice, "delta", None)
            parts: list[Part] = []

            reasoning_text = getattr(delta, "reasoning_content", None)
            if isinstance(reasoning_text, str) and reasoning_text:
                parts.append(TextPart(text=reasoning_text, thought=True))
            content = getattr(delta, "content", None)
            if isinstance(content, str) and content:
                parts.append(TextPart(text=content))

            details = (
                getattr(delta, "reasoning_details", None)
                or getattr(choice, "reasoning_details", None)
                or getattr(chunk, "reasoning_details", None)
            )
            if details and is_valid_thought_signature(details):
                self.reasoning_details = details

            for tool_call in getattr(delta, "tool_calls", None) or []:
                self._append_tool_delta(tool_call)

            finish_reason = getattr(choice, "finish_reason", None)
            if finish_reason:
                parts.extend(self._finish_calls())
            if parts or finish_reason:
                responses.append(
                    self._response(
                        parts,
                        map_finish_reason(finish_reason, OPENAI_FINISH_REASONS),
                        response_id,
                    )
                )

        usage = _decode_usage(getattr(chunk, "usage", None))
        if usage is not None:
            responses.append(
                GenerateResponse(
                    usage=usage, response_id=response_id, model_version=self.model
                )
            )
        return responses

    def flush(self) -> list[GenerateResponse]:
        """Emit calls still open when the stream ended without a finish reason."""
        if self.assembler.state is StreamState.FINISHED or not len(self.assembler):
            return []
        logger.debug("Stream ended with %d open tool call(s)", len(self.assembler))
        parts = self._finish_calls()
        if not parts:
            return []
        return [self._response(parts, FinishReason.UNSPECIFIED, None)]
