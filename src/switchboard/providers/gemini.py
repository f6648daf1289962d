"""Gemini provider adapter (Gemini Developer API and Vertex AI)."""

from __future__ import annotations

import asyncio
import base64
import binascii
import logging
from typing import TYPE_CHECKING, Any

from switchboard.config import AuthType
from switchboard.errors import APIError, SwitchboardError
from switchboard.models import DEFAULT_GEMINI_EMBEDDING_MODEL
from switchboard.providers._errors import wrap_provider_error
from switchboard.providers._hygiene import apply_hygiene
from switchboard.providers._messages import (
    Message,
    contents_to_messages,
    extract_system_text,
)
from switchboard.providers._usage import (
    GEMINI_FINISH_REASONS,
    account_failure,
    map_finish_reason,
    normalize_usage,
)
from switchboard.providers._utils import (
    close_stream,
    first_set,
    new_call_id,
    sanitize_schema,
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


def encode_gemini_signature(value: bytes | str | None) -> str | None:
    """Carry a Gemini thought signature as base64 text."""
    if not value:
        return None
    if isinstance(value, str):
        return value
    return base64.b64encode(value).decode("ascii")


def decode_gemini_signature(value: str | None) -> bytes | None:
    """Recover signature bytes; foreign or corrupted values are dropped."""
    if not value:
        return None
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError):
        logger.debug("Dropping thought signature that is not base64")
        return None


class GeminiGenerator:
    """Google Gemini adapter.

    The canonical schema is modelled on Gemini's, so conversion is mostly a
    one-to-one mapping. Tool calls arrive whole, even when streaming.
    """

    def __init__(
        self, config: GeneratorConfig, *, telemetry: TelemetrySink | None = None
    ) -> None:
        """Initialize from a resolved config; the SDK client is created lazily."""
        self.config = config
        self.model = config.model
        self._telemetry = telemetry
        self._client: Any = None

    def _get_client(self) -> Any:
        """Lazy-initialize the google-genai client."""
        if self._client is None:
            try:
                from google import genai
                from google.genai import types
            except ImportError as e:
                raise APIError(
                    "google-genai package not installed",
                    hint="uv pip install google-genai",
                ) from e

            http_options = types.HttpOptions(
                timeout=int(self.config.timeout_s * 1000),
                retry_options=types.HttpRetryOptions(
                    attempts=self.config.max_retries + 1
                ),
            )
            cfg = self.config
            if cfg.auth_type is AuthType.USE_VERTEX_AI:
                if cfg.vertex_project and cfg.vertex_location:
                    self._client = genai.Client(
                        vertexai=True,
                        project=cfg.vertex_project,
                        location=cfg.vertex_location,
                        http_options=http_options,
                    )
                else:
                    # Vertex express mode.
                    self._client = genai.Client(
                        vertexai=True, api_key=cfg.api_key, http_options=http_options
                    )
            else:
                self._client = genai.Client(
                    api_key=cfg.api_key, http_options=http_options
                )
        return self._client

    @property
    def capabilities(self) -> ProviderCapabilities:
        """Return supported feature flags."""
        return ProviderCapabilities(
            streaming=True,
            embeddings=True,
            count_tokens_native=True,
            structured_outputs=True,
            reasoning=True,
        )

    @staticmethod
    def build_contents(request: GenerateRequest) -> list[Any]:
        """Convert canonical turns into SDK ``Content`` objects.

        Function responses and any user text that follows them share one user
        turn: Gemini rejects a function response followed by a separate user
        turn before the model speaks.
        """
        from google.genai import types

        contents: list[Any] = []
        messages = apply_hygiene(contents_to_messages(request.normalized_contents()))
        for message in messages:
            role = "model" if message.role == "assistant" else "user"
            parts = _message_parts(message)
            if not parts:
                continue
            if contents and contents[-1].role == role:
                contents[-1].parts.extend(parts)
            else:
                contents.append(types.Content(role=role, parts=parts))
        return contents

    def build_config(self, request: GenerateRequest) -> Any:
        """Build ``GenerateContentConfig`` from request and config sampling."""
        from google.genai import types

        sampling = self.config.sampling
        config_kwargs: dict[str, Any] = {}

        system_text = extract_system_text(request.system_instruction)
        if system_text:
            config_kwargs["system_instruction"] = system_text

        temperature = first_set(sampling.temperature, request.temperature)
        if temperature is not None:
            config_kwargs["temperature"] = temperature
        top_p = first_set(sampling.top_p, request.top_p)
        if top_p is not None:
            config_kwargs["top_p"] = top_p
        max_tokens = first_set(sampling.max_tokens, request.max_output_tokens)
        if max_tokens is not None:
            config_kwargs["max_output_tokens"] = max_tokens
        if sampling.top_k is not None:
            config_kwargs["top_k"] = sampling.top_k
        if sampling.presence_penalty is not None:
            config_kwargs["presence_penalty"] = sampling.presence_penalty
        if sampling.frequency_penalty is not None:
            config_kwargs["frequency_penalty"] = sampling.frequency_penalty

        schema = request.response_schema_json()
        if schema is not None:
            config_kwargs["response_mime_type"] = "application/json"
            config_kwargs["response_json_schema"] = schema

        declarations = [
            types.FunctionDeclaration(
                name=tool.name,
                description=tool.description or None,
                parameters_json_schema=sanitize_schema(tool.parameters or {}),
            )
            for tool in request.tools or []
            if tool.name
        ]
        if declarations:
            config_kwargs["tools"] = [types.Tool(function_declarations=declarations)]

        return types.GenerateContentConfig(**config_kwargs)

    def _wrap(
        self, exc: BaseException, *, phase: str, streaming: bool = False
    ) -> APIError:
        return wrap_provider_error(
            exc,
            provider=self.config.provider_name,
            phase=phase,
            allow_network_errors=True,
            message=f"Gemini {phase} failed",
            timeout_s=self.config.timeout_s,
            streaming=streaming,
        )

    async def generate(
        self, request: GenerateRequest, prompt_id: str
    ) -> GenerateResponse:
        """Generate content from the Gemini model."""
        model = request.model or self.model
        recorder = CallRecorder(
            self._telemetry,
            model=model,
            prompt_id=prompt_id,
            auth_type=self.config.auth_type.value,
        )
        try:
            client = self._get_client()
            raw = await client.aio.models.generate_content(
                model=model,
                contents=self.build_contents(request),
                config=self.build_config(request),
            )
            if not raw:
                raise APIError(
                    "Gemini returned an empty response.",
                    provider=self.config.provider_name,
                    phase="generate",
                )
            response = decode_response(raw, model=model)
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

        Gemini reports cumulative usage on every chunk; content chunks are
        yielded without it and the last reported usage follows as one
        usage-only response.
        """
        model = request.model or self.model
        recorder = CallRecorder(
            self._telemetry,
            model=model,
            prompt_id=prompt_id,
            auth_type=self.config.auth_type.value,
            streamed=True,
        )
        last_usage: UsageMetadata | None = None
        response_id: str | None = None
        stream: Any = None
        try:
            client = self._get_client()
            stream = await client.aio.models.generate_content_stream(
                model=model,
                contents=self.build_contents(request),
                config=self.build_config(request),
            )
            async for chunk in stream:
                response = decode_response(chunk, model=model)
                last_usage = response.usage or last_usage
                response_id = response.response_id or response_id
                if response.candidates:
                    yield GenerateResponse(
                        candidates=response.candidates,
                        response_id=response.response_id,
                        model_version=response.model_version,
                    )
            if last_usage is not None:
                yield GenerateResponse(
                    usage=last_usage, response_id=response_id, model_version=model
                )
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
            await close_stream(stream)

        recorder.success(last_usage, response_id=response_id)

    async def count_tokens(self, request: GenerateRequest) -> CountTokensResponse:
        """Count prompt tokens with the native count-tokens endpoint."""
        model = request.model or self.model
        try:
            client = self._get_client()
            result = await client.aio.models.count_tokens(
                model=model, contents=self.build_contents(request)
            )
        except asyncio.CancelledError:
            raise
        except APIError:
            raise
        except Exception as e:
            raise self._wrap(e, phase="count_tokens") from e
        return CountTokensResponse(total_tokens=int(result.total_tokens or 0))

    async def embed(self, request: EmbedRequest) -> EmbedResponse:
        """Embed texts with ``embed_content``, one vector per text."""
        if not request.texts:
            return EmbedResponse(embeddings=[])
        model = (
            request.model or self.config.embedding_model or DEFAULT_GEMINI_EMBEDDING_MODEL
        )
        try:
            client = self._get_client()
            result = await client.aio.models.embed_content(
                model=model, contents=list(request.texts)
            )
        except asyncio.CancelledError:
            raise
        except APIError:
            raise
        except Exception as e:
            raise self._wrap(e, phase="embed") from e

        return EmbedResponse(
            embeddings=[list(item.values or []) for item in result.embeddings or []]
        )

    async def aclose(self) -> None:
        """Close underlying async client resources."""
        client = self._client
        if client is None:
            return
        self._client = None
        await client.aio.aclose()


def _message_parts(message: Message) -> list[Any]:
    from google.genai import types

    if message.role == "tool":
        response = message.result
        if not isinstance(response, dict):
            response = {"result": message.content}
        return [
            types.Part(
                function_response=types.FunctionResponse(
                    id=message.tool_call_id,
                    name=message.name or "unknown_tool",
                    response=response,
                )
            )
        ]

    parts: list[Any] = []
    if message.content:
        parts.append(types.Part.from_text(text=message.content))
    for call in message.tool_calls or []:
        parts.append(
            types.Part(
                function_call=types.FunctionCall(
                    id=call.id, name=call.name, args=call.args
                ),
                thought_signature=decode_gemini_signature(call.thought_signature),
            )
        )
    return parts


def _decode_usage(raw: Any) -> UsageMetadata | None:
    if raw is None:
        return None
    return normalize_usage(
        getattr(raw, "prompt_token_count", None),
        getattr(raw, "candidates_token_count", None),
        getattr(raw, "total_token_count", None),
        cached_tokens=getattr(raw, "cached_content_token_count", None),
    )


def _decode_parts(content: Any) -> list[Part]:
    parts: list[Part] = []
    for part in getattr(content, "parts", None) or []:
        signature = encode_gemini_signature(getattr(part, "thought_signature", None))
        call = getattr(part, "function_call", None)
        if call is not None:
            parts.append(
                ToolCallPart(
                    name=call.name or "",
                    args=dict(call.args or {}),
                    id=call.id or new_call_id(),
                    thought_signature=signature,
                )
            )
            continue
        text = getattr(part, "text", None)
        if text:
            parts.append(
                TextPart(
                    text=text,
                    thought=bool(getattr(part, "thought", False)),
                    thought_signature=signature,
                )
            )
    return parts


def decode_response(raw: Any, *, model: str) -> GenerateResponse:
    """Convert an SDK ``GenerateContentResponse`` into a canonical response.

    A prompt blocked before any candidate was produced decodes to an empty
    candidate with ``SAFETY``. Stream chunks without a finish reason report
    ``UNSPECIFIED``.
    """
    candidates: list[Candidate] = []
    for index, candidate in enumerate(getattr(raw, "candidates", None) or []):
        finish = map_finish_reason(
            getattr(candidate, "finish_reason", None), GEMINI_FINISH_REASONS
        )
        candidates.append(
            Candidate(
                content=Content(
                    role="model", parts=_decode_parts(getattr(candidate, "content", None))
                ),
                finish_reason=finish,
                index=index,
            )
        )

    feedback = getattr(raw, "prompt_feedback", None)
    if not candidates and getattr(feedback, "block_reason", None) is not None:
        logger.warning("Gemini blocked the prompt: %s", feedback.block_reason)
        candidates.append(
            Candidate(
                content=Content(role="model", parts=[]),
                finish_reason=FinishReason.SAFETY,
            )
        )

    return GenerateResponse(
        candidates=candidates,
        usage=_decode_usage(getattr(raw, "usage_metadata", None)),
        response_id=getattr(raw, "response_id", None),
        model_version=getattr(raw, "model_version", None) or model,
    )
