"""AWS Bedrock Converse API adapter.

boto3 is synchronous, so every network call and every read from the event
stream runs in ``asyncio.to_thread``.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

from switchboard.config import AuthType, credential_hint
from switchboard.errors import (
    APIError,
    AuthenticationError,
    RateLimitError,
    SwitchboardError,
    UnsupportedCapabilityError,
    ValidationError,
)
from switchboard.models import (
    BEDROCK_EMBEDDING_MODELS,
    check_bedrock_model_region,
    is_bedrock_model,
)
from switchboard.providers._compat import (
    SCHEMA_TOOL_DESCRIPTION,
    SCHEMA_TOOL_NAME,
    quirks_for,
)
from switchboard.providers._errors import extract_error_code, wrap_provider_error
from switchboard.providers._hygiene import apply_hygiene
from switchboard.providers._messages import (
    Message,
    contents_to_messages,
    extract_system_text,
)
from switchboard.providers._streaming import ToolCallAssembler
from switchboard.providers._usage import (
    BEDROCK_STOP_REASONS,
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

_BEDROCK_MAX_TOKENS = 4096
_DEFAULT_TEMPERATURE = 0.0
_DEFAULT_TOP_P = 1.0
_CONNECT_TIMEOUT_S = 10
_CONTINUE_PLACEHOLDER = "Continue."

# ConverseStream exception events, mapped onto the error taxonomy.
_STREAM_ERRORS: dict[str, type[APIError]] = {
    "internalServerException": APIError,
    "modelStreamErrorException": APIError,
    "validationException": ValidationError,
    "throttlingException": RateLimitError,
    "serviceUnavailableException": APIError,
}


def bedrock_error_hint(error_code: str | None, *, model: str, region: str) -> str | None:
    """Remediation for the Bedrock error codes with a known fix."""
    if error_code == "AccessDeniedException":
        return (
            "Check IAM permissions: the caller needs bedrock:InvokeModel and "
            f"bedrock:InvokeModelWithResponseStream on {model}, and model access "
            f"must be enabled in the Bedrock console for {region}."
        )
    if error_code == "ResourceNotFoundException":
        return (
            f"Model {model} may not be available in {region}. Try a cross-region "
            "inference profile (e.g. 'us.' + model id) or another region."
        )
    if error_code == "ValidationException":
        return (
            f"Bedrock rejected the request for {model}. Check the model id and "
            "that the model supports the Converse API and tool use."
        )
    if error_code in {"UnrecognizedClientException", "ExpiredTokenException"}:
        return credential_hint(AuthType.USE_BEDROCK)
    return None


class BedrockGenerator:
    """AWS Bedrock Converse / ConverseStream adapter."""

    def __init__(
        self, config: GeneratorConfig, *, telemetry: TelemetrySink | None = None
    ) -> None:
        """Initialize from a resolved config; the boto3 client is created lazily."""
        self.config = config
        self.model = config.model
        self.region = config.region or "us-east-1"
        self._telemetry = telemetry
        self._client: Any = None

    def _session(self) -> Any:
        """Build a boto3 session following the credential precedence.

        Explicit keys, then a named profile, then whatever the default chain
        finds (environment variables, SSO, instance or task roles).
        """
        import boto3
        from botocore.exceptions import ProfileNotFound

        cfg = self.config
        try:
            if cfg.aws_access_key_id and cfg.aws_secret_access_key:
                return boto3.Session(
                    aws_access_key_id=cfg.aws_access_key_id,
                    aws_secret_access_key=cfg.aws_secret_access_key,
                    aws_session_token=cfg.aws_session_token,
                    region_name=self.region,
                )
            if cfg.profile:
                return boto3.Session(profile_name=cfg.profile, region_name=self.region)
            return boto3.Session(region_name=self.region)
        except ProfileNotFound as e:
            raise AuthenticationError(
                f"AWS profile {cfg.profile!r} not found",
                hint=credential_hint(AuthType.USE_BEDROCK),
            ) from e

    def _get_client(self) -> Any:
        """Lazily initialize and return the ``bedrock-runtime`` client."""
        if self._client is None:
            try:
                from botocore.config import Config as BotoConfig
            except ImportError as e:
                raise APIError(
                    "boto3 package not installed",
                    hint="uv pip install boto3",
                ) from e
            session = self._session()
            if session.get_credentials() is None:
                raise AuthenticationError(
                    "No AWS credentials found for Bedrock",
                    hint=credential_hint(AuthType.USE_BEDROCK),
                )
            self._client = session.client(
                "bedrock-runtime",
                region_name=self.region,
                config=BotoConfig(
                    read_timeout=self.config.timeout_s,
                    connect_timeout=_CONNECT_TIMEOUT_S,
                    retries={
                        "total_max_attempts": self.config.max_retries + 1,
                        "mode": "standard",
                    },
                ),
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
            reasoning=False,
        )

    def check_region(self, model: str) -> None:
        """Fail fast when the static table says *model* is not in this region."""
        if not is_bedrock_model(model):
            logger.warning("%s does not look like a Bedrock model id", model)
        check = check_bedrock_model_region(model, self.region)
        if not check.valid:
            raise UnsupportedCapabilityError(
                check.message or f"Model {model} is not available in {self.region}",
                hint=f"Available regions: {', '.join(check.suggestions)}",
                provider="bedrock",
                capability="model-region",
            )
        if check.message:
            logger.debug(check.message)

    @staticmethod
    def build_messages(request: GenerateRequest) -> list[dict[str, Any]]:
        """Build alternating Converse messages that start with a user turn."""
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
            messages.insert(
                0, {"role": "user", "content": [{"text": _CONTINUE_PLACEHOLDER}]}
            )
        return messages

    @staticmethod
    def _tool_config(request: GenerateRequest, model: str) -> dict[str, Any] | None:
        schema = request.response_schema_json()
        if schema is not None:
            config: dict[str, Any] = {
                "tools": [
                    {
                        "toolSpec": {
                            "name": SCHEMA_TOOL_NAME,
                            "description": SCHEMA_TOOL_DESCRIPTION,
                            "inputSchema": {"json": sanitize_schema(schema)},
                        }
                    }
                ]
            }
            if not quirks_for(model).rejects_forced_tool_choice:
                config["toolChoice"] = {"tool": {"name": SCHEMA_TOOL_NAME}}
            return config

        # Converse rejects tool specs without a description.
        tools = [
            {
                "toolSpec": {
                    "name": tool.name,
                    "description": tool.description,
                    "inputSchema": {"json": sanitize_schema(tool.parameters or {})},
                }
            }
            for tool in request.tools or []
            if tool.name and tool.description
        ]
        return {"tools": tools} if tools else None

    def build_converse_kwargs(self, request: GenerateRequest) -> dict[str, Any]:
        """Assemble keyword arguments for ``converse``/``converse_stream``."""
        model = request.model or self.model
        sampling = self.config.sampling
        kwargs: dict[str, Any] = {
            "modelId": model,
            "messages": self.build_messages(request),
            "inferenceConfig": {
                "maxTokens": first_set(
                    sampling.max_tokens,
                    request.max_output_tokens,
                    default=_BEDROCK_MAX_TOKENS,
                ),
                "temperature": first_set(
                    sampling.temperature,
                    request.temperature,
                    default=_DEFAULT_TEMPERATURE,
                ),
                "topP": first_set(sampling.top_p, request.top_p, default=_DEFAULT_TOP_P),
            },
        }
        system_text = extract_system_text(request.system_instruction)
        if system_text:
            kwargs["system"] = [{"text": system_text}]
        tool_config = self._tool_config(request, model)
        if tool_config is not None:
            kwargs["toolConfig"] = tool_config
        return kwargs

    def _wrap(
        self, exc: BaseException, *, model: str, phase: str, streaming: bool = False
    ) -> APIError:
        return wrap_provider_error(
            exc,
            provider="bedrock",
            phase=phase,
            allow_network_errors=True,
            message=f"Bedrock {phase} failed",
            hint=bedrock_error_hint(
                extract_error_code(exc), model=model, region=self.region
            ),
            timeout_s=self.config.timeout_s,
            streaming=streaming,
        )

    async def generate(
        self, request: GenerateRequest, prompt_id: str
    ) -> GenerateResponse:
        """Generate a complete response with ``converse``."""
        model = request.model or self.model
        recorder = CallRecorder(
            self._telemetry,
            model=model,
            prompt_id=prompt_id,
            auth_type=self.config.auth_type.value,
        )
        try:
            self.check_region(model)
            client = self._get_client()
            output = await asyncio.to_thread(
                client.converse, **self.build_converse_kwargs(request)
            )
            response = decode_converse_output(
                output, model=model, schema_request=request.response_schema is not None
            )
        except asyncio.CancelledError:
            raise
        except SwitchboardError as e:
            await account_failure(recorder, request, e, self.count_tokens)
            raise
        except Exception as e:
            err = self._wrap(e, model=model, phase="generate")
            await account_failure(recorder, request, err, self.count_tokens)
            raise err from e

        recorder.success(response.usage, response_id=response.response_id)
        return response

    async def generate_stream(
        self, request: GenerateRequest, prompt_id: str
    ) -> AsyncIterator[GenerateResponse]:
        """Stream incremental responses with ``converse_stream``."""
        model = request.model or self.model
        recorder = CallRecorder(
            self._telemetry,
            model=model,
            prompt_id=prompt_id,
            auth_type=self.config.auth_type.value,
            streamed=True,
        )
        decoder = BedrockStreamDecoder(
            model=model,
            schema_request=request.response_schema is not None,
            region=self.region,
        )
        event_stream: Any = None
        try:
            self.check_region(model)
            client = self._get_client()
            output = await asyncio.to_thread(
                client.converse_stream, **self.build_converse_kwargs(request)
            )
            decoder.response_id = (output.get("ResponseMetadata") or {}).get(
                "RequestId"
            )
            event_stream = output.get("stream")
            events = iter(event_stream or ())
            while True:
                event = await asyncio.to_thread(next, events, None)
                if event is None:
                    break
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
            err = self._wrap(e, model=model, phase="stream", streaming=True)
            await account_failure(recorder, request, err, self.count_tokens)
            raise err from e
        finally:
            decoder.assembler.clear()
            await close_stream(event_stream)

        recorder.success(decoder.usage, response_id=decoder.response_id)

    async def count_tokens(self, request: GenerateRequest) -> CountTokensResponse:
        """Estimate prompt tokens locally with tiktoken's ``cl100k_base``."""
        text = dump_for_estimate(request.normalized_contents())
        return CountTokensResponse(total_tokens=estimate_tokens(text))

    async def embed(self, request: EmbedRequest) -> EmbedResponse:
        """Raise because the Converse API does not produce embeddings."""
        _ = request
        raise UnsupportedCapabilityError(
            "Embedding is not supported through the Bedrock Converse adapter",
            hint=(
                "Use a dedicated embedding model such as "
                f"{', '.join(BEDROCK_EMBEDDING_MODELS)}, or a Gemini or "
                "OpenAI-compatible generator."
            ),
            provider="bedrock",
            capability="embeddings",
        )

    async def aclose(self) -> None:
        """Close the underlying boto3 client."""
        client = self._client
        if client is None:
            return
        self._client = None
        await asyncio.to_thread(client.close)


def _content_blocks(message: Message) -> list[dict[str, Any]]:
    # Reasoning parts have no Converse representation and are dropped.
    if message.role == "tool":
        return [
            {
                "toolResult": {
                    "toolUseId": message.tool_call_id,
                    "content": [{"text": message.content}],
                }
            }
        ]
    blocks: list[dict[str, Any]] = []
    if message.content:
        blocks.append({"text": message.content})
    if message.role == "assistant":
        for call in message.tool_calls or []:
            blocks.append(
                {
                    "toolUse": {
                        "toolUseId": call.id,
                        "name": call.name,
                        "input": call.args,
                    }
                }
            )
    return blocks


def _decode_usage(usage: Any) -> UsageMetadata | None:
    if not isinstance(usage, dict):
        return None
    return normalize_usage(
        usage.get("inputTokens"),
        usage.get("outputTokens"),
        usage.get("totalTokens"),
        cached_tokens=usage.get("cacheReadInputTokens"),
    )


def decode_converse_output(
    output: dict[str, Any], *, model: str, schema_request: bool
) -> GenerateResponse:
    """Convert a ``converse`` response dict into a canonical response."""
    message = (output.get("output") or {}).get("message") or {}
    parts: list[Part] = []
    for block in message.get("content") or []:
        if block.get("text"):
            parts.append(TextPart(text=block["text"]))
        elif "toolUse" in block:
            tool_use = block["toolUse"] or {}
            raw_input = tool_use.get("input")
            call = ToolCallPart(
                name=tool_use.get("name") or "",
                args=dict(raw_input) if isinstance(raw_input, dict) else {},
                id=tool_use.get("toolUseId") or new_call_id(),
            )
            parts.append(unwrap_schema_call(call) if schema_request else call)

    return GenerateResponse(
        candidates=[
            Candidate(
                content=Content(role="model", parts=parts),
                finish_reason=map_finish_reason(
                    output.get("stopReason"), BEDROCK_STOP_REASONS
                ),
            )
        ],
        usage=_decode_usage(output.get("usage")),
        response_id=(output.get("ResponseMetadata") or {}).get("RequestId"),
        model_version=model,
    )


class BedrockStreamDecoder:
    """Per-stream decoder for ConverseStream events.

    ``contentBlockStart`` opens a tool-use block, ``contentBlockDelta``
    carries text or input fragments, ``contentBlockStop`` closes the block,
    ``messageStop`` reports the stop reason and ``metadata`` the usage.
    """

    def __init__(
        self, *, model: str, schema_request: bool, region: str = "us-east-1"
    ) -> None:
        """Start with no open blocks."""
        self.model = model
        self.region = region
        self.schema_request = schema_request
        self.assembler = ToolCallAssembler()
        self.response_id: str | None = None
        self.usage: UsageMetadata | None = None
        self._stopped = False

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

    def _emit_call(self, call: ToolCallPart) -> Part:
        return unwrap_schema_call(call) if self.schema_request else call

    def decode(self, event: dict[str, Any]) -> list[GenerateResponse]:
        """Turn one stream event into zero or more canonical responses."""
        if "contentBlockStart" in event:
            body = event["contentBlockStart"]
            tool_use = (body.get("start") or {}).get("toolUse")
            if tool_use:
                self.assembler.open_block(
                    body.get("contentBlockIndex", 0),
                    id=tool_use.get("toolUseId"),
                    name=tool_use.get("name"),
                )
            return []

        if "contentBlockDelta" in event:
            body = event["contentBlockDelta"]
            index = body.get("contentBlockIndex", 0)
            delta = body.get("delta") or {}
            if delta.get("text"):
                return [
                    self._response(
                        [TextPart(text=delta["text"])], FinishReason.UNSPECIFIED
                    )
                ]
            if "toolUse" in delta:
                self.assembler.append(index, (delta["toolUse"] or {}).get("input"))
            return []

        if "contentBlockStop" in event:
            index = event["contentBlockStop"].get("contentBlockIndex", 0)
            call = self.assembler.close_block(index)
            if call is None:
                return []
            return [self._response([self._emit_call(call)], FinishReason.UNSPECIFIED)]

        if "messageStop" in event:
            self._stopped = True
            parts = [self._emit_call(call) for call in self.assembler.finish()]
            finish = map_finish_reason(
                event["messageStop"].get("stopReason"), BEDROCK_STOP_REASONS
            )
            return [self._response(parts, finish)]

        if "metadata" in event:
            usage = _decode_usage(event["metadata"].get("usage"))
            if usage is None:
                return []
            self.usage = usage
            return [
                GenerateResponse(
                    usage=usage, response_id=self.response_id, model_version=self.model
                )
            ]

        for key, error_cls in _STREAM_ERRORS.items():
            if key in event:
                detail = (event[key] or {}).get("message", "")
                raise error_cls(
                    f"Bedrock stream error ({key}): {detail}",
                    hint=self._stream_error_hint(key),
                    retryable=error_cls is not ValidationError,
                    provider="bedrock",
                    phase="stream",
                )
        return []

    def _stream_error_hint(self, key: str) -> str:
        if key == "throttlingException":
            return (
                f"Bedrock is throttling {self.model} in {self.region}. Back off and "
                "retry, or request a higher quota in the Service Quotas console."
            )
        if key == "validationException":
            hint = bedrock_error_hint(
                "ValidationException", model=self.model, region=self.region
            )
            return hint or "Bedrock rejected the request."
        return "Transient Bedrock service error; retrying usually succeeds."

    def flush(self) -> list[GenerateResponse]:
        """Emit calls still open when the stream ended without ``messageStop``."""
        if self._stopped or not len(self.assembler):
            return []
        logger.debug("Bedrock stream ended without messageStop")
        parts = [self._emit_call(call) for call in self.assembler.finish()]
        return [self._response(parts, FinishReason.UNSPECIFIED)] if parts else []
