"""Configuration: frozen GeneratorConfig with explicit provider selection."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
import os

from dotenv import load_dotenv

from switchboard.errors import AuthenticationError, ConfigurationError

load_dotenv()

DEFAULT_TIMEOUT_S = 120.0
DEFAULT_MAX_RETRIES = 3
DEFAULT_AWS_REGION = "us-east-1"


class AuthType(str, Enum):
    """Closed set of supported provider kinds."""

    USE_GEMINI = "gemini-api-key"
    USE_VERTEX_AI = "vertex-ai"
    USE_OPENAI = "openai"
    USE_ANTHROPIC = "anthropic"
    USE_BEDROCK = "bedrock"


# Every credential source an adapter accepts, in resolution order.
_CREDENTIAL_SOURCES: dict[AuthType, tuple[str, ...]] = {
    AuthType.USE_GEMINI: ("GEMINI_API_KEY", "GeneratorConfig(api_key=...)"),
    AuthType.USE_VERTEX_AI: (
        "GOOGLE_CLOUD_PROJECT and GOOGLE_CLOUD_LOCATION",
        "GOOGLE_API_KEY (express mode)",
        "GeneratorConfig(vertex_project=..., vertex_location=...)",
    ),
    AuthType.USE_OPENAI: ("OPENAI_API_KEY", "GeneratorConfig(api_key=...)"),
    AuthType.USE_ANTHROPIC: ("ANTHROPIC_API_KEY", "GeneratorConfig(api_key=...)"),
    AuthType.USE_BEDROCK: (
        "GeneratorConfig(aws_access_key_id=..., aws_secret_access_key=...)",
        "AWS_PROFILE or GeneratorConfig(profile=...)",
        "AWS_ACCESS_KEY_ID and AWS_SECRET_ACCESS_KEY",
        "an IAM role or SSO session picked up by the default boto3 chain",
    ),
}


def credential_hint(auth_type: AuthType) -> str:
    """Name every supported credential source for *auth_type*."""
    sources = "; ".join(_CREDENTIAL_SOURCES[auth_type])
    return f"Configure one of: {sources}."


def detect_auth_type() -> AuthType | None:
    """Pick a provider from environment variables, or None when nothing is set.

    Precedence: explicit Vertex opt-in, Gemini key, AWS credentials, OpenAI
    key, Anthropic key.
    """
    if os.environ.get("GOOGLE_GENAI_USE_VERTEXAI", "").lower() == "true":
        return AuthType.USE_VERTEX_AI
    if os.environ.get("GEMINI_API_KEY"):
        return AuthType.USE_GEMINI
    if (
        os.environ.get("AWS_ACCESS_KEY_ID")
        or os.environ.get("AWS_PROFILE")
        or os.environ.get("AWS_REGION")
    ):
        return AuthType.USE_BEDROCK
    if os.environ.get("OPENAI_API_KEY"):
        return AuthType.USE_OPENAI
    if os.environ.get("ANTHROPIC_API_KEY"):
        return AuthType.USE_ANTHROPIC
    return None


@dataclass(frozen=True)
class SamplingParams:
    """Config-level sampling overrides.

    Values set here win over the per-request values, which win over adapter
    defaults. ``top_k`` and the penalties have no request-level counterpart.
    """

    temperature: float | None = None
    top_p: float | None = None
    top_k: int | None = None
    max_tokens: int | None = None
    repetition_penalty: float | None = None
    presence_penalty: float | None = None
    frequency_penalty: float | None = None


@dataclass(frozen=True)
class GeneratorConfig:
    """Immutable configuration for one content generator.

    Credentials, base URLs and AWS settings are auto-resolved from standard
    environment variables when left as *None*.

    Example:
        config = GeneratorConfig(auth_type=AuthType.USE_OPENAI, model="gpt-4o")
        # API key is resolved from OPENAI_API_KEY
    """

    auth_type: AuthType
    model: str
    api_key: str | None = None
    #: Auto-resolved from ``OPENAI_BASE_URL`` or ``ANTHROPIC_BASE_URL``.
    base_url: str | None = None
    timeout_s: float = DEFAULT_TIMEOUT_S
    #: Bounded retries performed by the SDK clients themselves.
    max_retries: int = DEFAULT_MAX_RETRIES
    #: Bedrock only.
    region: str | None = None
    profile: str | None = None
    aws_access_key_id: str | None = None
    aws_secret_access_key: str | None = None
    aws_session_token: str | None = None
    #: Vertex AI only.
    vertex_project: str | None = None
    vertex_location: str | None = None
    embedding_model: str | None = None
    sampling: SamplingParams = field(default_factory=SamplingParams)
    session_id: str | None = None
    use_mock: bool = False

    def __post_init__(self) -> None:
        """Resolve environment defaults and validate credentials early."""
        if not isinstance(self.auth_type, AuthType):
            try:
                object.__setattr__(self, "auth_type", AuthType(self.auth_type))
            except ValueError:
                supported = ", ".join(repr(a.value) for a in AuthType)
                raise ConfigurationError(
                    f"Unknown auth_type: {self.auth_type!r}",
                    hint=f"Supported auth types: {supported}",
                ) from None

        if not self.model:
            raise ConfigurationError(
                "model is required",
                hint="Pass GeneratorConfig(model=...); no default model is guessed.",
            )
        if self.timeout_s <= 0:
            raise ConfigurationError(
                f"timeout_s must be > 0, got {self.timeout_s}",
                hint="This bounds each provider request in seconds.",
            )
        if self.max_retries < 0:
            raise ConfigurationError(
                f"max_retries must be >= 0, got {self.max_retries}",
                hint="0 disables SDK-level retries.",
            )

        if self.use_mock:
            return

        resolver = {
            AuthType.USE_GEMINI: self._resolve_gemini,
            AuthType.USE_VERTEX_AI: self._resolve_vertex,
            AuthType.USE_OPENAI: self._resolve_openai,
            AuthType.USE_ANTHROPIC: self._resolve_anthropic,
            AuthType.USE_BEDROCK: self._resolve_bedrock,
        }[self.auth_type]
        resolver()

    def _set_default(self, name: str, env_var: str) -> None:
        if getattr(self, name) is None:
            object.__setattr__(self, name, os.environ.get(env_var) or None)

    def _require_api_key(self, env_var: str, provider: str) -> None:
        self._set_default("api_key", env_var)
        if not self.api_key:
            raise AuthenticationError(
                f"API key required for {provider}",
                hint=credential_hint(self.auth_type),
            )

    def _resolve_gemini(self) -> None:
        self._require_api_key("GEMINI_API_KEY", "Gemini")

    def _resolve_vertex(self) -> None:
        self._set_default("vertex_project", "GOOGLE_CLOUD_PROJECT")
        self._set_default("vertex_location", "GOOGLE_CLOUD_LOCATION")
        self._set_default("api_key", "GOOGLE_API_KEY")
        if not (self.vertex_project and self.vertex_location) and not self.api_key:
            raise AuthenticationError(
                "Vertex AI requires a project and location, or an API key",
                hint=credential_hint(self.auth_type),
            )

    def _resolve_openai(self) -> None:
        self._set_default("base_url", "OPENAI_BASE_URL")
        self._require_api_key("OPENAI_API_KEY", "OpenAI-compatible APIs")

    def _resolve_anthropic(self) -> None:
        self._set_default("base_url", "ANTHROPIC_BASE_URL")
        self._require_api_key("ANTHROPIC_API_KEY", "Anthropic")

    def _resolve_bedrock(self) -> None:
        if self.region is None:
            region = (
                os.environ.get("AWS_REGION")
                or os.environ.get("AWS_DEFAULT_REGION")
                or DEFAULT_AWS_REGION
            )
            object.__setattr__(self, "region", region)
        self._set_default("profile", "AWS_PROFILE")
        if bool(self.aws_access_key_id) != bool(self.aws_secret_access_key):
            raise AuthenticationError(
                "aws_access_key_id and aws_secret_access_key must be set together",
                hint=credential_hint(self.auth_type),
            )

    @property
    def provider_name(self) -> str:
        """Short provider label used in logs, errors and telemetry."""
        return {
            AuthType.USE_GEMINI: "gemini",
            AuthType.USE_VERTEX_AI: "vertex",
            AuthType.USE_OPENAI: "openai",
            AuthType.USE_ANTHROPIC: "anthropic",
            AuthType.USE_BEDROCK: "bedrock",
        }[self.auth_type]

    def __str__(self) -> str:
        """Return a redacted, developer-friendly representation."""
        secret = self.api_key or self.aws_secret_access_key
        return (
            f"GeneratorConfig(auth_type={self.auth_type.value!r}, "
            f"model={self.model!r}, base_url={self.base_url!r}, "
            f"credentials={'[REDACTED]' if secret else None}, "
            f"use_mock={self.use_mock})"
        )

    __repr__ = __str__
