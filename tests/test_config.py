"""Configuration resolution, validation and provider auto-detection."""

from __future__ import annotations

import pytest

from switchboard.config import (
    AuthType,
    GeneratorConfig,
    SamplingParams,
    credential_hint,
    detect_auth_type,
)
from switchboard.errors import AuthenticationError, ConfigurationError
from tests.conftest import BEDROCK_MODEL, GEMINI_MODEL, OPENAI_MODEL

pytestmark = pytest.mark.unit


def test_config_creation_with_mock_mode() -> None:
    """Mock mode needs no credentials."""
    cfg = GeneratorConfig(auth_type=AuthType.USE_OPENAI, model=OPENAI_MODEL, use_mock=True)
    assert cfg.api_key is None
    assert cfg.provider_name == "openai"


def test_auth_type_accepts_enum_values_as_strings() -> None:
    cfg = GeneratorConfig(auth_type="openai", model=OPENAI_MODEL, use_mock=True)  # type: ignore[arg-type]
    assert cfg.auth_type is AuthType.USE_OPENAI


def test_unknown_auth_type_lists_supported_values() -> None:
    with pytest.raises(ConfigurationError) as excinfo:
        GeneratorConfig(auth_type="cohere", model="x", use_mock=True)  # type: ignore[arg-type]
    assert "bedrock" in (excinfo.value.hint or "")


def test_model_is_required() -> None:
    with pytest.raises(ConfigurationError, match="model is required"):
        GeneratorConfig(auth_type=AuthType.USE_GEMINI, model="", use_mock=True)


@pytest.mark.parametrize(
    ("field", "value"), [("timeout_s", 0), ("timeout_s", -1.0), ("max_retries", -1)]
)
def test_invalid_limits_are_rejected(field: str, value: float) -> None:
    with pytest.raises(ConfigurationError):
        GeneratorConfig(
            auth_type=AuthType.USE_GEMINI, model=GEMINI_MODEL, use_mock=True, **{field: value}
        )


def test_api_key_and_base_url_resolve_from_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("OPENAI_API_KEY", "env-key")
    monkeypatch.setenv("OPENAI_BASE_URL", "https://openrouter.ai/api/v1")

    cfg = GeneratorConfig(auth_type=AuthType.USE_OPENAI, model=OPENAI_MODEL)

    assert cfg.api_key == "env-key"
    assert cfg.base_url == "https://openrouter.ai/api/v1"


def test_explicit_api_key_takes_precedence(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("GEMINI_API_KEY", "env-key")
    cfg = GeneratorConfig(
        auth_type=AuthType.USE_GEMINI, model=GEMINI_MODEL, api_key="explicit-key"
    )
    assert cfg.api_key == "explicit-key"


@pytest.mark.parametrize(
    ("auth_type", "env_var"),
    [
        (AuthType.USE_GEMINI, "GEMINI_API_KEY"),
        (AuthType.USE_OPENAI, "OPENAI_API_KEY"),
        (AuthType.USE_ANTHROPIC, "ANTHROPIC_API_KEY"),
    ],
)
def test_missing_api_key_raises_with_every_source(
    auth_type: AuthType, env_var: str
) -> None:
    with pytest.raises(AuthenticationError) as excinfo:
        GeneratorConfig(auth_type=auth_type, model="m")
    assert env_var in (excinfo.value.hint or "")
    assert "GeneratorConfig(api_key=...)" in (excinfo.value.hint or "")


def test_vertex_accepts_project_and_location(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("GOOGLE_CLOUD_PROJECT", "proj")
    monkeypatch.setenv("GOOGLE_CLOUD_LOCATION", "us-central1")

    cfg = GeneratorConfig(auth_type=AuthType.USE_VERTEX_AI, model=GEMINI_MODEL)

    assert (cfg.vertex_project, cfg.vertex_location) == ("proj", "us-central1")
    assert cfg.provider_name == "vertex"


def test_vertex_without_project_or_key_fails() -> None:
    with pytest.raises(AuthenticationError) as excinfo:
        GeneratorConfig(auth_type=AuthType.USE_VERTEX_AI, model=GEMINI_MODEL)
    assert "GOOGLE_CLOUD_PROJECT" in (excinfo.value.hint or "")


def test_bedrock_region_precedence(monkeypatch: pytest.MonkeyPatch) -> None:
    cfg = GeneratorConfig(auth_type=AuthType.USE_BEDROCK, model=BEDROCK_MODEL)
    assert cfg.region == "us-east-1"

    monkeypatch.setenv("AWS_DEFAULT_REGION", "eu-west-1")
    cfg = GeneratorConfig(auth_type=AuthType.USE_BEDROCK, model=BEDROCK_MODEL)
    assert cfg.region == "eu-west-1"

    monkeypatch.setenv("AWS_REGION", "us-west-2")
    cfg = GeneratorConfig(auth_type=AuthType.USE_BEDROCK, model=BEDROCK_MODEL)
    assert cfg.region == "us-west-2"

    cfg = GeneratorConfig(
        auth_type=AuthType.USE_BEDROCK, model=BEDROCK_MODEL, region="ap-southeast-1"
    )
    assert cfg.region == "ap-southeast-1"


def test_bedrock_keys_must_come_in_pairs() -> None:
    with pytest.raises(AuthenticationError):
        GeneratorConfig(
            auth_type=AuthType.USE_BEDROCK, model=BEDROCK_MODEL, aws_access_key_id="AKIA"
        )


def test_repr_redacts_secrets() -> None:
    cfg = GeneratorConfig(
        auth_type=AuthType.USE_OPENAI, model=OPENAI_MODEL, api_key="sk-secret"
    )
    assert "sk-secret" not in repr(cfg)
    assert "[REDACTED]" in str(cfg)


def test_sampling_defaults_are_unset() -> None:
    sampling = SamplingParams()
    assert sampling.temperature is None
    assert sampling.top_k is None


def test_credential_hint_lists_aws_chain() -> None:
    hint = credential_hint(AuthType.USE_BEDROCK)
    assert "AWS_PROFILE" in hint
    assert "AWS_ACCESS_KEY_ID" in hint


@pytest.mark.parametrize(
    ("env", "expected"),
    [
        ({}, None),
        ({"ANTHROPIC_API_KEY": "k"}, AuthType.USE_ANTHROPIC),
        ({"OPENAI_API_KEY": "k", "ANTHROPIC_API_KEY": "k"}, AuthType.USE_OPENAI),
        ({"AWS_PROFILE": "dev", "OPENAI_API_KEY": "k"}, AuthType.USE_BEDROCK),
        ({"GEMINI_API_KEY": "k", "AWS_PROFILE": "dev"}, AuthType.USE_GEMINI),
        ({"GOOGLE_GENAI_USE_VERTEXAI": "true", "GEMINI_API_KEY": "k"}, AuthType.USE_VERTEX_AI),
    ],
)
def test_detect_auth_type_precedence(
    monkeypatch: pytest.MonkeyPatch, env: dict[str, str], expected: AuthType | None
) -> None:
    for key, value in env.items():
        monkeypatch.setenv(key, value)
    assert detect_auth_type() is expected
