import pytest

from sentence_router.config import (
    DEFAULT_CONFIG_PATH,
    ModelParams,
    ModelsConfig,
    TimeoutMode,
    _ENV_OVERRIDES,
    load_settings,
)
from sentence_router.services.pipeline_errors import ConfigurationError


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, mocker):
    """Settings must come from config.yaml only, not from the developer's shell or .env."""
    mocker.patch("sentence_router.config.load_dotenv")
    for env_name in list(_ENV_OVERRIDES) + ["CONFIG_PATH"]:
        monkeypatch.delenv(env_name, raising=False)


def test_default_config_file():
    settings = load_settings(DEFAULT_CONFIG_PATH)

    assert settings.provider == "ollama"
    assert settings.api_port == 8000
    assert settings.endpoint_service_url is None
    assert settings.workflow.timeout_mode == TimeoutMode.DISABLED
    assert settings.workflow.prompt_version == "v1"
    assert [s.name for s in settings.workflow.stages] == [
        "configuration_loading",
        "json_generation",
        "endpoint_matching",
        "field_matching",
    ]


def test_stage_retry_policies():
    stages = {s.name: s for s in load_settings(DEFAULT_CONFIG_PATH).workflow.stages}

    assert stages["json_generation"].retry.max_attempts == 3
    assert stages["json_generation"].retry.delay_seconds == 1.0
    assert stages["field_matching"].retry.max_attempts == 2
    assert stages["field_matching"].retry.delay_seconds == 0.5
    assert all(s.enabled for s in stages.values())


def test_model_params_per_call_kind():
    models = load_settings(DEFAULT_CONFIG_PATH).models

    assert models.find_endpoint.max_tokens == 256
    assert models.match_fields.max_tokens == 1024
    assert models.sentence_to_json.resolve_name("claude") == "claude-sonnet-4-5"
    assert models.sentence_to_json.resolve_name("ollama") == "llama3.1"


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("API_PORT", "9001")
    monkeypatch.setenv("ENDPOINT_SERVICE_URL", "http://catalog.internal:8080")
    monkeypatch.setenv("DEFAULT_EMAIL", "ops@example.com")
    monkeypatch.setenv("MODEL_TIMEOUT_SECONDS", "5")

    settings = load_settings(DEFAULT_CONFIG_PATH)

    assert settings.api_port == 9001
    assert settings.endpoint_service_url == "http://catalog.internal:8080"
    assert settings.default_identity == "ops@example.com"
    assert settings.llm_timeout_seconds == 5.0


def test_config_path_from_environment(monkeypatch, tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(
        "provider: ollama\n"
        "models:\n"
        "  sentence_to_json: {name: tiny}\n"
        "  find_endpoint: {name: tiny}\n"
        "workflow:\n"
        "  timeout_mode: per_stage\n"
    )
    monkeypatch.setenv("CONFIG_PATH", str(path))

    settings = load_settings()

    assert settings.workflow.timeout_mode == TimeoutMode.PER_STAGE
    assert settings.models.match_fields == settings.models.sentence_to_json
    # Stages default when the file declares none
    assert len(settings.workflow.stages) == 4


def test_claude_requires_api_key(monkeypatch):
    monkeypatch.setenv("LLM_PROVIDER", "claude")
    with pytest.raises(ConfigurationError, match="ANTHROPIC_API_KEY"):
        load_settings(DEFAULT_CONFIG_PATH)


def test_claude_with_api_key(monkeypatch):
    monkeypatch.setenv("LLM_PROVIDER", "claude")
    monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-test")
    assert load_settings(DEFAULT_CONFIG_PATH).provider == "claude"


def test_unknown_provider(monkeypatch):
    monkeypatch.setenv("LLM_PROVIDER", "gpt")
    with pytest.raises(ConfigurationError, match="Invalid configuration"):
        load_settings(DEFAULT_CONFIG_PATH)


def test_missing_config_file(tmp_path):
    with pytest.raises(ConfigurationError, match="Configuration file not found"):
        load_settings(tmp_path / "config.yaml")


def test_unparseable_config_file(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("models: [oops")
    with pytest.raises(ConfigurationError, match="Failed to parse configuration file"):
        load_settings(path)


def test_invalid_retry_policy(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(
        "models:\n"
        "  sentence_to_json: {name: tiny}\n"
        "  find_endpoint: {name: tiny}\n"
        "workflow:\n"
        "  stages:\n"
        "    - name: json_generation\n"
        "      retry: {max_attempts: 0, delay_ms: 10}\n"
    )
    with pytest.raises(ConfigurationError):
        load_settings(path)


def test_model_name_fallback():
    params = ModelParams(name="generic", claude="claude-x")
    assert params.resolve_name("claude") == "claude-x"
    assert params.resolve_name("ollama") == "generic"


def test_match_fields_defaults_to_sentence_to_json():
    models = ModelsConfig(sentence_to_json=ModelParams(name="a"), find_endpoint=ModelParams(name="b"))
    assert models.match_fields.name == "a"
