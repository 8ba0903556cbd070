"""
Settings - the single configuration object for the sentence router.

Built ONCE at process start by `load_settings()` and injected into the
service and pipeline constructors. Nothing else reads config files or the
environment.

Sources, later wins:
1. backend/config.yaml (server, provider, models, workflow)
2. Environment variables (a .env file is loaded first)
"""

import logging
import os
from enum import Enum
from pathlib import Path
from typing import List, Literal, Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError, model_validator

from sentence_router.services.pipeline_errors import ConfigurationError

logger = logging.getLogger(__name__)


# =============================================================================
# PATHS
# =============================================================================

BACKEND_DIR = Path(__file__).parent.parent
DEFAULT_CONFIG_PATH = BACKEND_DIR / "config.yaml"
DEFAULT_ENDPOINTS_PATH = BACKEND_DIR / "catalog" / "endpoints.yaml"
DEFAULT_PROMPTS_PATH = Path(__file__).parent / "prompts" / "prompts.yaml"


# =============================================================================
# MODEL PARAMETERS
# =============================================================================

class ModelParams(BaseModel):
    """
    Parameters for one kind of model call.

    `claude` / `ollama` name the model per provider; `name` is the generic
    fallback when the provider-specific name is empty.
    """
    name: str = ""
    claude: str = ""
    ollama: str = ""
    temperature: float = 0.0  # Deterministic: extraction is parsing, not generation
    max_tokens: int = 2048

    def resolve_name(self, provider: str) -> str:
        specific = self.claude if provider == "claude" else self.ollama
        return specific or self.name


class ModelsConfig(BaseModel):
    sentence_to_json: ModelParams
    find_endpoint: ModelParams
    match_fields: Optional[ModelParams] = None

    @model_validator(mode="after")
    def _default_match_fields(self) -> "ModelsConfig":
        if self.match_fields is None:
            self.match_fields = self.sentence_to_json
        return self


# =============================================================================
# WORKFLOW
# =============================================================================

class RetryPolicy(BaseModel):
    max_attempts: int = Field(default=1, ge=1)
    delay_ms: int = Field(default=0, ge=0)

    @property
    def delay_seconds(self) -> float:
        return self.delay_ms / 1000.0


class StageConfig(BaseModel):
    name: str
    enabled: bool = True
    retry: Optional[RetryPolicy] = None
    timeout_secs: Optional[float] = Field(default=None, gt=0)


class TimeoutMode(str, Enum):
    """
    How declared `timeout_secs` values are enforced.

    DISABLED   - declared but not enforced
    PER_ATTEMPT - each attempt of a stage is bounded
    PER_STAGE  - the whole retry sequence of a stage is bounded
    """
    DISABLED = "disabled"
    PER_ATTEMPT = "per_attempt"
    PER_STAGE = "per_stage"


DEFAULT_STAGES: List[StageConfig] = [
    StageConfig(name="configuration_loading", retry=RetryPolicy(max_attempts=3, delay_ms=1000), timeout_secs=10),
    StageConfig(name="json_generation", retry=RetryPolicy(max_attempts=3, delay_ms=1000), timeout_secs=30),
    StageConfig(name="endpoint_matching", retry=RetryPolicy(max_attempts=2, delay_ms=500), timeout_secs=20),
    StageConfig(name="field_matching", retry=RetryPolicy(max_attempts=2, delay_ms=500), timeout_secs=20),
]


class WorkflowConfig(BaseModel):
    stages: List[StageConfig] = Field(default_factory=lambda: list(DEFAULT_STAGES))
    timeout_mode: TimeoutMode = TimeoutMode.DISABLED
    prompt_version: str = "v1"


# =============================================================================
# SETTINGS
# =============================================================================

class Settings(BaseModel):
    # Server
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    log_level: str = "INFO"

    # Language model
    provider: Literal["claude", "ollama"] = "ollama"
    anthropic_api_key: Optional[str] = None
    ollama_host: str = "http://localhost:11434"
    llm_timeout_seconds: float = 30.0
    models: ModelsConfig

    # Catalog
    endpoints_path: Path = DEFAULT_ENDPOINTS_PATH
    endpoint_service_url: Optional[str] = None
    endpoint_service_timeout_seconds: float = 10.0
    default_identity: Optional[str] = None

    # Prompts / workflow
    prompts_path: Path = DEFAULT_PROMPTS_PATH
    workflow: WorkflowConfig = Field(default_factory=WorkflowConfig)

    @model_validator(mode="after")
    def _claude_needs_key(self) -> "Settings":
        if self.provider == "claude" and not self.anthropic_api_key:
            raise ValueError("ANTHROPIC_API_KEY is required when provider is 'claude'")
        return self


# Environment variable -> Settings field
_ENV_OVERRIDES = {
    "API_HOST": "api_host",
    "API_PORT": "api_port",
    "LOG_LEVEL": "log_level",
    "LLM_PROVIDER": "provider",
    "ANTHROPIC_API_KEY": "anthropic_api_key",
    "OLLAMA_HOST": "ollama_host",
    "MODEL_TIMEOUT_SECONDS": "llm_timeout_seconds",
    "ENDPOINTS_PATH": "endpoints_path",
    "ENDPOINT_SERVICE_URL": "endpoint_service_url",
    "DEFAULT_EMAIL": "default_identity",
    "PROMPTS_PATH": "prompts_path",
}


def _read_config_file(config_path: Path) -> dict:
    if not config_path.exists():
        raise ConfigurationError(f"Configuration file not found: {config_path}")
    try:
        with open(config_path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Failed to parse configuration file {config_path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigurationError(f"Configuration file {config_path} must contain a mapping")
    return data


def _flatten_file_config(data: dict) -> dict:
    """Map the nested config.yaml layout onto Settings field names."""
    server = data.get("server") or {}
    providers = data.get("providers") or {}
    endpoint_service = data.get("endpoint_service") or {}

    values: dict = {}
    if "host" in server:
        values["api_host"] = server["host"]
    if "port" in server:
        values["api_port"] = server["port"]
    if "provider" in data:
        values["provider"] = data["provider"]
    if (providers.get("ollama") or {}).get("host"):
        values["ollama_host"] = providers["ollama"]["host"]
    if endpoint_service.get("default_address"):
        values["endpoint_service_url"] = endpoint_service["default_address"]
    if endpoint_service.get("timeout_seconds"):
        values["endpoint_service_timeout_seconds"] = endpoint_service["timeout_seconds"]
    if "models" in data:
        values["models"] = data["models"]
    if "workflow" in data:
        values["workflow"] = data["workflow"]
    return values


def load_settings(config_path: Optional[Path] = None) -> Settings:
    """
    Build the Settings object from config.yaml and the environment.

    Raises:
        ConfigurationError: file missing, unparseable, or values invalid
    """
    load_dotenv()

    path = Path(config_path or os.getenv("CONFIG_PATH") or DEFAULT_CONFIG_PATH)
    values = _flatten_file_config(_read_config_file(path))

    for env_name, field_name in _ENV_OVERRIDES.items():
        env_value = os.getenv(env_name)
        if env_value:
            values[field_name] = env_value

    try:
        settings = Settings(**values)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid configuration in {path}: {e}") from e

    logger.debug(f"Loaded settings from {path}: provider={settings.provider}")
    return settings
