import sys
from pathlib import Path
from typing import List, Optional

import pytest

# Add backend directory to sys.path to allow imports from sentence_router
backend_path = Path(__file__).parent.parent.parent.resolve()
if str(backend_path) not in sys.path:
    sys.path.append(str(backend_path))

from sentence_router.config import (
    DEFAULT_PROMPTS_PATH,
    ModelParams,
    ModelsConfig,
    Settings,
    WorkflowConfig,
)
from sentence_router.services.catalog_source import CatalogSource, load_endpoints_file
from sentence_router.services.llm_service import LanguageModel
from sentence_router.services.prompt_store import PromptStore
from sentence_router.services.sentence_service import SentenceService


# =============================================================================
# FAKES
# =============================================================================

class FakeModel(LanguageModel):
    """
    Scripted language model.

    Returns the queued responses in order; an Exception in the queue is raised
    instead. Every call is recorded as (prompt, params).
    """

    provider = "fake"

    def __init__(self, responses: Optional[List] = None):
        self.responses = list(responses or [])
        self.calls = []
        self.closed = False

    async def generate(self, prompt: str, params: ModelParams) -> str:
        self.calls.append((prompt, params))
        if not self.responses:
            raise AssertionError(f"Unexpected model call #{len(self.calls)}")
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    async def aclose(self) -> None:
        self.closed = True

    @property
    def call_count(self) -> int:
        return len(self.calls)


class SleepRecorder:
    """Stands in for asyncio.sleep; records requested delays without waiting."""

    def __init__(self):
        self.delays = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


# =============================================================================
# CANNED MODEL OUTPUT
# =============================================================================

MEETING_SENTENCE = "schedule a meeting tomorrow at 2pm with John"

MEETING_JSON_RESPONSE = (
    "Here is the extracted data:\n"
    "```json\n"
    "{\n"
    '  "endpoints": [\n'
    "    {\n"
    '      "endpoint": "schedule meeting",\n'
    '      "fields": {\n'
    '        "time": "tomorrow at 2pm",\n'
    '        "participants": "John",\n'
    "      }\n"
    "    }\n"
    "  ]\n"
    "}\n"
    "```"
)

MEETING_JSON_OUTPUT = (
    '{"endpoints":[{"endpoint":"schedule meeting",'
    '"fields":{"time":"tomorrow at 2pm","participants":"John"}}]}'
)

MEETING_ENDPOINT_RESPONSE = 'The request is about a meeting.\n"schedule meeting"'

MEETING_FALLBACK_RESPONSE = '{"topic": null}'


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture(scope="session")
def endpoints_path():
    return backend_path / "catalog" / "endpoints.yaml"


@pytest.fixture(scope="session")
def prompts():
    return PromptStore.from_file(DEFAULT_PROMPTS_PATH)


@pytest.fixture(scope="session")
def sample_endpoints(endpoints_path):
    return load_endpoints_file(endpoints_path)


@pytest.fixture
def meeting_endpoint(sample_endpoints):
    return next(e for e in sample_endpoints if e.id == "schedule_meeting")


@pytest.fixture
def model_params():
    return ModelParams(name="test-model")


@pytest.fixture
def settings(endpoints_path):
    return Settings(
        models=ModelsConfig(
            sentence_to_json=ModelParams(name="test-model"),
            find_endpoint=ModelParams(name="test-model", max_tokens=256),
        ),
        endpoints_path=endpoints_path,
        workflow=WorkflowConfig(),
    )


@pytest.fixture
def sleep_recorder():
    return SleepRecorder()


@pytest.fixture
def make_service(settings, prompts, sleep_recorder):
    """Factory: a SentenceService over the local catalog and a scripted model."""
    def _make(model: LanguageModel, settings_override: Optional[Settings] = None) -> SentenceService:
        active = settings_override or settings
        return SentenceService(
            settings=active,
            model=model,
            catalog_source=CatalogSource(active.endpoints_path),
            prompts=prompts,
            sleep=sleep_recorder,
        )
    return _make


@pytest.fixture
def meeting_model():
    return FakeModel([MEETING_JSON_RESPONSE, MEETING_ENDPOINT_RESPONSE, MEETING_FALLBACK_RESPONSE])
