"""
Pipeline Stages - the four units of work, in execution order.

    configuration_loading -> json_generation -> endpoint_matching -> field_matching

Each stage:
- reads its prerequisites through `context.require()`
- writes only the context fields it owns
- raises PipelineErrors unmodified (the engine decides about retries)
"""

import logging
from typing import Dict, Optional

from sentence_router.config import ModelsConfig, WorkflowConfig
from sentence_router.pipeline.context import RequestContext
from sentence_router.pipeline.engine import PipelineStage
from sentence_router.services.catalog_source import CatalogSource
from sentence_router.services.endpoint_resolver import EndpointResolver
from sentence_router.services.field_resolver import FieldResolver, first_action_fields
from sentence_router.services.json_extractor import extract_json
from sentence_router.services.llm_service import LanguageModel
from sentence_router.services.pipeline_errors import ConfigurationError
from sentence_router.services.prompt_store import PromptStore

logger = logging.getLogger(__name__)


class LoadConfigStage(PipelineStage):
    name = "configuration_loading"

    def __init__(self, catalog_source: CatalogSource, models_config: ModelsConfig):
        self.catalog_source = catalog_source
        self.models_config = models_config

    async def run(self, context: RequestContext) -> None:
        endpoints = await self.catalog_source.load(context.identity)
        if not endpoints:
            raise ConfigurationError("No endpoints available")

        context.models_config = self.models_config
        context.endpoints = endpoints
        logger.info(f"Configuration loaded: {len(endpoints)} endpoints")


class ExtractJsonStage(PipelineStage):
    """Sentence -> {"endpoints": [{"endpoint": ..., "fields": {...}}]}"""

    name = "json_generation"
    PROMPT_NAME = "sentence_to_json"

    def __init__(self, model: LanguageModel, prompts: PromptStore, prompt_version: Optional[str] = None):
        self.model = model
        self.prompts = prompts
        self.prompt_version = prompt_version

    async def run(self, context: RequestContext) -> None:
        models_config: ModelsConfig = context.require("models_config", self.name)

        prompt = self.prompts.render(self.PROMPT_NAME, self.prompt_version, sentence=context.sentence)
        response = await self.model.generate(prompt, models_config.sentence_to_json)
        logger.debug(f"Raw JSON generation response: {response}")

        json_output = extract_json(response)
        # A wrong shape fails this stage (and is retried here)
        first_action_fields(json_output)

        context.json_output = json_output
        logger.info("JSON generation completed")


class ResolveEndpointStage(PipelineStage):
    name = "endpoint_matching"

    def __init__(self, resolver: EndpointResolver):
        self.resolver = resolver

    async def run(self, context: RequestContext) -> None:
        models_config: ModelsConfig = context.require("models_config", self.name)
        endpoints = context.require("endpoints", self.name)

        endpoint = await self.resolver.resolve(context.sentence, endpoints, models_config.find_endpoint)

        context.matched_endpoint = endpoint
        context.endpoint_id = endpoint.id
        context.endpoint_description = endpoint.description


class ResolveFieldsStage(PipelineStage):
    name = "field_matching"

    def __init__(self, resolver: FieldResolver):
        self.resolver = resolver

    async def run(self, context: RequestContext) -> None:
        models_config: ModelsConfig = context.require("models_config", self.name)
        json_output = context.require("json_output", self.name)
        endpoint = context.require("matched_endpoint", self.name)

        parameters = await self.resolver.resolve(json_output, endpoint, models_config.match_fields)

        resolved = sum(1 for p in parameters if p.is_resolved)
        logger.info(f"Field matching completed: {resolved}/{len(parameters)} parameters resolved")
        context.parameters = parameters


def build_stages(
    model: LanguageModel,
    prompts: PromptStore,
    catalog_source: CatalogSource,
    models_config: ModelsConfig,
    workflow: WorkflowConfig,
) -> Dict[str, PipelineStage]:
    """Stage implementations keyed by the names used in the workflow config."""
    version = workflow.prompt_version
    stages = [
        LoadConfigStage(catalog_source, models_config),
        ExtractJsonStage(model, prompts, version),
        ResolveEndpointStage(EndpointResolver(model, prompts, version)),
        ResolveFieldsStage(FieldResolver(model, prompts, version)),
    ]
    return {stage.name: stage for stage in stages}
