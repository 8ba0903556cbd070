"""
Field Resolver - reconciles extracted fields with an endpoint's parameters.

Precedence per parameter, first hit wins:
1. Exact match: a field with the parameter's name
2. Alternative match: the parameter's alternatives, in declared order
3. Semantic fallback: ONE model call per resolution, made only when some
   parameter is still unresolved after 1-2; fills only those parameters

Parameters with no value from any tier stay unresolved. That is not an error:
whether a required parameter may be missing is the caller's decision.
"""

import json
import logging
from typing import Any, Dict, List, Optional

from sentence_router.config import ModelParams
from sentence_router.models.endpoint import Endpoint, Parameter
from sentence_router.services.json_extractor import extract_json
from sentence_router.services.llm_service import LanguageModel
from sentence_router.services.pipeline_errors import MalformedOutputError
from sentence_router.services.prompt_store import PromptStore

logger = logging.getLogger(__name__)


def first_action_fields(json_output: Any) -> Dict[str, Any]:
    """
    The "fields" map of the first detected action.

    Raises:
        MalformedOutputError: structure is not {"endpoints": [{"fields": {...}}, ...]}
    """
    if not isinstance(json_output, dict):
        raise MalformedOutputError("Invalid JSON structure: expected an object")

    actions = json_output.get("endpoints")
    if not isinstance(actions, list):
        raise MalformedOutputError("Invalid JSON structure: 'endpoints' is not an array")
    if not actions:
        raise MalformedOutputError("Invalid JSON structure: 'endpoints' array is empty")

    first = actions[0]
    fields = first.get("fields") if isinstance(first, dict) else None
    if not isinstance(fields, dict):
        raise MalformedOutputError("Invalid JSON structure: first action has no 'fields' object")
    return fields


def render_value(value: Any) -> Optional[str]:
    """JSON strings as-is, null as None, anything else as compact JSON text."""
    if value is None:
        return None
    if isinstance(value, str):
        return value
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False)


def match_deterministic(fields: Dict[str, Any], parameter: Parameter) -> Optional[str]:
    """Tiers 1 and 2: exact name, then alternatives in order. A null value counts as absent."""
    for key in [parameter.name, *parameter.alternatives]:
        value = render_value(fields.get(key))
        if value is not None:
            return value
    return None


def format_input_fields(fields: Dict[str, Any]) -> str:
    return ", ".join(f"{key}: {json.dumps(value, ensure_ascii=False)}" for key, value in fields.items())


def format_parameters(parameters: List[Parameter]) -> str:
    return "\n".join(
        f"{p.name}: {p.description} (alternatives: {', '.join(p.alternatives)})"
        for p in parameters
    )


class FieldResolver:
    """
    Usage:
        resolver = FieldResolver(model, prompts)
        parameters = await resolver.resolve(json_output, endpoint, params)
    """

    PROMPT_NAME = "match_fields"

    def __init__(self, model: LanguageModel, prompts: PromptStore, prompt_version: Optional[str] = None):
        self.model = model
        self.prompts = prompts
        self.prompt_version = prompt_version

    async def semantic_match(
        self,
        fields: Dict[str, Any],
        parameters: List[Parameter],
        params: ModelParams,
    ) -> Dict[str, Any]:
        """Tier 3: ask the model for a parameter name -> value map."""
        prompt = self.prompts.render(
            self.PROMPT_NAME,
            self.prompt_version,
            input_fields=format_input_fields(fields),
            parameters=format_parameters(parameters),
        )
        logger.debug(f"Field matching prompt:\n{prompt}")

        response = await self.model.generate(prompt, params)
        mapping = extract_json(response)
        if not isinstance(mapping, dict):
            raise MalformedOutputError("Semantic matching response is not a JSON object")

        logger.debug(f"Semantic matching response: {mapping}")
        return mapping

    async def resolve(self, json_output: Any, endpoint: Endpoint, params: ModelParams) -> List[Parameter]:
        """One resolved copy per declared parameter, in declared order."""
        fields = first_action_fields(json_output)

        values: Dict[str, Optional[str]] = {
            p.name: match_deterministic(fields, p) for p in endpoint.parameters
        }
        unresolved = [name for name, value in values.items() if value is None]

        if unresolved:
            logger.info(f"Semantic fallback for unresolved parameters: {unresolved}")
            mapping = await self.semantic_match(fields, endpoint.parameters, params)
            for name in unresolved:
                values[name] = render_value(mapping.get(name))

        return [p.model_copy(update={"value": values[p.name]}) for p in endpoint.parameters]
