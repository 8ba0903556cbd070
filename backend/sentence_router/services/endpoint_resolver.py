"""
Endpoint Resolver - maps a sentence to exactly one catalog endpoint.

Two halves:
1. Ask the model which trigger phrase fits the sentence (free text answer).
2. Resolve that answer to a catalog entry with ordered substring matching.

Matching rules (no scoring):
- Normalize answer and trigger phrases (trim + lowercase)
- Walk the catalog IN ORDER
- Accept the first endpoint whose whole phrase occurs in the answer, or all
  of whose whitespace-separated tokens occur somewhere in the answer
"""

import logging
from typing import List, Optional, Sequence

from sentence_router.config import ModelParams
from sentence_router.models.endpoint import Endpoint
from sentence_router.services.llm_service import LanguageModel
from sentence_router.services.pipeline_errors import EmptyResponseError, NoMatchError
from sentence_router.services.prompt_store import PromptStore

logger = logging.getLogger(__name__)

_QUOTES = "\"'"


def _normalize(text: str) -> str:
    return text.strip().lower()


def build_actions_list(endpoints: Sequence[Endpoint]) -> str:
    """One '- <trigger phrase>' line per endpoint, catalog order."""
    return "\n".join(f"- {e.text}" for e in endpoints)


def extract_matched_action(raw_response: str) -> str:
    """
    Pull the chosen action out of the model's answer.

    Takes the last non-empty line and strips whitespace and surrounding
    quotes. Raises EmptyResponseError if nothing is left.
    """
    lines = [line for line in raw_response.splitlines() if line.strip()]
    if not lines:
        logger.error("No valid lines found in response")
        raise EmptyResponseError("Empty response")

    cleaned = lines[-1].strip()
    previous = None
    while cleaned != previous:
        previous = cleaned
        cleaned = cleaned.strip().strip(_QUOTES)

    if not cleaned:
        logger.error("Extracted response is empty after cleaning")
        raise EmptyResponseError("Empty extracted response")

    logger.debug(f"Final cleaned response: '{cleaned}'")
    return cleaned


def matches_endpoint(endpoint: Endpoint, normalized_answer: str) -> bool:
    phrase = _normalize(endpoint.text)
    if not phrase:
        return False
    if phrase in normalized_answer:
        return True
    return all(token in normalized_answer for token in phrase.split())


def find_endpoint_by_substring(endpoints: Sequence[Endpoint], answer: str) -> Endpoint:
    """
    First endpoint, in catalog order, matched by the answer.

    Raises:
        NoMatchError: no endpoint qualifies
    """
    normalized_answer = _normalize(answer)
    logger.debug(f"Attempting substring matching with response: '{normalized_answer}'")

    if normalized_answer:
        for endpoint in endpoints:
            if matches_endpoint(endpoint, normalized_answer):
                return endpoint

    logger.error(f"No endpoint matched the response: '{answer}'")
    raise NoMatchError(answer)


class EndpointResolver:
    """
    Usage:
        resolver = EndpointResolver(model, prompts)
        endpoint = await resolver.resolve(sentence, endpoints, params)
    """

    PROMPT_NAME = "find_endpoint"

    def __init__(self, model: LanguageModel, prompts: PromptStore, prompt_version: Optional[str] = None):
        self.model = model
        self.prompts = prompts
        self.prompt_version = prompt_version

    def build_prompt(self, sentence: str, endpoints: List[Endpoint]) -> str:
        return self.prompts.render(
            self.PROMPT_NAME,
            self.prompt_version,
            input_sentence=sentence,
            actions_list=build_actions_list(endpoints),
        )

    async def resolve(self, sentence: str, endpoints: List[Endpoint], params: ModelParams) -> Endpoint:
        logger.info(f"Starting endpoint matching for input: {sentence}")
        logger.debug(f"Available endpoints: {len(endpoints)}")

        prompt = self.build_prompt(sentence, endpoints)
        raw_response = await self.model.generate(prompt, params)
        logger.debug(f"Raw model response: '{raw_response}'")

        answer = extract_matched_action(raw_response)
        endpoint = find_endpoint_by_substring(endpoints, answer)

        logger.info(f"Found matching endpoint: {endpoint.id}")
        return endpoint
