"""
Sentence Service - the per-call request boundary.

RESPONSIBILITIES:
1. Validate caller input (sentence, identity) BEFORE any stage runs
2. Build a fresh pipeline per request and run it in its own asyncio task
3. Assemble the AnalysisResponse from the finished context
4. Translate pipeline errors into response statuses (the ONLY place this happens)
5. Stop accepting work on shutdown and drain in-flight requests

This service does NOT:
- Call the language model directly
- Know about HTTP, SSE or the CLI (callers render what it returns)
"""

import asyncio
import logging
import re
import time
from enum import Enum
from typing import AsyncIterator, Awaitable, Callable, Dict, List, Optional, Set, Union

from sentence_router.config import Settings
from sentence_router.models.endpoint import AnalysisResponse, Endpoint, ErrorEnvelope
from sentence_router.pipeline.context import RequestContext
from sentence_router.pipeline.engine import PipelineEngine
from sentence_router.pipeline.stages import build_stages
from sentence_router.services.catalog_source import CatalogSource
from sentence_router.services.llm_service import LanguageModel
from sentence_router.services.pipeline_errors import (
    ConfigurationError,
    EmptySentenceError,
    InputValidationError,
    InvalidIdentityError,
    MissingIdentityError,
    NoMatchError,
    PipelineError,
    ServiceUnavailableError,
)
from sentence_router.services.prompt_store import PromptStore

logger = logging.getLogger(__name__)

IDENTITY_PATTERN = re.compile(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$")

RESPONSE_STAGE = "response_assembly"


# =============================================================================
# STATUS MAPPING
# =============================================================================

class ResponseStatus(str, Enum):
    OK = "OK"
    INVALID_ARGUMENT = "INVALID_ARGUMENT"
    UNAUTHENTICATED = "UNAUTHENTICATED"
    NOT_FOUND = "NOT_FOUND"
    FAILED_PRECONDITION = "FAILED_PRECONDITION"
    UNAVAILABLE = "UNAVAILABLE"
    INTERNAL = "INTERNAL"


HTTP_STATUS_CODES: Dict[ResponseStatus, int] = {
    ResponseStatus.OK: 200,
    ResponseStatus.INVALID_ARGUMENT: 400,
    ResponseStatus.UNAUTHENTICATED: 401,
    ResponseStatus.NOT_FOUND: 404,
    ResponseStatus.FAILED_PRECONDITION: 412,
    ResponseStatus.UNAVAILABLE: 503,
    ResponseStatus.INTERNAL: 500,
}


def status_for_error(error: BaseException) -> ResponseStatus:
    """Order matters: subclasses before their bases."""
    if isinstance(error, ServiceUnavailableError):
        return ResponseStatus.UNAVAILABLE
    if isinstance(error, ConfigurationError):
        return ResponseStatus.FAILED_PRECONDITION
    if isinstance(error, NoMatchError):
        return ResponseStatus.NOT_FOUND
    if isinstance(error, MissingIdentityError):
        return ResponseStatus.UNAUTHENTICATED
    if isinstance(error, InputValidationError):
        return ResponseStatus.INVALID_ARGUMENT
    return ResponseStatus.INTERNAL


def error_envelope(error: BaseException) -> ErrorEnvelope:
    """The terminal error message for a failed call, original message embedded."""
    status = status_for_error(error)
    if isinstance(error, PipelineError):
        details = error.to_dict()
        return ErrorEnvelope(
            status=status.value,
            code=HTTP_STATUS_CODES[status],
            message=details["message"],
            error_code=details["error_code"],
            error_type=details["error_type"],
        )
    return ErrorEnvelope(
        status=status.value,
        code=HTTP_STATUS_CODES[status],
        message=f"Internal error: {error}",
        error_type=error.__class__.__name__,
    )


def build_response(context: RequestContext) -> AnalysisResponse:
    """Assemble the success message from a finished context."""
    return AnalysisResponse.from_parts(
        endpoint_id=context.require("endpoint_id", RESPONSE_STAGE),
        endpoint_description=context.endpoint_description or "",
        parameters=context.parameters or [],
        json_output=context.require("json_output", RESPONSE_STAGE),
    )


# =============================================================================
# SERVICE
# =============================================================================

class SentenceService:
    """
    Usage:
        service = SentenceService(settings, model, catalog_source, prompts)
        response = await service.analyze(sentence, "jane@example.com")

        async for message in service.stream(sentence, email, client_id):
            ...  # exactly one AnalysisResponse or ErrorEnvelope
    """

    def __init__(
        self,
        settings: Settings,
        model: LanguageModel,
        catalog_source: CatalogSource,
        prompts: PromptStore,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.settings = settings
        self.model = model
        self.catalog_source = catalog_source
        self.prompts = prompts
        self._sleep = sleep
        self._accepting = True
        self._in_flight: Set[asyncio.Task] = set()

    # -------------------------------------------------------------------------
    # Input validation
    # -------------------------------------------------------------------------

    def resolve_identity(self, email: Optional[str]) -> str:
        """
        The caller identity for this request.

        Falls back to the configured default identity when none is given.

        Raises:
            MissingIdentityError: no identity and no default configured
            InvalidIdentityError: identity is not a well-formed email address
        """
        identity = (email or "").strip()
        if not identity:
            if not self.settings.default_identity:
                logger.error("Missing email in request headers")
                raise MissingIdentityError()
            identity = self.settings.default_identity.strip()
            logger.info(f"No email provided, using default identity: {identity}")

        if not IDENTITY_PATTERN.match(identity):
            logger.error(f"Invalid email format: {identity}")
            raise InvalidIdentityError(identity)
        return identity

    @staticmethod
    def validate_sentence(sentence: Optional[str]) -> str:
        cleaned = (sentence or "").strip()
        if not cleaned:
            raise EmptySentenceError()
        return cleaned

    # -------------------------------------------------------------------------
    # Pipeline
    # -------------------------------------------------------------------------

    def build_engine(self) -> PipelineEngine:
        """A fresh engine per request; stages share only read-only collaborators."""
        workflow = self.settings.workflow
        stages = build_stages(
            model=self.model,
            prompts=self.prompts,
            catalog_source=self.catalog_source,
            models_config=self.settings.models,
            workflow=workflow,
        )
        return PipelineEngine.from_config(
            workflow.stages,
            stages,
            timeout_mode=workflow.timeout_mode,
            sleep=self._sleep,
        )

    def submit(self, sentence: str, email: Optional[str], client_id: Optional[str] = None) -> asyncio.Task:
        """
        Validate input and start the pipeline task.

        Raises (before any stage runs):
            ServiceUnavailableError: shutting down
            InputValidationError: bad sentence or identity
        """
        if not self._accepting:
            raise ServiceUnavailableError()

        sentence = self.validate_sentence(sentence)
        identity = self.resolve_identity(email)
        logger.info(f"Received request from client_id={client_id or 'unknown'}, email={identity}")

        task = asyncio.create_task(self._run(sentence, identity, client_id))
        self._in_flight.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task) -> None:
        self._in_flight.discard(task)
        # Failures are already logged in _run; mark them retrieved
        if not task.cancelled():
            task.exception()

    async def _run(self, sentence: str, identity: str, client_id: Optional[str]) -> AnalysisResponse:
        start_time = time.monotonic()
        try:
            context = await self.build_engine().execute(sentence, identity, client_id)
            response = build_response(context)
        except Exception as e:
            logger.error(f"Request failed for client_id={client_id or 'unknown'}: {e}")
            raise

        duration_ms = int((time.monotonic() - start_time) * 1000)
        logger.info(
            f"Request completed for client_id={client_id or 'unknown'}: "
            f"endpoint={response.endpoint_id} in {duration_ms}ms"
        )
        return response

    async def analyze(
        self,
        sentence: str,
        email: Optional[str] = None,
        client_id: Optional[str] = None,
    ) -> AnalysisResponse:
        """Run one analysis and return the response, or raise the failing PipelineError."""
        task = self.submit(sentence, email, client_id)
        return await asyncio.shield(task)

    async def wait_for_result(self, task: asyncio.Task) -> AsyncIterator[Union[AnalysisResponse, ErrorEnvelope]]:
        """
        Yield the single message for a submitted task.

        The task is shielded: a caller that goes away does not cancel it.
        """
        try:
            response = await asyncio.shield(task)
        except Exception as e:
            envelope = error_envelope(e)
            logger.warning(f"Responding with {envelope.status}: {envelope.message}")
            yield envelope
            return
        yield response

    async def stream(
        self,
        sentence: str,
        email: Optional[str] = None,
        client_id: Optional[str] = None,
    ) -> AsyncIterator[Union[AnalysisResponse, ErrorEnvelope]]:
        """Exactly one AnalysisResponse or ErrorEnvelope per call."""
        try:
            task = self.submit(sentence, email, client_id)
        except PipelineError as e:
            yield error_envelope(e)
            return

        async for message in self.wait_for_result(task):
            yield message

    async def list_endpoints(self, email: Optional[str] = None) -> List[Endpoint]:
        """The catalog as the pipeline would see it for this caller."""
        identity = self.resolve_identity(email)
        return await self.catalog_source.load(identity)

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    @property
    def in_flight(self) -> int:
        return len(self._in_flight)

    @property
    def accepting(self) -> bool:
        return self._accepting

    def begin_shutdown(self) -> None:
        self._accepting = False
        logger.info(f"Shutdown requested, {self.in_flight} request(s) in flight")

    async def drain(self, timeout: Optional[float] = None) -> None:
        """Wait for in-flight requests. Never cancels them."""
        if not self._in_flight:
            return
        done, pending = await asyncio.wait(set(self._in_flight), timeout=timeout)
        if pending:
            logger.warning(f"{len(pending)} request(s) still running after {timeout}s")
        else:
            logger.info(f"Drained {len(done)} in-flight request(s)")

    async def aclose(self) -> None:
        await self.model.aclose()
        await self.catalog_source.aclose()
