"""
Pipeline Engine - runs an ordered list of stages over one RequestContext.

RULES:
1. Stages run strictly in registration order, one at a time
2. Disabled stages are skipped (never invoked); later stages still run
3. A stage with a retry policy runs up to max_attempts times, sleeping a
   fixed delay between attempts; only transient PipelineErrors are retried
4. The first stage that ultimately fails aborts the run; its last error is
   raised unmodified and the partial context is discarded
5. Declared timeouts are enforced only when a TimeoutMode says so
"""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from typing import Awaitable, Callable, Dict, List, Optional, Sequence, Tuple

from sentence_router.config import StageConfig, TimeoutMode
from sentence_router.pipeline.context import RequestContext
from sentence_router.services.pipeline_errors import (
    ConfigurationError,
    PipelineError,
    StageTimeoutError,
)

logger = logging.getLogger(__name__)

SleepFn = Callable[[float], Awaitable[None]]


class PipelineStage(ABC):
    """One unit of pipeline work. Reads and writes the shared context."""

    name: str = ""

    @abstractmethod
    async def run(self, context: RequestContext) -> None:
        """Do the work or raise a PipelineError."""


class PipelineEngine:
    """
    Usage:
        engine = PipelineEngine()
        engine.register_stage(StageConfig(name="json_generation"), stage)
        context = await engine.execute("schedule a meeting ...")
    """

    def __init__(self, timeout_mode: TimeoutMode = TimeoutMode.DISABLED, sleep: SleepFn = asyncio.sleep):
        self.timeout_mode = timeout_mode
        self._sleep = sleep
        self._stages: List[Tuple[StageConfig, PipelineStage]] = []

    @classmethod
    def from_config(
        cls,
        stage_configs: Sequence[StageConfig],
        stages: Dict[str, PipelineStage],
        timeout_mode: TimeoutMode = TimeoutMode.DISABLED,
        sleep: SleepFn = asyncio.sleep,
    ) -> "PipelineEngine":
        """
        Register stages in configuration order.

        Raises:
            ConfigurationError: a configured stage name has no implementation
        """
        engine = cls(timeout_mode=timeout_mode, sleep=sleep)
        for config in stage_configs:
            stage = stages.get(config.name)
            if stage is None:
                logger.error(f"Unknown stage: {config.name}")
                raise ConfigurationError(f"Unknown stage: {config.name}")
            engine.register_stage(config, stage)
        return engine

    def register_stage(self, config: StageConfig, stage: PipelineStage) -> None:
        self._stages.append((config, stage))

    @property
    def stage_names(self) -> List[str]:
        return [stage.name for _, stage in self._stages]

    async def execute(
        self,
        sentence: str,
        identity: Optional[str] = None,
        client_id: Optional[str] = None,
    ) -> RequestContext:
        context = RequestContext(sentence=sentence, identity=identity, client_id=client_id)
        start_time = time.monotonic()

        for config, stage in self._stages:
            if not config.enabled:
                logger.info(f"Skipping disabled stage: {stage.name}")
                continue

            logger.info(f"Executing stage: {stage.name}")
            try:
                await self._run_stage(config, stage, context)
            except Exception as e:
                logger.error(f"Stage {stage.name} failed: {e}")
                raise
            context.completed_stages.append(stage.name)

        duration_ms = int((time.monotonic() - start_time) * 1000)
        logger.info(f"Pipeline completed in {duration_ms}ms ({', '.join(context.completed_stages)})")
        return context

    async def _run_stage(self, config: StageConfig, stage: PipelineStage, context: RequestContext) -> None:
        if self.timeout_mode == TimeoutMode.PER_STAGE and config.timeout_secs:
            try:
                await asyncio.wait_for(
                    self._run_with_retry(config, stage, context), timeout=config.timeout_secs
                )
            except asyncio.TimeoutError as e:
                raise StageTimeoutError(stage.name, config.timeout_secs) from e
        else:
            await self._run_with_retry(config, stage, context)

    async def _run_attempt(self, config: StageConfig, stage: PipelineStage, context: RequestContext) -> None:
        if self.timeout_mode == TimeoutMode.PER_ATTEMPT and config.timeout_secs:
            try:
                await asyncio.wait_for(stage.run(context), timeout=config.timeout_secs)
            except asyncio.TimeoutError as e:
                raise StageTimeoutError(stage.name, config.timeout_secs) from e
        else:
            await stage.run(context)

    async def _run_with_retry(self, config: StageConfig, stage: PipelineStage, context: RequestContext) -> None:
        max_attempts = config.retry.max_attempts if config.retry else 1
        attempt = 0

        while True:
            attempt += 1
            try:
                await self._run_attempt(config, stage, context)
                return
            except PipelineError as e:
                if not e.transient or attempt >= max_attempts:
                    raise
                logger.warning(f"Stage {stage.name} failed on attempt {attempt}/{max_attempts}: {e}")
                await self._sleep(config.retry.delay_seconds)
