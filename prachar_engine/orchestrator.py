"""
Generation orchestrator.

Validates a request, records the project, runs the image, video and text
tasks concurrently under one shared deadline, aggregates whatever finished
in time, and records the final state.

Main entry points:
    Orchestrator.handle(prompt, user_id, platforms) -> ProjectResult
    Orchestrator.generate(prompt, user_id, platforms) -> dict
    build_orchestrator(config) -> Orchestrator
"""

import asyncio
import logging
import re
import uuid
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, Optional, Tuple

from .aggregator import combine
from .config import Config, get_config
from .endpoints import (
    BedrockTextEndpoint,
    SimulatedImageEndpoint,
    SimulatedTextEndpoint,
    SimulatedVideoEndpoint,
)
from .errors import ErrorCode, PersistenceError, ValidationError
from .keys import AssetKeyGenerator
from .models import (
    COMPONENT_ORDER,
    Component,
    GenerationError,
    Platform,
    ProjectResult,
    ProjectScope,
    TaskOutcome,
)
from .project import ProjectStateMachine
from .retry import RetryPolicy
from .storage import JsonFileMetadataStore, MetadataStore, create_object_store
from .tasks import GeneratorTask, ImageTask, TextTask, VideoTask, utc_now

USER_ID_PATTERN = re.compile(r"^[\w@-][\w.@-]*$")


def new_project_id() -> str:
    return uuid.uuid4().hex


class Orchestrator:
    """Runs one generation request end to end."""

    def __init__(
        self,
        image_task: GeneratorTask,
        video_task: GeneratorTask,
        text_task: GeneratorTask,
        metadata_store: MetadataStore,
        deadline_seconds: float = 30.0,
        config: Optional[Config] = None,
        logger: Optional[logging.Logger] = None,
        clock: Callable[[], datetime] = utc_now,
        id_factory: Callable[[], str] = new_project_id,
    ):
        self.tasks: Dict[Component, GeneratorTask] = {
            Component.IMAGE: image_task,
            Component.VIDEO: video_task,
            Component.TEXT: text_task,
        }
        self.metadata_store = metadata_store
        self.deadline_seconds = deadline_seconds
        self.config = config or get_config()
        self.logger = logger or logging.getLogger(__name__)
        self.clock = clock
        self.id_factory = id_factory

    def validate_request(
        self,
        prompt: str,
        user_id: str,
        platforms: Iterable,
    ) -> Tuple[str, frozenset]:
        """
        Check a request before anything is created.

        Returns:
            (normalized prompt, frozenset of Platform)

        Raises:
            ValidationError: On a short prompt, bad user id, or bad platforms
        """
        min_length = self.config.MIN_PROMPT_LENGTH
        prompt = (prompt or "").strip()
        if len(prompt) < min_length:
            raise ValidationError(
                f"Prompt must be at least {min_length} characters",
                details={"field": "prompt", "length": len(prompt)},
            )

        if not user_id or not USER_ID_PATTERN.match(user_id):
            raise ValidationError(
                "User id must be a non-empty token without path separators",
                details={"field": "userId"},
            )

        if isinstance(platforms, str):
            raise ValidationError(
                "Platforms must be a list of platform names",
                details={"field": "platforms", "available": Config.available_platforms()},
            )

        normalized = set()
        for platform in platforms or ():
            try:
                normalized.add(Platform(platform.lower() if isinstance(platform, str) else platform))
            except ValueError:
                raise ValidationError(
                    f"Unknown platform '{platform}'",
                    details={"field": "platforms", "available": Config.available_platforms()},
                )
        if not normalized:
            raise ValidationError(
                "At least one platform is required",
                details={"field": "platforms"},
            )

        return prompt, frozenset(normalized)

    async def handle(
        self,
        prompt: str,
        user_id: str,
        platforms: Iterable,
        business_type: Optional[str] = None,
    ) -> ProjectResult:
        """
        Generate images, videos and text for one prompt.

        Never raises on partial or total generation failure; the result's
        status reflects what succeeded.

        Raises:
            ValidationError: Before any side effect, if the request is invalid
        """
        prompt, platforms = self.validate_request(prompt, user_id, platforms)

        machine = ProjectStateMachine.create(
            self.metadata_store,
            project_id=self.id_factory(),
            user_id=user_id,
            prompt=prompt,
            platforms=platforms,
            created_at=self.clock(),
            business_type=business_type,
            logger=self.logger,
        )
        project = machine.project

        try:
            await asyncio.to_thread(machine.persist_initial)
        except PersistenceError as e:
            # Generation proceeds without a backing record
            self.logger.error(f"{e}; continuing without initial record")

        self.logger.info(
            f"Generating project {project.project_id}: user={user_id}, "
            f"platforms={sorted(p.value for p in platforms)}"
        )

        try:
            outcomes = await self.fan_out(prompt, project.scope, platforms, business_type)
        finally:
            for task in self.tasks.values():
                task.release(project.scope)
        aggregate = combine(outcomes)

        try:
            await asyncio.to_thread(
                machine.finalize,
                aggregate.status,
                aggregate.assets,
                aggregate.errors,
                self.clock(),
            )
        except PersistenceError as e:
            self.logger.error(f"{e}; returning unpersisted result")

        return ProjectResult.from_assets(
            project.project_id, aggregate.status, aggregate.assets, aggregate.errors
        )

    async def generate(
        self,
        prompt: str,
        user_id: str,
        platforms: Iterable,
        business_type: Optional[str] = None,
    ) -> Dict[str, Any]:
        """`handle`, serialized to the public response shape."""
        result = await self.handle(prompt, user_id, platforms, business_type)
        return result.to_dict()

    async def fan_out(
        self,
        prompt: str,
        scope: ProjectScope,
        platforms: frozenset,
        business_type: Optional[str],
    ) -> Dict[Component, TaskOutcome]:
        """
        Run all three tasks and wait for them or the deadline.

        Tasks still running at the deadline are cancelled without waiting
        and reported as TIMEOUT_ERROR; anything they produce later is lost.
        """
        running = {
            component: asyncio.create_task(
                self.tasks[component].run(prompt, scope, platforms, business_type),
                name=f"{component.value}-{scope.project_id}",
            )
            for component in COMPONENT_ORDER
        }

        try:
            done, _ = await asyncio.wait(running.values(), timeout=self.deadline_seconds)
        except BaseException:
            for task in running.values():
                task.cancel()
            raise

        deadline_hit_at = self.clock()
        outcomes: Dict[Component, TaskOutcome] = {}
        for component, task in running.items():
            if task in done:
                outcomes[component] = self._collect(component, task)
                continue

            task.cancel()
            self.logger.warning(
                f"{component.value} task for project {scope.project_id} missed the "
                f"{self.deadline_seconds}s deadline"
            )
            outcomes[component] = TaskOutcome.failure(
                component,
                GenerationError(
                    component=component,
                    error_code=ErrorCode.TIMEOUT_ERROR,
                    error_message=(
                        f"{component.value} generation did not finish within "
                        f"{self.deadline_seconds} seconds"
                    ),
                    timestamp=deadline_hit_at,
                ),
            )
        return outcomes

    def _collect(self, component: Component, task: asyncio.Task) -> TaskOutcome:
        error = task.exception()
        if error is None:
            return task.result()

        # Adapters capture their own failures; reaching here is a bug
        self.logger.error(
            f"{component.value} task raised instead of returning an outcome",
            exc_info=error,
        )
        return TaskOutcome.failure(
            component,
            GenerationError(
                component=component,
                error_code=ErrorCode.SYSTEM_ERROR,
                error_message=f"Internal error during {component.value} generation",
                timestamp=self.clock(),
            ),
        )


def build_orchestrator(
    config: Optional[Config] = None,
    metadata_store: Optional[MetadataStore] = None,
    logger: Optional[logging.Logger] = None,
) -> Orchestrator:
    """Wire the default stack from configuration."""
    config = config or get_config()
    object_store = create_object_store(config)
    metadata_store = metadata_store or JsonFileMetadataStore(config)
    retry = RetryPolicy(
        max_attempts=config.retry_max_attempts,
        backoff_base_ms=config.retry_backoff_base_ms,
    )
    keys = AssetKeyGenerator()
    latency = config.simulated_latency_seconds

    if config.text_backend == "bedrock":
        text_endpoint = BedrockTextEndpoint(
            model_id=config.bedrock_model_id, region=config.bedrock_region
        )
    else:
        text_endpoint = SimulatedTextEndpoint(latency_seconds=latency)

    font_path = config.font_path if config.font_path.is_file() else None
    common = dict(retry=retry, store=object_store, keys=keys, config=config, logger=logger)

    return Orchestrator(
        image_task=ImageTask(
            SimulatedImageEndpoint(font_path=font_path, latency_seconds=latency), **common
        ),
        video_task=VideoTask(SimulatedVideoEndpoint(latency_seconds=latency), **common),
        text_task=TextTask(text_endpoint, **common),
        metadata_store=metadata_store,
        deadline_seconds=config.deadline_seconds,
        config=config,
        logger=logger,
    )
