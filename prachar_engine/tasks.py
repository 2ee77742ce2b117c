"""
Generator task adapters.

Each adapter turns the uniform `run(prompt, scope, platforms)` call into
requests for one generation endpoint, stores any binary output, and returns
a TaskOutcome. `run` never raises: every failure comes back as data so one
component cannot take down its siblings. Cancellation is the exception and
propagates, so the orchestrator can abandon a task at the deadline.

Main entry points:
    ImageTask(...).run(prompt, scope, platforms) -> TaskOutcome
    VideoTask(...).run(prompt, scope, platforms) -> TaskOutcome
    TextTask(...).run(prompt, scope, platforms) -> TaskOutcome
"""

import abc
import asyncio
import logging
import random
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional

from .config import Config, get_config
from .endpoints import GenerationEndpoint
from .errors import ErrorCode, GenerationFailure, ServiceError
from .imaging import crop_center, decode_image, make_thumbnail, to_png_bytes
from .keys import AssetKeyGenerator
from .models import (
    Asset,
    AssetKind,
    CaptionAsset,
    Component,
    GenerationError,
    HashtagAsset,
    ImageAsset,
    Platform,
    ProjectScope,
    TaskOutcome,
    VideoAsset,
)
from .retry import RetryPolicy, classify_service_error
from .storage import ObjectStore
from .text_parser import parse_campaign_text

CONTENT_TYPES = {
    "png": "image/png",
    "mp4": "video/mp4",
    "gif": "image/gif",
}


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


async def gather_or_cancel(coros: Iterable) -> List[Any]:
    """Run coroutines concurrently; on the first failure cancel the rest."""
    tasks = [asyncio.ensure_future(c) for c in coros]
    try:
        return await asyncio.gather(*tasks)
    except BaseException:
        for task in tasks:
            task.cancel()
        raise


class GeneratorTask(abc.ABC):
    """Common plumbing: retries, storage writes, failure capture."""

    component: Component

    def __init__(
        self,
        endpoint: GenerationEndpoint,
        retry: Optional[RetryPolicy] = None,
        store: Optional[ObjectStore] = None,
        keys: Optional[AssetKeyGenerator] = None,
        config: Optional[Config] = None,
        logger: Optional[logging.Logger] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.endpoint = endpoint
        self.retry = retry or RetryPolicy()
        self.store = store
        self.keys = keys or AssetKeyGenerator()
        self.config = config or get_config()
        self.logger = logger or logging.getLogger(__name__)
        self.clock = clock

    async def run(
        self,
        prompt: str,
        scope: ProjectScope,
        platforms: Iterable[Platform],
        business_type: Optional[str] = None,
    ) -> TaskOutcome:
        """
        Generate this component's assets for every platform.

        Returns:
            TaskOutcome with the assets, or with a GenerationError
        """
        ordered = sorted(platforms, key=lambda p: p.value)
        try:
            assets = await self.generate(prompt, scope, ordered, business_type)
        except ServiceError as e:
            return self._failed(ErrorCode.SERVICE_ERROR, e.message, scope)
        except GenerationFailure as e:
            return self._failed(ErrorCode.GENERATION_ERROR, e.message, scope)
        except Exception as e:
            self.logger.exception(
                f"Unexpected {self.component.value} failure for project {scope.project_id}"
            )
            return self._failed(
                ErrorCode.SYSTEM_ERROR,
                f"Internal error during {self.component.value} generation: {type(e).__name__}",
                scope,
            )

        self.logger.info(
            f"{self.component.value} generation done: project={scope.project_id}, "
            f"assets={len(assets)}"
        )
        return TaskOutcome.success(self.component, assets)

    @abc.abstractmethod
    async def generate(
        self,
        prompt: str,
        scope: ProjectScope,
        platforms: List[Platform],
        business_type: Optional[str],
    ) -> List[Asset]:
        """Produce assets or raise ServiceError / GenerationFailure."""
        pass

    def release(self, scope: ProjectScope) -> None:
        """Drop per-project key state once the request is over."""
        self.keys.release(scope)

    def _failed(self, code: ErrorCode, message: str, scope: ProjectScope) -> TaskOutcome:
        self.logger.warning(
            f"{self.component.value} generation failed: project={scope.project_id}, "
            f"code={code.value}, message={message}"
        )
        error = GenerationError(
            component=self.component,
            error_code=code,
            error_message=message,
            timestamp=self.clock(),
        )
        return TaskOutcome.failure(self.component, error)

    async def _with_retry(self, operation, what: str):
        result = await self.retry.execute(operation, classify_service_error)
        if result.ok:
            return result.value

        error = result.error
        if result.exhausted:
            raise ServiceError(
                f"{what} failed after {result.attempts} attempts: {error}",
                retryable=True,
            ) from error
        # Terminal: a ServiceError is reported as such, anything else as internal
        raise error

    async def invoke_endpoint(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        return await self._with_retry(
            lambda: self.endpoint.invoke(payload),
            f"{self.component.value} endpoint",
        )

    async def put_object(self, key: str, data: bytes, extension: str) -> None:
        if self.store is None:
            raise ServiceError("No object store configured", retryable=False)
        content_type = CONTENT_TYPES.get(extension, "application/octet-stream")
        await self._with_retry(
            lambda: asyncio.to_thread(self.store.put, key, data, content_type),
            f"store write {key}",
        )


class ImageTask(GeneratorTask):
    """Images at platform dimensions, each with a stored thumbnail."""

    component = Component.IMAGE

    async def generate(self, prompt, scope, platforms, business_type):
        jobs = []
        for platform in platforms:
            sizes = self.config.get_platform(platform.value)["image_sizes"]
            for i in range(self.config.IMAGES_PER_PLATFORM):
                jobs.append(
                    self._generate_one(prompt, scope, platform, i + 1, tuple(sizes[i % len(sizes)]))
                )
        return await gather_or_cancel(jobs)

    async def _generate_one(self, prompt, scope, platform, index, size) -> ImageAsset:
        payload = {
            "prompt": prompt,
            "platform": platform.value,
            "width": size[0],
            "height": size[1],
            "variant": index,
        }
        response = await self.invoke_endpoint(payload)
        image_bytes, thumb_bytes, (width, height) = await asyncio.to_thread(
            self._prepare, response.get("image"), size
        )

        key = self.keys.next_key(scope, AssetKind.IMAGE, index, "png")
        thumb_key = self.keys.thumbnail_key(key)
        await self.put_object(key, image_bytes, "png")
        await self.put_object(thumb_key, thumb_bytes, "png")

        return ImageAsset(
            asset_id=self.keys.next_asset_id(AssetKind.IMAGE),
            platform=platform,
            created_at=self.clock(),
            storage_key=key,
            thumbnail_key=thumb_key,
            width=width,
            height=height,
        )

    def _prepare(self, data: Optional[bytes], size):
        img = decode_image(data)
        if img.size != size:
            # Endpoint ignored the requested size; fit it to the platform
            img = crop_center(img.convert("RGB"), size)
            data = to_png_bytes(img)
        elif img.format != "PNG":
            data = to_png_bytes(img)
        thumb = make_thumbnail(img, tuple(self.config.THUMBNAIL_SIZE))
        return data, thumb, img.size


class VideoTask(GeneratorTask):
    """Short clips, duration sampled from the allowed range."""

    component = Component.VIDEO

    def __init__(self, *args, rng: Optional[random.Random] = None, video_format: Optional[str] = None, **kwargs):
        super().__init__(*args, **kwargs)
        self.rng = rng or random.Random()
        self.video_format = video_format or self.config.video_format

    def sample_duration(self) -> float:
        low, high = self.config.VIDEO_DURATION_RANGE
        return round(self.rng.uniform(low, high), 1)

    async def generate(self, prompt, scope, platforms, business_type):
        jobs = []
        for platform in platforms:
            for i in range(self.config.VIDEOS_PER_PLATFORM):
                jobs.append(self._generate_one(prompt, scope, platform, i + 1))
        return await gather_or_cancel(jobs)

    async def _generate_one(self, prompt, scope, platform, index) -> VideoAsset:
        payload = {
            "prompt": prompt,
            "platform": platform.value,
            "duration_seconds": self.sample_duration(),
            "format": self.video_format,
        }
        response = await self.invoke_endpoint(payload)

        data = response.get("video")
        if not data:
            raise GenerationFailure("Video endpoint returned an empty payload")

        duration = response.get("duration_seconds", payload["duration_seconds"])
        low, high = self.config.VIDEO_DURATION_RANGE
        if not low <= duration <= high:
            raise GenerationFailure(
                f"Video duration {duration}s outside [{low}, {high}]"
            )

        video_format = response.get("format", self.video_format)
        if video_format not in self.config.VIDEO_FORMATS:
            raise GenerationFailure(f"Unsupported video format '{video_format}'")

        key = self.keys.next_key(scope, AssetKind.VIDEO, index, video_format)
        await self.put_object(key, data, video_format)

        return VideoAsset(
            asset_id=self.keys.next_asset_id(AssetKind.VIDEO),
            platform=platform,
            created_at=self.clock(),
            storage_key=key,
            duration_seconds=duration,
            format=video_format,
        )


class TextTask(GeneratorTask):
    """Captions and one hashtag set per platform. Nothing is stored."""

    component = Component.TEXT

    async def generate(self, prompt, scope, platforms, business_type):
        per_platform = await gather_or_cancel(
            self._generate_for(prompt, platform, business_type) for platform in platforms
        )
        return [asset for assets in per_platform for asset in assets]

    async def _generate_for(self, prompt, platform, business_type) -> List[Asset]:
        constraints = self.config.get_platform(platform.value)
        min_tags, max_tags = constraints["hashtag_range"]
        payload = {
            "prompt": prompt,
            "platform": platform.value,
            "business_type": business_type,
            "caption_count": self.config.CAPTIONS_PER_PLATFORM,
            "caption_max_chars": constraints["caption_max_chars"],
            "hashtag_min": min_tags,
            "hashtag_max": max_tags,
        }
        response = await self.invoke_endpoint(payload)

        parsed = parse_campaign_text(
            response.get("text", ""),
            caption_max_chars=constraints["caption_max_chars"],
            min_captions=self.config.CAPTIONS_PER_PLATFORM,
            hashtag_range=(min_tags, max_tags),
        )

        now = self.clock()
        assets: List[Asset] = [
            CaptionAsset(
                asset_id=self.keys.next_asset_id(AssetKind.CAPTION),
                platform=platform,
                created_at=now,
                content=caption,
            )
            for caption in parsed.captions
        ]
        assets.append(
            HashtagAsset(
                asset_id=self.keys.next_asset_id(AssetKind.HASHTAGS),
                platform=platform,
                created_at=now,
                tags=parsed.hashtags,
            )
        )
        return assets
