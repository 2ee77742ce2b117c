"""Shared fixtures and fakes for the engine tests."""

import asyncio
import builtins
import errno
import io
from typing import Any, Dict, List

import pytest
from PIL import Image

from prachar_engine.config import Config
from prachar_engine.endpoints import GenerationEndpoint, SimulatedImageEndpoint, SimulatedTextEndpoint
from prachar_engine.errors import ServiceError, StorageError
from prachar_engine.keys import AssetKeyGenerator
from prachar_engine.orchestrator import Orchestrator
from prachar_engine.retry import RetryPolicy
from prachar_engine.storage import InMemoryMetadataStore, LocalObjectStore
from prachar_engine.tasks import ImageTask, TextTask, VideoTask


def make_png(width: int, height: int, color=(200, 60, 30)) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", (width, height), color).save(buffer, format="PNG")
    return buffer.getvalue()


def rate_limited() -> ServiceError:
    return ServiceError("429 Too Many Requests", retryable=True, service_code="RateLimited")


def policy_rejection() -> ServiceError:
    return ServiceError("Blocked by content policy", retryable=False, service_code="ContentPolicy")


class ScriptedEndpoint(GenerationEndpoint):
    """
    Plays back a script of responses, one per call.

    Entries are dicts (returned), exceptions (raised) or callables taking
    the payload. When the script runs out, `default` is used.
    """

    def __init__(self, script=None, default=None):
        self.script = list(script or [])
        self.default = default
        self.payloads: List[Dict[str, Any]] = []

    @property
    def calls(self) -> int:
        return len(self.payloads)

    async def invoke(self, payload):
        self.payloads.append(payload)
        entry = self.script.pop(0) if self.script else self.default
        if isinstance(entry, BaseException):
            raise entry
        if callable(entry):
            return entry(payload)
        return entry


class HangingEndpoint(GenerationEndpoint):
    """Never answers; records whether it was cancelled."""

    def __init__(self):
        self.calls = 0
        self.cancelled = False

    async def invoke(self, payload):
        self.calls += 1
        try:
            await asyncio.Event().wait()
        except asyncio.CancelledError:
            self.cancelled = True
            raise


class SlowEndpoint(GenerationEndpoint):
    """Delegates to another endpoint after a delay."""

    def __init__(self, inner: GenerationEndpoint, delay: float):
        self.inner = inner
        self.delay = delay

    async def invoke(self, payload):
        await asyncio.sleep(self.delay)
        return await self.inner.invoke(payload)


class RecordingSleep:
    """Stands in for asyncio.sleep so retry tests do not wait."""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


class FailingMetadataStore(InMemoryMetadataStore):
    def __init__(self, fail_put=False, fail_update=False):
        super().__init__()
        self.fail_put = fail_put
        self.fail_update = fail_update
        self.put_calls = 0
        self.update_calls = 0

    def put(self, record):
        self.put_calls += 1
        if self.fail_put:
            raise StorageError("metadata store unavailable")
        super().put(record)

    def update(self, project_id, fields):
        self.update_calls += 1
        if self.fail_update:
            raise StorageError("metadata store unavailable")
        super().update(project_id, fields)


class PartialWriteFile:
    def __init__(self, handle):
        self.handle = handle

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.handle.close()

    def write(self, data):
        self.handle.write(data[:4])
        raise OSError(errno.ENOSPC, "No space left on device")


class DiskFullOnce:
    """Stands in for `open`: the first exclusive write stores a few bytes, then fails."""

    def __init__(self):
        self.failed = False

    def __call__(self, path, mode="r", *args, **kwargs):
        handle = builtins.open(path, mode, *args, **kwargs)
        if self.failed or "x" not in mode:
            return handle
        self.failed = True
        return PartialWriteFile(handle)


def video_response(payload):
    return {
        "video": b"GIF89a-fake-video-bytes",
        "duration_seconds": payload["duration_seconds"],
        "format": payload["format"],
    }


@pytest.fixture
def config(tmp_path):
    return Config(
        base_dir=tmp_path,
        output_dir=tmp_path / "output",
        public_base_url="http://testserver",
        video_format="gif",
    )


@pytest.fixture
def object_store(config):
    return LocalObjectStore(config)


@pytest.fixture
def metadata_store():
    return InMemoryMetadataStore()


@pytest.fixture
def sleep():
    return RecordingSleep()


@pytest.fixture
def retry(sleep):
    return RetryPolicy(max_attempts=3, backoff_base_ms=100, sleep=sleep)


@pytest.fixture
def keys():
    return AssetKeyGenerator()


@pytest.fixture
def image_endpoint():
    return SimulatedImageEndpoint()


@pytest.fixture
def video_endpoint():
    return ScriptedEndpoint(default=video_response)


@pytest.fixture
def text_endpoint():
    return SimulatedTextEndpoint()


@pytest.fixture
def make_orchestrator(config, object_store, metadata_store, retry, keys):
    """Build an orchestrator around the given endpoints."""

    def factory(image_endpoint, video_endpoint, text_endpoint, store=None, deadline_seconds=5.0):
        common = dict(retry=retry, store=object_store, keys=keys, config=config)
        return Orchestrator(
            image_task=ImageTask(image_endpoint, **common),
            video_task=VideoTask(video_endpoint, **common),
            text_task=TextTask(text_endpoint, **common),
            metadata_store=store if store is not None else metadata_store,
            deadline_seconds=deadline_seconds,
            config=config,
        )

    return factory
