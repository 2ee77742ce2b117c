"""Tests for the image, video and text task adapters."""

import random

import pytest
from PIL import Image

from conftest import DiskFullOnce, ScriptedEndpoint, make_png, policy_rejection, rate_limited
from prachar_engine.errors import ErrorCode
from prachar_engine.keys import parent_key_for
from prachar_engine.models import AssetKind, Component, Platform, ProjectScope
from prachar_engine.tasks import ImageTask, TextTask, VideoTask

SCOPE = ProjectScope(user_id="shop-42", project_id="proj-1")
INSTAGRAM = {Platform.INSTAGRAM}


@pytest.fixture
def task_kwargs(retry, object_store, keys, config):
    return dict(retry=retry, store=object_store, keys=keys, config=config)


# =============================================================================
# Image
# =============================================================================

@pytest.mark.asyncio
async def test_image_task_generates_three_instagram_images(image_endpoint, task_kwargs, config):
    task = ImageTask(image_endpoint, **task_kwargs)

    outcome = await task.run("Diwali Sale", SCOPE, INSTAGRAM)

    assert outcome.ok
    assert outcome.component is Component.IMAGE
    assert len(outcome.assets) == 3
    for asset in outcome.assets:
        assert asset.kind is AssetKind.IMAGE
        assert asset.platform is Platform.INSTAGRAM
        assert (asset.width, asset.height) in {(1080, 1080), (1080, 1350)}
        assert asset.is_edited is False
        assert parent_key_for(asset.thumbnail_key) == asset.storage_key
        assert (config.output_dir / asset.storage_key).is_file()
        assert (config.output_dir / asset.thumbnail_key).is_file()

        with Image.open(config.output_dir / asset.thumbnail_key) as thumb:
            assert thumb.size == tuple(config.THUMBNAIL_SIZE)


@pytest.mark.asyncio
async def test_image_task_uses_linkedin_dimensions(image_endpoint, task_kwargs):
    task = ImageTask(image_endpoint, **task_kwargs)

    outcome = await task.run("Quarterly Results", SCOPE, {Platform.LINKEDIN})

    assert outcome.ok
    assert {(a.width, a.height) for a in outcome.assets} == {(1200, 627)}


@pytest.mark.asyncio
async def test_image_task_fits_wrong_sized_output_to_platform(task_kwargs, config):
    endpoint = ScriptedEndpoint(default={"image": make_png(640, 480), "format": "png"})
    task = ImageTask(endpoint, **task_kwargs)

    outcome = await task.run("Diwali Sale", SCOPE, {Platform.LINKEDIN})

    assert outcome.ok
    asset = outcome.assets[0]
    with Image.open(config.output_dir / asset.storage_key) as stored:
        assert stored.size == (1200, 627)


@pytest.mark.asyncio
async def test_image_task_empty_payload_is_generation_error(task_kwargs):
    endpoint = ScriptedEndpoint(default={"image": b"", "format": "png"})
    task = ImageTask(endpoint, **task_kwargs)

    outcome = await task.run("Diwali Sale", SCOPE, INSTAGRAM)

    assert not outcome.ok
    assert outcome.assets == ()
    assert outcome.error.component is Component.IMAGE
    assert outcome.error.error_code is ErrorCode.GENERATION_ERROR


@pytest.mark.asyncio
async def test_image_task_retries_then_succeeds(task_kwargs, sleep):
    endpoint = ScriptedEndpoint(
        script=[rate_limited()],
        default=lambda payload: {"image": make_png(payload["width"], payload["height"])},
    )
    task = ImageTask(endpoint, **task_kwargs)

    outcome = await task.run("Diwali Sale", SCOPE, INSTAGRAM)

    assert outcome.ok
    assert endpoint.calls == 4
    assert sleep.delays == [0.1]


# =============================================================================
# Video
# =============================================================================

@pytest.mark.asyncio
async def test_video_task_produces_duration_in_range(video_endpoint, task_kwargs, config):
    task = VideoTask(video_endpoint, rng=random.Random(7), **task_kwargs)

    outcome = await task.run("Diwali Sale", SCOPE, INSTAGRAM)

    assert outcome.ok
    assert len(outcome.assets) == 1
    video = outcome.assets[0]
    assert video.kind is AssetKind.VIDEO
    assert 3 <= video.duration_seconds <= 10
    assert video.format == "gif"
    assert video.storage_key.endswith(".gif")
    assert (config.output_dir / video.storage_key).read_bytes() == b"GIF89a-fake-video-bytes"


def test_sampled_durations_stay_in_range(video_endpoint, task_kwargs):
    task = VideoTask(video_endpoint, rng=random.Random(1), **task_kwargs)

    samples = [task.sample_duration() for _ in range(1000)]

    assert min(samples) >= 3
    assert max(samples) <= 10


@pytest.mark.asyncio
async def test_video_task_rejects_out_of_range_duration(task_kwargs):
    endpoint = ScriptedEndpoint(
        default={"video": b"data", "duration_seconds": 42, "format": "mp4"}
    )
    task = VideoTask(endpoint, **task_kwargs)

    outcome = await task.run("Diwali Sale", SCOPE, INSTAGRAM)

    assert not outcome.ok
    assert outcome.error.error_code is ErrorCode.GENERATION_ERROR


@pytest.mark.asyncio
async def test_video_task_exhausted_retries_is_service_error(task_kwargs, sleep):
    endpoint = ScriptedEndpoint(default=rate_limited())
    task = VideoTask(endpoint, **task_kwargs)

    outcome = await task.run("Diwali Sale", SCOPE, INSTAGRAM)

    assert not outcome.ok
    assert outcome.error.component is Component.VIDEO
    assert outcome.error.error_code is ErrorCode.SERVICE_ERROR
    assert "3 attempts" in outcome.error.error_message
    assert endpoint.calls == 3
    assert sleep.delays == [0.1, 0.2]


@pytest.mark.asyncio
async def test_video_task_terminal_error_is_not_retried(task_kwargs, sleep):
    endpoint = ScriptedEndpoint(default=policy_rejection())
    task = VideoTask(endpoint, **task_kwargs)

    outcome = await task.run("Diwali Sale", SCOPE, INSTAGRAM)

    assert outcome.error.error_code is ErrorCode.SERVICE_ERROR
    assert endpoint.calls == 1
    assert sleep.delays == []


@pytest.mark.asyncio
async def test_unexpected_exception_becomes_system_error(task_kwargs):
    # A non-dict response is a bug in the endpoint
    endpoint = ScriptedEndpoint(default=lambda payload: None)
    task = VideoTask(endpoint, **task_kwargs)

    outcome = await task.run("Diwali Sale", SCOPE, INSTAGRAM)

    assert not outcome.ok
    assert outcome.error.error_code is ErrorCode.SYSTEM_ERROR


@pytest.mark.asyncio
async def test_store_overwrite_is_reported_not_raised(video_endpoint, task_kwargs, object_store):
    task = VideoTask(
        video_endpoint,
        **{**task_kwargs, "keys": _FixedKeys()},
    )
    object_store.put(_FixedKeys.KEY, b"existing", "image/gif")

    outcome = await task.run("Diwali Sale", SCOPE, INSTAGRAM)

    assert not outcome.ok
    assert outcome.error.error_code is ErrorCode.SERVICE_ERROR
    assert (object_store.root / _FixedKeys.KEY).read_bytes() == b"existing"


@pytest.mark.asyncio
async def test_store_write_retried_after_disk_full(video_endpoint, task_kwargs, config, sleep, monkeypatch):
    monkeypatch.setattr("prachar_engine.storage.open", DiskFullOnce(), raising=False)
    task = VideoTask(video_endpoint, **task_kwargs)

    outcome = await task.run("Diwali Sale", SCOPE, INSTAGRAM)

    assert outcome.ok
    video = outcome.assets[0]
    assert (config.output_dir / video.storage_key).read_bytes() == b"GIF89a-fake-video-bytes"
    assert sleep.delays == [0.1]


class _FixedKeys:
    KEY = "users/shop-42/projects/proj-1/video/fixed.gif"

    def next_key(self, scope, asset_kind, index, extension):
        return self.KEY

    def thumbnail_key(self, parent_key):
        return parent_key + "_thumb"

    def next_asset_id(self, asset_kind):
        return "fixed"


# =============================================================================
# Text
# =============================================================================

@pytest.mark.asyncio
async def test_text_task_builds_captions_and_hashtags(text_endpoint, task_kwargs):
    task = TextTask(text_endpoint, **task_kwargs)

    outcome = await task.run("Diwali Sale", SCOPE, {Platform.INSTAGRAM, Platform.LINKEDIN})

    assert outcome.ok
    by_kind = {}
    for asset in outcome.assets:
        by_kind.setdefault((asset.kind, asset.platform), []).append(asset)

    insta_captions = by_kind[(AssetKind.CAPTION, Platform.INSTAGRAM)]
    linkedin_captions = by_kind[(AssetKind.CAPTION, Platform.LINKEDIN)]
    assert len(insta_captions) >= 3
    assert len(linkedin_captions) >= 3
    assert all(c.character_count <= 2200 for c in insta_captions)
    assert all(c.character_count <= 3000 for c in linkedin_captions)
    assert all(c.character_count == len(c.content) for c in insta_captions)

    (insta_tags,) = by_kind[(AssetKind.HASHTAGS, Platform.INSTAGRAM)]
    (linkedin_tags,) = by_kind[(AssetKind.HASHTAGS, Platform.LINKEDIN)]
    assert 5 <= len(insta_tags.tags) <= 10
    assert 3 <= len(linkedin_tags.tags) <= 5
    assert all(t.startswith("#") for t in insta_tags.tags + linkedin_tags.tags)


@pytest.mark.asyncio
async def test_text_task_sends_platform_constraints(text_endpoint, task_kwargs):
    endpoint = ScriptedEndpoint(
        default=lambda payload: {"text": "a\n---\nb\n---\nc\n---\n#x #y #z #w #v"}
    )
    task = TextTask(endpoint, **task_kwargs)

    await task.run("Diwali Sale", SCOPE, INSTAGRAM, business_type="Restaurant")

    (payload,) = endpoint.payloads
    assert payload["caption_max_chars"] == 2200
    assert (payload["hashtag_min"], payload["hashtag_max"]) == (5, 10)
    assert payload["business_type"] == "Restaurant"


@pytest.mark.asyncio
async def test_text_task_without_hashtags_fails(task_kwargs):
    endpoint = ScriptedEndpoint(default={"text": "one\n---\ntwo\n---\nthree"})
    task = TextTask(endpoint, **task_kwargs)

    outcome = await task.run("Diwali Sale", SCOPE, INSTAGRAM)

    assert not outcome.ok
    assert outcome.error.component is Component.TEXT
    assert outcome.error.error_code is ErrorCode.GENERATION_ERROR


@pytest.mark.asyncio
async def test_linkedin_text_with_too_few_hashtags_fails(task_kwargs):
    endpoint = ScriptedEndpoint(default={"text": "one\n---\ntwo\n---\nthree\n---\n#Diwali #Sale"})
    task = TextTask(endpoint, **task_kwargs)

    outcome = await task.run("Diwali Sale", SCOPE, {Platform.LINKEDIN})

    assert not outcome.ok
    assert outcome.error.component is Component.TEXT
    assert outcome.error.error_code is ErrorCode.GENERATION_ERROR
    assert "at least 3 hashtags" in outcome.error.error_message
