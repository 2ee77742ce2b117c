"""
AI generation endpoints.

Each endpoint takes a request payload dict and returns a response payload
dict, raising ServiceError for failures the retry policy can classify.

Payload shapes:
    image  {prompt, platform, width, height, variant}
           -> {image: bytes, format: "png"}
    video  {prompt, platform, duration_seconds, format}
           -> {video: bytes, duration_seconds, format}
    text   {prompt, platform, business_type, caption_count,
            caption_max_chars, hashtag_min, hashtag_max}
           -> {text: str}

The simulated endpoints render real media locally so the whole pipeline can
run without cloud credentials. BedrockTextEndpoint calls AWS Bedrock.
"""

import abc
import asyncio
import colorsys
import io
import json
import logging
import os
import re
import tempfile
import textwrap
from pathlib import Path
from typing import Any, Dict, List, Optional

import boto3
import numpy as np
from botocore.exceptions import BotoCoreError, ClientError
from moviepy import ImageSequenceClip
from PIL import Image, ImageDraw, ImageFont

from .errors import ServiceError

logger = logging.getLogger(__name__)

# Image rendering constants
OVERLAY_OPACITY: int = int(255 * 0.44)
FONT_SIZE: int = 64
PADDING: int = 80

# Simulated video frames are rendered small; platforms re-encode anyway
VIDEO_FRAME_SIZE = (540, 540)
VIDEO_FPS = 8

# Bedrock error codes worth another attempt
RETRYABLE_BEDROCK_CODES = {
    "ThrottlingException",
    "ServiceUnavailableException",
    "ModelTimeoutException",
    "InternalServerException",
    "ModelNotReadyException",
}


class GenerationEndpoint(abc.ABC):
    """Abstract base class for generation endpoints."""

    @abc.abstractmethod
    async def invoke(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """
        Run one generation request.

        Raises:
            ServiceError: With `retryable` set according to the failure
        """
        pass


def load_font(font_path: Optional[Path], size: int) -> ImageFont.ImageFont:
    """Load the configured font, falling back to Pillow's default."""
    if font_path is not None:
        try:
            return ImageFont.truetype(str(font_path), size)
        except OSError:
            pass
    return ImageFont.load_default()


def _prompt_hue(prompt: str, variant: int) -> float:
    return ((sum(map(ord, prompt)) + variant * 97) % 360) / 360


def render_campaign_image(
    prompt: str,
    size: tuple,
    variant: int = 0,
    font_path: Optional[Path] = None,
) -> Image.Image:
    """
    Render a campaign visual: vertical gradient, dark overlay, centered prompt.

    Args:
        prompt: Text drawn on the image
        size: (width, height) of the canvas
        variant: Shifts the palette so sibling images differ
        font_path: Optional TrueType font

    Returns:
        PIL Image (RGB)
    """
    width, height = size
    hue = _prompt_hue(prompt, variant)
    top = np.array(colorsys.hsv_to_rgb(hue, 0.65, 0.95)) * 255
    bottom = np.array(colorsys.hsv_to_rgb((hue + 0.12) % 1.0, 0.8, 0.55)) * 255

    ramp = np.linspace(0.0, 1.0, height)[:, None, None]
    gradient = (top * (1 - ramp) + bottom * ramp).astype(np.uint8)
    canvas = Image.fromarray(np.repeat(gradient, width, axis=1))

    # Apply semi-transparent black overlay
    overlay = Image.new("RGBA", size, (0, 0, 0, OVERLAY_OPACITY))
    canvas = Image.alpha_composite(canvas.convert("RGBA"), overlay)

    draw = ImageDraw.Draw(canvas)
    font = load_font(font_path, FONT_SIZE)

    chars_per_line = max(10, int((width - PADDING * 2) / (FONT_SIZE * 0.6)))
    wrapped_text = textwrap.fill(prompt, width=chars_per_line)

    bbox = draw.textbbox((0, 0), wrapped_text, font=font)
    text_w = bbox[2] - bbox[0]
    text_h = bbox[3] - bbox[1]

    x = (width - text_w) / 2
    y = (height - text_h) / 2
    draw.text((x, y), wrapped_text, font=font, fill="white", align="center")

    return canvas.convert("RGB")


def render_video_frames(prompt: str, duration_seconds: float, fps: int = VIDEO_FPS) -> List[np.ndarray]:
    """Render frames of a sweeping light bar over the campaign palette."""
    width, height = VIDEO_FRAME_SIZE
    base = np.asarray(render_campaign_image(prompt, VIDEO_FRAME_SIZE), dtype=np.float32)
    frame_count = max(1, int(round(duration_seconds * fps)))
    bar_width = width // 8

    frames = []
    for i in range(frame_count):
        frame = base.copy()
        x = int((i / frame_count) * (width + bar_width)) - bar_width
        left, right = max(0, x), min(width, x + bar_width)
        if left < right:
            frame[:, left:right] = frame[:, left:right] * 0.5 + 127
        frames.append(frame.astype(np.uint8))
    return frames


def encode_gif(frames: List[np.ndarray], fps: int = VIDEO_FPS) -> bytes:
    images = [Image.fromarray(f) for f in frames]
    buffer = io.BytesIO()
    images[0].save(
        buffer,
        format="GIF",
        save_all=True,
        append_images=images[1:],
        duration=int(1000 / fps),
        loop=0,
    )
    return buffer.getvalue()


def encode_mp4(frames: List[np.ndarray], fps: int = VIDEO_FPS) -> bytes:
    with tempfile.NamedTemporaryFile(suffix=".mp4", delete=False) as tmp:
        temp_video_path = tmp.name
    try:
        clip = ImageSequenceClip(frames, fps=fps)
        clip.write_videofile(
            temp_video_path,
            fps=fps,
            codec="libx264",
            audio=False,
            preset="ultrafast",
            threads=1,
            logger=None,  # Suppress moviepy progress output
        )
        clip.close()
        return Path(temp_video_path).read_bytes()
    finally:
        if os.path.exists(temp_video_path):
            os.unlink(temp_video_path)


class SimulatedImageEndpoint(GenerationEndpoint):
    """Renders images locally with Pillow."""

    def __init__(self, font_path: Optional[Path] = None, latency_seconds: float = 0.0):
        self.font_path = font_path
        self.latency_seconds = latency_seconds

    async def invoke(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        if self.latency_seconds:
            await asyncio.sleep(self.latency_seconds)

        size = (payload["width"], payload["height"])
        img = await asyncio.to_thread(
            render_campaign_image,
            payload["prompt"],
            size,
            payload.get("variant", 0),
            self.font_path,
        )
        buffer = io.BytesIO()
        img.save(buffer, format="PNG")
        return {"image": buffer.getvalue(), "format": "png"}


class SimulatedVideoEndpoint(GenerationEndpoint):
    """Renders short looping clips: gif with Pillow, mp4 with moviepy."""

    def __init__(self, latency_seconds: float = 0.0):
        self.latency_seconds = latency_seconds

    async def invoke(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        if self.latency_seconds:
            await asyncio.sleep(self.latency_seconds)

        video_format = payload.get("format", "mp4")
        if video_format not in ("mp4", "gif"):
            raise ServiceError(
                f"Unsupported video format '{video_format}'",
                retryable=False,
                service_code="InvalidInput",
            )

        duration = payload["duration_seconds"]
        frames = await asyncio.to_thread(render_video_frames, payload["prompt"], duration)
        encoder = encode_gif if video_format == "gif" else encode_mp4
        data = await asyncio.to_thread(encoder, frames)
        return {"video": data, "duration_seconds": duration, "format": video_format}


# Hinglish marketing copy, one template per caption slot
HOOKS = [
    "Arrey wah! {topic} is here! 😲 Don't miss out!",
    "Suno suno! {topic} shuru ho gaya hai! 🎉",
    "Bas kuch hi din! {topic} ka maza lijiye! ✨",
    "Yeh {topic} aapke liye hi hai! 💥",
    "Tyohaar ka mood, {topic} ka jadoo! 🪔",
]

OFFERS = [
    "Flat 20% OFF only for today! 🛍️✨",
    "Buy 1 Get 1 FREE on selected items! 🎁",
    "Extra 10% cashback on UPI payments! 💸",
    "Free delivery on every order above ₹499! 🚚",
    "Special combo deals for the whole parivaar! 👨‍👩‍👧",
]

CALLS_TO_ACTION = [
    "Jaldi aao! Visit us before stocks run out! 🏃‍♂️💨",
    "Abhi order karo, baad mein mat pachtana! 📲",
    "DM us now to book your slot! 💬",
    "Tag your dost who needs this! 👇",
    "Link in bio, shop karo abhi! 🔗",
]

BASE_HASHTAGS = [
    "#IndianBusiness",
    "#LocalShop",
    "#SpecialOffer",
    "#VocalForLocal",
    "#ShopLocal",
    "#FestiveSeason",
    "#MadeInIndia",
    "#DealsOfTheDay",
    "#SmallBusiness",
    "#BharatKaBazaar",
]

PLATFORM_HASHTAGS = {
    "instagram": ["#InstaShop", "#ReelsIndia"],
    "linkedin": ["#Marketing", "#Entrepreneurship"],
}


def hashtag_for(text: str) -> Optional[str]:
    """Turn free text into a hashtag ("Diwali Sale" -> "#DiwaliSale")."""
    cleaned = re.sub(r"\W+", "", text.title(), flags=re.UNICODE)
    return f"#{cleaned}" if cleaned else None


def compose_campaign_text(
    topic: str,
    platform: str,
    business_type: Optional[str],
    caption_count: int,
    hashtag_count: int,
) -> str:
    """
    Compose simulated campaign copy.

    Captions are separated by lines containing only '---'; the final block
    holds the hashtags.
    """
    owner = f"{business_type} Owner" if business_type else "Dukaandaar"
    blocks = []
    for i in range(caption_count):
        hook = HOOKS[i % len(HOOKS)].format(topic=topic)
        offer = OFFERS[i % len(OFFERS)]
        cta = CALLS_TO_ACTION[i % len(CALLS_TO_ACTION)]
        blocks.append(
            f"📢 Namaste {owner}! 🚀\n\n"
            f"✨ The Hook:\n\"{hook}\"\n\n"
            f"🎁 The Offer:\n\"{offer}\"\n\n"
            f"🔥 Call to Action:\n\"{cta}\""
        )

    tags = []
    for tag in [hashtag_for(topic)] + PLATFORM_HASHTAGS.get(platform, []) + BASE_HASHTAGS:
        if tag and tag not in tags:
            tags.append(tag)
    blocks.append(" ".join(tags[:hashtag_count]))

    return "\n---\n".join(blocks)


class SimulatedTextEndpoint(GenerationEndpoint):
    """Returns canned Hinglish campaign copy."""

    def __init__(self, latency_seconds: float = 0.0):
        self.latency_seconds = latency_seconds

    async def invoke(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        if self.latency_seconds:
            await asyncio.sleep(self.latency_seconds)

        text = compose_campaign_text(
            topic=payload["prompt"],
            platform=payload["platform"],
            business_type=payload.get("business_type"),
            caption_count=payload["caption_count"],
            hashtag_count=payload["hashtag_max"],
        )
        return {"text": text}


def build_text_instructions(payload: Dict[str, Any]) -> str:
    """Prompt sent to a hosted model for campaign copy."""
    business = payload.get("business_type") or "small"
    return (
        f"You are a marketing copywriter for {business} businesses in India. "
        f"Write {payload['caption_count']} distinct {payload['platform']} captions "
        f"in Hinglish for the campaign \"{payload['prompt']}\". "
        f"Each caption must be at most {payload['caption_max_chars']} characters. "
        f"Separate captions with a line containing only ---. "
        f"After the last caption add one more --- line followed by "
        f"{payload['hashtag_min']} to {payload['hashtag_max']} hashtags on a single line."
    )


class BedrockTextEndpoint(GenerationEndpoint):
    """Campaign copy from an Anthropic model hosted on AWS Bedrock."""

    def __init__(
        self,
        model_id: str,
        region: str = "us-east-1",
        client=None,
        max_tokens: int = 2048,
    ):
        self.model_id = model_id
        self.region = region
        self.max_tokens = max_tokens
        self._client = client

    @property
    def client(self):
        """Lazy bedrock-runtime client initialization."""
        if self._client is None:
            self._client = boto3.client("bedrock-runtime", region_name=self.region)
        return self._client

    def _invoke_sync(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        body = {
            "anthropic_version": "bedrock-2023-05-31",
            "max_tokens": self.max_tokens,
            "messages": [
                {"role": "user", "content": build_text_instructions(payload)}
            ],
        }
        try:
            response = self.client.invoke_model(
                modelId=self.model_id,
                contentType="application/json",
                accept="application/json",
                body=json.dumps(body),
            )
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code", "")
            logger.debug(f"Bedrock error for model {self.model_id}: {e}")
            raise ServiceError(
                f"Bedrock invoke_model failed: {code}",
                retryable=code in RETRYABLE_BEDROCK_CODES,
                service_code=code,
            )
        except BotoCoreError as e:
            raise ServiceError(f"Bedrock transport error: {e}", retryable=True)

        result = json.loads(response["body"].read())
        text = "".join(
            block.get("text", "")
            for block in result.get("content", [])
            if block.get("type") == "text"
        )
        return {"text": text}

    async def invoke(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        return await asyncio.to_thread(self._invoke_sync, payload)
