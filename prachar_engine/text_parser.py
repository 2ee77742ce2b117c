"""
Parse raw campaign copy into captions and hashtags.

Expected shape (what the endpoints are asked to produce):

    caption one ...
    ---
    caption two ...
    ---
    #Tag1 #Tag2 #Tag3

Hashtags are collected from every block in order of first appearance;
lines made up only of hashtags are removed from the captions they sit in.
"""

import re
from dataclasses import dataclass
from typing import List, Tuple

from .errors import GenerationFailure

HASHTAG_PATTERN = re.compile(r"#\w+", re.UNICODE)
SEPARATOR_PATTERN = re.compile(r"^\s*-{3,}\s*$", re.MULTILINE)
ELLIPSIS = "…"


@dataclass(frozen=True)
class ParsedCampaignText:
    captions: Tuple[str, ...]
    hashtags: Tuple[str, ...]


def _is_hashtag_line(line: str) -> bool:
    stripped = line.strip()
    return bool(stripped) and not HASHTAG_PATTERN.sub("", stripped).strip()


def truncate_caption(text: str, max_chars: int) -> str:
    """Cut a caption at a word boundary so it fits in `max_chars`."""
    if len(text) <= max_chars:
        return text
    limit = max_chars - len(ELLIPSIS)
    cut = text[:limit]
    space = cut.rfind(" ")
    if space > limit // 2:
        cut = cut[:space]
    return cut.rstrip() + ELLIPSIS


def parse_campaign_text(
    text: str,
    caption_max_chars: int,
    min_captions: int,
    hashtag_range: Tuple[int, int],
) -> ParsedCampaignText:
    """
    Split campaign copy into captions and a hashtag list.

    Args:
        text: Raw endpoint output
        caption_max_chars: Ceiling applied to every caption
        min_captions: Fewer captions than this is a generation failure
        hashtag_range: (min, max) tag count; surplus tags are dropped

    Returns:
        ParsedCampaignText

    Raises:
        GenerationFailure: If the text is empty, has too few captions,
            or too few hashtags
    """
    if not text or not text.strip():
        raise GenerationFailure("Text endpoint returned empty content")

    captions: List[str] = []
    hashtags: List[str] = []

    for block in SEPARATOR_PATTERN.split(text):
        for tag in HASHTAG_PATTERN.findall(block):
            if tag not in hashtags:
                hashtags.append(tag)

        body = "\n".join(
            line for line in block.splitlines() if not _is_hashtag_line(line)
        ).strip()
        if body:
            captions.append(truncate_caption(body, caption_max_chars))

    if len(captions) < min_captions:
        raise GenerationFailure(
            f"Expected at least {min_captions} captions, parsed {len(captions)}"
        )

    min_tags, max_tags = hashtag_range
    if len(hashtags) < min_tags:
        raise GenerationFailure(
            f"Expected at least {min_tags} hashtags, parsed {len(hashtags)}"
        )

    return ParsedCampaignText(
        captions=tuple(captions),
        hashtags=tuple(hashtags[:max_tags]),
    )
