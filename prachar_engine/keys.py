"""
Storage keys and asset ids for generated assets.

Keys follow users/{userId}/projects/{projectId}/{assetKind}/{filename}.
A per-project, per-kind counter plus a short random token keeps keys unique
within a project even when several tasks of one kind run concurrently.
Counters for a project are dropped with `release` once its request ends.
Thumbnails live next to their parent under a fixed suffix so the pairing is
recoverable from the key alone.
"""

import itertools
import uuid
from collections import defaultdict
from typing import Callable, Dict, FrozenSet

from .models import AssetKind, ProjectScope

THUMBNAIL_SUFFIX = "_thumb"


def _short_token() -> str:
    return uuid.uuid4().hex[:8]


def _kind_value(kind) -> str:
    return kind.value if isinstance(kind, AssetKind) else str(kind)


def thumbnail_key(parent_key: str) -> str:
    """
    Derive the thumbnail key for an image key.

    Example:
        users/u/projects/p/image/image_1_1_ab12cd34.png
        -> users/u/projects/p/image/image_1_1_ab12cd34_thumb.png
    """
    stem, dot, ext = parent_key.rpartition(".")
    if not dot or "/" in ext:
        return parent_key + THUMBNAIL_SUFFIX
    return f"{stem}{THUMBNAIL_SUFFIX}.{ext}"


def parent_key_for(thumb_key: str) -> str:
    """Inverse of `thumbnail_key`."""
    stem, dot, ext = thumb_key.rpartition(".")
    if not dot or "/" in ext:
        stem, ext = thumb_key, ""
    if not stem.endswith(THUMBNAIL_SUFFIX):
        raise ValueError(f"'{thumb_key}' is not a thumbnail key")
    stem = stem[: -len(THUMBNAIL_SUFFIX)]
    return f"{stem}.{ext}" if ext else stem


class AssetKeyGenerator:
    """Produces storage keys and asset ids. Holds counters only, no I/O."""

    def __init__(self, token_factory: Callable[[], str] = _short_token):
        self._token_factory = token_factory
        self._counters: Dict[ProjectScope, Dict[str, itertools.count]] = defaultdict(
            lambda: defaultdict(lambda: itertools.count(1))
        )

    @property
    def active_scopes(self) -> FrozenSet[ProjectScope]:
        return frozenset(self._counters)

    def release(self, scope: ProjectScope) -> None:
        """Forget the counters of a finished project."""
        self._counters.pop(scope, None)

    @staticmethod
    def prefix(scope: ProjectScope, asset_kind) -> str:
        return (
            f"users/{scope.user_id}/projects/{scope.project_id}/"
            f"{_kind_value(asset_kind)}"
        )

    def next_key(self, scope: ProjectScope, asset_kind, index: int, extension: str) -> str:
        """
        Produce a fresh storage key.

        Args:
            scope: Owning user/project pair
            asset_kind: AssetKind (or its string value)
            index: Caller's ordinal for the asset (e.g., image 1 of 3)
            extension: File extension without the dot

        Returns:
            Key unique within the project
        """
        kind = _kind_value(asset_kind)
        sequence = next(self._counters[scope][kind])
        filename = f"{kind}_{index}_{sequence}_{self._token_factory()}.{extension.lstrip('.')}"
        return f"{self.prefix(scope, kind)}/{filename}"

    def thumbnail_key(self, parent_key: str) -> str:
        return thumbnail_key(parent_key)

    def next_asset_id(self, asset_kind) -> str:
        return f"{_kind_value(asset_kind)}-{uuid.uuid4().hex[:12]}"
