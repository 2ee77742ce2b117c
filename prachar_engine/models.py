"""
Data model for generation projects.

Assets are a tagged union: each variant is its own frozen dataclass with a
`kind` discriminant. Code that handles assets switches on `asset.kind`.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union

from .errors import ErrorCode


class Platform(str, Enum):
    INSTAGRAM = "instagram"
    LINKEDIN = "linkedin"


class ProjectStatus(str, Enum):
    GENERATING = "generating"
    COMPLETE = "complete"
    PARTIAL = "partial"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self is not ProjectStatus.GENERATING


class Component(str, Enum):
    IMAGE = "image"
    VIDEO = "video"
    TEXT = "text"


# Fixed reporting order, independent of completion order
COMPONENT_ORDER: Tuple[Component, ...] = (
    Component.IMAGE,
    Component.VIDEO,
    Component.TEXT,
)


class AssetKind(str, Enum):
    IMAGE = "image"
    VIDEO = "video"
    CAPTION = "caption"
    HASHTAGS = "hashtags"


@dataclass(frozen=True)
class ProjectScope:
    """Owning user/project pair for storage keys."""
    user_id: str
    project_id: str


@dataclass(frozen=True)
class ImageAsset:
    asset_id: str
    platform: Platform
    created_at: datetime
    storage_key: str
    thumbnail_key: str
    width: int
    height: int
    is_edited: bool = False
    kind: AssetKind = field(default=AssetKind.IMAGE, init=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "assetId": self.asset_id,
            "platform": self.platform.value,
            "isEdited": self.is_edited,
            "createdAt": self.created_at.isoformat(),
            "storageKey": self.storage_key,
            "thumbnailKey": self.thumbnail_key,
            "dimensions": {"width": self.width, "height": self.height},
        }


@dataclass(frozen=True)
class VideoAsset:
    asset_id: str
    platform: Platform
    created_at: datetime
    storage_key: str
    duration_seconds: float
    format: str
    is_edited: bool = False
    kind: AssetKind = field(default=AssetKind.VIDEO, init=False)

    def __post_init__(self):
        if not 3 <= self.duration_seconds <= 10:
            raise ValueError(
                f"Video duration must be within [3, 10] seconds, got {self.duration_seconds}"
            )
        if self.format not in ("mp4", "gif"):
            raise ValueError(f"Unsupported video format '{self.format}'")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "assetId": self.asset_id,
            "platform": self.platform.value,
            "isEdited": self.is_edited,
            "createdAt": self.created_at.isoformat(),
            "storageKey": self.storage_key,
            "durationSeconds": self.duration_seconds,
            "format": self.format,
        }


@dataclass(frozen=True)
class CaptionAsset:
    asset_id: str
    platform: Platform
    created_at: datetime
    content: str
    is_edited: bool = False
    kind: AssetKind = field(default=AssetKind.CAPTION, init=False)

    @property
    def character_count(self) -> int:
        return len(self.content)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "assetId": self.asset_id,
            "platform": self.platform.value,
            "isEdited": self.is_edited,
            "createdAt": self.created_at.isoformat(),
            "content": self.content,
            "characterCount": self.character_count,
        }


@dataclass(frozen=True)
class HashtagAsset:
    asset_id: str
    platform: Platform
    created_at: datetime
    tags: Tuple[str, ...]
    is_edited: bool = False
    kind: AssetKind = field(default=AssetKind.HASHTAGS, init=False)

    def __post_init__(self):
        # Accept any sequence but store a tuple so the asset stays hashable
        object.__setattr__(self, "tags", tuple(self.tags))
        for tag in self.tags:
            if len(tag) < 2 or not tag.startswith("#"):
                raise ValueError(f"Invalid hashtag '{tag}'")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "assetId": self.asset_id,
            "platform": self.platform.value,
            "isEdited": self.is_edited,
            "createdAt": self.created_at.isoformat(),
            "tags": list(self.tags),
        }


Asset = Union[ImageAsset, VideoAsset, CaptionAsset, HashtagAsset]


@dataclass(frozen=True)
class GenerationError:
    """One failed component. Appended to a project, never mutated."""
    component: Component
    error_code: ErrorCode
    error_message: str
    timestamp: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "component": self.component.value,
            "errorCode": self.error_code.value,
            "errorMessage": self.error_message,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass(frozen=True)
class TaskOutcome:
    """Result of one generator task: its assets, or the error that stopped it."""
    component: Component
    assets: Tuple[Asset, ...] = ()
    error: Optional[GenerationError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, component: Component, assets) -> "TaskOutcome":
        return cls(component=component, assets=tuple(assets))

    @classmethod
    def failure(cls, component: Component, error: GenerationError) -> "TaskOutcome":
        return cls(component=component, error=error)


@dataclass
class Project:
    """One request's lifecycle record."""
    project_id: str
    user_id: str
    prompt: str
    platforms: frozenset
    created_at: datetime
    status: ProjectStatus = ProjectStatus.GENERATING
    completed_at: Optional[datetime] = None
    errors: List[GenerationError] = field(default_factory=list)
    assets: List[Asset] = field(default_factory=list)
    business_type: Optional[str] = None

    @property
    def scope(self) -> ProjectScope:
        return ProjectScope(user_id=self.user_id, project_id=self.project_id)

    def to_record(self) -> Dict[str, Any]:
        """Serialize for the metadata store."""
        return {
            "projectId": self.project_id,
            "userId": self.user_id,
            "prompt": self.prompt,
            "platforms": sorted(p.value for p in self.platforms),
            "businessType": self.business_type,
            "createdAt": self.created_at.isoformat(),
            "completedAt": self.completed_at.isoformat() if self.completed_at else None,
            "status": self.status.value,
            "errors": [e.to_dict() for e in self.errors],
            "assets": [a.to_dict() for a in self.assets],
        }


@dataclass(frozen=True)
class ProjectResult:
    """Aggregated response returned to the caller of `generate`."""
    project_id: str
    status: ProjectStatus
    images: Tuple[ImageAsset, ...]
    videos: Tuple[VideoAsset, ...]
    captions: Dict[Platform, Tuple[CaptionAsset, ...]]
    hashtags: Dict[Platform, HashtagAsset]
    errors: Tuple[GenerationError, ...]

    @classmethod
    def from_assets(cls, project_id: str, status: ProjectStatus, assets, errors) -> "ProjectResult":
        images, videos = [], []
        captions: Dict[Platform, List[CaptionAsset]] = {}
        hashtags: Dict[Platform, HashtagAsset] = {}

        for asset in assets:
            if asset.kind is AssetKind.IMAGE:
                images.append(asset)
            elif asset.kind is AssetKind.VIDEO:
                videos.append(asset)
            elif asset.kind is AssetKind.CAPTION:
                captions.setdefault(asset.platform, []).append(asset)
            elif asset.kind is AssetKind.HASHTAGS:
                hashtags[asset.platform] = asset

        return cls(
            project_id=project_id,
            status=status,
            images=tuple(images),
            videos=tuple(videos),
            captions={p: tuple(c) for p, c in captions.items()},
            hashtags=hashtags,
            errors=tuple(errors),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "projectId": self.project_id,
            "status": self.status.value,
            "images": [a.to_dict() for a in self.images],
            "videos": [a.to_dict() for a in self.videos],
            "captions": {
                p.value: [c.to_dict() for c in caps]
                for p, caps in self.captions.items()
            },
            "hashtags": {p.value: h.to_dict() for p, h in self.hashtags.items()},
            "errors": [e.to_dict() for e in self.errors],
        }
