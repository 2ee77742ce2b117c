"""
Prachar Engine - campaign content generation for Instagram and LinkedIn.

Package structure:
    prachar_engine/
        __init__.py         - Package exports
        config.py           - Configuration, paths, platform constraints
        errors.py           - Error taxonomy
        models.py           - Projects, assets, outcomes
        retry.py            - Bounded exponential-backoff retry
        keys.py             - Storage keys and asset ids
        imaging.py          - Decoding and thumbnails
        storage.py          - Object and metadata stores (local/S3)
        endpoints.py        - Generation endpoints (simulated/Bedrock)
        text_parser.py      - Captions and hashtags from raw copy
        tasks.py            - Image, video and text task adapters
        aggregator.py       - Outcome aggregation
        project.py          - Project state machine
        orchestrator.py     - Fan-out under a shared deadline
    api/
        __init__.py
        main.py             - FastAPI application
"""

from .config import Config, get_config, init_config, ConfigError
from .errors import (
    EngineError,
    ErrorCode,
    GenerationFailure,
    ServiceError,
    StorageError,
    ValidationError,
)
from .models import Platform, ProjectResult, ProjectStatus
from .orchestrator import Orchestrator, build_orchestrator

__all__ = [
    "Config",
    "get_config",
    "init_config",
    "ConfigError",
    "EngineError",
    "ErrorCode",
    "GenerationFailure",
    "ServiceError",
    "StorageError",
    "ValidationError",
    "Platform",
    "ProjectResult",
    "ProjectStatus",
    "Orchestrator",
    "build_orchestrator",
]
