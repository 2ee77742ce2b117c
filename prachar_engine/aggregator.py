"""
Combine per-component outcomes into one result.

Pure: no I/O, no clock. Calling `combine` twice on the same outcomes gives
equal results.
"""

from dataclasses import dataclass
from typing import Mapping, Tuple

from .models import (
    COMPONENT_ORDER,
    Asset,
    Component,
    GenerationError,
    ProjectStatus,
    TaskOutcome,
)


@dataclass(frozen=True)
class AggregateResult:
    assets: Tuple[Asset, ...]
    status: ProjectStatus
    errors: Tuple[GenerationError, ...]


def combine(outcomes: Mapping[Component, TaskOutcome]) -> AggregateResult:
    """
    Merge outcomes for image, video and text.

    Status is complete when all three succeeded, failed when none did, and
    partial otherwise. Errors and assets follow the fixed component order,
    not the order tasks finished in.

    Raises:
        ValueError: If an outcome is missing or filed under the wrong component
    """
    missing = [c.value for c in COMPONENT_ORDER if c not in outcomes]
    if missing:
        raise ValueError(f"Missing outcomes for: {', '.join(missing)}")

    assets = []
    errors = []
    for component in COMPONENT_ORDER:
        outcome = outcomes[component]
        if outcome.component is not component:
            raise ValueError(
                f"Outcome for {outcome.component.value} filed under {component.value}"
            )
        if outcome.ok:
            assets.extend(outcome.assets)
        else:
            errors.append(outcome.error)

    if not errors:
        status = ProjectStatus.COMPLETE
    elif len(errors) == len(COMPONENT_ORDER):
        status = ProjectStatus.FAILED
    else:
        status = ProjectStatus.PARTIAL

    return AggregateResult(assets=tuple(assets), status=status, errors=tuple(errors))
